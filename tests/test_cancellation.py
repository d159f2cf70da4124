# Copyright (C) 2021 Bloomberg LP
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#  <http://www.apache.org/licenses/LICENSE-2.0>
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


import asyncio
import threading

import pytest

from gaxcore._exceptions import CancelledError
from gaxcore.client.cancellation import CancellationToken


def test_token_starts_uncancelled():
    token = CancellationToken()

    assert not token.cancelled
    token.raise_if_cancelled()
    assert not token.wait_for(0)


def test_cancel_is_idempotent_and_runs_callbacks_once():
    token = CancellationToken()
    fired = []
    token.add_callback(lambda: fired.append(1))

    token.cancel()
    token.cancel()

    assert token.cancelled
    assert fired == [1]
    with pytest.raises(CancelledError):
        token.raise_if_cancelled()


def test_callback_added_after_cancel_runs_immediately():
    token = CancellationToken()
    token.cancel()
    fired = []

    token.add_callback(lambda: fired.append(1))

    assert fired == [1]


def test_removed_callback_does_not_run():
    token = CancellationToken()
    fired = []

    def callback():
        fired.append(1)

    token.add_callback(callback)
    token.remove_callback(callback)
    token.remove_callback(callback)
    token.cancel()

    assert not fired


def test_wait_for_wakes_up_when_cancelled_from_another_thread():
    token = CancellationToken()
    timer = threading.Timer(0.05, token.cancel)
    timer.start()
    try:
        assert token.wait_for(5)
    finally:
        timer.cancel()


def test_async_wait_wakes_up_when_cancelled_from_another_thread():
    token = CancellationToken()

    async def _wait():
        threading.Timer(0.05, token.cancel).start()
        await asyncio.wait_for(token.wait(), timeout=5)

    asyncio.run(_wait())

    assert token.cancelled


def test_async_wait_returns_at_once_when_already_cancelled():
    token = CancellationToken()
    token.cancel()

    asyncio.run(asyncio.wait_for(token.wait(), timeout=1))
