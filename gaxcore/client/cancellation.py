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
import logging
import threading
from typing import Callable, List, Optional

from gaxcore._exceptions import CancelledError


class CancellationToken:
    """Cooperative cancellation signal for calls and paged listings.

    A token can be fired from any thread. Blocking code waits on it with
    :meth:`wait_for`, asyncio code with :meth:`wait`. Firing a token never
    interrupts a remote call already in flight; it only stops the next
    attempt, backoff sleep or page fetch from happening.
    """

    def __init__(self):
        self.__logger = logging.getLogger(__name__)

        self.__event = threading.Event()
        self.__callbacks: List[Callable[[], None]] = []
        self.__callbacks_lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self.__event.is_set()

    def cancel(self) -> None:
        """Fires the token. Subsequent calls are no-ops."""
        with self.__callbacks_lock:
            if self.__event.is_set():
                return
            self.__event.set()
            callbacks, self.__callbacks = self.__callbacks, []

        self.__logger.debug("Cancellation requested")
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Registers `callback` to run once the token fires.

        The callback runs immediately if the token has already fired.
        """
        with self.__callbacks_lock:
            if not self.__event.is_set():
                self.__callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self.__callbacks_lock:
            try:
                self.__callbacks.remove(callback)
            except ValueError:
                pass

    def raise_if_cancelled(self, message: str="Operation cancelled") -> None:
        if self.__event.is_set():
            raise CancelledError(message)

    def wait_for(self, timeout: Optional[float]=None) -> bool:
        """Blocks for up to `timeout` seconds. Returns whether the token fired."""
        return self.__event.wait(timeout=timeout)

    async def wait(self) -> None:
        """Suspends the current task until the token fires."""
        loop = asyncio.get_running_loop()
        fired = loop.create_future()

        def _resolve():
            if not fired.done():
                fired.set_result(None)

        def _on_cancel():
            loop.call_soon_threadsafe(_resolve)

        self.add_callback(_on_cancel)
        try:
            await fired
        finally:
            self.remove_callback(_on_cancel)
