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


import threading

import grpc


class FakeRpcError(grpc.RpcError):
    """Stands for the error raised by a gRPC call."""

    def __init__(self, code, details=''):
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self):
        return self._code

    def details(self):
        return self._details


class FakeClock:
    """Monotonic clock advanced by hand or by :meth:`sleep`."""

    def __init__(self, now=1000.0):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay

    def advance(self, seconds):
        self.now += seconds


class ScriptedTransport:
    """Transport replaying a script of outcomes, one per attempt.

    Exceptions in the script are raised, anything else is returned. The last
    outcome repeats once the script is exhausted.
    """

    def __init__(self, *outcomes, clock=None, attempt_duration=0.0):
        self.outcomes = list(outcomes)
        self.requests = []
        self.timeouts = []
        self.metadata = []
        self.clock = clock
        self.attempt_duration = attempt_duration
        self._lock = threading.Lock()

    @property
    def calls(self):
        return len(self.requests)

    def _next_outcome(self, request, timeout, metadata):
        with self._lock:
            self.requests.append(request)
            self.timeouts.append(timeout)
            self.metadata.append(metadata)
            index = min(len(self.requests), len(self.outcomes)) - 1
        if self.clock is not None:
            self.clock.advance(self.attempt_duration)
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def __call__(self, request, timeout=None, metadata=None):
        return self._next_outcome(request, timeout, metadata)

    async def call_async(self, request, timeout=None, metadata=None):
        return self._next_outcome(request, timeout, metadata)


def unavailable(details='try again'):
    return FakeRpcError(grpc.StatusCode.UNAVAILABLE, details)


def invalid_argument(details='bad request'):
    return FakeRpcError(grpc.StatusCode.INVALID_ARGUMENT, details)
