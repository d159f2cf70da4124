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


"""
ApiCall
=======

A single remote operation bound to its default :class:`CallSettings`, with a
blocking and an asyncio form sharing the same retry logic.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import grpc

from gaxcore._exceptions import ApiCallError, CancelledError, DeadlineExceededError
from gaxcore._exceptions import InvalidArgumentError, _rpc_error_status
from gaxcore.client.cancellation import CancellationToken
from gaxcore.client.retry import CallSettings, Expiration, RetryPolicy


SyncTransport = Callable[..., Any]
AsyncTransport = Callable[..., Awaitable[Any]]


class _RetryState:
    """Bookkeeping for one logical call: attempts made, the next per-attempt
    timeout and the deadline that bounds them all.

    Shared by the blocking and asyncio drivers; it never sleeps nor calls
    the transport itself.
    """

    def __init__(self, method_name: str, retry: Optional[RetryPolicy],
                 expiration: Optional[Expiration], clock: Callable[[], float]):
        self._method_name = method_name
        self._retry = retry
        self._clock = clock

        now = clock()
        deadlines = []
        if retry is not None:
            deadlines.append(retry.total_expiration.deadline_from(now))
        if expiration is not None:
            deadlines.append(expiration.deadline_from(now))
        deadlines = [deadline for deadline in deadlines if deadline is not None]
        # Per-call deadline and total expiration: the earliest wins.
        self.deadline = min(deadlines) if deadlines else None

        self.attempts = 0
        if retry is not None and not retry.timeout_backoff.is_zero:
            self._rpc_timeout = retry.timeout_backoff.delay
        else:
            self._rpc_timeout = None
        self._last_error: Optional[grpc.RpcError] = None
        self._attempt_reaches_deadline = False

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - self._clock()

    def next_attempt_timeout(self) -> Optional[float]:
        """Returns the timeout, in seconds, to apply to the next attempt.

        Raises:
            DeadlineExceededError: If the deadline has already passed.
        """
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise self.deadline_error()

        timeout = self._rpc_timeout.total_seconds() if self._rpc_timeout is not None else None
        # Whether the attempt can only end at the call's own deadline:
        self._attempt_reaches_deadline = remaining is not None and (timeout is None or remaining <= timeout)
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)

        self.attempts += 1
        return timeout

    def on_failure(self, error: grpc.RpcError) -> float:
        """Decides what to do after a failed attempt.

        An attempt timing out at the call's deadline ends the call with a
        :class:`DeadlineExceededError`, whatever the retry filter says.

        Returns:
            float: seconds to wait before the next attempt.

        Raises:
            ApiCallError: If the failure isn't eligible for retry.
            DeadlineExceededError: If it is, but no time is left.
        """
        self._last_error = error
        code, _ = _rpc_error_status(error)
        remaining = self.remaining()

        if code == grpc.StatusCode.DEADLINE_EXCEEDED:
            if self._attempt_reaches_deadline or (remaining is not None and remaining <= 0):
                raise self.deadline_error() from error

        if self._retry is None or not self._retry.should_retry(code):
            raise ApiCallError.from_rpc_error(error, self._method_name) from error

        if remaining is not None and remaining <= 0:
            raise self.deadline_error() from error

        delay = self._retry.retry_backoff.delay_for_attempt(self.attempts - 1).total_seconds()
        if self._rpc_timeout is not None:
            self._rpc_timeout = self._retry.timeout_backoff.next_delay(self._rpc_timeout)

        if remaining is not None:
            delay = min(delay, remaining)
        return max(delay, 0.0)

    def deadline_error(self) -> DeadlineExceededError:
        code, details = None, None
        if self._last_error is not None:
            code, details = _rpc_error_status(self._last_error)
        error = DeadlineExceededError(
            f"Deadline exceeded for [{self._method_name}] after [{self.attempts}] attempt(s)",
            detail=details, code=code, attempts=self.attempts)
        if self._last_error is not None:
            error.__cause__ = self._last_error
        return error


class ApiCall:
    """A remote operation with its default call settings.

    Args:
        sync_fn (callable): ``sync_fn(request, timeout=None, metadata=None)``
            performs the RPC and blocks until it completes. Failures are
            raised as :class:`grpc.RpcError`.
        async_fn (callable): same signature, returns an awaitable for the
            same RPC.
        settings (CallSettings): defaults, usually built from a client
            config when the client is constructed.
        method_name (str): used in log messages and errors.
    """

    def __init__(self, sync_fn: SyncTransport, async_fn: Optional[AsyncTransport]=None,
                 settings: Optional[CallSettings]=None, method_name: str='',
                 clock: Callable[[], float]=time.monotonic,
                 sleep: Callable[[float], None]=time.sleep):
        self.__logger = logging.getLogger(__name__)

        self._sync_fn = sync_fn
        self._async_fn = async_fn
        self._settings = settings if settings is not None else CallSettings()
        self._method_name = method_name
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_grpc(cls, channel: grpc.Channel, method: str,
                  request_serializer: Callable, response_deserializer: Callable,
                  settings: Optional[CallSettings]=None) -> 'ApiCall':
        """Binds a unary-unary method of a synchronous gRPC channel.

        The asyncio form rides on ``multicallable.future()`` so that both
        forms share the same channel.
        """
        multicallable = channel.unary_unary(method,
                                            request_serializer=request_serializer,
                                            response_deserializer=response_deserializer)

        def _sync_fn(request, timeout=None, metadata=None):
            return multicallable(request, timeout=timeout, metadata=metadata)

        def _async_fn(request, timeout=None, metadata=None):
            return _await_grpc_future(multicallable.future(request, timeout=timeout, metadata=metadata))

        return cls(_sync_fn, _async_fn, settings=settings, method_name=method)

    @property
    def method_name(self) -> str:
        return self._method_name

    @property
    def settings(self) -> CallSettings:
        return self._settings

    def with_settings(self, settings: CallSettings) -> 'ApiCall':
        """Returns a copy bound to `settings` merged over the current defaults."""
        return ApiCall(self._sync_fn, self._async_fn,
                       settings=CallSettings.merge(self._settings, settings),
                       method_name=self._method_name, clock=self._clock, sleep=self._sleep)

    def with_retry(self, retry: RetryPolicy) -> 'ApiCall':
        return self.with_settings(CallSettings(retry=retry))

    def with_expiration(self, expiration: Expiration) -> 'ApiCall':
        return self.with_settings(CallSettings(expiration=expiration))

    # --- Public API ---

    def invoke(self, request, call_settings: Optional[CallSettings]=None):
        """Performs the call, blocking the current thread.

        Retryable failures are retried according to the effective retry
        policy until it succeeds, a non-retryable failure happens or the
        deadline passes.

        Raises:
            ApiCallError: on a non-retryable failure.
            DeadlineExceededError: once no time is left for another attempt.
            CancelledError: if the cancellation token fired between attempts.
        """
        settings = CallSettings.merge(self._settings, call_settings)
        token = settings.cancellation_token
        metadata = settings.metadata
        state = self._new_state(settings)

        while True:
            self._raise_if_cancelled(token, state)
            timeout = self._next_attempt_timeout(state)
            try:
                return self._sync_fn(request, timeout=timeout, metadata=metadata)
            except grpc.RpcError as e:
                self._raise_if_cancelled(token, state, e)
                delay = self._on_failure(e, state)

            if token is not None:
                if token.wait_for(delay):
                    self._raise_if_cancelled(token, state)
            elif delay > 0:
                self._sleep(delay)

    __call__ = invoke

    async def invoke_async(self, request, call_settings: Optional[CallSettings]=None):
        """Performs the call without blocking the event loop.

        Same retry behaviour as :meth:`invoke`. The cancellation token is
        checked before every attempt and interrupts backoff sleeps; an
        attempt already in flight is allowed to finish, but a failed attempt
        observed after cancellation surfaces as :class:`CancelledError`.
        """
        if self._async_fn is None:
            raise InvalidArgumentError(f"[{self._method_name}] has no asynchronous transport")

        settings = CallSettings.merge(self._settings, call_settings)
        token = settings.cancellation_token
        metadata = settings.metadata
        state = self._new_state(settings)

        while True:
            self._raise_if_cancelled(token, state)
            timeout = self._next_attempt_timeout(state)
            try:
                return await self._async_fn(request, timeout=timeout, metadata=metadata)
            except grpc.RpcError as e:
                self._raise_if_cancelled(token, state, e)
                delay = self._on_failure(e, state)

            await _cancellable_sleep(delay, token)

    # --- Private API ---

    def _new_state(self, settings: CallSettings) -> _RetryState:
        return _RetryState(self._method_name, settings.retry, settings.expiration, self._clock)

    def _next_attempt_timeout(self, state: _RetryState) -> Optional[float]:
        try:
            return state.next_attempt_timeout()
        except DeadlineExceededError as e:
            self.__logger.warning(str(e))
            raise

    def _on_failure(self, error: grpc.RpcError, state: _RetryState) -> float:
        try:
            delay = state.on_failure(error)
        except (ApiCallError, DeadlineExceededError) as e:
            self.__logger.warning(str(e))
            raise
        self._log_retry(error, delay, state)
        return delay

    def _raise_if_cancelled(self, token: Optional[CancellationToken], state: _RetryState,
                            error: Optional[grpc.RpcError]=None) -> None:
        if token is None or not token.cancelled:
            return
        self.__logger.info(f"Call to [{self._method_name}] cancelled after [{state.attempts}] attempt(s)")
        cancelled = CancelledError(f"Call to [{self._method_name}] was cancelled")
        if error is not None:
            raise cancelled from error
        raise cancelled

    def _log_retry(self, error: grpc.RpcError, delay: float, state: _RetryState) -> None:
        code, _ = _rpc_error_status(error)
        code_name = code.name if code is not None else 'UNKNOWN'
        self.__logger.debug(f"Retrying [{self._method_name}] after [{code_name}] in [{delay:.3f}s] "
                            f"(attempt [{state.attempts}])")


async def _cancellable_sleep(delay: float, token: Optional[CancellationToken]) -> None:
    """Sleeps for `delay` seconds, or until `token` fires.

    Raises:
        CancelledError: If the token fired first.
    """
    if token is None:
        await asyncio.sleep(delay)
        return

    try:
        await asyncio.wait_for(token.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise CancelledError("Call was cancelled while waiting to retry")


async def _await_grpc_future(call_future):
    """Awaits a :class:`grpc.Future` from the asyncio event loop.

    The future's callbacks fire on a gRPC thread, so the outcome is handed
    over to the loop thread-safely.
    """
    loop = asyncio.get_running_loop()
    outcome = loop.create_future()

    def _transfer(done_future):
        if outcome.done():
            return
        try:
            outcome.set_result(done_future.result())
        except Exception as e:  # pylint: disable=broad-except
            outcome.set_exception(e)

    call_future.add_done_callback(lambda done: loop.call_soon_threadsafe(_transfer, done))

    try:
        return await outcome
    except asyncio.CancelledError:
        call_future.cancel()
        raise
