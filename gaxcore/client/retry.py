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
Retry policies
==============

Backoff curves, retry policies and per-call settings shared by every
:class:`gaxcore.client.api_call.ApiCall`. All of these objects are immutable
and can be shared freely between threads and tasks.
"""

from datetime import datetime, timedelta
from typing import Iterable, Mapping, Optional, Sequence, Tuple
import math

import grpc

from gaxcore._enums import ExpirationType, IDEMPOTENT_STATUS_CODES
from gaxcore._exceptions import InvalidArgumentError
from gaxcore.client.cancellation import CancellationToken
from gaxcore.utils import millis, status_codes_from_names


class BackoffPolicy:
    """Describes a delay curve: ``min(max_delay, delay * multiplier ** n)``.

    The same shape is used both for the sleep between attempts and for the
    growth of per-attempt RPC timeouts.
    """

    def __init__(self, delay: timedelta, max_delay: timedelta, multiplier: float=1.0):
        if delay < timedelta(0):
            raise InvalidArgumentError(f"Backoff delay must not be negative: [{delay}]")
        if max_delay < delay:
            raise InvalidArgumentError(
                f"Backoff maximum delay [{max_delay}] is smaller than its initial delay [{delay}]")
        if multiplier < 1.0:
            raise InvalidArgumentError(f"Backoff multiplier must be at least 1.0: [{multiplier}]")

        self.__delay = delay
        self.__max_delay = max_delay
        self.__multiplier = float(multiplier)

    @classmethod
    def zero(cls) -> 'BackoffPolicy':
        """The constant-zero curve: retries happen back to back."""
        return cls(timedelta(0), timedelta(0), 1.0)

    @property
    def delay(self) -> timedelta:
        return self.__delay

    @property
    def max_delay(self) -> timedelta:
        return self.__max_delay

    @property
    def multiplier(self) -> float:
        return self.__multiplier

    @property
    def is_zero(self) -> bool:
        return self.__max_delay == timedelta(0)

    def delay_for_attempt(self, attempt: int) -> timedelta:
        """Returns the delay following the `attempt`-th failure (0-based)."""
        if attempt < 0:
            raise InvalidArgumentError(f"Attempt number must not be negative: [{attempt}]")

        try:
            growth = self.__multiplier ** attempt
        except OverflowError:
            return self.__max_delay

        if math.isinf(growth) or self.__delay.total_seconds() * growth >= self.__max_delay.total_seconds():
            return self.__max_delay
        return min(self.__max_delay, self.__delay * growth)

    def next_delay(self, current: timedelta) -> timedelta:
        """Returns the delay following `current` on this curve."""
        if current.total_seconds() * self.__multiplier >= self.__max_delay.total_seconds():
            return self.__max_delay
        return current * self.__multiplier

    def __eq__(self, other):
        if not isinstance(other, BackoffPolicy):
            return NotImplemented
        return (self.__delay == other.delay and
                self.__max_delay == other.max_delay and
                self.__multiplier == other.multiplier)

    def __hash__(self):
        return hash((self.__delay, self.__max_delay, self.__multiplier))

    def __repr__(self):
        return (f"BackoffPolicy(delay={self.__delay!r}, max_delay={self.__max_delay!r}, "
                f"multiplier={self.__multiplier!r})")


class StatusCodeFilter:
    """Retry predicate matching a fixed set of :class:`grpc.StatusCode`."""

    def __init__(self, codes: Iterable[grpc.StatusCode]):
        self.__codes = frozenset(codes)

    @property
    def codes(self) -> frozenset:
        return self.__codes

    def __call__(self, code: Optional[grpc.StatusCode]) -> bool:
        return code in self.__codes

    def __eq__(self, other):
        if not isinstance(other, StatusCodeFilter):
            return NotImplemented
        return self.__codes == other.codes

    def __hash__(self):
        return hash(self.__codes)

    def __repr__(self):
        names = ', '.join(sorted(code.name for code in self.__codes))
        return f"StatusCodeFilter({names})"


def filter_for_status_codes(*codes: grpc.StatusCode) -> StatusCodeFilter:
    """Builds a retry predicate matching exactly `codes`.

    Called without arguments, the predicate never matches.
    """
    return StatusCodeFilter(codes)


IDEMPOTENT_RETRY_FILTER = filter_for_status_codes(*IDEMPOTENT_STATUS_CODES)

NON_IDEMPOTENT_RETRY_FILTER = filter_for_status_codes()


class Expiration:
    """When a logical call should give up: never, after a timeout, or at a
    given point in time."""

    def __init__(self, timeout: Optional[timedelta]=None, deadline: Optional[datetime]=None):
        if timeout is not None and deadline is not None:
            raise InvalidArgumentError("An expiration cannot have both a timeout and a deadline")
        if timeout is not None and timeout < timedelta(0):
            raise InvalidArgumentError(f"Expiration timeout must not be negative: [{timeout}]")

        self.__timeout = timeout
        self.__deadline = deadline

    @classmethod
    def none(cls) -> 'Expiration':
        return cls()

    @classmethod
    def from_timeout(cls, timeout: timedelta) -> 'Expiration':
        return cls(timeout=timeout)

    @classmethod
    def from_deadline(cls, deadline: datetime) -> 'Expiration':
        return cls(deadline=deadline)

    @property
    def type(self) -> ExpirationType:
        if self.__timeout is not None:
            return ExpirationType.TIMEOUT
        if self.__deadline is not None:
            return ExpirationType.DEADLINE
        return ExpirationType.NONE

    @property
    def timeout(self) -> Optional[timedelta]:
        return self.__timeout

    @property
    def deadline(self) -> Optional[datetime]:
        return self.__deadline

    def deadline_from(self, now: float) -> Optional[float]:
        """Converts this expiration to a deadline on the clock whose current
        reading is `now` (in seconds), or ``None`` for no deadline."""
        if self.__timeout is not None:
            return now + self.__timeout.total_seconds()
        if self.__deadline is not None:
            remaining = self.__deadline - datetime.now(self.__deadline.tzinfo)
            return now + remaining.total_seconds()
        return None

    def __eq__(self, other):
        if not isinstance(other, Expiration):
            return NotImplemented
        return self.__timeout == other.timeout and self.__deadline == other.deadline

    def __hash__(self):
        return hash((self.__timeout, self.__deadline))

    def __repr__(self):
        if self.__timeout is not None:
            return f"Expiration(timeout={self.__timeout!r})"
        if self.__deadline is not None:
            return f"Expiration(deadline={self.__deadline!r})"
        return "Expiration()"


class RetryPolicy:
    """Retry curve, per-attempt timeout curve, overall expiration and the
    predicate deciding which failures may be retried."""

    def __init__(self, retry_backoff: BackoffPolicy, timeout_backoff: BackoffPolicy,
                 total_expiration: Expiration, retry_filter=NON_IDEMPOTENT_RETRY_FILTER):
        if not callable(retry_filter):
            raise InvalidArgumentError("Retry filter must be callable")

        self.__retry_backoff = retry_backoff
        self.__timeout_backoff = timeout_backoff
        self.__total_expiration = total_expiration
        self.__retry_filter = retry_filter

    @classmethod
    def from_config(cls, retry_codes: Iterable[str], retry_params: Mapping) -> 'RetryPolicy':
        """Builds a policy from a client config's retry codes and retry
        parameters (millisecond values, hyphenated keys)::

            initial-retry-delay-millis: 100
            retry-delay-multiplier: 1.3
            max-retry-delay-millis: 60000
            initial-rpc-timeout-millis: 20000
            rpc-timeout-multiplier: 1.0
            max-rpc-timeout-millis: 20000
            total-timeout-millis: 600000
        """
        try:
            retry_backoff = BackoffPolicy(
                delay=millis(retry_params['initial-retry-delay-millis']),
                max_delay=millis(retry_params['max-retry-delay-millis']),
                multiplier=retry_params['retry-delay-multiplier'])
            timeout_backoff = BackoffPolicy(
                delay=millis(retry_params['initial-rpc-timeout-millis']),
                max_delay=millis(retry_params['max-rpc-timeout-millis']),
                multiplier=retry_params['rpc-timeout-multiplier'])
            total_expiration = Expiration.from_timeout(millis(retry_params['total-timeout-millis']))
        except KeyError as e:
            raise InvalidArgumentError(f"Retry parameters are missing a value: {e}")

        return cls(retry_backoff, timeout_backoff, total_expiration,
                   filter_for_status_codes(*status_codes_from_names(retry_codes)))

    @property
    def retry_backoff(self) -> BackoffPolicy:
        return self.__retry_backoff

    @property
    def timeout_backoff(self) -> BackoffPolicy:
        return self.__timeout_backoff

    @property
    def total_expiration(self) -> Expiration:
        return self.__total_expiration

    @property
    def retry_filter(self):
        return self.__retry_filter

    def should_retry(self, code: Optional[grpc.StatusCode]) -> bool:
        return bool(self.__retry_filter(code))

    def with_total_expiration(self, total_expiration: Expiration) -> 'RetryPolicy':
        return RetryPolicy(self.__retry_backoff, self.__timeout_backoff,
                           total_expiration, self.__retry_filter)

    def with_retry_filter(self, retry_filter) -> 'RetryPolicy':
        return RetryPolicy(self.__retry_backoff, self.__timeout_backoff,
                           self.__total_expiration, retry_filter)

    def __eq__(self, other):
        if not isinstance(other, RetryPolicy):
            return NotImplemented
        return (self.__retry_backoff == other.retry_backoff and
                self.__timeout_backoff == other.timeout_backoff and
                self.__total_expiration == other.total_expiration and
                self.__retry_filter == other.retry_filter)

    def __hash__(self):
        return hash((self.__retry_backoff, self.__timeout_backoff, self.__total_expiration))

    def __repr__(self):
        return (f"RetryPolicy(retry_backoff={self.__retry_backoff!r}, "
                f"timeout_backoff={self.__timeout_backoff!r}, "
                f"total_expiration={self.__total_expiration!r}, "
                f"retry_filter={self.__retry_filter!r})")


MetadataType = Sequence[Tuple[str, str]]


class CallSettings:
    """Per-call settings.

    Any field left to ``None`` means "use whatever the method was configured
    with when the client was built".

    Args:
        expiration (Expiration): deadline for the whole logical call. Combined
            with the retry policy's total expiration, the earliest wins.
        retry (RetryPolicy): replaces the method's retry policy.
        cancellation_token (CancellationToken): stops further attempts and
            page fetches once fired.
        metadata (list): extra ``(key, value)`` gRPC metadata pairs.
    """

    def __init__(self, expiration: Optional[Expiration]=None,
                 retry: Optional[RetryPolicy]=None,
                 cancellation_token: Optional[CancellationToken]=None,
                 metadata: Optional[MetadataType]=None):
        self.__expiration = expiration
        self.__retry = retry
        self.__cancellation_token = cancellation_token
        self.__metadata = tuple(metadata) if metadata is not None else None

    @classmethod
    def from_retry(cls, retry: RetryPolicy) -> 'CallSettings':
        return cls(retry=retry)

    @classmethod
    def from_expiration(cls, expiration: Expiration) -> 'CallSettings':
        return cls(expiration=expiration)

    @classmethod
    def from_cancellation_token(cls, cancellation_token: CancellationToken) -> 'CallSettings':
        return cls(cancellation_token=cancellation_token)

    @property
    def expiration(self) -> Optional[Expiration]:
        return self.__expiration

    @property
    def retry(self) -> Optional[RetryPolicy]:
        return self.__retry

    @property
    def cancellation_token(self) -> Optional[CancellationToken]:
        return self.__cancellation_token

    @property
    def metadata(self) -> Optional[Tuple[Tuple[str, str], ...]]:
        return self.__metadata

    def replace(self, **kwargs) -> 'CallSettings':
        values = {
            'expiration': self.__expiration,
            'retry': self.__retry,
            'cancellation_token': self.__cancellation_token,
            'metadata': self.__metadata,
        }
        for key, value in kwargs.items():
            if key not in values:
                raise InvalidArgumentError(f"Unknown call setting: [{key}]")
            values[key] = value
        return CallSettings(**values)

    @staticmethod
    def merge(base: Optional['CallSettings'], override: Optional['CallSettings']) -> 'CallSettings':
        """Combines two settings, `override` winning field by field.

        Metadata is concatenated rather than replaced.
        """
        if base is None:
            return override if override is not None else CallSettings()
        if override is None:
            return base

        metadata = None
        if base.metadata is not None or override.metadata is not None:
            metadata = (base.metadata or ()) + (override.metadata or ())

        return CallSettings(
            expiration=override.expiration if override.expiration is not None else base.expiration,
            retry=override.retry if override.retry is not None else base.retry,
            cancellation_token=(override.cancellation_token if override.cancellation_token is not None
                                else base.cancellation_token),
            metadata=metadata)

    def __repr__(self):
        return (f"CallSettings(expiration={self.__expiration!r}, retry={self.__retry!r}, "
                f"cancellation_token={self.__cancellation_token!r}, metadata={self.__metadata!r})")
