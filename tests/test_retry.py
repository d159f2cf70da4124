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

# pylint: disable=redefined-outer-name


from datetime import datetime, timedelta, timezone

import grpc
import pytest

from gaxcore._enums import ExpirationType
from gaxcore._exceptions import InvalidArgumentError
from gaxcore.client.cancellation import CancellationToken
from gaxcore.client.retry import BackoffPolicy, CallSettings, Expiration, RetryPolicy
from gaxcore.client.retry import IDEMPOTENT_RETRY_FILTER, NON_IDEMPOTENT_RETRY_FILTER
from gaxcore.client.retry import filter_for_status_codes


def ms(value):
    return timedelta(milliseconds=value)


@pytest.fixture
def retry_params():
    return {
        'initial-retry-delay-millis': 100,
        'retry-delay-multiplier': 1.3,
        'max-retry-delay-millis': 60000,
        'initial-rpc-timeout-millis': 20000,
        'rpc-timeout-multiplier': 1.0,
        'max-rpc-timeout-millis': 20000,
        'total-timeout-millis': 600000,
    }


def test_backoff_delays_grow_geometrically_up_to_the_cap():
    backoff = BackoffPolicy(ms(100), ms(1000), 2.0)

    delays = [backoff.delay_for_attempt(attempt) for attempt in range(6)]

    assert delays == [ms(100), ms(200), ms(400), ms(800), ms(1000), ms(1000)]


def test_backoff_delays_never_exceed_the_cap():
    backoff = BackoffPolicy(ms(100), ms(1000), 1.2)

    for attempt in range(200):
        assert ms(0) <= backoff.delay_for_attempt(attempt) <= ms(1000)


def test_backoff_survives_huge_attempt_numbers():
    backoff = BackoffPolicy(ms(100), ms(60000), 1.3)

    assert backoff.delay_for_attempt(100000) == ms(60000)


def test_backoff_next_delay_follows_the_curve():
    backoff = BackoffPolicy(ms(2000), ms(30000), 1.5)

    assert backoff.next_delay(ms(2000)) == ms(3000)
    assert backoff.next_delay(ms(25000)) == ms(30000)


def test_backoff_with_unit_multiplier_is_constant():
    backoff = BackoffPolicy(ms(20000), ms(20000), 1.0)

    assert backoff.delay_for_attempt(0) == backoff.delay_for_attempt(10) == ms(20000)


def test_zero_backoff():
    backoff = BackoffPolicy.zero()

    assert backoff.is_zero
    assert backoff.delay_for_attempt(5) == ms(0)


@pytest.mark.parametrize('delay, max_delay, multiplier', [
    (ms(-1), ms(10), 1.0),
    (ms(100), ms(10), 1.0),
    (ms(10), ms(100), 0.5),
])
def test_backoff_rejects_invalid_parameters(delay, max_delay, multiplier):
    with pytest.raises(InvalidArgumentError):
        BackoffPolicy(delay, max_delay, multiplier)


def test_backoff_equality():
    assert BackoffPolicy(ms(1), ms(2), 1.5) == BackoffPolicy(ms(1), ms(2), 1.5)
    assert hash(BackoffPolicy(ms(1), ms(2), 1.5)) == hash(BackoffPolicy(ms(1), ms(2), 1.5))
    assert BackoffPolicy(ms(1), ms(2), 1.5) != BackoffPolicy(ms(1), ms(3), 1.5)


def test_status_code_filters():
    assert IDEMPOTENT_RETRY_FILTER(grpc.StatusCode.UNAVAILABLE)
    assert IDEMPOTENT_RETRY_FILTER(grpc.StatusCode.DEADLINE_EXCEEDED)
    assert not IDEMPOTENT_RETRY_FILTER(grpc.StatusCode.INVALID_ARGUMENT)
    assert not IDEMPOTENT_RETRY_FILTER(None)

    assert not NON_IDEMPOTENT_RETRY_FILTER(grpc.StatusCode.UNAVAILABLE)
    assert filter_for_status_codes(grpc.StatusCode.ABORTED)(grpc.StatusCode.ABORTED)


def test_expiration_types():
    assert Expiration.none().type == ExpirationType.NONE
    assert Expiration.from_timeout(ms(10)).type == ExpirationType.TIMEOUT
    assert Expiration.from_deadline(datetime.now(timezone.utc)).type == ExpirationType.DEADLINE


def test_expiration_rejects_timeout_and_deadline_together():
    with pytest.raises(InvalidArgumentError):
        Expiration(timeout=ms(10), deadline=datetime.now(timezone.utc))


def test_expiration_deadline_from():
    assert Expiration.none().deadline_from(50.0) is None
    assert Expiration.from_timeout(ms(1500)).deadline_from(50.0) == pytest.approx(51.5)

    deadline = datetime.now(timezone.utc) + timedelta(seconds=30)
    assert Expiration.from_deadline(deadline).deadline_from(0.0) == pytest.approx(30.0, abs=1.0)


def test_retry_policy_from_config(retry_params):
    policy = RetryPolicy.from_config(['DEADLINE_EXCEEDED', 'UNAVAILABLE'], retry_params)

    assert policy.retry_backoff == BackoffPolicy(ms(100), ms(60000), 1.3)
    assert policy.timeout_backoff == BackoffPolicy(ms(20000), ms(20000), 1.0)
    assert policy.total_expiration == Expiration.from_timeout(ms(600000))
    assert policy.should_retry(grpc.StatusCode.UNAVAILABLE)
    assert not policy.should_retry(grpc.StatusCode.NOT_FOUND)


def test_retry_policy_from_config_without_codes_never_retries(retry_params):
    policy = RetryPolicy.from_config([], retry_params)

    assert not policy.should_retry(grpc.StatusCode.UNAVAILABLE)


def test_retry_policy_from_config_rejects_unknown_codes(retry_params):
    with pytest.raises(InvalidArgumentError):
        RetryPolicy.from_config(['NOT_A_CODE'], retry_params)


def test_retry_policy_from_config_rejects_missing_values(retry_params):
    del retry_params['total-timeout-millis']

    with pytest.raises(InvalidArgumentError):
        RetryPolicy.from_config(['UNAVAILABLE'], retry_params)


def test_retry_policy_rebinding(retry_params):
    policy = RetryPolicy.from_config(['UNAVAILABLE'], retry_params)

    shorter = policy.with_total_expiration(Expiration.from_timeout(ms(10)))
    assert shorter.total_expiration == Expiration.from_timeout(ms(10))
    assert shorter.retry_backoff == policy.retry_backoff
    assert policy.total_expiration == Expiration.from_timeout(ms(600000))

    never = policy.with_retry_filter(NON_IDEMPOTENT_RETRY_FILTER)
    assert not never.should_retry(grpc.StatusCode.UNAVAILABLE)


def test_retry_policy_requires_callable_filter():
    with pytest.raises(InvalidArgumentError):
        RetryPolicy(BackoffPolicy.zero(), BackoffPolicy.zero(), Expiration.none(), retry_filter=42)


def test_call_settings_merge_prefers_override(retry_params):
    policy = RetryPolicy.from_config(['UNAVAILABLE'], retry_params)
    token = CancellationToken()
    base = CallSettings(retry=policy, expiration=Expiration.from_timeout(ms(10)),
                        metadata=[('a', '1')])
    override = CallSettings(expiration=Expiration.from_timeout(ms(20)),
                            cancellation_token=token, metadata=[('b', '2')])

    merged = CallSettings.merge(base, override)

    assert merged.retry is policy
    assert merged.expiration == Expiration.from_timeout(ms(20))
    assert merged.cancellation_token is token
    assert merged.metadata == (('a', '1'), ('b', '2'))


def test_call_settings_merge_with_missing_sides():
    settings = CallSettings(metadata=[('a', '1')])

    assert CallSettings.merge(settings, None) is settings
    assert CallSettings.merge(None, settings) is settings
    assert CallSettings.merge(None, None).retry is None


def test_call_settings_replace():
    settings = CallSettings(metadata=[('a', '1')])

    replaced = settings.replace(expiration=Expiration.from_timeout(ms(5)))

    assert replaced.expiration == Expiration.from_timeout(ms(5))
    assert replaced.metadata == (('a', '1'),)
    assert settings.expiration is None

    with pytest.raises(InvalidArgumentError):
        settings.replace(colour='blue')
