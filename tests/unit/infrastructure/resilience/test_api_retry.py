import asyncio
import random

import aiohttp
import pytest

from chatwarden.domain.errors import (
    ChatAPIError,
    ErrorKind,
    RateLimitError,
    RetryExhaustedError,
    ValidationError,
)
from chatwarden.domain.events.api_events import RetryScheduled
from chatwarden.infrastructure.resilience.api_retry import (
    RetryOptions,
    RetryPolicy,
    compute_delay,
    create_retry_wrapper,
    is_retryable,
    with_retry,
)

from tests.conftest import FakeClock


def flaky(failures, result="ok"):
    """Operation that raises each of `failures` in turn, then returns `result`."""
    calls = {"count": 0}
    pending = list(failures)

    async def operation():
        calls["count"] += 1
        if pending:
            raise pending.pop(0)
        return result

    return operation, calls


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [0, 1, 2, 4])
async def test_succeeds_after_n_transient_failures(failures):
    clock = FakeClock()
    policy = RetryPolicy(RetryOptions(max_attempts=5, base_delay=1, jitter=False), sleep=clock.sleep)
    operation, calls = flaky([ConnectionError("reset")] * failures, result="done")

    assert await policy.execute(operation) == "done"
    assert calls["count"] == failures + 1
    assert len(clock.sleeps) == failures


@pytest.mark.asyncio
async def test_non_retryable_error_is_raised_immediately(retry_policy, clock):
    error = ChatAPIError("missing", status_code=404)
    operation, calls = flaky([error])

    with pytest.raises(ChatAPIError) as exc_info:
        await retry_policy.execute(operation)

    assert exc_info.value is error
    assert calls["count"] == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_exhaustion_wraps_last_error(retry_policy):
    last = ChatAPIError("still down", status_code=503)
    operation, calls = flaky([ConnectionError("a"), ConnectionError("b"), last])

    with pytest.raises(RetryExhaustedError) as exc_info:
        await retry_policy.execute(operation, context="deleting message 1")

    error = exc_info.value
    assert calls["count"] == 3
    assert error.attempts == 3
    assert error.last_error is last
    assert error.context_label == "deleting message 1"
    assert error.__cause__ is last


def test_delay_without_jitter_is_exact():
    options = RetryOptions(base_delay=1000, max_delay=30000, factor=2, jitter=False)
    assert [compute_delay(k, options) for k in range(7)] == [1000, 2000, 4000, 8000, 16000, 30000, 30000]


def test_jitter_adds_less_than_one_base_delay():
    options = RetryOptions(base_delay=1000, max_delay=30000, factor=2, jitter=True)
    rng = random.Random(7)
    for attempt in range(6):
        delay = compute_delay(attempt, options, rng)
        floor = min(1000 * 2 ** attempt, 30000)
        assert floor <= delay < floor + 1000


@pytest.mark.asyncio
async def test_sleeps_follow_backoff_schedule():
    clock = FakeClock()
    policy = RetryPolicy(RetryOptions(max_attempts=4, base_delay=100, max_delay=250, jitter=False), sleep=clock.sleep)
    operation, _ = flaky([TimeoutError()] * 3)

    await policy.execute(operation)
    assert clock.sleeps == [0.1, 0.2, 0.25]


@pytest.mark.asyncio
async def test_rate_limit_hint_raises_the_delay():
    clock = FakeClock()
    events = []
    policy = RetryPolicy(
        RetryOptions(max_attempts=2, base_delay=100, jitter=False),
        sleep=clock.sleep,
        on_retry=events.append,
    )
    operation, _ = flaky([RateLimitError("slow down", retry_after_ms=2500)])

    await policy.execute(operation, context="fetching messages")

    assert clock.sleeps == [2.5]
    assert len(events) == 1
    event = events[0]
    assert isinstance(event, RetryScheduled)
    assert event.attempt_number == 1
    assert event.delay_ms == 2500
    assert event.error_type == "RateLimitError"
    assert event.context == "fetching messages"


@pytest.mark.asyncio
async def test_per_call_overrides_are_merged(retry_policy):
    operation, calls = flaky([ConnectionError()] * 5)
    with pytest.raises(RetryExhaustedError):
        await retry_policy.execute(operation, max_attempts=2)
    assert calls["count"] == 2


@pytest.mark.parametrize(
    "error,expected",
    [
        (RateLimitError("429"), True),
        (ChatAPIError("bad gateway", status_code=502), True),
        (ChatAPIError("gone", status_code=404), False),
        (ChatAPIError("forbidden", status_code=403), False),
        (ChatAPIError("reset", kind=ErrorKind.CONNECTION), True),
        (ValidationError("bad id", field="channel_id"), False),
        (asyncio.TimeoutError(), True),
        (ConnectionResetError(), True),
        (aiohttp.ClientConnectionError("refused"), True),
        (RuntimeError("socket hang up"), True),
        (RuntimeError("upstream returned 503"), True),
        (RuntimeError("Rate limit exceeded"), True),
        (ValueError("invalid literal"), False),
        (KeyError("id"), False),
    ],
)
def test_classification(error, expected):
    assert is_retryable(error) is expected


def test_retry_options_validation():
    with pytest.raises(ValueError):
        RetryOptions(max_attempts=0)
    assert RetryOptions().merge(max_attempts=None) == RetryOptions()


@pytest.mark.asyncio
async def test_with_retry_uses_default_policy(mocker):
    sleep = mocker.patch("chatwarden.infrastructure.resilience.api_retry.asyncio.sleep", new=mocker.AsyncMock())
    operation, calls = flaky([ConnectionError()])

    assert await with_retry(operation, jitter=False, base_delay=5) == "ok"
    assert calls["count"] == 2
    sleep.assert_awaited_once_with(0.005)


@pytest.mark.asyncio
async def test_create_retry_wrapper_applies_defaults(mocker):
    mocker.patch("chatwarden.infrastructure.resilience.api_retry.asyncio.sleep", new=mocker.AsyncMock())
    retry = create_retry_wrapper(max_attempts=2, base_delay=1, jitter=False)
    operation, calls = flaky([ConnectionError()] * 3)

    with pytest.raises(RetryExhaustedError) as exc_info:
        await retry(operation)
    assert calls["count"] == 2
    assert exc_info.value.attempts == 2
