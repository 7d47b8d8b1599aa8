import httpx
import pytest

from flowtext_mcp.cancellation import cancel_channel
from flowtext_mcp.errors import RecognitionCancelled, RemoteTaskError, RetryExhaustedError, TransientNetworkError
from flowtext_mcp.retry import call_with_retry


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff() -> None:
    sleep = RecordingSleep()
    calls = 0

    async def flaky() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise httpx.ConnectError("refused")
        return "ok"

    result = await call_with_retry(flaky, description="upload", base_delay_seconds=1.0, sleep=sleep)

    assert result == "ok"
    assert calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_exhausted_retries_keep_the_last_error() -> None:
    sleep = RecordingSleep()

    async def always_times_out() -> None:
        raise httpx.ReadTimeout("slow")

    with pytest.raises(RetryExhaustedError) as info:
        await call_with_retry(always_times_out, description="poll", max_attempts=3, sleep=sleep)

    assert isinstance(info.value.__cause__, TransientNetworkError)
    assert isinstance(info.value.__cause__.__cause__, httpx.ReadTimeout)
    assert info.value.attempts == 3
    assert "whisper" in str(info.value)
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_single_attempt_does_not_sleep() -> None:
    sleep = RecordingSleep()

    async def refused() -> None:
        raise httpx.ConnectError("refused")

    with pytest.raises(RetryExhaustedError) as info:
        await call_with_retry(refused, description="token", max_attempts=1, sleep=sleep)

    assert info.value.attempts == 1
    assert "refused" in str(info.value)
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_already_classified_errors_are_retried_as_is() -> None:
    sleep = RecordingSleep()
    error = TransientNetworkError("socket reset")

    async def reset() -> None:
        raise error

    with pytest.raises(RetryExhaustedError) as info:
        await call_with_retry(reset, description="recognize", max_attempts=2, sleep=sleep)

    assert info.value.__cause__ is error
    assert sleep.delays == [1.0]

@pytest.mark.asyncio
async def test_non_transient_errors_propagate_immediately() -> None:
    sleep = RecordingSleep()
    calls = 0

    async def rejected() -> None:
        nonlocal calls
        calls += 1
        raise RemoteTaskError("AuthFailure", "bad key")

    with pytest.raises(RemoteTaskError):
        await call_with_retry(rejected, description="submit", sleep=sleep)

    assert calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_cancellation_is_checked_before_each_attempt() -> None:
    handle, token = cancel_channel()
    sleep = RecordingSleep()
    calls = 0

    async def fails_then_cancels() -> None:
        nonlocal calls
        calls += 1
        handle.send()
        raise httpx.ConnectError("refused")

    with pytest.raises(RecognitionCancelled):
        await call_with_retry(fails_then_cancels, description="upload", sleep=sleep, cancel=token)

    assert calls == 1
