"""
Tests for bounded retry with exponential backoff.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from smartpay.core.recovery import (
    AuthenticatorError,
    FetchError,
    PreflightFailed,
    RetryConfig,
    SubmissionFailed,
    UserRejected,
    retry_with_backoff,
)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


# =============================================================================
# Delay schedule
# =============================================================================

class TestRetryConfig:
    """Tests for the delay schedule."""

    def test_delay_doubles_per_attempt(self):
        config = RetryConfig(initial_delay_seconds=1.0, max_delay_seconds=10.0)

        assert config.get_delay(1) == 1.0
        assert config.get_delay(2) == 2.0
        assert config.get_delay(3) == 4.0

    def test_delay_is_capped(self):
        config = RetryConfig(initial_delay_seconds=1.0, max_delay_seconds=10.0)

        assert config.get_delay(5) == 10.0
        assert config.get_delay(12) == 10.0


# =============================================================================
# retry_with_backoff
# =============================================================================

class TestRetryWithBackoff:
    """Tests for the retry primitive."""

    @pytest.mark.asyncio
    async def test_success_first_try_never_sleeps(self):
        sleep = RecordingSleep()
        operation = AsyncMock(return_value="ok")

        result = await retry_with_backoff(operation, sleep=sleep)

        assert result == "ok"
        assert operation.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self):
        sleep = RecordingSleep()
        operation = AsyncMock(side_effect=[FetchError("one"), FetchError("two"), "done"])
        on_retry = MagicMock()

        result = await retry_with_backoff(operation, RetryConfig(), on_retry=on_retry, sleep=sleep)

        assert result == "done"
        assert [c.args[0] for c in on_retry.call_args_list] == [1, 2]
        assert sleep.delays == [1.0, 2.0]
        assert sleep.delays[1] >= 2 * sleep.delays[0]

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error_unchanged(self):
        sleep = RecordingSleep()
        errors = [SubmissionFailed("first"), SubmissionFailed("second"), SubmissionFailed("third")]
        operation = AsyncMock(side_effect=errors)
        on_retry = MagicMock()

        with pytest.raises(SubmissionFailed) as exc_info:
            await retry_with_backoff(operation, RetryConfig(max_attempts=3), on_retry=on_retry, sleep=sleep)

        assert exc_info.value is errors[2]
        assert on_retry.call_count == 2
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self):
        sleep = RecordingSleep()
        seen = []

        async def on_retry(attempt, error):
            seen.append((attempt, str(error)))

        operation = AsyncMock(side_effect=[FetchError("flaky"), 7])

        assert await retry_with_backoff(operation, on_retry=on_retry, sleep=sleep) == 7
        assert seen == [(1, "flaky")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [UserRejected(), AuthenticatorError("device lost")])
    async def test_signer_errors_are_terminal(self, error):
        sleep = RecordingSleep()
        operation = AsyncMock(side_effect=error)

        with pytest.raises(type(error)):
            await retry_with_backoff(operation, RetryConfig(max_attempts=5), sleep=sleep)

        assert operation.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_preflight_failures_consume_attempts(self):
        sleep = RecordingSleep()
        operation = AsyncMock(side_effect=PreflightFailed("sender has no funds in this asset"))

        with pytest.raises(PreflightFailed):
            await retry_with_backoff(operation, RetryConfig(max_attempts=3), sleep=sleep)

        assert operation.await_count == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rejects_empty_budget(self):
        with pytest.raises(ValueError):
            await retry_with_backoff(AsyncMock(), RetryConfig(max_attempts=0))
