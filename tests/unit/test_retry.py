"""Tests for backoff, timeout and retry helpers."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from loopguard.utils.retry import (
    BACKOFF_MULTIPLIER,
    INITIAL_BACKOFF_SECONDS,
    LLM_TIMEOUT_SECONDS,
    MAX_BACKOFF_SECONDS,
    STEP_TIMEOUT_SECONDS,
    TOOL_TIMEOUT_SECONDS,
    BackoffConfig,
    OperationTimeoutError,
    RetryExhaustedError,
    calculate_backoff_delay,
    retry_async,
    with_timeout,
)


class TestConstants:
    """Timeout and backoff defaults."""

    def test_timeouts(self):
        assert LLM_TIMEOUT_SECONDS == 120
        assert STEP_TIMEOUT_SECONDS == 300
        assert TOOL_TIMEOUT_SECONDS == 30

    def test_backoff_defaults(self):
        config = BackoffConfig()
        assert config.initial_delay == INITIAL_BACKOFF_SECONDS == 1
        assert config.max_delay == MAX_BACKOFF_SECONDS == 30
        assert config.multiplier == BACKOFF_MULTIPLIER == 2
        assert config.jitter is True
        assert config.max_retries == 3


class TestCalculateBackoffDelay:
    """Test cases for exponential backoff with jitter."""

    def test_exponential_growth_without_jitter(self):
        """Delay doubles per attempt."""
        assert calculate_backoff_delay(0, jitter=False) == 1.0
        assert calculate_backoff_delay(1, jitter=False) == 2.0
        assert calculate_backoff_delay(2, jitter=False) == 4.0
        assert calculate_backoff_delay(3, jitter=False) == 8.0

    def test_capped_at_max_delay(self):
        """Delay never exceeds max_delay before jitter."""
        assert calculate_backoff_delay(10, jitter=False) == 30.0
        assert calculate_backoff_delay(3, max_delay=5.0, jitter=False) == 5.0

    def test_jitter_upper_bound(self):
        """Jitter adds up to +25% of the capped delay."""
        with patch("loopguard.utils.retry.random.uniform", return_value=1.0):
            assert calculate_backoff_delay(2) == pytest.approx(5.0)

    def test_jitter_lower_bound(self):
        """Jitter subtracts up to 25% of the capped delay."""
        with patch("loopguard.utils.retry.random.uniform", return_value=-1.0):
            assert calculate_backoff_delay(2) == pytest.approx(3.0)

    def test_jitter_applied_after_cap(self):
        """The cap applies to the base delay; jitter can push past it."""
        with patch("loopguard.utils.retry.random.uniform", return_value=1.0):
            assert calculate_backoff_delay(10) == pytest.approx(37.5)

    def test_jitter_within_range(self):
        """Real jitter stays within +/-25%."""
        for _ in range(50):
            delay = calculate_backoff_delay(1)
            assert 1.5 <= delay <= 2.5

    def test_never_negative(self):
        """Delay is clamped to zero."""
        assert calculate_backoff_delay(0, initial_delay=0.0) == 0.0
        assert calculate_backoff_delay(-3, jitter=False) == 1.0


class TestWithTimeout:
    """Test cases for with_timeout."""

    @pytest.mark.asyncio
    async def test_returns_result(self):
        """A fast operation returns its value."""

        async def fast():
            return "done"

        assert await with_timeout(fast(), 1.0, "fast op") == "done"

    @pytest.mark.asyncio
    async def test_times_out_with_label(self):
        """A slow operation raises a labeled OperationTimeoutError."""

        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(OperationTimeoutError) as exc_info:
            await with_timeout(slow(), 0.01, "Tool read_file")

        error = exc_info.value
        assert str(error) == "Tool read_file timed out after 0.01s"
        assert error.label == "Tool read_file"
        assert error.timeout == 0.01
        assert isinstance(error, TimeoutError)

    @pytest.mark.asyncio
    async def test_propagates_operation_error(self):
        """Errors from the operation pass through untouched."""

        async def broken():
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            await with_timeout(broken(), 1.0)

    @pytest.mark.asyncio
    async def test_cancels_operation_on_timeout(self):
        """The losing operation is cancelled rather than left running."""
        cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(OperationTimeoutError):
            await with_timeout(slow(), 0.01)
        assert cancelled.is_set()


class TestRetryAsync:
    """Test cases for retry_async."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        """No retries when the first call succeeds."""
        func = AsyncMock(return_value="ok")

        result = await retry_async(func, BackoffConfig(max_retries=2))

        assert result == "ok"
        assert func.call_count == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        """Transient failures are retried with backoff."""
        func = AsyncMock(side_effect=[ConnectionError("reset"), "ok"])

        with patch("loopguard.utils.retry.sleep", new=AsyncMock()) as mock_sleep:
            result = await retry_async(func, BackoffConfig(max_retries=2, jitter=False))

        assert result == "ok"
        assert func.call_count == 2
        mock_sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_exhausted(self):
        """RetryExhaustedError carries attempts and the last exception."""
        func = AsyncMock(side_effect=ConnectionError("reset"))

        with patch("loopguard.utils.retry.sleep", new=AsyncMock()) as mock_sleep:
            with pytest.raises(RetryExhaustedError) as exc_info:
                await retry_async(
                    func, BackoffConfig(max_retries=2, jitter=False), "fetch"
                )

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_exception, ConnectionError)
        assert exc_info.value.__cause__ is exc_info.value.last_exception
        assert func.call_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        """Quota errors are not retried."""
        func = AsyncMock(side_effect=RuntimeError("429 Too Many Requests"))

        with patch("loopguard.utils.retry.sleep", new=AsyncMock()) as mock_sleep:
            with pytest.raises(RuntimeError, match="429"):
                await retry_async(func, BackoffConfig(max_retries=3))

        assert func.call_count == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_passes_arguments(self):
        """Positional and keyword arguments reach the function."""
        func = AsyncMock(return_value=3)

        await retry_async(func, None, "add", 1, 2, scale=1)

        func.assert_awaited_once_with(1, 2, scale=1)
