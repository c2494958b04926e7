"""Tests for retry module."""

from unittest.mock import AsyncMock, MagicMock, call

import httpx
import pytest

from testgenr.retry import (
    is_retryable_error,
    retry_with_backoff,
    RetryExhausted,
)


def status_error(status_code: int) -> httpx.HTTPStatusError:
    response = MagicMock()
    response.status_code = status_code
    return httpx.HTTPStatusError("HTTP error", request=MagicMock(), response=response)


class TestIsRetryableError:
    """Tests for error classification."""

    def test_connection_timeout_is_retryable(self):
        """Connection timeout should trigger retry."""
        assert is_retryable_error(httpx.ConnectTimeout("Connection timed out")) is True

    def test_connect_error_is_retryable(self):
        """Connection error should trigger retry."""
        assert is_retryable_error(httpx.ConnectError("Connection refused")) is True

    def test_read_timeout_is_not_retryable(self):
        """Read timeout may mean the model already ran."""
        assert is_retryable_error(httpx.ReadTimeout("Read timed out")) is False

    def test_http_429_is_retryable(self):
        """HTTP 429 Too Many Requests should trigger retry."""
        assert is_retryable_error(status_error(429)) is True

    @pytest.mark.parametrize("status_code", [400, 403, 404, 500, 502, 503])
    def test_other_status_codes_are_not_retryable(self, status_code):
        """Other HTTP errors are not retried."""
        assert is_retryable_error(status_error(status_code)) is False

    def test_generic_exception_is_not_retryable(self):
        """Non-HTTP errors are not retried."""
        assert is_retryable_error(ValueError("Some error")) is False


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        """No retry needed if first attempt succeeds."""
        func = AsyncMock(return_value="success")
        sleep = AsyncMock()

        result = await retry_with_backoff(func, max_attempts=3, sleep=sleep)

        assert result == "success"
        assert func.call_count == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_after_retry(self):
        """Should succeed after transient failures."""
        func = AsyncMock(side_effect=[
            httpx.ConnectError("refused"),
            status_error(429),
            "success",
        ])
        sleep = AsyncMock()

        result = await retry_with_backoff(func, max_attempts=3, delays=(1.0, 2.0), sleep=sleep)

        assert result == "success"
        assert func.call_count == 3
        assert sleep.call_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_exhausted_after_max_attempts(self):
        """Should raise RetryExhausted after all attempts fail."""
        error = httpx.ConnectError("refused")
        func = AsyncMock(side_effect=error)
        sleep = AsyncMock()

        with pytest.raises(RetryExhausted) as exc_info:
            await retry_with_backoff(func, max_attempts=3, sleep=sleep)

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is error
        assert func.call_count == 3
        assert sleep.call_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_raised_immediately(self):
        """Non-retryable errors should not be retried."""
        func = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        sleep = AsyncMock()

        with pytest.raises(httpx.ReadTimeout):
            await retry_with_backoff(func, max_attempts=3, sleep=sleep)

        assert func.call_count == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_last_delay_repeats(self):
        """The last delay is reused once the list runs out."""
        func = AsyncMock(side_effect=httpx.ConnectError("refused"))
        sleep = AsyncMock()

        with pytest.raises(RetryExhausted):
            await retry_with_backoff(func, max_attempts=4, delays=(0.5,), sleep=sleep)

        assert sleep.call_args_list == [call(0.5), call(0.5), call(0.5)]

    @pytest.mark.asyncio
    async def test_passes_args_and_kwargs(self):
        """Arguments reach the wrapped function."""
        func = AsyncMock(return_value="ok")

        await retry_with_backoff(func, args=("a", "b"), kwargs={"key": "value"})

        func.assert_called_once_with("a", "b", key="value")
