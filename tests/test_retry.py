"""Tests for LLM retry utilities."""

import pytest

from keeper.llm.errors import ProviderHttpError
from keeper.llm.retry import RetryConfig, is_retryable_error, with_retry


class TestIsRetryableError:
    """Tests for is_retryable_error."""

    def test_rate_limit_messages(self):
        assert is_retryable_error(Exception("Rate limit exceeded"))
        assert is_retryable_error(Exception("rate_limit_error"))
        assert is_retryable_error(Exception("Too many requests"))

    def test_overloaded(self):
        assert is_retryable_error(Exception("overloaded_error"))
        assert is_retryable_error(Exception("Service Unavailable"))

    def test_connection_errors(self):
        assert is_retryable_error(Exception("Connection error"))
        assert is_retryable_error(Exception("Request timed out"))
        assert is_retryable_error(TimeoutError())
        assert is_retryable_error(ConnectionResetError())

    def test_status_code_decides(self):
        """A status code wins over the message text."""
        assert is_retryable_error(ProviderHttpError(429, "slow down"))
        assert is_retryable_error(ProviderHttpError(503, "{}"))
        assert is_retryable_error(ProviderHttpError(529, "overloaded"))
        assert not is_retryable_error(ProviderHttpError(401, "rate limit"))
        assert not is_retryable_error(ProviderHttpError(400, '{"error": "bad tools"}'))

    def test_non_retryable_errors(self):
        assert not is_retryable_error(Exception("Invalid request"))
        assert not is_retryable_error(Exception("Authentication failed"))
        assert not is_retryable_error(ValueError("Invalid parameter"))


class TestWithRetry:
    """Tests for with_retry."""

    async def test_success_no_retry(self):
        call_count = 0

        async def func():
            nonlocal call_count
            call_count += 1
            return "success"

        assert await with_retry(func) == "success"
        assert call_count == 1

    async def test_retry_on_transient_error(self):
        call_count = 0

        async def func():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ProviderHttpError(503, "unavailable")
            return "success"

        config = RetryConfig(max_retries=3, base_delay_ms=10)
        assert await with_retry(func, config=config) == "success"
        assert call_count == 3

    async def test_no_retry_on_client_error(self):
        call_count = 0

        async def func():
            nonlocal call_count
            call_count += 1
            raise ProviderHttpError(400, "bad request")

        config = RetryConfig(max_retries=3, base_delay_ms=10)
        with pytest.raises(ProviderHttpError) as exc_info:
            await with_retry(func, config=config)
        assert exc_info.value.status_code == 400
        assert call_count == 1

    async def test_max_retries_exceeded(self):
        call_count = 0

        async def func():
            nonlocal call_count
            call_count += 1
            raise Exception("rate_limit_error")

        config = RetryConfig(max_retries=2, base_delay_ms=10)
        with pytest.raises(Exception, match="rate_limit_error"):
            await with_retry(func, config=config)
        assert call_count == 3  # Initial + 2 retries

    async def test_retry_disabled(self):
        call_count = 0

        async def func():
            nonlocal call_count
            call_count += 1
            raise Exception("rate_limit_error")

        with pytest.raises(Exception, match="rate_limit_error"):
            await with_retry(func, config=RetryConfig(enabled=False))
        assert call_count == 1

    async def test_exponential_backoff(self, monkeypatch):
        delays: list[float] = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr("keeper.llm.retry.asyncio.sleep", fake_sleep)

        async def func():
            raise Exception("overloaded")

        config = RetryConfig(max_retries=4, base_delay_ms=1000, max_delay_ms=5000)
        with pytest.raises(Exception, match="overloaded"):
            await with_retry(func, config=config)

        assert delays == [1.0, 2.0, 4.0, 5.0]
