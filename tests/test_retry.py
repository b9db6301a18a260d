"""Tests for retry, timeouts, and provider error translation."""

import asyncio
import builtins

import pytest

from mneme.errors import (
    CompletionError,
    DimensionMismatchError,
    EmbeddingError,
    QuotaError,
    RateLimitError,
    TimeoutError,
    ValidationError,
    translate_provider_error,
)
from mneme.llm.retry import RetryConfig, is_retryable_error, with_retry
from mneme.timeouts import bounded


class TestIsRetryableError:
    @pytest.mark.parametrize(
        "message",
        [
            "Rate limit exceeded",
            "Too many requests",
            "502 Bad Gateway",
            "503 Service Unavailable",
            "Server is overloaded",
            "Connection error",
            "Request timed out",
        ],
    )
    def test_transient_messages(self, message):
        assert is_retryable_error(Exception(message))

    def test_status_code_attribute(self):
        class HttpError(Exception):
            def __init__(self, status_code: int):
                self.status_code = status_code
                super().__init__(f"HTTP status {status_code}")

        assert is_retryable_error(HttpError(429))
        assert is_retryable_error(HttpError(500))
        assert not is_retryable_error(HttpError(400))
        assert not is_retryable_error(HttpError(404))

    @pytest.mark.parametrize(
        "error",
        [
            ValidationError("Limit must be between 1 and 100"),
            DimensionMismatchError(1536, 768),
            QuotaError("Provider quota exceeded: 429 insufficient_quota"),
            ValueError("Invalid parameter"),
        ],
    )
    def test_never_retried(self, error):
        assert not is_retryable_error(error)


class TestWithRetry:
    async def test_retries_transient_failure(self):
        attempts = 0

        async def func():
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise Exception("503 Service Unavailable")
            return [0.1, 0.2]

        result = await with_retry(func, RetryConfig(max_retries=3, base_delay_ms=1))

        assert result == [0.1, 0.2]
        assert attempts == 3

    async def test_gives_up_after_max_retries(self):
        attempts = 0

        async def func():
            nonlocal attempts
            attempts += 1
            raise Exception("rate_limit_error")

        with pytest.raises(Exception, match="rate_limit_error"):
            await with_retry(func, RetryConfig(max_retries=2, base_delay_ms=1))
        assert attempts == 3

    async def test_disabled_is_single_attempt(self):
        attempts = 0

        async def func():
            nonlocal attempts
            attempts += 1
            raise Exception("rate_limit_error")

        with pytest.raises(Exception):
            await with_retry(func, RetryConfig(enabled=False))
        assert attempts == 1

    async def test_backoff_doubles_and_caps(self, monkeypatch):
        delays: list[float] = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr("mneme.llm.retry.asyncio.sleep", fake_sleep)

        async def func():
            raise Exception("overloaded")

        config = RetryConfig(max_retries=4, base_delay_ms=1000, max_delay_ms=5000)
        with pytest.raises(Exception):
            await with_retry(func, config)

        assert delays == [1.0, 2.0, 4.0, 5.0]


class TestBounded:
    async def test_returns_result(self):
        async def quick():
            return 7

        assert await bounded(quick(), 1.0, "quick call") == 7

    async def test_raises_engine_timeout(self):
        with pytest.raises(TimeoutError, match="slow call timed out after 0.01s"):
            await bounded(asyncio.sleep(1), 0.01, "slow call")

    async def test_engine_timeout_is_builtin_timeout(self):
        with pytest.raises(builtins.TimeoutError):
            await bounded(asyncio.sleep(1), 0.01, "slow call")

    async def test_none_disables_bound(self):
        async def quick():
            return "ok"

        assert await bounded(quick(), None, "unbounded") == "ok"


class TestTranslateProviderError:
    def test_engine_errors_pass_through(self):
        error = ValidationError("bad")
        assert translate_provider_error(error) is error

    def test_rate_limit_by_status(self):
        class Throttled(Exception):
            status_code = 429

        assert isinstance(translate_provider_error(Throttled("slow down")), RateLimitError)

    def test_rate_limit_by_message(self):
        error = translate_provider_error(RuntimeError("Rate limit reached for requests"))
        assert isinstance(error, RateLimitError)

    def test_quota_by_code(self):
        class ApiError(Exception):
            code = "insufficient_quota"

        assert isinstance(translate_provider_error(ApiError("429")), QuotaError)

    def test_fallback_type(self):
        error = translate_provider_error(RuntimeError("boom"), CompletionError)
        assert isinstance(error, CompletionError)
        assert str(error) == "Completion failed: boom"

    def test_default_fallback_is_embedding_error(self):
        assert isinstance(translate_provider_error(RuntimeError("boom")), EmbeddingError)
