"""Retry utilities for provider API calls."""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from mneme.errors import DimensionMismatchError, QuotaError, ValidationError

logger = logging.getLogger(__name__)

# Transient provider failures worth another attempt
RETRYABLE_PATTERN = re.compile(
    r"overloaded|rate.?limit|too many requests|"
    r"429|500|502|503|504|"
    r"service.?unavailable|server error|internal error|"
    r"connection.?error|timeout|timed out",
    re.IGNORECASE,
)

# Caller or contract errors that another attempt cannot fix
_NEVER_RETRY = (ValidationError, DimensionMismatchError, QuotaError)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    enabled: bool = True
    max_retries: int = 3
    base_delay_ms: int = 2000
    max_delay_ms: int = 30000


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable.

    Retryable errors include rate limits (429), server errors (5xx),
    overloaded responses, and connection or timeout failures.
    """
    if isinstance(error, _NEVER_RETRY):
        return False

    if RETRYABLE_PATTERN.search(str(error)):
        return True

    error_type = type(error).__name__.lower()
    if any(
        t in error_type
        for t in ["timeout", "connection", "overloaded", "ratelimit", "rate_limit"]
    ):
        return True

    status_code = getattr(error, "status_code", None)
    return status_code in (429, 500, 502, 503, 504)


async def with_retry[T](
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "API call",
) -> T:
    """Execute an async function with exponential backoff retry.

    Args:
        func: Async function to execute.
        config: Retry configuration.
        operation_name: Name for logging.

    Returns:
        Result of the function.

    Raises:
        The last exception if all retries fail.
    """
    config = config or RetryConfig()

    if not config.enabled:
        return await func()

    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except Exception as e:
            if not is_retryable_error(e):
                raise

            if attempt >= config.max_retries:
                logger.warning(
                    "retry_exhausted",
                    extra={
                        "operation": operation_name,
                        "attempts": config.max_retries + 1,
                        "error.message": str(e),
                        "error.type": type(e).__name__,
                    },
                )
                raise

            delay_s = (
                min(config.base_delay_ms * (2**attempt), config.max_delay_ms) / 1000
            )

            logger.info(
                "retry_attempt",
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_attempts": config.max_retries + 1,
                    "retry_delay_s": round(delay_s, 1),
                    "error.type": type(e).__name__,
                },
            )

            await asyncio.sleep(delay_s)

    raise AssertionError("unreachable")
