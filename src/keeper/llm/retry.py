"""Retry with exponential backoff for provider calls."""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504, 529})

RETRYABLE_PATTERN = re.compile(
    r"overloaded|rate.?limit|too many requests|"
    r"service.?unavailable|bad gateway|"
    r"connection.?(error|reset|refused)|timed? ?out",
    re.IGNORECASE,
)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    enabled: bool = True
    max_retries: int = 2
    base_delay_ms: int = 1000
    max_delay_ms: int = 16000


def is_retryable_error(error: Exception) -> bool:
    """Check if a provider error is worth retrying.

    A status code on the exception decides when present: rate limits,
    overload and 5xx are retried, everything else (auth, bad request)
    is not. Without a status code, connection and timeout failures are
    retried based on the exception type or message.
    """
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return status_code in RETRYABLE_STATUS_CODES

    error_type = type(error).__name__.lower()
    if any(t in error_type for t in ("timeout", "connection", "ratelimit")):
        return True

    return bool(RETRYABLE_PATTERN.search(str(error)))


async def with_retry(
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
        The last exception if all retries fail or the error is not retryable.
    """
    config = config or RetryConfig()
    attempts = config.max_retries + 1 if config.enabled else 1

    for attempt in range(attempts):
        try:
            return await func()
        except Exception as e:
            if not config.enabled or not is_retryable_error(e):
                raise
            if attempt + 1 >= attempts:
                logger.warning(
                    "retry_exhausted",
                    extra={
                        "operation": operation_name,
                        "attempts": attempts,
                        "error.message": str(e),
                        "error.type": type(e).__name__,
                    },
                )
                raise

            delay_s = min(config.base_delay_ms * (2**attempt), config.max_delay_ms) / 1000
            logger.info(
                "retry_attempt",
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_attempts": attempts,
                    "retry_delay_s": round(delay_s, 1),
                    "error.type": type(e).__name__,
                },
            )
            await asyncio.sleep(delay_s)

    raise AssertionError("unreachable")
