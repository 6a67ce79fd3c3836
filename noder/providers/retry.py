"""
Retry wrapper for provider calls.

Transient failures (rate limiting, 5xx, connection errors, timeouts) are
retried with a linear backoff of ``base_delay * attempt`` seconds. Client
errors, validation errors and cancellation surface immediately.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from noder.providers.errors import NoderError, ProviderHTTPError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0


def is_retryable(error: BaseException) -> bool:
    """Whether another attempt of the failed operation could succeed."""
    if isinstance(error, asyncio.CancelledError):
        return False
    if isinstance(error, ProviderHTTPError):
        return error.retryable
    if isinstance(error, NoderError):
        return bool(error.retryable)
    return True


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    operation_name: str = "operation",
    metadata: dict[str, Any] | None = None,
) -> T:
    """
    Await ``operation()`` until it succeeds or retries are exhausted.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Total attempts including the first one
        base_delay: Seconds; attempt N waits ``base_delay * N`` before N+1
        operation_name: Name recorded in the failure log
        metadata: Request details recorded in the failure log

    Returns:
        The operation's result

    Raises:
        The last error, unchanged, once no further attempt is allowed.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if attempt >= max_attempts or not is_retryable(e):
                logger.error(
                    f"{operation_name} failed after {attempt} attempt(s): {e}",
                    extra={
                        "event": "retry_exhausted",
                        "operation": operation_name,
                        "attempts": attempt,
                        "status_code": getattr(e, "status_code", None),
                        "metadata": metadata or {},
                    },
                )
                raise

            delay = base_delay * attempt
            logger.warning(
                f"{operation_name} attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
