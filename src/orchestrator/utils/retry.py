"""Retry utility for transient model errors.

Provides exponential backoff with jitter for retrying transient failures.
Tool invocations never go through this path: a failed tool call is handed
back to the agent instead.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from orchestrator.errors import OrchestratorError, TransientExternalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transient error patterns that are safe to retry
TRANSIENT_ERROR_PATTERNS = {
    "connection",
    "timeout",
    "timed out",
    "temporarily unavailable",
    "connection refused",
    "connection reset",
    "rate limit",
    "ratelimit",
    "too many requests",
    "429",
    "502",
    "503",
    "504",
    "overloaded",
    "service unavailable",
}


def is_transient_error(exception: Exception) -> bool:
    """Check if an exception represents a transient error that is safe to retry.

    Args:
        exception: The exception to check

    Returns:
        True if the error is transient and retryable
    """
    if isinstance(exception, TransientExternalError):
        return True
    if isinstance(exception, OrchestratorError):
        return False
    if isinstance(exception, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    error_msg = str(exception).lower()
    error_type = type(exception).__name__.lower()

    for pattern in TRANSIENT_ERROR_PATTERNS:
        if pattern in error_msg or pattern in error_type:
            return True

    return False


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    extra_context: Optional[dict] = None,
) -> T:
    """Retry an async operation with exponential backoff and jitter.

    Args:
        operation: Async callable to retry
        operation_name: Name of operation for logging
        max_attempts: Maximum number of attempts (default: 3)
        base_delay: Initial delay in seconds (default: 0.5)
        max_delay: Maximum delay in seconds (default: 8.0)
        extra_context: Additional context for logging

    Returns:
        Result of the operation if successful

    Raises:
        TransientExternalError: If every attempt failed with a transient error
        Exception: A non-transient error, re-raised immediately
    """
    extra_context = extra_context or {}

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            log_extra = {
                "operation": operation_name,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "exception_type": type(e).__name__,
                "exception_message": str(e),
                **extra_context,
            }

            if not is_transient_error(e):
                logger.error(
                    f"Non-transient error in {operation_name}, not retrying",
                    extra=log_extra,
                    exc_info=True,
                )
                raise

            if attempt >= max_attempts:
                logger.error(
                    f"All {max_attempts} attempts exhausted for {operation_name}",
                    extra=log_extra,
                    exc_info=True,
                )
                if isinstance(e, TransientExternalError):
                    raise
                raise TransientExternalError(
                    f"{operation_name} failed after {max_attempts} attempts: "
                    f"{type(e).__name__}: {e}"
                ) from e

            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            jitter = random.uniform(0, delay * 0.5)
            total_delay = delay + jitter

            logger.warning(
                f"Transient error in {operation_name}, retrying in {total_delay:.3f}s",
                extra={**log_extra, "delay_seconds": total_delay},
            )

            await asyncio.sleep(total_delay)

    raise TransientExternalError(
        f"{operation_name} was not attempted (max_attempts={max_attempts})"
    )
