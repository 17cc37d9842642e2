"""
Retry utilities for LLM transport errors (rate limits, timeouts, overload).

Only the single HTTP call is retried. Pipeline stages are never re-run.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import anthropic

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504, 529})


def is_transient_llm_error(exception: BaseException) -> bool:
    """Check whether an Anthropic SDK error is worth retrying."""
    if isinstance(exception, (anthropic.RateLimitError, anthropic.APITimeoutError, anthropic.APIConnectionError)):
        return True
    if isinstance(exception, anthropic.APIStatusError):
        return exception.status_code in _RETRYABLE_STATUS_CODES
    if isinstance(exception, (TimeoutError, asyncio.TimeoutError)):
        return True
    error_str = str(exception).lower()
    return "rate limit" in error_str or "rate_limit" in error_str or "overloaded" in error_str


def _retry_after(exception: BaseException) -> float | None:
    response = getattr(exception, "response", None)
    headers = getattr(response, "headers", None)
    if headers:
        value = headers.get("retry-after")
        if value:
            try:
                return float(value)
            except ValueError:
                pass
    match = re.search(r"(\d+)\s{0,10}seconds?", str(exception), re.IGNORECASE)
    if match:
        return float(match.group(1))
    return None


async def run_with_retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 2.0,
    backoff_factor: float = 2.0,
    max_delay: float = 30.0,
) -> T:
    """
    Execute an async function, retrying transient transport errors.

    Args:
        func: Async function to execute (no parameters)
        max_retries: Maximum number of attempts
        initial_delay: Initial delay in seconds before first retry
        backoff_factor: Multiplier for delay between retries
        max_delay: Upper bound on a single wait

    Returns:
        Result from the function

    Raises:
        Exception: The last error once attempts are exhausted, or the first
        non-retryable error.
    """
    attempts = max(1, max_retries)
    for attempt in range(attempts):
        try:
            return await func()
        except Exception as e:
            if not is_transient_llm_error(e) or attempt >= attempts - 1:
                raise

            wait_time = _retry_after(e)
            if wait_time is None:
                wait_time = initial_delay * (backoff_factor**attempt)
            wait_time = min(wait_time, max_delay)

            logger.warning(
                "Transient LLM error detected (%s). Attempt %s/%s. Waiting %.1f seconds before retry...",
                type(e).__name__,
                attempt + 1,
                attempts,
                wait_time,
            )
            await asyncio.sleep(wait_time)

    raise RuntimeError("unreachable")  # pragma: no cover


def retry_kwargs(settings: Any) -> dict[str, Any]:
    """Build ``run_with_retry`` keyword arguments from settings."""
    return {
        "max_retries": settings.llm_max_retries + 1,
        "initial_delay": settings.llm_retry_delay,
        "backoff_factor": settings.retry_backoff_factor,
    }
