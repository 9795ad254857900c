"""
Centralized LLM retry logic with exponential backoff.

Google's recommendation for 429 RESOURCE_EXHAUSTED errors is randomized
exponential backoff:
https://cloud.google.com/blog/products/ai-machine-learning/learn-how-to-handle-429-resource-exhaustion-errors-in-your-llms

Only transient errors (rate limit, quota, overload) are retried; anything
else (bad key, invalid request) is raised on the first attempt.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from tenacity import (
    retry,
    wait_random_exponential,
    stop_after_attempt,
    retry_if_exception,
    before_sleep_log,
)

logger = logging.getLogger(__name__)


def is_retryable(exc: BaseException) -> bool:
    """Check if the exception is a retryable rate limit / transient error."""
    msg = str(exc).lower()
    return any(kw in msg for kw in [
        "429", "resource_exhausted", "resource exhausted",
        "too many requests", "rate limit", "quota",
        "503", "service unavailable", "overloaded",
    ])


async def invoke_with_retry(
    call: Callable[[], Awaitable[Any]],
    *,
    max_retries: int = 3,
    max_wait: int = 30,
) -> Any:
    """Await `call()` with exponential backoff on rate limit errors.

    Args:
        call: Zero-argument coroutine factory (invoked once per attempt)
        max_retries: Maximum number of attempts
        max_wait: Maximum wait time in seconds between attempts

    Raises:
        The original exception if attempts are exhausted or it is not retryable.
    """

    @retry(
        retry=retry_if_exception(is_retryable),
        wait=wait_random_exponential(multiplier=1, max=max_wait),
        stop=stop_after_attempt(max_retries),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _invoke():
        return await call()

    return await _invoke()
