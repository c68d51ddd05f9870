"""Bounded retry combinator for allocation attempts."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from devlease.shared.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_bounded(
    operation: Callable[[int], Awaitable[T]],
    *,
    max_attempts: int,
    is_retryable: Callable[[Exception], bool],
    label: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` tries are used up.

    ``max_attempts`` is exactly the number of calls made, so ``max_attempts=3``
    means one initial try plus two retries. The operation receives the 1-based
    attempt number.

    Raises:
        RetryExhaustedError: Every attempt failed with a retryable error.
            The final error is kept on ``last_error``.
        Exception: The first non-retryable error, unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation(attempt)
        except Exception as exc:
            if not is_retryable(exc):
                raise
            last_error = exc
            logger.info("%s attempt %d/%d failed: %s", label, attempt, max_attempts, exc)

    assert last_error is not None
    raise RetryExhaustedError(max_attempts, last_error) from last_error
