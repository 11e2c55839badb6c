"""Retry helper for connection attempts."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    attempt: Callable[[], Coroutine[Any, Any, T]],
    *,
    max_attempts: int = 1,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
    fatal_exceptions: tuple[type[BaseException], ...] = (),
    description: str = "operation",
) -> T:
    """Await ``attempt()`` up to ``max_attempts`` times with exponential backoff.

    Args:
        attempt: Zero-argument factory returning a fresh coroutine per try.
        max_attempts: Total tries; values below 1 are treated as 1.
        base_delay: Delay before the second try (seconds), doubled after each failure.
        max_delay: Upper bound for the delay.
        retryable_exceptions: Exceptions that trigger another try; anything
            else propagates immediately.
        fatal_exceptions: Raised at once even when they are also retryable.
        description: Used in log messages, e.g. ``"connect to server1"``.
    """
    max_attempts = max(1, max_attempts)
    last_exc: BaseException | None = None

    for n in range(1, max_attempts + 1):
        try:
            return await attempt()
        except retryable_exceptions as exc:
            if isinstance(exc, fatal_exceptions):
                raise
            last_exc = exc
            if n == max_attempts:
                break
            delay = min(base_delay * (2 ** (n - 1)), max_delay)
            logger.warning(
                "%s: attempt %d/%d failed (%s), retrying in %.1fs",
                description,
                n,
                max_attempts,
                exc,
                delay,
            )
            await asyncio.sleep(delay)

    raise last_exc  # type: ignore[misc]
