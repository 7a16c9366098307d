"""Bounded retry with exponential backoff for async audio operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from loopmix.errors import AudioError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """AudioErrors answer by their kind; anything else is worth another try."""
    if isinstance(error, AudioError):
        return error.recoverable
    return True


def retry_delay_ms(attempt: int, delay_ms: float, backoff: bool) -> float:
    """Delay before the retry that follows failed attempt number *attempt*."""
    if backoff:
        return delay_ms * 2 ** (attempt - 1)
    return delay_ms


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay_ms: float = 1000,
    backoff: bool = True,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """Run *operation*, retrying recoverable failures.

    Waits ``delay_ms * 2**(attempt-1)`` (or a flat ``delay_ms`` without
    backoff) between attempts and calls ``on_retry(attempt, error)`` before
    each retry. Once attempts are exhausted, or the error is not retryable,
    the last error is re-raised unchanged.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= max_attempts or not is_retryable(exc):
                logger.error("Operation failed after %d attempt(s): %s", attempt, exc)
                raise

            wait_ms = retry_delay_ms(attempt, delay_ms, backoff)
            logger.warning(
                "Attempt %d/%d failed, retrying in %.0fms: %s",
                attempt, max_attempts, wait_ms, exc,
            )
            await asyncio.sleep(wait_ms / 1000)
            if on_retry is not None:
                on_retry(attempt, exc)
            attempt += 1
