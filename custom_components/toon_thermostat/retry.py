"""Exponential back-off retry for fallible Toon API calls."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

from .const import RETRY_ATTEMPTS, RETRY_BASE_DELAY

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


def exponential_delay(attempt: int) -> float:
    """Return the delay in seconds after the given failed attempt (1-based)."""
    return RETRY_BASE_DELAY * 2**attempt


async def async_retry(
    operation: Callable[[], Awaitable[_T]],
    max_attempts: int = RETRY_ATTEMPTS,
    delay: Callable[[int], float] = exponential_delay,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> _T:
    """Run operation until it succeeds or max_attempts is exhausted.

    The operation must be safe to repeat, no deduplication is performed.

    Args:
        operation: Zero-argument coroutine function to invoke.
        max_attempts: Total number of invocations allowed.
        delay: Maps the number of failed attempts so far to a wait in seconds.
        retry_on: Exception types that trigger another attempt; anything
            else propagates immediately.

    Returns:
        The result of the first successful invocation.

    Raises:
        The exception of the last attempt once all attempts failed.

    """
    if max_attempts < 1:
        error_msg = f"max_attempts must be at least 1, got {max_attempts}"
        raise ValueError(error_msg)

    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as err:
            if attempt >= max_attempts:
                _LOGGER.debug(
                    "Giving up after %d attempts: %s: %s",
                    attempt,
                    type(err).__name__,
                    err,
                )
                raise
            wait_time = delay(attempt)
            _LOGGER.debug(
                "Attempt %d/%d failed, retrying in %.1fs: %s: %s",
                attempt,
                max_attempts,
                wait_time,
                type(err).__name__,
                err,
            )
            await asyncio.sleep(wait_time)
            attempt += 1
