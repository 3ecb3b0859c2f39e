"""Exponential backoff for fallible async actions.

`with_retry` does not try to decide which errors are worth retrying. Every failure of the action is retried until the
attempt budget runs out, at which point the last error is raised unchanged. Callers that want a different policy for a
particular action pass different `RetryOptions`.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from doclink.errors import ValidationError


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOptions:
    """Configures `with_retry`.

    Attributes:
        max_attempts: Total number of times the action is run, including the first (default: 3)
        base_delay: Seconds to wait after the first failure, doubled after each following failure (default: 0.1)
        max_delay: Upper bound in seconds for any single wait (default: 5.0)
    """
    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 5.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValidationError(f"max_attempts must be at least 1, got {self.max_attempts}", "max_attempts")

        if self.base_delay < 0 or self.max_delay < 0:
            raise ValidationError("Retry delays cannot be negative", "base_delay")


DEFAULT_RETRY_OPTIONS = RetryOptions()


def backoff_delay(attempt: int, options: RetryOptions = DEFAULT_RETRY_OPTIONS) -> float:
    """Seconds to wait after the given (1-based) failed attempt before starting the next one."""
    return min(options.base_delay * 2 ** (attempt - 1), options.max_delay)


async def with_retry(action: Callable[[], Awaitable[T]], options: RetryOptions | None = None) -> T:
    """Awaits `action()` until it succeeds or `options.max_attempts` attempts have failed.

    Waiting between attempts uses `asyncio.sleep` so only the calling task is suspended.

    Args:
        action: A zero argument callable returning a new awaitable on each call.
        options: Retry configuration, `DEFAULT_RETRY_OPTIONS` if omitted.

    Returns:
        The result of the first successful attempt.

    Raises:
        Exception: Whatever the final attempt raised.
    """
    options = options or DEFAULT_RETRY_OPTIONS
    for attempt in range(1, options.max_attempts + 1):
        try:
            return await action()
        except Exception:
            if attempt == options.max_attempts:
                raise

            delay = backoff_delay(attempt, options)
            logger.debug("Attempt %d/%d failed, retrying in %.3fs", attempt, options.max_attempts, delay)
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
