"""Async retry with exponential backoff for LLM batch calls.

Example:
    >>> @with_retry(max_attempts=3, retryable=(RetryableError,))
    ... async def call_llm():
    ...     return await client.chat.completions.create(...)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import wraps
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from .exceptions import RetryableError

if TYPE_CHECKING:
    from .config import EnrichmentConfig

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def with_retry(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    retryable: tuple[type[Exception], ...] = (RetryableError,),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an async function on the given exceptions with exponential backoff.

    The delay before retry n is ``min(initial_delay * exponential_base**(n-1), max_delay)``.
    A RetryableError carrying a larger ``retry_after`` (e.g. from a rate limit)
    stretches that delay, still capped at max_delay. After the last attempt the
    final exception propagates unchanged.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            delay = initial_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable as e:
                    if attempt >= max_attempts:
                        if max_attempts > 1:
                            logger.error(
                                f"All {max_attempts} attempts failed for {func.__name__}: {e}"
                            )
                        raise
                    wait = delay
                    if isinstance(e, RetryableError):
                        wait = max(wait, e.retry_after)
                    wait = min(wait, max_delay)
                    logger.warning(
                        f"Attempt {attempt}/{max_attempts} failed for {func.__name__}: {e}. "
                        f"Retrying in {wait:.1f}s..."
                    )
                    await asyncio.sleep(wait)
                    delay = min(delay * exponential_base, max_delay)
            raise RuntimeError("with_retry requires max_attempts >= 1")

        return wrapper

    return decorator


@dataclass(frozen=True)
class RetryConfig:
    """Retry settings in the shape with_retry() accepts.

    Example:
        >>> policy = RetryConfig(max_attempts=3, initial_delay=0.5)
        >>> @with_retry(**policy.to_kwargs())
        ... async def flaky():
        ...     pass
    """

    max_attempts: int = 1
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0

    @classmethod
    def from_config(cls, config: EnrichmentConfig) -> RetryConfig:
        return cls(
            max_attempts=config.llm_retry_attempts,
            initial_delay=config.initial_retry_delay,
        )

    def to_kwargs(self) -> dict[str, float | int]:
        return {
            "max_attempts": self.max_attempts,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "exponential_base": self.exponential_base,
        }
