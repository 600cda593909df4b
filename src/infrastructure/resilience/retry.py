"""Retry decorator with exponential backoff.

Provides configurable retry behavior for transient renderer connection
failures. Scheduling code never retries; only the protocol transport does.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, ParamSpec, TypeVar

from src.shared.exceptions import ConfigurationError


logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes
    ----------
    max_attempts : int
        Maximum number of attempts (including initial)
    base_delay : float
        Initial delay in seconds
    max_delay : float
        Maximum delay between retries
    exponential_base : float
        Base for exponential backoff (delay = base_delay * base^attempt)
    jitter : bool
        Whether to add random jitter to delays
    retryable_exceptions : tuple[type[Exception], ...]
        Exceptions that trigger retry
    fatal_exceptions : tuple[type[Exception], ...]
        Exceptions that are re-raised immediately even if retryable
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (Exception,)
    )
    fatal_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (ConfigurationError,)
    )

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number (0 = first retry)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            # Add up to 25% jitter
            delay = delay * (0.75 + random.random() * 0.5)

        return delay


def _build_config(
    config: RetryConfig | None,
    max_attempts: int | None,
    base_delay: float | None,
    retryable_exceptions: tuple[type[Exception], ...] | None,
) -> RetryConfig:
    if config is not None:
        return config
    return RetryConfig(
        max_attempts=max_attempts or 3,
        base_delay=base_delay if base_delay is not None else 0.1,
        retryable_exceptions=retryable_exceptions or (Exception,),
    )


def retry_async(
    config: RetryConfig | None = None,
    *,
    max_attempts: int | None = None,
    base_delay: float | None = None,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator to retry a coroutine function on failure.

    Sleeps on the event loop between attempts instead of blocking it.

    Example
    -------
    >>> @retry_async(max_attempts=3, base_delay=0.5, retryable_exceptions=(OSError,))
    ... async def open_socket(url: str) -> ClientConnection:
    ...     return await connect(url)
    """
    config = _build_config(config, max_attempts, base_delay, retryable_exceptions)

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(config.max_attempts):
                try:
                    return await func(*args, **kwargs)
                except config.fatal_exceptions:
                    raise
                except config.retryable_exceptions as e:
                    last_exception = e

                    if attempt == config.max_attempts - 1:
                        break

                    delay = config.get_delay(attempt)
                    logger.debug(
                        "[retry] %s failed (attempt %d/%d), retrying in %.2fs: %s",
                        func.__name__,
                        attempt + 1,
                        config.max_attempts,
                        delay,
                        e,
                    )
                    await asyncio.sleep(delay)

            logger.warning(
                "[retry] %s failed after %d attempts",
                func.__name__,
                config.max_attempts,
            )
            raise last_exception  # type: ignore

        return wrapper

    return decorator


__all__ = ["retry_async", "RetryConfig"]
