"""Resilience patterns for the renderer transport."""

from src.infrastructure.resilience.retry import RetryConfig, retry_async


__all__ = [
    "RetryConfig",
    "retry_async",
]
