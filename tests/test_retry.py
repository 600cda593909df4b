"""Tests for the retry decorator."""

import asyncio

import pytest

from src.infrastructure.resilience import RetryConfig, retry_async
from src.shared.exceptions import ConfigurationError


class Flaky:
    """Coroutine that fails ``failures`` times with ``error`` before succeeding."""

    def __init__(self, failures, error=OSError):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return "ok"


def _fast(**kwargs):
    return RetryConfig(base_delay=0.0, jitter=False, **kwargs)


def _run(decorator, flaky):
    return asyncio.run(decorator(flaky)())


class TestRetryAsync:
    """Test the coroutine decorator."""

    def test_succeeds_after_transient_failures(self):
        flaky = Flaky(2)
        assert _run(retry_async(_fast(max_attempts=3)), flaky) == "ok"
        assert flaky.calls == 3

    def test_raises_last_error_when_exhausted(self):
        flaky = Flaky(5)
        with pytest.raises(OSError, match="failure 3"):
            _run(retry_async(_fast(max_attempts=3)), flaky)
        assert flaky.calls == 3

    def test_non_retryable_errors_propagate_immediately(self):
        flaky = Flaky(1, error=ValueError)
        with pytest.raises(ValueError):
            _run(retry_async(_fast(retryable_exceptions=(OSError,))), flaky)
        assert flaky.calls == 1

    def test_fatal_errors_are_not_retried(self):
        flaky = Flaky(1, error=ConfigurationError)
        with pytest.raises(ConfigurationError):
            _run(retry_async(_fast()), flaky)
        assert flaky.calls == 1

    def test_keyword_form(self):
        flaky = Flaky(1)
        decorator = retry_async(max_attempts=2, base_delay=0.0, retryable_exceptions=(OSError,))
        assert _run(decorator, flaky) == "ok"
        assert flaky.calls == 2

    def test_wrapper_keeps_name(self):
        async def open_connection():
            return None

        assert retry_async(_fast())(open_connection).__name__ == "open_connection"


class TestRetryConfig:
    """Test backoff delays."""

    def test_exponential_growth_capped(self):
        config = RetryConfig(base_delay=0.1, max_delay=0.3, jitter=False)
        assert config.get_delay(0) == pytest.approx(0.1)
        assert config.get_delay(1) == pytest.approx(0.2)
        assert config.get_delay(5) == pytest.approx(0.3)

    def test_jitter_bounds(self):
        config = RetryConfig(base_delay=1.0, max_delay=1.0, jitter=True)
        for _ in range(20):
            assert 0.75 <= config.get_delay(0) <= 1.25
