"""Tests for the retry policy."""

from __future__ import annotations

import pytest

from remake.execution.retry import RetryContext, RetryPolicy


class Flaky:
    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ValueError(f"failure {self.calls}")
        return "ok"


class TestRetryPolicy:
    def test_max_attempts(self):
        assert RetryPolicy().max_attempts == 1
        assert RetryPolicy(retries=3).max_attempts == 4

    def test_should_retry(self):
        policy = RetryPolicy(retries=1)
        assert policy.should_retry(1)
        assert not policy.should_retry(2)

    def test_retryable_errors(self):
        policy = RetryPolicy(retries=5, retryable_errors=(TimeoutError,))
        assert policy.should_retry(1, TimeoutError())
        assert not policy.should_retry(1, ValueError())

    def test_constant_delay(self):
        assert RetryPolicy(delay=0.5).next_delay(1) == RetryPolicy(delay=0.5).next_delay(4) == 0.5


class TestRetryContext:
    def test_success_on_first_attempt(self):
        ctx = RetryContext(RetryPolicy(retries=2))
        assert ctx.run(lambda: 42) == 42
        assert ctx.attempts == 1
        assert ctx.errors == []

    def test_succeeds_within_budget(self):
        func = Flaky(failures=2)
        seen = []
        ctx = RetryContext(RetryPolicy(retries=2), on_retry=lambda n, e, d: seen.append(n))
        assert ctx.run(func) == "ok"
        assert ctx.attempts == 3
        assert seen == [1, 2]
        assert [n for n, _, _ in ctx.errors] == [1, 2]

    def test_gives_up_after_retries_plus_one(self):
        func = Flaky(failures=10)
        ctx = RetryContext(RetryPolicy(retries=2))
        with pytest.raises(ValueError, match="failure 3"):
            ctx.run(func)
        assert func.calls == 3
        assert isinstance(ctx.last_error, ValueError)

    def test_non_retryable_error_stops_immediately(self):
        func = Flaky(failures=10)
        ctx = RetryContext(RetryPolicy(retries=5, retryable_errors=(TimeoutError,)))
        with pytest.raises(ValueError):
            ctx.run(func)
        assert ctx.attempts == 1

    def test_elapsed_seconds(self):
        ctx = RetryContext(RetryPolicy())
        assert ctx.elapsed_seconds >= 0
