"""Retry policy for target builds.

A target with ``retries=R`` gets at most ``R + 1`` attempts. Every failed
attempt counts, whether the command raised or hit a time limit. The
delay between attempts is constant.

Example:
    >>> policy = RetryPolicy(retries=2, delay=0.0)
    >>> ctx = RetryContext(policy)
    >>> ctx.run(lambda: 42)
    42
    >>> ctx.attempts
    1
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class RetryPolicy:
    """How many extra attempts a target gets, and how long to wait between them.

    Attributes:
        retries: Extra attempts after the first failure.
        delay: Seconds to sleep before each retry.
        retryable_errors: Exception types worth retrying (None = all).
    """

    retries: int = 0
    delay: float = 0.0
    retryable_errors: tuple[type[BaseException], ...] | None = None

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """True if another attempt may follow attempt number ``attempt`` (one-based)."""
        if attempt >= self.max_attempts:
            return False
        if error is not None and self.retryable_errors is not None:
            return isinstance(error, self.retryable_errors)
        return True

    def next_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class RetryContext:
    """Tracks the attempts of one target build.

    Example:
        >>> ctx = RetryContext(RetryPolicy(retries=3))
        >>> result = ctx.run(build_once)
    """

    policy: RetryPolicy
    on_retry: Callable[[int, BaseException, float], None] | None = None
    attempt: int = field(default=0, init=False)
    last_error: BaseException | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    errors: list[tuple[int, BaseException, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    @property
    def elapsed_seconds(self) -> float:
        """Total elapsed time since the context was created."""
        return (utcnow() - self.started_at).total_seconds()

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds or the policy gives up.

        Raises:
            The last exception once attempts are exhausted.
        """
        while True:
            self.attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utcnow()))
                if not self.policy.should_retry(self.attempt, e):
                    raise
                delay = self.policy.next_delay(self.attempt)
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                if delay > 0:
                    time.sleep(delay)


__all__ = ["RetryPolicy", "RetryContext", "utcnow"]
