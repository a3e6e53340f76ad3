"""
Explicit per-run options.

``MakeOptions`` is the immutable bundle handed to :func:`remake.make`.
It is built either directly in code or from
:class:`~remake.core.config.settings.RemakeSettings`; the engine itself
never reads settings or the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from remake.core.config.components import (
    CachingMode,
    FailurePolicy,
    MemoryStrategy,
    Parallelism,
)
from remake.core.errors import InvalidOverrideError


@dataclass(frozen=True)
class MakeOptions:
    """
    Options for one ``make()`` run.

    Attributes:
        jobs: Maximum number of targets building at once.
        parallelism: Worker model (loop / persistent / transient / hasty).
        caching: Whether the coordinator or the workers write results.
        memory_strategy: Which values the coordinator keeps loaded.
        on_failure: Failure policy for dependents and the rest of the run.
        timeout: Default per-attempt limit filling unset elapsed/cpu.
        elapsed: Default per-attempt wall-clock limit in seconds.
        cpu: Default per-attempt CPU-time limit in seconds.
        retries: Default number of extra attempts after a failure.
        retry_delay: Seconds to wait between attempts.
        targets: Build only these targets (and what they need); None = all.
        cache_log_file: Write the cache log here after the run.
        capture_output: Record printed output of commands as messages.
    """

    jobs: int = 1
    parallelism: Parallelism = Parallelism.LOOP
    caching: CachingMode = CachingMode.COORDINATOR
    memory_strategy: MemoryStrategy = MemoryStrategy.KEEP_ALL
    on_failure: FailurePolicy = FailurePolicy.CONTINUE
    timeout: float | None = None
    elapsed: float | None = None
    cpu: float | None = None
    retries: int = 0
    retry_delay: float = 0.0
    targets: tuple[str, ...] | None = None
    cache_log_file: Path | None = None
    capture_output: bool = True
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "parallelism", Parallelism(self.parallelism))
        object.__setattr__(self, "caching", CachingMode(self.caching))
        object.__setattr__(self, "memory_strategy", MemoryStrategy(self.memory_strategy))
        object.__setattr__(self, "on_failure", FailurePolicy(self.on_failure))
        if self.targets is not None and not isinstance(self.targets, tuple):
            object.__setattr__(self, "targets", tuple(self.targets))
        if self.cache_log_file is not None:
            object.__setattr__(self, "cache_log_file", Path(self.cache_log_file))
        for name in ("timeout", "elapsed", "cpu"):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int | float) or value <= 0):
                raise InvalidOverrideError("<global>", name, value, "a positive number of seconds")
        if isinstance(self.retries, bool) or not isinstance(self.retries, int) or self.retries < 0:
            raise InvalidOverrideError("<global>", "retries", self.retries, "a non-negative integer")

    def with_(self, **changes: Any) -> MakeOptions:
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)
