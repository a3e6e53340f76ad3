"""
Run option enumerations and compatibility validation.

Each enum is one pluggable dimension of a ``make()`` run. The
:func:`validate_component_combination` function checks that a set of
choices can work at runtime (e.g. the SQLite cache cannot accept writes
from several worker processes).

Example::

    from remake.core.config.components import (
        CacheBackendKind, CachingMode, Parallelism, validate_component_combination,
    )

    warnings = validate_component_combination(
        backend=CacheBackendKind.FILE,
        parallelism=Parallelism.PERSISTENT,
        caching=CachingMode.WORKER,
        jobs=4,
    )
    for w in warnings:
        print(w.severity, w.message)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from remake.core.errors import IncompatibleOptionsError

# ── Option enumerations ──────────────────────────────────────────────────


class CacheBackendKind(str, Enum):
    """Supported cache storage backends."""

    FILE = "file"        # sharded files, safe for concurrent writers
    SQLITE = "sqlite"    # one embedded database file, single writer
    MEMORY = "memory"    # process-local, lost at exit


class Parallelism(str, Enum):
    """How targets are executed."""

    LOOP = "loop"                # synchronous, in the coordinator
    PERSISTENT = "persistent"    # long-lived worker processes, shared queue
    TRANSIENT = "transient"      # one fresh process per target
    HASTY = "hasty"              # no cache, no change detection


class CachingMode(str, Enum):
    """Who writes build results into the cache."""

    COORDINATOR = "coordinator"
    WORKER = "worker"


class MemoryStrategy(str, Enum):
    """Which target values the coordinator keeps loaded."""

    KEEP_ALL = "keep_all"
    MINIMAL = "minimal"
    LOOKAHEAD = "lookahead"


class FailurePolicy(str, Enum):
    """What to do with the rest of the run when a target fails."""

    CONTINUE = "continue"      # skip dependents, independent subgraphs continue
    STOP = "stop"              # start nothing new after the first failure
    KEEP_GOING = "keep_going"  # dependents build against the last good value


# ── Compatibility validation ─────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ComponentWarning:
    """A warning or error raised by option-combination validation."""

    severity: str  # "info", "warning", or "error"
    message: str
    suggestion: str


def validate_component_combination(
    *,
    backend: CacheBackendKind = CacheBackendKind.FILE,
    parallelism: Parallelism = Parallelism.LOOP,
    caching: CachingMode = CachingMode.COORDINATOR,
    memory_strategy: MemoryStrategy = MemoryStrategy.KEEP_ALL,
    jobs: int = 1,
) -> list[ComponentWarning]:
    """Return compatibility warnings for the given option choices.

    Raises :class:`IncompatibleOptionsError` for *error*-severity issues
    (combinations that cannot work at runtime).
    """
    warnings: list[ComponentWarning] = []
    multiprocess = parallelism in (Parallelism.PERSISTENT, Parallelism.TRANSIENT)

    if jobs < 1:
        raise IncompatibleOptionsError(f"jobs must be at least 1, got {jobs}")

    # Rule 1: SQLite allows one writer; workers must not write directly
    if backend == CacheBackendKind.SQLITE and caching == CachingMode.WORKER and multiprocess:
        raise IncompatibleOptionsError(
            "The sqlite cache backend requires a single writer. "
            "Use caching='coordinator' with parallel workers, or the file backend."
        )

    # Rule 2: an in-memory cache is invisible to other processes
    if backend == CacheBackendKind.MEMORY and caching == CachingMode.WORKER and multiprocess:
        raise IncompatibleOptionsError(
            "Worker processes cannot write to an in-memory cache. "
            "Use caching='coordinator' or a persistent backend."
        )

    # Rule 3: parallelism without parallel jobs is just overhead
    if multiprocess and jobs == 1:
        warnings.append(
            ComponentWarning(
                severity="info",
                message=f"parallelism='{parallelism.value}' with jobs=1 runs one target at a time.",
                suggestion="Raise jobs, or use parallelism='loop' to avoid process overhead.",
            )
        )

    # Rule 4: worker caching in the coordinator is meaningless
    if caching == CachingMode.WORKER and parallelism == Parallelism.LOOP:
        warnings.append(
            ComponentWarning(
                severity="info",
                message="caching='worker' has no effect with parallelism='loop'.",
                suggestion="Drop the caching option for in-process builds.",
            )
        )

    # Rule 5: hasty mode ignores the cache entirely
    if parallelism == Parallelism.HASTY:
        warnings.append(
            ComponentWarning(
                severity="warning",
                message="Hasty mode skips change detection and caching; results are not reproducible.",
                suggestion="Use hasty mode only to validate execution order.",
            )
        )
        if memory_strategy != MemoryStrategy.KEEP_ALL:
            warnings.append(
                ComponentWarning(
                    severity="info",
                    message="Hasty mode keeps every value in memory regardless of memory_strategy.",
                    suggestion="Leave memory_strategy at 'keep_all' for hasty runs.",
                )
            )

    return warnings
