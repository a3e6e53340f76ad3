"""
Execution: change detection, scheduling, workers, limits and retries.

Manifesto:
    Everything that happens at build time lives here. Nothing in this
    package reads settings or discovers a cache on its own; the config
    and the cache are handed to :func:`make` explicitly.

Architecture:
    ::

        scheduler.py   make(), Scheduler, RunReport, TargetStatus
        detector.py    ChangeDetector, OutdatedReason, fingerprint_imports
        workers.py     LoopWorker, PersistentWorkerPool, TransientWorkerPool
        builder.py     BuildTask, BuildResult, run_build_task
        limits.py      time_limits (elapsed / cpu)
        retry.py       RetryPolicy, RetryContext
        memory.py      LoadedTargets (keep_all / minimal / lookahead)

Tags:
    execution, scheduler, workers, remake

Doc-Types:
    - Package Overview
"""

from remake.execution.builder import BuildResult, BuildTask, run_build_task
from remake.execution.detector import ChangeDetector, OutdatedReason, fingerprint_imports
from remake.execution.limits import TargetTimeoutError, time_limits
from remake.execution.memory import LoadedTargets, MemoryStrategy
from remake.execution.retry import RetryContext, RetryPolicy
from remake.execution.scheduler import FailurePolicy, RunReport, Scheduler, TargetStatus, make
from remake.execution.workers import LoopWorker, PersistentWorkerPool, TransientWorkerPool

__all__ = [
    "make",
    "Scheduler",
    "RunReport",
    "TargetStatus",
    "FailurePolicy",
    "ChangeDetector",
    "OutdatedReason",
    "fingerprint_imports",
    "LoopWorker",
    "PersistentWorkerPool",
    "TransientWorkerPool",
    "BuildTask",
    "BuildResult",
    "run_build_task",
    "time_limits",
    "TargetTimeoutError",
    "RetryPolicy",
    "RetryContext",
    "LoadedTargets",
    "MemoryStrategy",
]
