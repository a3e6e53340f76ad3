"""
Scheduler: walk the dependency graph and build what is outdated.

Manifesto:
    The scheduler is the coordinator. It alone owns the graph, the
    loaded values and (under coordinator caching) the cache. Workers
    only ever see one :class:`BuildTask` at a time.

    Target lifecycle::

        PENDING ──(deps done)──► READY ──(slot free)──► RUNNING ──► SUCCEEDED
           │                       │                       └──────► FAILED
           └──(dep failed)──► SKIPPED    └──(up to date)──► SUCCEEDED (not built)

    - **Ordering:** a target starts only after every dependency target
      finished. Ready targets are dispatched in plan order.
    - **Failures:** recorded in the target's metadata. Dependents are
      skipped (``continue``), the run stops starting targets (``stop``),
      or dependents build on the last good cached value (``keep_going``).
    - **Cache errors:** fatal. Running workers are shut down and the
      error propagates.

Architecture:
    ::

        make(plan, env, cache, options)
          │
          ├─ build_config()                  analysis, graph, cycles
          ├─ validate_component_combination  backend × parallelism × caching
          ├─ Scheduler(config, cache).run()
          │     ├─ fingerprint_imports → import metadata
          │     ├─ loop: dispatch ready (ChangeDetector.assess)
          │     │        wait(FIRST_COMPLETED) → record result
          │     └─ cache log file (optional)
          └─ RunReport

Tags:
    scheduler, executor, dag, workers, failure-policy, remake

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import heapq
import time
import uuid
from collections.abc import Mapping
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from remake.cache.log import write_cache_log
from remake.cache.store import STATUS_FAILED, STATUS_RUNNING, STATUS_SUCCEEDED, BuildMeta, TargetCache, open_cache
from remake.core.config.components import (
    CacheBackendKind,
    CachingMode,
    FailurePolicy,
    MemoryStrategy,
    Parallelism,
    validate_component_combination,
)
from remake.core.config.options import MakeOptions
from remake.core.errors import CacheError, KeyNotFoundError, SerializationError
from remake.core.logging import LogContext, get_logger
from remake.execution.builder import BuildResult, BuildTask, describe_error, result_meta
from remake.execution.detector import Assessment, ChangeDetector, fingerprint_imports
from remake.execution.memory import LoadedTargets
from remake.execution.retry import utcnow
from remake.execution.workers import (
    LoopWorker,
    PersistentWorkerPool,
    TransientWorkerPool,
    Worker,
    failed_result,
)
from remake.graph.config import BuildConfig, build_config
from remake.plan.models import Plan

logger = get_logger(__name__)


class TargetStatus(str, Enum):
    """State of a target during (and after) a run."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def finished(self) -> bool:
        return self in (TargetStatus.SUCCEEDED, TargetStatus.FAILED, TargetStatus.SKIPPED)


@dataclass
class RunReport:
    """What happened to every target considered by a run."""

    run_id: str
    status: dict[str, TargetStatus] = field(default_factory=dict)
    built: list[str] = field(default_factory=list)
    started: list[str] = field(default_factory=list)
    reasons: dict[str, list[str]] = field(default_factory=dict)
    attempts: dict[str, int] = field(default_factory=dict)
    errors: dict[str, dict[str, Any]] = field(default_factory=dict)
    skipped_because: dict[str, str] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)
    started_at: str | None = None
    finished_at: str | None = None
    elapsed: float = 0.0

    @property
    def failed(self) -> list[str]:
        return [n for n, s in self.status.items() if s == TargetStatus.FAILED]

    @property
    def skipped(self) -> list[str]:
        return [n for n, s in self.status.items() if s == TargetStatus.SKIPPED]

    @property
    def up_to_date(self) -> list[str]:
        built = set(self.built)
        return [n for n, s in self.status.items() if s == TargetStatus.SUCCEEDED and n not in built]

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": {n: s.value for n, s in self.status.items()},
            "built": list(self.built),
            "up_to_date": self.up_to_date,
            "failed": self.failed,
            "skipped": self.skipped,
            "reasons": dict(self.reasons),
            "attempts": dict(self.attempts),
            "errors": {n: {k: v for k, v in e.items() if k != "traceback"} for n, e in self.errors.items()},
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "elapsed": self.elapsed,
        }


def _hasty_loader(name: str) -> Any:
    raise KeyNotFoundError(name, "hasty")


class Scheduler:
    """
    Run one build of ``config`` against ``cache``.

    Args:
        config: Resolved build configuration (its ``options`` drive the run).
        cache: Target cache; ignored in hasty mode and may then be None.
    """

    def __init__(self, config: BuildConfig, cache: TargetCache | None = None):
        self.config = config
        self.options = config.options
        self.hasty = self.options.parallelism == Parallelism.HASTY
        if cache is None and not self.hasty:
            raise ValueError("A cache is required unless parallelism='hasty'")
        self.cache = None if self.hasty else cache
        self.worker_caching = self.options.caching == CachingMode.WORKER and self.options.parallelism in (
            Parallelism.PERSISTENT,
            Parallelism.TRANSIENT,
        )
        self.run_id = uuid.uuid4().hex[:12]
        self.report = RunReport(run_id=self.run_id)

        self.selected = config.selected_targets()
        selected = set(self.selected)
        self._deps = {name: [d for d in config.target(name).target_deps if d in selected] for name in self.selected}
        self._dependents: dict[str, list[str]] = {name: [] for name in self.selected}
        for name, deps in self._deps.items():
            for dep in deps:
                self._dependents[dep].append(name)
        self._waiting = {name: set(deps) for name, deps in self._deps.items()}
        self._ready: list[tuple[int, str]] = []
        self._running: dict[Future[BuildResult], tuple[str, BuildTask]] = {}
        self._stopping = False

        strategy = MemoryStrategy.KEEP_ALL if self.hasty else self.options.memory_strategy
        loader = _hasty_loader if self.cache is None else self.cache.get_value
        self.loaded = LoadedTargets(strategy, loader, self._deps)
        self.detector: ChangeDetector | None = None

    # ── Setup ────────────────────────────────────────────────────

    def _make_worker(self) -> Worker:
        env = dict(self.config.env)
        parallelism = self.options.parallelism
        jobs = self.options.jobs
        if parallelism == Parallelism.TRANSIENT:
            return TransientWorkerPool(env, jobs)
        if parallelism == Parallelism.PERSISTENT or (parallelism == Parallelism.HASTY and jobs > 1):
            return PersistentWorkerPool(env, jobs)
        return LoopWorker(env)

    def _record_imports(self) -> None:
        assert self.cache is not None
        needed: set[str] = set()
        for name in self.selected:
            needed.update(self.config.target(name).import_deps)
        needed.update(self.config.graph.upstream(*needed) if needed else ())
        names = sorted(n for n in needed if n in self.config.imports)
        fingerprints = fingerprint_imports(self.config, self.cache.algorithm, names)
        for name, fingerprint in fingerprints.items():
            previous = self.cache.meta_or_none(name)
            if previous is None or previous.value_hash != fingerprint or previous.kind != "import":
                self.cache.set_meta(BuildMeta(name=name, kind="import", value_hash=fingerprint))
        self.detector = ChangeDetector(self.config, self.cache, fingerprints)
        logger.debug("scheduler.imports_recorded", imports=len(fingerprints))

    # ── State transitions ────────────────────────────────────────

    def _mark_ready(self, name: str) -> None:
        self.report.status[name] = TargetStatus.READY
        heapq.heappush(self._ready, (self.config.target(name).index, name))

    def _has_good_value(self, name: str) -> bool:
        return self.cache is not None and self.cache.has_value(name)

    def _finish(self, name: str, status: TargetStatus) -> None:
        keep_going = self.options.on_failure == FailurePolicy.KEEP_GOING
        finished = [(name, status)]
        while finished:
            name, status = finished.pop()
            self.report.status[name] = status
            self.loaded.release(name)
            for dependent in self._dependents[name]:
                if self.report.status[dependent] != TargetStatus.PENDING:
                    continue
                satisfied = status == TargetStatus.SUCCEEDED or (keep_going and self._has_good_value(name))
                if satisfied:
                    self._waiting[dependent].discard(name)
                    if not self._waiting[dependent]:
                        self._mark_ready(dependent)
                else:
                    self.report.skipped_because[dependent] = name
                    logger.info("scheduler.target_skipped", target=dependent, because=name)
                    self.report.status[dependent] = TargetStatus.SKIPPED
                    finished.append((dependent, TargetStatus.SKIPPED))

    def _fail(self, name: str, result: BuildResult) -> None:
        self.report.attempts[name] = result.attempts
        if result.error is not None:
            self.report.errors[name] = result.error
        logger.warning(
            "scheduler.target_failed",
            target=name,
            attempts=result.attempts,
            error=(result.error or {}).get("message"),
        )
        if self.options.on_failure == FailurePolicy.STOP:
            self._stopping = True
        self._finish(name, TargetStatus.FAILED)

    # ── Dispatch ─────────────────────────────────────────────────

    def _assess(self, name: str) -> Assessment | None:
        if self.detector is None:
            return None
        return self.detector.assess(name, self.loaded.get)

    def _task(self, name: str, assessment: Assessment | None) -> BuildTask:
        target = self.config.target(name)
        task = BuildTask(
            name=name,
            command=target.command.text,
            dep_names=tuple(self._deps[name]),
            elapsed=target.elapsed,
            cpu=target.cpu,
            retries=target.retries,
            retry_delay=self.options.retry_delay,
            file_out=target.file_out,
            hash_algorithm=self.cache.algorithm if self.cache is not None else None,
            capture_output=self.options.capture_output,
            meta_base=assessment.meta_base() if assessment is not None else {},
            run_id=self.run_id,
        )
        if self.worker_caching:
            task.cache = self.cache
        else:
            task.dep_values = self.loaded.prepare(name)
        return task

    def _dispatch(self, name: str, worker: Worker) -> None:
        assessment = self._assess(name)
        if assessment is not None:
            self.report.reasons[name] = [r.value for r in assessment.reasons]
            if not assessment.outdated:
                logger.debug("scheduler.target_up_to_date", target=name)
                self._finish(name, TargetStatus.SUCCEEDED)
                return
        task = self._task(name, assessment)
        if self.cache is not None:
            self.cache.set_progress(name, STATUS_RUNNING)
        self.report.status[name] = TargetStatus.RUNNING
        self.report.started.append(name)
        logger.info("scheduler.target_dispatched", target=name, reasons=self.report.reasons.get(name, []))
        self._running[worker.submit(task)] = (name, task)

    # ── Results ──────────────────────────────────────────────────

    def _result(self, future: Future[BuildResult], task: BuildTask, worker: Worker) -> BuildResult:
        exc = future.exception()
        if exc is None:
            return future.result()
        if isinstance(exc, CacheError) and not isinstance(exc, SerializationError):
            raise exc
        # Worker crashed, or the task/result could not be pickled.
        logger.error("scheduler.worker_error", target=task.name, error=str(exc))
        return failed_result(task, exc, worker.name)

    def _store(self, task: BuildTask, result: BuildResult) -> None:
        if self.cache is None or result.stored:
            return
        if result.ok:
            try:
                result.value_hash = self.cache.set_value(task.name, result.value)
            except SerializationError as exc:
                result.ok = False
                result.error = describe_error(exc, task.command)
        self.cache.set_meta(result_meta(task, result))
        self.cache.set_progress(task.name, STATUS_SUCCEEDED if result.ok else STATUS_FAILED)

    def _complete(self, name: str, task: BuildTask, result: BuildResult) -> None:
        self._store(task, result)
        self.report.attempts[name] = result.attempts
        if not result.ok:
            self._fail(name, result)
            return
        self.report.built.append(name)
        if not result.stored:
            self.loaded.store(name, result.value)
        if self.hasty:
            self.report.values[name] = result.value
        logger.info("scheduler.target_built", target=name, elapsed=round(result.elapsed, 4), attempts=result.attempts)
        self._finish(name, TargetStatus.SUCCEEDED)

    # ── Run ──────────────────────────────────────────────────────

    def run(self) -> RunReport:
        """Build every outdated selected target and report the outcome."""
        report = self.report
        report.started_at = utcnow().isoformat()
        began = time.monotonic()
        for name in self.selected:
            report.status[name] = TargetStatus.PENDING

        with LogContext(run_id=self.run_id):
            logger.info(
                "scheduler.run_started",
                targets=len(self.selected),
                parallelism=self.options.parallelism.value,
                jobs=self.options.jobs,
            )
            if self.cache is not None:
                self._record_imports()
            for name in self.selected:
                if not self._waiting[name]:
                    self._mark_ready(name)

            worker = self._make_worker()
            failed = True
            try:
                self._loop(worker)
                failed = False
            finally:
                worker.shutdown(cancel=failed)

            for name in self.selected:
                if not report.status[name].finished:
                    report.status[name] = TargetStatus.SKIPPED
            if self.cache is not None and self.options.cache_log_file is not None:
                write_cache_log(self.cache, self.options.cache_log_file)

            report.finished_at = utcnow().isoformat()
            report.elapsed = time.monotonic() - began
            logger.info(
                "scheduler.run_finished",
                built=len(report.built),
                failed=len(report.failed),
                skipped=len(report.skipped),
                elapsed=round(report.elapsed, 4),
            )
        return report

    def _loop(self, worker: Worker) -> None:
        while self._ready or self._running:
            while self._ready and len(self._running) < worker.max_workers and not self._stopping:
                _, name = heapq.heappop(self._ready)
                self._dispatch(name, worker)
            if not self._running:
                if self._stopping:
                    break
                continue
            done, _ = wait(list(self._running), return_when=FIRST_COMPLETED)
            for future in sorted(done, key=lambda f: self.config.target(self._running[f][0]).index):
                name, task = self._running.pop(future)
                self._complete(name, task, self._result(future, task, worker))


# =============================================================================
# ENTRY POINT
# =============================================================================


def _cache_kind(cache: TargetCache | None) -> CacheBackendKind:
    if cache is None:
        return CacheBackendKind.MEMORY
    return CacheBackendKind(cache.storage.kind)


def make(
    plan: Plan | BuildConfig,
    env: Mapping[str, Any] | None = None,
    cache: TargetCache | str | Path | None = None,
    options: MakeOptions | None = None,
    **overrides: Any,
) -> RunReport:
    """
    Bring the targets of ``plan`` up to date.

    Args:
        plan: The plan, or a config already built with :func:`build_config`.
        env: Functions and objects commands may use, e.g. ``globals()``.
        cache: A :class:`TargetCache`, a path to open one at, or None for a
            throwaway in-memory cache.
        options: Run options; keyword ``overrides`` replace single fields.

    Raises:
        ConfigError: The plan or the option combination is invalid.
        CacheError: The cache failed; the run was aborted.
    """
    if isinstance(plan, BuildConfig):
        options = options or plan.options
        if overrides:
            options = options.with_(**overrides)
        config = plan if options is plan.options else build_config(plan.plan, env or plan.env, options)
    else:
        options = options or MakeOptions()
        if overrides:
            options = options.with_(**overrides)
        config = build_config(plan, env, options)

    hasty = options.parallelism == Parallelism.HASTY
    if isinstance(cache, str | Path):
        cache = open_cache(cache)
    elif cache is None and not hasty:
        cache = open_cache(None, backend=CacheBackendKind.MEMORY)
        logger.debug("scheduler.memory_cache", reason="no cache given")

    for warning in validate_component_combination(
        backend=_cache_kind(cache),
        parallelism=options.parallelism,
        caching=options.caching,
        memory_strategy=options.memory_strategy,
        jobs=options.jobs,
    ):
        logger.info("scheduler.option_note", severity=warning.severity, message=warning.message)

    return Scheduler(config, cache).run()


__all__ = ["TargetStatus", "RunReport", "Scheduler", "FailurePolicy", "make"]
