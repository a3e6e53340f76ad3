"""
Building one target: the code every worker runs.

A :class:`BuildTask` is a picklable description of one build: the command
text, the dependency values (or the names to load from the cache), the
limits and the retry budget. :func:`run_build_task` evaluates it and
returns a :class:`BuildResult`; it never raises for a failing command.

Manifesto:
    - **Same code everywhere:** loop, persistent and transient workers all
      call :func:`run_build_task`
    - **Failures are data:** the error type, message, call and traceback
      end up in the result and then in the target's metadata
    - **Attempts are counted:** each timed-out or failed attempt consumes
      one retry

Architecture:
    ::

        run_build_task(task, env)
          │
          ├─ namespace = env + dependency values + runtime markers
          ├─ RetryContext(RetryPolicy(retries, delay)).run(attempt)
          │     attempt:
          │       warnings.catch_warnings(record=True)
          │       redirect_stdout → messages
          │       time_limits(elapsed, cpu) → Command.evaluate
          ├─ hash file_out files, fingerprint value
          ├─ worker caching: write value + meta to task.cache
          └─ BuildResult

Tags:
    execution, builder, retry, limits, remake

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import io
import os
import pickle
import traceback
import warnings
from contextlib import nullcontext, redirect_stdout
from dataclasses import dataclass, field
from typing import Any

from remake.analysis.commands import Command
from remake.cache.store import STATUS_FAILED, STATUS_SUCCEEDED, BuildMeta, TargetCache
from remake.core.errors import ErrorCategory, SerializationError, TargetTimeoutError
from remake.core.hashing import combine_named, hash_file, hash_value
from remake.core.logging import LogContext, get_logger
from remake.execution.limits import time_limits
from remake.execution.retry import RetryContext, RetryPolicy, utcnow
from remake.plan.markers import runtime_markers

logger = get_logger(__name__)

# Environment of worker processes, installed by the pool initializer or
# inherited through fork.
_WORKER_ENV: dict[str, Any] = {}


def install_worker_env(env: dict[str, Any]) -> None:
    """Set the environment commands see in this (worker) process."""
    global _WORKER_ENV
    _WORKER_ENV = dict(env)


@dataclass
class BuildTask:
    """Everything needed to build one target, picklable."""

    name: str
    command: str
    dep_values: dict[str, Any] | None = None
    dep_names: tuple[str, ...] = ()
    elapsed: float | None = None
    cpu: float | None = None
    retries: int = 0
    retry_delay: float = 0.0
    file_out: tuple[str, ...] = ()
    hash_algorithm: str | None = None
    capture_output: bool = True
    cache: TargetCache | None = None
    meta_base: dict[str, Any] = field(default_factory=dict)
    run_id: str | None = None

    @property
    def worker_caching(self) -> bool:
        return self.cache is not None


@dataclass
class BuildResult:
    """Outcome of a :class:`BuildTask`."""

    name: str
    ok: bool
    value: Any = None
    value_hash: str | None = None
    error: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    elapsed: float = 0.0
    cpu: float = 0.0
    attempts: int = 0
    file_out: dict[str, str | None] = field(default_factory=dict)
    output_file_hash: str | None = None
    started_at: str | None = None
    finished_at: str | None = None
    worker: str | None = None
    stored: bool = False


def describe_error(exc: BaseException, call: str) -> dict[str, Any]:
    """Diagnostic record for a failed build."""
    category = ErrorCategory.TIMEOUT if isinstance(exc, TargetTimeoutError) else ErrorCategory.BUILD
    return {
        "type": type(exc).__name__,
        "message": str(exc),
        "category": category.value,
        "call": call,
        "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }


def worker_name() -> str:
    return f"pid-{os.getpid()}"


def result_meta(task: BuildTask, result: BuildResult) -> BuildMeta:
    """Metadata to record for ``result``, on top of the coordinator's fingerprints."""
    base = dict(task.meta_base)
    previous_value_hash = base.pop("previous_value_hash", None)
    previous_output_hash = base.pop("output_file_hash", None)
    return BuildMeta(
        name=task.name,
        kind="target",
        status=STATUS_SUCCEEDED if result.ok else STATUS_FAILED,
        value_hash=result.value_hash if result.ok else previous_value_hash,
        output_file_hash=result.output_file_hash if result.ok else previous_output_hash,
        file_out=result.file_out,
        error=result.error,
        warnings=result.warnings,
        messages=result.messages,
        elapsed=result.elapsed,
        cpu=result.cpu,
        attempts=result.attempts,
        started_at=result.started_at,
        finished_at=result.finished_at,
        worker=result.worker,
        **base,
    )


def _hash_outputs(task: BuildTask) -> tuple[dict[str, str | None], str | None]:
    if not task.file_out or task.hash_algorithm is None:
        return {}, None
    hashes: dict[str, str | None] = {}
    for path in task.file_out:
        try:
            hashes[path] = hash_file(path, task.hash_algorithm)
        except (FileNotFoundError, IsADirectoryError):
            hashes[path] = None
    combined = combine_named({p: h or "" for p, h in hashes.items()}, task.hash_algorithm)
    return hashes, combined


def _unserializable(task: BuildTask, result: BuildResult, exc: Exception) -> None:
    if not isinstance(exc, SerializationError):
        exc = SerializationError(f"Cannot serialize the value of '{task.name}': {exc}", cause=exc)
    result.ok = False
    result.value = None
    result.value_hash = None
    result.error = describe_error(exc, task.command)
    logger.warning("builder.unserializable", error=str(exc))


def run_build_task(task: BuildTask, env: dict[str, Any] | None = None, *, worker: str | None = None) -> BuildResult:
    """Build ``task`` and describe the outcome. Never raises for command errors."""
    env = _WORKER_ENV if env is None else env
    worker = worker or worker_name()
    command = Command.parse(task.command)
    result = BuildResult(name=task.name, ok=False, worker=worker, started_at=utcnow().isoformat())

    with LogContext(target=task.name, worker=worker, run_id=task.run_id):
        if task.dep_values is not None:
            dep_values = dict(task.dep_values)
        elif task.cache is not None:
            dep_values = {dep: task.cache.get_value(dep) for dep in task.dep_names}
        else:
            dep_values = {}

        def attempt() -> Any:
            namespace: dict[str, Any] = {**env, **dep_values, **runtime_markers(dep_values)}
            buffer = io.StringIO()
            output = redirect_stdout(buffer) if task.capture_output else nullcontext()
            usage = None
            with warnings.catch_warnings(record=True) as caught, output:
                warnings.simplefilter("always")
                try:
                    with time_limits(task.elapsed, task.cpu, task.name) as usage:
                        return command.evaluate(namespace, name=task.name)
                finally:
                    if usage is not None:
                        result.elapsed += usage.elapsed
                        result.cpu += usage.cpu
                    result.warnings.extend(str(w.message) for w in caught)
                    result.messages.extend(line for line in buffer.getvalue().splitlines() if line)

        def on_retry(attempt_no: int, error: BaseException, delay: float) -> None:
            logger.warning("builder.retry", attempt=attempt_no, error=str(error), delay=delay)

        context = RetryContext(RetryPolicy(retries=task.retries, delay=task.retry_delay), on_retry=on_retry)
        try:
            value = context.run(attempt)
        except Exception as exc:
            result.attempts = context.attempts
            result.error = describe_error(exc, task.command)
            result.finished_at = utcnow().isoformat()
            logger.warning("builder.failed", attempts=context.attempts, error=result.error["message"])
        else:
            result.ok = True
            result.attempts = context.attempts
            result.value = value
            if task.hash_algorithm is not None:
                try:
                    result.value_hash = hash_value(value, task.hash_algorithm)
                except (pickle.PicklingError, TypeError, AttributeError) as exc:
                    _unserializable(task, result, exc)
            result.file_out, result.output_file_hash = _hash_outputs(task)
            result.finished_at = utcnow().isoformat()
            logger.debug("builder.succeeded", attempts=context.attempts)

        if task.cache is not None:
            if result.ok:
                try:
                    task.cache.set_value(task.name, value)
                except SerializationError as exc:
                    _unserializable(task, result, exc)
            task.cache.set_meta(result_meta(task, result))
            task.cache.set_progress(task.name, STATUS_SUCCEEDED if result.ok else STATUS_FAILED)
            result.value = None
            result.stored = True
    return result


__all__ = [
    "BuildTask",
    "BuildResult",
    "run_build_task",
    "install_worker_env",
    "describe_error",
    "result_meta",
]
