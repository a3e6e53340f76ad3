"""
Worker models: where target commands run.

Every worker exposes ``submit(task) -> Future[BuildResult]`` and
``shutdown()``, so the scheduler drives all of them with the same
``concurrent.futures.wait`` loop.

Manifesto:
    Three models cover the useful trade-offs between overhead and
    isolation:

    - **LoopWorker** runs the build synchronously in the coordinator.
      No processes, no pickling, one target at a time.
    - **PersistentWorkerPool** keeps ``jobs`` long-lived processes that
      pull builds from a shared queue until the run ends.
    - **TransientWorkerPool** forks one fresh process per target; the
      coordinator can kill it outright when its deadline passes.

Architecture:
    ::

        Scheduler ── submit(BuildTask) ──► worker ──► Future[BuildResult]
                                              │
            LoopWorker            run_build_task() inline, done Future
            PersistentWorkerPool  ProcessPoolExecutor(fork, initializer=install_worker_env)
            TransientWorkerPool   ThreadPoolExecutor → fork Process + Pipe per target

    Worker processes are forked, so they inherit the environment
    (functions, objects) without pickling it. Tasks and results cross the
    process boundary by pickle.

Guardrails:
    ❌ Commands returning unpicklable values under process workers
    ✅ They fail with a serialization error recorded in the target's metadata

Tags:
    workers, process-pool, fork, concurrency, remake

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import multiprocessing
import os
import pickle
from concurrent.futures import Future, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, Protocol

from remake.core.errors import IncompatibleOptionsError, TargetTimeoutError
from remake.core.logging import get_logger
from remake.execution.builder import (
    BuildResult,
    BuildTask,
    describe_error,
    install_worker_env,
    run_build_task,
)
from remake.execution.retry import utcnow

logger = get_logger(__name__)

# Extra wall-clock seconds a transient worker gets beyond its limits
# before the coordinator kills it.
KILL_GRACE_SECONDS = 2.0


class Worker(Protocol):
    """What the scheduler needs from a worker model."""

    name: str
    max_workers: int

    def submit(self, task: BuildTask) -> Future[BuildResult]: ...

    def shutdown(self, cancel: bool = False) -> None: ...


def fork_context() -> Any:
    """The ``fork`` multiprocessing context, or a configuration error."""
    try:
        return multiprocessing.get_context("fork")
    except ValueError as exc:
        raise IncompatibleOptionsError(
            "Process workers need the 'fork' start method, which this platform lacks. "
            "Use parallelism='loop'.",
            cause=exc,
        ) from exc


def failed_result(task: BuildTask, exc: BaseException, worker: str) -> BuildResult:
    """A :class:`BuildResult` for a build that died outside the command."""
    now = utcnow().isoformat()
    return BuildResult(
        name=task.name,
        ok=False,
        error=describe_error(exc, task.command),
        attempts=task.retries + 1,
        started_at=now,
        finished_at=now,
        worker=worker,
    )


# =============================================================================
# LOOP
# =============================================================================


class LoopWorker:
    """Build synchronously in the coordinating process."""

    name = "loop"

    def __init__(self, env: dict[str, Any]):
        self.env = env
        self.max_workers = 1

    def submit(self, task: BuildTask) -> Future[BuildResult]:
        future: Future[BuildResult] = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(run_build_task(task, self.env, worker=self.name))
        except Exception as exc:  # cache errors in worker caching mode
            future.set_exception(exc)
        return future

    def shutdown(self, cancel: bool = False) -> None:
        return None

    def __enter__(self) -> LoopWorker:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()


# =============================================================================
# PERSISTENT
# =============================================================================


def _persistent_entry(task: BuildTask) -> BuildResult:
    return run_build_task(task, worker=f"persistent-{os.getpid()}")


class PersistentWorkerPool:
    """``jobs`` long-lived worker processes sharing one task queue."""

    name = "persistent"

    def __init__(self, env: dict[str, Any], max_workers: int):
        self.max_workers = max_workers
        self._executor = ProcessPoolExecutor(
            max_workers=max_workers,
            mp_context=fork_context(),
            initializer=install_worker_env,
            initargs=(env,),
        )
        logger.debug("workers.persistent_started", workers=max_workers)

    def submit(self, task: BuildTask) -> Future[BuildResult]:
        return self._executor.submit(_persistent_entry, task)

    def shutdown(self, cancel: bool = False) -> None:
        self._executor.shutdown(wait=True, cancel_futures=cancel)

    def __enter__(self) -> PersistentWorkerPool:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()


# =============================================================================
# TRANSIENT
# =============================================================================


def task_deadline(task: BuildTask) -> float | None:
    """Seconds after which a transient worker is killed, or None."""
    if task.elapsed is None:
        return None
    attempts = task.retries + 1
    return attempts * (task.elapsed + task.retry_delay) + KILL_GRACE_SECONDS


def _transient_main(task: BuildTask, conn: Any, env: dict[str, Any]) -> None:
    install_worker_env(env)
    worker = f"transient-{os.getpid()}"
    result = run_build_task(task, worker=worker)
    try:
        conn.send(result)
    except (pickle.PicklingError, TypeError, AttributeError) as exc:
        conn.send(failed_result(task, exc, worker))
    finally:
        conn.close()


class TransientWorkerPool:
    """One freshly forked process per target, at most ``max_workers`` at once."""

    name = "transient"

    def __init__(self, env: dict[str, Any], max_workers: int):
        self.env = env
        self.max_workers = max_workers
        self._context = fork_context()
        self._threads = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="remake-transient")

    def _run(self, task: BuildTask) -> BuildResult:
        receiver, sender = self._context.Pipe(duplex=False)
        process = self._context.Process(
            target=_transient_main,
            args=(task, sender, self.env),
            name=f"remake-{task.name}",
            daemon=True,
        )
        process.start()
        sender.close()
        worker = f"transient-{process.pid}"
        try:
            if receiver.poll(task_deadline(task)):
                try:
                    return receiver.recv()
                except EOFError:
                    pass
            else:
                process.kill()
                logger.warning("workers.transient_killed", target=task.name, pid=process.pid)
                return failed_result(task, TargetTimeoutError("elapsed", task.elapsed or 0.0, task.name), worker)
        finally:
            process.join()
            receiver.close()
        return failed_result(
            task, RuntimeError(f"worker process exited with code {process.exitcode} before reporting"), worker
        )

    def submit(self, task: BuildTask) -> Future[BuildResult]:
        return self._threads.submit(self._run, task)

    def shutdown(self, cancel: bool = False) -> None:
        self._threads.shutdown(wait=True, cancel_futures=cancel)

    def __enter__(self) -> TransientWorkerPool:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()


__all__ = [
    "Worker",
    "LoopWorker",
    "PersistentWorkerPool",
    "TransientWorkerPool",
    "fork_context",
    "failed_result",
    "task_deadline",
]
