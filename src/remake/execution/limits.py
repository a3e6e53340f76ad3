"""Per-attempt time limits for target commands.

Manifesto:
    A target that runs past its limit must stop, not finish late. Python
    cannot kill a thread, so limits are enforced inside the process that
    runs the command, with interval timers:

    - **elapsed** → ``ITIMER_REAL`` delivers ``SIGALRM`` after wall-clock seconds
    - **cpu**     → ``ITIMER_PROF`` delivers ``SIGPROF`` after CPU seconds

    The signal handler raises :class:`TargetTimeoutError` in the command's
    frame, which unwinds it like any other build error and consumes one
    retry attempt.

Architecture:
    ::

        with time_limits(elapsed=5, cpu=2, target="model") as usage:
            value = command.evaluate(namespace)
        usage.elapsed, usage.cpu        # measured seconds

        main thread + signals available  → timers armed, hard interruption
        otherwise                        → limits checked when the command returns

Guardrails:
    - Worker processes run commands in their main thread, so limits are
      always hard there. The loop worker is hard only when ``make()`` is
      called from the main thread.
    - Timers are disarmed and previous handlers restored on exit, so
      limits nest with whatever the caller installed.

Tags:
    timeout, limits, signals, execution, remake

Doc-Types:
    api-reference
"""

from __future__ import annotations

import signal
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from remake.core.errors import TargetTimeoutError

_HAS_ITIMER = hasattr(signal, "setitimer") and hasattr(signal, "SIGPROF")


@dataclass
class ResourceUsage:
    """Wall-clock and CPU seconds consumed inside a ``time_limits`` block."""

    start_wall: float = field(default_factory=time.monotonic)
    start_cpu: float = field(default_factory=time.process_time)
    elapsed: float = 0.0
    cpu: float = 0.0

    def stop(self) -> None:
        self.elapsed = time.monotonic() - self.start_wall
        self.cpu = time.process_time() - self.start_cpu


def can_interrupt() -> bool:
    """True when limits can interrupt a running command in this thread."""
    return _HAS_ITIMER and threading.current_thread() is threading.main_thread()


@contextmanager
def time_limits(
    elapsed: float | None = None,
    cpu: float | None = None,
    target: str | None = None,
) -> Iterator[ResourceUsage]:
    """Enforce ``elapsed``/``cpu`` second limits on the enclosed block.

    Raises:
        TargetTimeoutError: When a limit is exceeded.
    """
    usage = ResourceUsage()
    if elapsed is None and cpu is None:
        try:
            yield usage
        finally:
            usage.stop()
        return

    if not can_interrupt():
        try:
            yield usage
        finally:
            usage.stop()
        if elapsed is not None and usage.elapsed > elapsed:
            raise TargetTimeoutError("elapsed", elapsed, target)
        if cpu is not None and usage.cpu > cpu:
            raise TargetTimeoutError("cpu", cpu, target)
        return

    def on_alarm(signum, frame):
        raise TargetTimeoutError("elapsed", elapsed, target)

    def on_prof(signum, frame):
        raise TargetTimeoutError("cpu", cpu, target)

    previous: list[tuple[int, int, object, tuple[float, float]]] = []
    try:
        if elapsed is not None:
            old = signal.signal(signal.SIGALRM, on_alarm)
            previous.append((signal.SIGALRM, signal.ITIMER_REAL, old, signal.setitimer(signal.ITIMER_REAL, elapsed)))
        if cpu is not None:
            old = signal.signal(signal.SIGPROF, on_prof)
            previous.append((signal.SIGPROF, signal.ITIMER_PROF, old, signal.setitimer(signal.ITIMER_PROF, cpu)))
        yield usage
    finally:
        usage.stop()
        for signum, which, handler, timer in reversed(previous):
            signal.setitimer(which, 0)
            signal.signal(signum, handler)
            if timer[0] > 0:
                signal.setitimer(which, *timer)


__all__ = ["ResourceUsage", "TargetTimeoutError", "can_interrupt", "time_limits"]
