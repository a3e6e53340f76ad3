"""Tests for per-attempt time limits."""

from __future__ import annotations

import signal
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from remake.core.errors import TargetTimeoutError
from remake.execution.limits import can_interrupt, time_limits

needs_timers = pytest.mark.skipif(not hasattr(signal, "setitimer"), reason="interval timers unavailable")


def _spin(seconds: float) -> None:
    end = time.process_time() + seconds
    while time.process_time() < end:
        pass


class TestWithoutLimits:
    def test_measures_usage(self):
        with time_limits() as usage:
            _spin(0.02)
        assert usage.elapsed > 0
        assert usage.cpu > 0

    def test_exceptions_propagate(self):
        with pytest.raises(KeyError):
            with time_limits(elapsed=5):
                raise KeyError("x")


@needs_timers
class TestMainThread:
    def test_can_interrupt(self):
        assert can_interrupt()

    def test_elapsed_limit_interrupts(self):
        started = time.monotonic()
        with pytest.raises(TargetTimeoutError) as exc:
            with time_limits(elapsed=0.2, target="slow"):
                time.sleep(5)
        assert time.monotonic() - started < 2
        assert exc.value.limit == "elapsed"
        assert exc.value.context.target == "slow"

    def test_cpu_limit_interrupts(self):
        with pytest.raises(TargetTimeoutError) as exc:
            with time_limits(cpu=0.1):
                _spin(5)
        assert exc.value.limit == "cpu"

    def test_within_limits(self):
        with time_limits(elapsed=2, cpu=2) as usage:
            value = sum(range(1000))
        assert value == 499500
        assert usage.elapsed < 2

    def test_previous_handler_restored(self):
        before = signal.getsignal(signal.SIGALRM)
        with time_limits(elapsed=1):
            pass
        assert signal.getsignal(signal.SIGALRM) is before
        assert signal.getitimer(signal.ITIMER_REAL) == (0.0, 0.0)


class TestOtherThreads:
    def test_limits_checked_after_return(self):
        def work():
            assert not can_interrupt()
            with time_limits(elapsed=0.05, target="t"):
                time.sleep(0.2)

        with ThreadPoolExecutor(max_workers=1) as pool:
            error = pool.submit(work).exception()
        assert isinstance(error, TargetTimeoutError)
        assert error.limit == "elapsed"
