"""Tests for the worker models."""

from __future__ import annotations

import multiprocessing
import time

import pytest

from remake import make, plan, target
from remake.execution.builder import BuildTask
from remake.execution.workers import LoopWorker, failed_result, task_deadline

needs_fork = pytest.mark.skipif(
    "fork" not in multiprocessing.get_all_start_methods(),
    reason="process workers need the fork start method",
)

HELPERS = """
def square(x):
    return x * x
"""


def _plan():
    return plan(a="3", b="square(a)", c="[a, b]", d="b + 1")


class TestLoopWorker:
    def test_returns_a_finished_future(self):
        future = LoopWorker({}).submit(BuildTask(name="t", command="1 + 1", dep_values={}))
        assert future.done()
        result = future.result()
        assert result.value == 2
        assert result.worker == "loop"


class TestHelpers:
    def test_deadline_covers_every_attempt(self):
        task = BuildTask(name="t", command="1", elapsed=1.5, retries=2, retry_delay=0.5)
        assert task_deadline(task) == 3 * (1.5 + 0.5) + 2.0

    def test_no_deadline_without_an_elapsed_limit(self):
        assert task_deadline(BuildTask(name="t", command="1")) is None

    def test_failed_result_uses_every_attempt(self):
        result = failed_result(BuildTask(name="t", command="1", retries=2), RuntimeError("gone"), "w")
        assert not result.ok
        assert result.attempts == 3
        assert result.error["type"] == "RuntimeError"
        assert result.worker == "w"


@needs_fork
@pytest.mark.slow
class TestPersistentPool:
    def test_coordinator_caching(self, exec_env, sqlite_cache):
        report = make(_plan(), env=exec_env(HELPERS), cache=sqlite_cache, parallelism="persistent", jobs=2)
        assert report.ok
        assert sqlite_cache.get_value("c") == [3, 9]
        assert sqlite_cache.get_meta("b").worker.startswith("persistent-")

    def test_worker_caching(self, exec_env, file_cache):
        report = make(
            _plan(),
            env=exec_env(HELPERS),
            cache=file_cache,
            parallelism="persistent",
            jobs=2,
            caching="worker",
        )
        assert report.ok
        assert file_cache.get_value("d") == 10
        assert file_cache.get_progress("d") == "succeeded"
        assert make(_plan(), env=exec_env(HELPERS), cache=file_cache, parallelism="persistent", jobs=2).built == []

    def test_failure_is_recorded(self, memory_cache):
        report = make(plan(bad="1 / 0", fine="1"), cache=memory_cache, parallelism="persistent", jobs=2)
        assert report.failed == ["bad"]
        assert report.errors["bad"]["type"] == "ZeroDivisionError"

    def test_hasty_with_jobs(self, exec_env):
        report = make(_plan(), env=exec_env(HELPERS), parallelism="hasty", jobs=2)
        assert report.values["c"] == [3, 9]


@needs_fork
@pytest.mark.slow
class TestTransientPool:
    def test_builds(self, exec_env, memory_cache):
        report = make(_plan(), env=exec_env(HELPERS), cache=memory_cache, parallelism="transient", jobs=2)
        assert report.ok
        assert memory_cache.get_value("d") == 10
        assert memory_cache.get_meta("a").worker.startswith("transient-")

    def test_timeout(self, memory_cache):
        started = time.monotonic()
        report = make(
            plan(slow=target("sleep(10)", elapsed=0.3)),
            env={"sleep": time.sleep},
            cache=memory_cache,
            parallelism="transient",
            jobs=1,
        )
        assert time.monotonic() - started < 8
        assert report.failed == ["slow"]
        assert report.errors["slow"]["type"] == "TargetTimeoutError"

    def test_unpicklable_value_fails_its_target(self, memory_cache):
        report = make(plan(gen="(i for i in range(3))", fine="1"), cache=memory_cache, parallelism="transient")
        assert report.failed == ["gen"]
        assert "fine" in report.built
