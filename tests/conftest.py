"""
Shared pytest fixtures and configuration for remake tests.

This module provides:
- Cache fixtures for every storage backend
- A working-directory fixture for tests that read and write files
- ``exec_env``: build an environment from source text, the way a user's
  helper module would provide one
- Environment and log-context isolation between tests

Usage:
    def test_something(memory_cache, exec_env):
        env = exec_env("def double(x):\\n    return 2 * x\\n")
        report = make(plan(a="double(2)"), env=env, cache=memory_cache)
"""

import os
import sys
import textwrap
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import structlog

# Ensure remake package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from remake.cache.store import TargetCache, open_cache


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without an explicit marker as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolate_global_state(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Clear REMAKE_* variables and bound log context around every test."""
    for key in list(os.environ):
        if key.startswith("REMAKE_"):
            monkeypatch.delenv(key)
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run the test inside an empty temporary directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


# =============================================================================
# Caches
# =============================================================================


@pytest.fixture
def memory_cache() -> TargetCache:
    return open_cache(None, backend="memory")


@pytest.fixture
def file_cache(tmp_path: Path) -> Generator[TargetCache, None, None]:
    cache = open_cache(tmp_path / "cache")
    yield cache
    cache.close()


@pytest.fixture
def sqlite_cache(tmp_path: Path) -> Generator[TargetCache, None, None]:
    cache = open_cache(tmp_path / "cache.db")
    yield cache
    cache.close()


@pytest.fixture(params=["file", "sqlite", "memory"])
def any_cache(request: pytest.FixtureRequest, tmp_path: Path) -> Generator[TargetCache, None, None]:
    """The same test against every storage backend."""
    paths = {"file": tmp_path / "cache", "sqlite": tmp_path / "cache.db", "memory": None}
    cache = open_cache(paths[request.param], backend=request.param)
    yield cache
    cache.close()


# =============================================================================
# Environments
# =============================================================================


@pytest.fixture
def exec_env() -> Callable[..., dict[str, Any]]:
    """
    Build an environment by executing source text.

    Functions defined this way have no source file, so remake fingerprints
    them from their bytecode, like functions typed into a REPL.
    """

    def build(source: str, **extra: Any) -> dict[str, Any]:
        namespace: dict[str, Any] = dict(extra)
        exec(textwrap.dedent(source), namespace)
        namespace.pop("__builtins__", None)
        return namespace

    return build
