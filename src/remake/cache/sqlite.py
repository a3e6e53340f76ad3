"""
Single-file SQLite storage.

All namespaces live in one table of one database file, which is easy to
copy, version and share. SQLite allows one writer at a time, so under
parallel execution only the coordinating process writes (coordinator
caching); option validation rejects worker caching with this backend.

The connection is opened lazily and re-opened after ``fork`` so a
storage object can be handed to child processes for reading.
"""

from __future__ import annotations

import os
import sqlite3
import threading
from pathlib import Path
from typing import Any

from remake.cache.protocol import DEFAULT_NAMESPACE
from remake.core.errors import CacheBackendError, KeyNotFoundError
from remake.core.logging import get_logger

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    namespace TEXT NOT NULL,
    key       TEXT NOT NULL,
    value     BLOB NOT NULL,
    PRIMARY KEY (namespace, key)
)
"""


class SqliteStorage:
    """Key/value storage in one SQLite file (``":memory:"`` for tests)."""

    kind = "sqlite"

    def __init__(self, path: str | Path, *, timeout: float = 30.0):
        self.path = str(path)
        self.timeout = timeout
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._pid: int | None = None
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._connect()

    def _connect(self) -> sqlite3.Connection:
        if self._conn is not None and self._pid == os.getpid():
            return self._conn
        try:
            conn = sqlite3.connect(self.path, timeout=self.timeout, check_same_thread=False)
            conn.execute(_SCHEMA)
            conn.commit()
        except sqlite3.Error as exc:
            raise CacheBackendError(f"Cannot open sqlite cache {self.path}: {exc}", cause=exc) from exc
        self._conn = conn
        self._pid = os.getpid()
        return conn

    def _execute(self, sql: str, params: tuple = (), *, commit: bool = False) -> list[Any]:
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(sql, params).fetchall()
                if commit:
                    conn.commit()
            except sqlite3.Error as exc:
                raise CacheBackendError(f"sqlite cache error on {self.path}: {exc}", cause=exc) from exc
            return rows

    def get(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> bytes:
        rows = self._execute("SELECT value FROM entries WHERE namespace = ? AND key = ?", (namespace, key))
        if not rows:
            raise KeyNotFoundError(key, namespace)
        return bytes(rows[0][0])

    def set(self, key: str, value: bytes, namespace: str = DEFAULT_NAMESPACE) -> None:
        self._execute(
            "INSERT OR REPLACE INTO entries (namespace, key, value) VALUES (?, ?, ?)",
            (namespace, key, sqlite3.Binary(value)),
            commit=True,
        )

    def list(self, namespace: str = DEFAULT_NAMESPACE) -> list[str]:
        rows = self._execute("SELECT key FROM entries WHERE namespace = ? ORDER BY key", (namespace,))
        return [row[0] for row in rows]

    def delete(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> None:
        self._execute("DELETE FROM entries WHERE namespace = ? AND key = ?", (namespace, key), commit=True)

    def exists(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> bool:
        rows = self._execute("SELECT 1 FROM entries WHERE namespace = ? AND key = ?", (namespace, key))
        return bool(rows)

    def destroy(self) -> None:
        self._execute("DELETE FROM entries", commit=True)
        self.close()
        if self.path != ":memory:":
            try:
                Path(self.path).unlink(missing_ok=True)
            except OSError as exc:
                raise CacheBackendError(f"Cannot remove {self.path}: {exc}", cause=exc) from exc
        logger.info("cache.destroyed", backend=self.kind, path=self.path)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None and self._pid == os.getpid():
                self._conn.close()
            self._conn = None
            self._pid = None

    def __getstate__(self) -> dict[str, Any]:
        return {"path": self.path, "timeout": self.timeout}

    def __setstate__(self, state: dict[str, Any]) -> None:
        self.path = state["path"]
        self.timeout = state["timeout"]
        self._lock = threading.Lock()
        self._conn = None
        self._pid = None

    def __repr__(self) -> str:
        return f"SqliteStorage({self.path!r})"


__all__ = ["SqliteStorage"]
