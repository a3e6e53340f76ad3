"""
Sharded file storage.

Layout::

    <root>/
      objects/ab/<quoted key>     # one file per key
      meta/3f/<quoted key>
      ...

The shard is the first two hex digits of ``md5(key)``; keys are
percent-quoted into file names. Each write goes to a temporary file in
the same shard and is moved into place with ``os.replace``, so a reader
sees either the previous or the new value, never a partial one. Distinct
keys never share a file, which makes concurrent writers from several
worker processes safe.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import threading
import time
from pathlib import Path
from urllib.parse import quote, unquote

from remake.cache.protocol import DEFAULT_NAMESPACE
from remake.core.errors import CacheBackendError, KeyNotFoundError
from remake.core.logging import get_logger

logger = get_logger(__name__)

_TMP_MARK = ".tmp-"


def _shard(key: str) -> str:
    return hashlib.md5(key.encode("utf-8"), usedforsecurity=False).hexdigest()[:2]


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.parent / f".{path.name}{_TMP_MARK}{os.getpid()}-{threading.get_ident()}-{time.time_ns()}"
    try:
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


class ShardedFileStorage:
    """One file per key under ``root``, safe for concurrent writers."""

    kind = "file"

    def __init__(self, root: str | Path):
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheBackendError(f"Cannot create cache directory {self.root}: {exc}", cause=exc) from exc

    def _path(self, key: str, namespace: str) -> Path:
        return self.root / namespace / _shard(key) / quote(key, safe="")

    def get(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> bytes:
        path = self._path(key, namespace)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise KeyNotFoundError(key, namespace) from None
        except OSError as exc:
            raise CacheBackendError(f"Cannot read {path}: {exc}", cause=exc) from exc

    def set(self, key: str, value: bytes, namespace: str = DEFAULT_NAMESPACE) -> None:
        path = self._path(key, namespace)
        try:
            _atomic_write_bytes(path, value)
        except OSError as exc:
            raise CacheBackendError(f"Cannot write {path}: {exc}", cause=exc) from exc

    def list(self, namespace: str = DEFAULT_NAMESPACE) -> list[str]:
        base = self.root / namespace
        if not base.is_dir():
            return []
        keys = []
        try:
            for shard in base.iterdir():
                if not shard.is_dir():
                    continue
                for entry in shard.iterdir():
                    if entry.name.startswith(".") or _TMP_MARK in entry.name:
                        continue
                    keys.append(unquote(entry.name))
        except OSError as exc:
            raise CacheBackendError(f"Cannot list {base}: {exc}", cause=exc) from exc
        return sorted(keys)

    def delete(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> None:
        path = self._path(key, namespace)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise CacheBackendError(f"Cannot delete {path}: {exc}", cause=exc) from exc

    def exists(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> bool:
        return self._path(key, namespace).is_file()

    def destroy(self) -> None:
        try:
            shutil.rmtree(self.root, ignore_errors=False)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise CacheBackendError(f"Cannot remove {self.root}: {exc}", cause=exc) from exc
        logger.info("cache.destroyed", backend=self.kind, path=str(self.root))

    def close(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"ShardedFileStorage({str(self.root)!r})"


__all__ = ["ShardedFileStorage"]
