"""
Target cache: values, build metadata and fingerprints over a storage backend.

Manifesto:
    The cache is the only shared mutable state of a run. It owns four
    namespaces and nothing else:

    - ``objects``  pickled target values
    - ``meta``     one JSON :class:`BuildMeta` per tracked name
    - ``progress`` last known status per target (``running``/``succeeded``/``failed``)
    - ``config``   cache-wide settings (the hash algorithm)

    Values are written before their metadata, so metadata never points at
    a value that is not there. A failed build writes metadata with the
    error and leaves the previous value in place.

Architecture:
    ::

        open_cache(".remake")            ──► ShardedFileStorage
        open_cache("cache.db")           ──► SqliteStorage
        open_cache(None, backend="memory") ──► MemoryStorage
                    │
                    ▼
        TargetCache(storage, algorithm)
          set_value / get_value          pickle + value fingerprint
          set_meta  / get_meta           JSON BuildMeta
          set_progress / progress        status strings
          names / targets / imports      tracked names
          delete / clear / destroy

Examples:
    >>> cache = open_cache(None, backend="memory")
    >>> h = cache.set_value("a", 12)
    >>> cache.get_value("a")
    12
    >>> cache.hash_value(cache.get_value("a")) == h
    True

Tags:
    cache, content-addressed, metadata, fingerprints, remake

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import json
import pickle
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from remake.cache.file import ShardedFileStorage
from remake.cache.memory import MemoryStorage
from remake.cache.protocol import StorageBackend
from remake.cache.sqlite import SqliteStorage
from remake.core.config.components import CacheBackendKind
from remake.core.errors import (
    CacheBackendError,
    HashAlgorithmMismatchError,
    KeyNotFoundError,
    SerializationError,
)
from remake.core.hashing import DEFAULT_ALGORITHM, check_algorithm, hash_file, hash_value
from remake.core.logging import get_logger

logger = get_logger(__name__)

OBJECTS = "objects"
META = "meta"
PROGRESS = "progress"
CONFIG = "config"

_ALGORITHM_KEY = "hash_algorithm"
_SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3")

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"
STATUS_RUNNING = "running"


@dataclass
class BuildMeta:
    """
    Build metadata for one tracked name.

    Targets carry every field; imports only ``kind="import"`` and
    ``value_hash`` (their fingerprint).
    """

    name: str
    kind: str = "target"
    status: str = STATUS_SUCCEEDED
    command_hash: str | None = None
    depend_hash: str | None = None
    input_file_hash: str | None = None
    output_file_hash: str | None = None
    change_hash: str | None = None
    value_hash: str | None = None
    dependency_hashes: dict[str, str] = field(default_factory=dict)
    file_in: dict[str, str | None] = field(default_factory=dict)
    file_out: dict[str, str | None] = field(default_factory=dict)
    error: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    elapsed: float | None = None
    cpu: float | None = None
    attempts: int = 0
    started_at: str | None = None
    finished_at: str | None = None
    worker: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuildMeta:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True, default=str).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> BuildMeta:
        return cls.from_dict(json.loads(data.decode("utf-8")))


class TargetCache:
    """Values and metadata of targets and imports, keyed by name."""

    def __init__(self, storage: StorageBackend, algorithm: str = DEFAULT_ALGORITHM):
        self.storage = storage
        self.algorithm = check_algorithm(algorithm)

    # ── Fingerprints ─────────────────────────────────────────────

    def hash_value(self, value: Any) -> str:
        return hash_value(value, self.algorithm)

    def hash_file(self, path: str | Path) -> str | None:
        """Content fingerprint of ``path``, or None if it does not exist."""
        try:
            return hash_file(path, self.algorithm)
        except (FileNotFoundError, IsADirectoryError):
            return None

    # ── Values ───────────────────────────────────────────────────

    def set_value(self, name: str, value: Any) -> str:
        """Pickle and store ``value``; return its fingerprint.

        Raises:
            SerializationError: If ``value`` cannot be pickled.
        """
        try:
            data = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        except (pickle.PicklingError, TypeError, AttributeError) as exc:
            raise SerializationError(f"Cannot serialize the value of '{name}': {exc}", cause=exc) from exc
        self.storage.set(name, data, OBJECTS)
        return self.hash_value(value)

    def get_value(self, name: str) -> Any:
        """Return the stored value of ``name``.

        Raises:
            KeyNotFoundError: If ``name`` has no stored value.
        """
        data = self.storage.get(name, OBJECTS)
        try:
            return pickle.loads(data)
        except (pickle.UnpicklingError, EOFError, AttributeError, ImportError) as exc:
            raise CacheBackendError(f"Corrupt cached value for '{name}': {exc}", cause=exc) from exc

    def has_value(self, name: str) -> bool:
        return self.storage.exists(name, OBJECTS)

    # ── Metadata ─────────────────────────────────────────────────

    def set_meta(self, meta: BuildMeta) -> None:
        self.storage.set(meta.name, meta.to_json(), META)

    def get_meta(self, name: str) -> BuildMeta:
        """Raises :class:`KeyNotFoundError` if ``name`` is not tracked."""
        return BuildMeta.from_json(self.storage.get(name, META))

    def meta_or_none(self, name: str) -> BuildMeta | None:
        try:
            return self.get_meta(name)
        except KeyNotFoundError:
            return None

    # ── Progress ─────────────────────────────────────────────────

    def set_progress(self, name: str, status: str) -> None:
        self.storage.set(name, status.encode("utf-8"), PROGRESS)

    def get_progress(self, name: str) -> str | None:
        try:
            return self.storage.get(name, PROGRESS).decode("utf-8")
        except KeyNotFoundError:
            return None

    def progress(self) -> dict[str, str]:
        return {name: self.storage.get(name, PROGRESS).decode("utf-8") for name in self.storage.list(PROGRESS)}

    # ── Listing ──────────────────────────────────────────────────

    def names(self) -> list[str]:
        """All tracked names (targets and imports), sorted."""
        return self.storage.list(META)

    def metas(self) -> list[BuildMeta]:
        return [self.get_meta(name) for name in self.names()]

    def targets(self) -> list[str]:
        return [m.name for m in self.metas() if m.kind == "target"]

    def imports(self) -> list[str]:
        return [m.name for m in self.metas() if m.kind == "import"]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.storage.exists(name, META)

    # ── Removal ──────────────────────────────────────────────────

    def delete(self, name: str) -> None:
        for namespace in (OBJECTS, META, PROGRESS):
            self.storage.delete(name, namespace)

    def clear(self) -> None:
        """Remove every tracked entry but keep the cache itself."""
        names = set(self.names()) | set(self.storage.list(OBJECTS)) | set(self.storage.list(PROGRESS))
        for name in sorted(names):
            self.delete(name)
        logger.info("cache.cleared", entries=len(names))

    def destroy(self) -> None:
        self.storage.destroy()

    def close(self) -> None:
        self.storage.close()

    def __repr__(self) -> str:
        return f"TargetCache({self.storage!r}, algorithm={self.algorithm!r})"


# ── Construction ─────────────────────────────────────────────────────────


def _infer_backend(path: str | Path | None) -> CacheBackendKind:
    if path is None:
        return CacheBackendKind.MEMORY
    if str(path) == ":memory:" or str(path).endswith(_SQLITE_SUFFIXES):
        return CacheBackendKind.SQLITE
    return CacheBackendKind.FILE


def _make_storage(path: str | Path | None, backend: CacheBackendKind) -> StorageBackend:
    if backend == CacheBackendKind.MEMORY:
        return MemoryStorage()
    if path is None:
        raise CacheBackendError(f"The {backend.value} cache backend needs a path")
    if backend == CacheBackendKind.SQLITE:
        return SqliteStorage(path)
    return ShardedFileStorage(path)


def open_cache(
    path: str | Path | None = ".remake",
    *,
    backend: CacheBackendKind | str | None = None,
    hash_algorithm: str | None = None,
) -> TargetCache:
    """
    Open (creating if needed) the cache at ``path``.

    ``backend`` defaults to ``sqlite`` for ``*.db``/``*.sqlite`` paths,
    ``memory`` for ``None`` and ``file`` otherwise. ``hash_algorithm``
    defaults to the algorithm the cache was created with (``sha256`` for
    a new cache).

    Raises:
        HashAlgorithmMismatchError: The cache uses a different algorithm.
    """
    kind = CacheBackendKind(backend) if backend is not None else _infer_backend(path)
    storage = _make_storage(path, kind)
    try:
        recorded = storage.get(_ALGORITHM_KEY, CONFIG).decode("ascii")
    except KeyNotFoundError:
        recorded = None

    if recorded is None:
        algorithm = check_algorithm(hash_algorithm or DEFAULT_ALGORITHM)
        storage.set(_ALGORITHM_KEY, algorithm.encode("ascii"), CONFIG)
        logger.debug("cache.created", backend=kind.value, path=str(path), algorithm=algorithm)
    else:
        if hash_algorithm is not None and hash_algorithm != recorded:
            storage.close()
            raise HashAlgorithmMismatchError(recorded, hash_algorithm)
        algorithm = recorded
    return TargetCache(storage, algorithm)


def new_cache(
    path: str | Path | None = ".remake",
    *,
    backend: CacheBackendKind | str | None = None,
    hash_algorithm: str = DEFAULT_ALGORITHM,
) -> TargetCache:
    """Create an empty cache at ``path``, destroying any existing one."""
    kind = CacheBackendKind(backend) if backend is not None else _infer_backend(path)
    if kind != CacheBackendKind.MEMORY:
        _make_storage(path, kind).destroy()
    return open_cache(path, backend=kind, hash_algorithm=hash_algorithm)


__all__ = [
    "BuildMeta",
    "TargetCache",
    "open_cache",
    "new_cache",
    "OBJECTS",
    "META",
    "PROGRESS",
    "CONFIG",
    "STATUS_SUCCEEDED",
    "STATUS_FAILED",
    "STATUS_RUNNING",
]
