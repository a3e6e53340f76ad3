"""Target cache and its pluggable storage backends."""

from .file import ShardedFileStorage
from .log import cache_log, write_cache_log
from .memory import MemoryStorage
from .protocol import StorageBackend
from .sqlite import SqliteStorage
from .store import BuildMeta, TargetCache, new_cache, open_cache

__all__ = [
    "StorageBackend",
    "ShardedFileStorage",
    "SqliteStorage",
    "MemoryStorage",
    "BuildMeta",
    "TargetCache",
    "new_cache",
    "open_cache",
    "cache_log",
    "write_cache_log",
]
