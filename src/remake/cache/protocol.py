"""
Storage protocol for the target cache.

Every backend is a namespaced key/value store of raw bytes. Serialization
lives one layer up in :class:`~remake.cache.store.TargetCache`, so a
backend only has to move bytes and report keys.

Manifesto:
    - **Protocol-based:** ``StorageBackend`` defines the contract
    - **Bytes in, bytes out:** no pickling inside backends
    - **Loud misses:** ``get`` raises :class:`KeyNotFoundError`, never ``None``
    - **Wrapped I/O:** backend failures surface as :class:`CacheBackendError`

Architecture:
    ::

        StorageBackend (Protocol)
        ├── ShardedFileStorage  one file per key, atomic replace, multi-writer
        ├── SqliteStorage       one database file, single writer
        └── MemoryStorage       process-local dict

        API: get(key, namespace)   → bytes | KeyNotFoundError
             set(key, value, namespace)
             list(namespace)       → sorted keys
             delete(key, namespace)
             exists(key, namespace) → bool
             destroy()

Tags:
    cache, storage, protocol, remake

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

DEFAULT_NAMESPACE = "objects"


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for cache storage implementations."""

    kind: str
    """Short backend name (``file``, ``sqlite``, ``memory``)."""

    def get(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> bytes:
        """Return the bytes stored under ``key``.

        Raises:
            KeyNotFoundError: If the key is absent.
        """
        ...

    def set(self, key: str, value: bytes, namespace: str = DEFAULT_NAMESPACE) -> None:
        """Store ``value`` under ``key``, replacing any previous value atomically."""
        ...

    def list(self, namespace: str = DEFAULT_NAMESPACE) -> list[str]:
        """All keys in ``namespace``, sorted."""
        ...

    def delete(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> None:
        """Remove ``key``. No-op if absent."""
        ...

    def exists(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> bool:
        ...

    def destroy(self) -> None:
        """Remove all data and the storage itself."""
        ...

    def close(self) -> None:
        ...


__all__ = ["StorageBackend", "DEFAULT_NAMESPACE"]
