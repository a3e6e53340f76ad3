"""In-memory storage: fastest, process-local, gone at exit."""

from __future__ import annotations

import threading

from remake.cache.protocol import DEFAULT_NAMESPACE
from remake.core.errors import KeyNotFoundError


class MemoryStorage:
    """Dict-backed storage. Thread-safe; not shared across processes.

    Example:
        storage = MemoryStorage()
        storage.set("a", b"1")
        storage.get("a")  # b'1'
    """

    kind = "memory"

    def __init__(self) -> None:
        self._data: dict[str, dict[str, bytes]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> bytes:
        with self._lock:
            try:
                return self._data[namespace][key]
            except KeyError:
                raise KeyNotFoundError(key, namespace) from None

    def set(self, key: str, value: bytes, namespace: str = DEFAULT_NAMESPACE) -> None:
        with self._lock:
            self._data.setdefault(namespace, {})[key] = bytes(value)

    def list(self, namespace: str = DEFAULT_NAMESPACE) -> list[str]:
        with self._lock:
            return sorted(self._data.get(namespace, {}))

    def delete(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> None:
        with self._lock:
            self._data.get(namespace, {}).pop(key, None)

    def exists(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> bool:
        with self._lock:
            return key in self._data.get(namespace, {})

    def destroy(self) -> None:
        with self._lock:
            self._data.clear()

    def close(self) -> None:
        return None

    def __getstate__(self):
        raise TypeError("MemoryStorage cannot be shared with other processes")

    def __repr__(self) -> str:
        return "MemoryStorage()"


__all__ = ["MemoryStorage"]
