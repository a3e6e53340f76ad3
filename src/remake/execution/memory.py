"""
Loaded-target memory strategies.

The coordinator keeps target values in memory so dependents can use them
without re-reading the cache. How many it keeps is a trade-off:

    keep_all    never unload; fastest, most memory
    minimal     before each build unload everything except its dependencies
    lookahead   unload a value as soon as no remaining target needs it

All three are interchangeable: a value that is not loaded is read back
from the cache on demand.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from remake.core.config.components import MemoryStrategy
from remake.core.logging import get_logger

logger = get_logger(__name__)


class LoadedTargets:
    """Coordinator-local target values under a memory strategy.

    Args:
        strategy: Which values to keep.
        loader: Reads a value from the cache when it is not loaded.
        needs: For every target of the run, the targets it depends on.
    """

    def __init__(
        self,
        strategy: MemoryStrategy,
        loader: Callable[[str], Any],
        needs: Mapping[str, Sequence[str]],
    ):
        self.strategy = MemoryStrategy(strategy)
        self._loader = loader
        self._values: dict[str, Any] = {}
        self._pending: dict[str, int] = {}
        for deps in needs.values():
            for dep in deps:
                self._pending[dep] = self._pending.get(dep, 0) + 1
        self._needs = {name: tuple(deps) for name, deps in needs.items()}
        self.loads = 0
        self.unloads = 0

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def loaded(self) -> list[str]:
        return sorted(self._values)

    def get(self, name: str) -> Any:
        if name not in self._values:
            self._values[name] = self._loader(name)
            self.loads += 1
        return self._values[name]

    def store(self, name: str, value: Any) -> None:
        """Keep a freshly built value, unless nothing will need it."""
        if self.strategy == MemoryStrategy.LOOKAHEAD and self._pending.get(name, 0) == 0:
            return
        self._values[name] = value

    def unload(self, names: Iterable[str]) -> None:
        for name in names:
            if self._values.pop(name, _MISSING) is not _MISSING:
                self.unloads += 1

    def prepare(self, target: str) -> dict[str, Any]:
        """Load and return the dependency values of ``target``."""
        deps = self._needs.get(target, ())
        if self.strategy == MemoryStrategy.MINIMAL:
            keep = set(deps)
            self.unload([n for n in self._values if n not in keep])
        return {dep: self.get(dep) for dep in deps}

    def release(self, target: str) -> None:
        """Record that ``target`` is finished (built, failed or skipped)."""
        if self.strategy != MemoryStrategy.LOOKAHEAD:
            return
        done: list[str] = []
        for dep in self._needs.get(target, ()):
            self._pending[dep] -= 1
            if self._pending[dep] == 0:
                done.append(dep)
        if done:
            self.unload(done)
            logger.debug("memory.unloaded", target=target, names=done)

    def values(self) -> dict[str, Any]:
        return dict(self._values)


_MISSING = object()


__all__ = ["LoadedTargets", "MemoryStrategy"]
