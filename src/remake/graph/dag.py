"""
Dependency graph over targets and imports.

Edges point from a node to what it needs: ``add_dependency("model",
"clean")`` means ``clean`` must be up to date before ``model`` builds.
Insertion order is remembered and used as the stable tie-break for
topological order, so the plan order decides among independent nodes.

Cycle detection uses depth-first search with three-color marking;
topological order uses Kahn's algorithm.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from enum import Enum

from remake.core.errors import CycleDetectedError, RemakeError


class NodeKind(str, Enum):
    """What a graph node stands for."""

    TARGET = "target"  # built by the scheduler
    IMPORT = "import"  # fingerprinted only


class DependencyGraph:
    """A directed graph of targets and imports, validated acyclic on demand."""

    def __init__(self) -> None:
        self._kinds: dict[str, NodeKind] = {}
        self._order: dict[str, int] = {}
        self._deps: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {}

    # ── Construction ─────────────────────────────────────────────

    def add_node(self, name: str, kind: NodeKind) -> None:
        existing = self._kinds.get(name)
        if existing is not None:
            if existing != kind:
                raise RemakeError(f"Node '{name}' already added as {existing.value}, not {kind.value}")
            return
        self._kinds[name] = kind
        self._order[name] = len(self._order)
        self._deps[name] = set()
        self._dependents[name] = set()

    def add_dependency(self, node: str, dependency: str) -> None:
        """Record that ``node`` needs ``dependency``; both must exist."""
        for name in (node, dependency):
            if name not in self._kinds:
                raise KeyError(f"Unknown graph node '{name}'")
        self._deps[node].add(dependency)
        self._dependents[dependency].add(node)

    # ── Queries ──────────────────────────────────────────────────

    def __contains__(self, name: object) -> bool:
        return name in self._kinds

    def __len__(self) -> int:
        return len(self._kinds)

    @property
    def nodes(self) -> list[str]:
        return list(self._kinds)

    def kind(self, name: str) -> NodeKind:
        return self._kinds[name]

    def targets(self) -> list[str]:
        return [n for n, k in self._kinds.items() if k == NodeKind.TARGET]

    def imports(self) -> list[str]:
        return [n for n, k in self._kinds.items() if k == NodeKind.IMPORT]

    def _sorted(self, names: Iterable[str]) -> list[str]:
        return sorted(names, key=self._order.__getitem__)

    def dependencies(self, name: str) -> list[str]:
        """Direct dependencies, in insertion order."""
        return self._sorted(self._deps[name])

    def dependents(self, name: str) -> list[str]:
        """Direct dependents, in insertion order."""
        return self._sorted(self._dependents[name])

    def _closure(self, start: Iterable[str], edges: dict[str, set[str]]) -> set[str]:
        seen: set[str] = set()
        stack = list(start)
        while stack:
            node = stack.pop()
            for nxt in edges[node]:
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return seen

    def upstream(self, *names: str) -> list[str]:
        """Everything the given nodes transitively need (excluding themselves)."""
        return self._sorted(self._closure(names, self._deps) - set(names))

    def downstream(self, *names: str) -> list[str]:
        """Everything that transitively needs the given nodes (excluding themselves)."""
        return self._sorted(self._closure(names, self._dependents) - set(names))

    def edges(self) -> list[tuple[str, str]]:
        """``(node, dependency)`` pairs in insertion order."""
        return [(n, d) for n in self._kinds for d in self.dependencies(n)]

    def subgraph(self, names: Iterable[str]) -> DependencyGraph:
        """Graph restricted to ``names`` (edges between them only)."""
        keep = set(names)
        sub = DependencyGraph()
        for node in self._kinds:
            if node in keep:
                sub.add_node(node, self._kinds[node])
        for node, dep in self.edges():
            if node in keep and dep in keep:
                sub.add_dependency(node, dep)
        return sub

    # ── Validation and ordering ──────────────────────────────────

    def find_cycle(self) -> list[str] | None:
        """
        Return one cycle as a closed path, or None for a DAG.

        Uses depth-first search with three-color marking:
        - WHITE (0): Unvisited
        - GRAY (1): Currently visiting (on current path)
        - BLACK (2): Finished visiting
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        color = dict.fromkeys(self._kinds, WHITE)

        for root in self._kinds:
            if color[root] != WHITE:
                continue
            color[root] = GRAY
            path = [root]
            pending = [iter(self.dependencies(root))]
            while pending:
                for neighbor in pending[-1]:
                    if color[neighbor] == GRAY:
                        return path[path.index(neighbor):] + [neighbor]
                    if color[neighbor] == WHITE:
                        color[neighbor] = GRAY
                        path.append(neighbor)
                        pending.append(iter(self.dependencies(neighbor)))
                        break
                else:
                    color[path.pop()] = BLACK
                    pending.pop()
        return None

    def validate(self) -> None:
        """Raise :class:`CycleDetectedError` unless the graph is acyclic."""
        cycle = self.find_cycle()
        if cycle:
            raise CycleDetectedError(cycle)

    def topological_order(self) -> list[str]:
        """
        Dependencies first, ties broken by insertion order (Kahn's algorithm).

        Raises:
            CycleDetectedError: If the graph has a cycle.
        """
        self.validate()
        in_degree = {n: len(self._deps[n]) for n in self._kinds}
        ready = deque(n for n in self._kinds if in_degree[n] == 0)
        result: list[str] = []
        while ready:
            node = ready.popleft()
            result.append(node)
            for dependent in self.dependents(node):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    ready.append(dependent)
        return result

    def to_dict(self) -> dict[str, dict[str, object]]:
        return {
            n: {"kind": k.value, "dependencies": self.dependencies(n)}
            for n, k in self._kinds.items()
        }


__all__ = ["DependencyGraph", "NodeKind"]
