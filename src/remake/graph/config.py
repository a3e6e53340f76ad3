"""
Config resolver: plan + environment + options → immutable build config.

``build_config`` is the only place where names meet objects. Every free
name found by the analyzer is resolved, in order, against:

    1. the plan's targets               → target dependency
    2. the environment mapping          → import
    3. the referencing function's module globals (nested names only)
    4. builtins / modules               → ignored
    5. nowhere                          → missing import

Manifesto:
    Configuration problems are fatal and found before anything builds:
    duplicate names (already rejected by :class:`Plan`), cycles, two
    targets writing one file, ill-typed overrides. Analysis problems are
    not: the affected target keeps an ``analysis_error`` and is treated
    as always outdated.

Architecture:
    ::

        build_config(plan, env, options)
          │
          ├─ per target: Command.parse ─► analyze_code ─► CodeDependencies
          │              trigger condition/change commands likewise
          ├─ resolve names ─► targets / ImportSpec (recursive into functions)
          ├─ file_out producers ─► edges from file_in consumers
          ├─ DependencyGraph.validate()        (CycleDetectedError)
          └─ BuildConfig (frozen)

Tags:
    config, resolver, dependency-graph, imports, remake

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import builtins
import inspect
import os
import types
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, NamedTuple

from remake.analysis.analyzer import (
    EMPTY_DEPENDENCIES,
    CodeDependencies,
    analyze_code,
    analyze_function,
    function_code_text,
    is_analyzable,
    is_library_object,
)
from remake.analysis.commands import Command
from remake.core.config.options import MakeOptions
from remake.core.errors import AnalysisError, PlanValidationError
from remake.core.logging import get_logger
from remake.graph.dag import DependencyGraph, NodeKind
from remake.plan.models import Plan, TargetDef
from remake.plan.triggers import DEFAULT_TRIGGER, Trigger

logger = get_logger(__name__)

_BUILTINS = frozenset(dir(builtins))


@dataclass(frozen=True)
class ImportSpec:
    """
    A non-target object a target depends on.

    Attributes:
        name: Name the object was found under.
        kind: ``"function"`` (user code, analyzed), ``"library"``
            (fingerprinted by identity) or ``"object"`` (fingerprinted by value).
        value: The object itself.
        code_text: Normalized code for ``function`` imports.
        identity: ``module.qualname`` for ``library`` imports.
        imports: Names of imports this function refers to.
    """

    name: str
    kind: str
    value: Any = field(repr=False, compare=False)
    code_text: str | None = field(default=None, repr=False)
    identity: str | None = None
    imports: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResolvedTarget:
    """A plan row with its analysis, resolved dependencies and effective limits."""

    name: str
    index: int
    command: Command
    trigger: Trigger
    elapsed: float | None
    cpu: float | None
    retries: int
    code_deps: CodeDependencies
    target_deps: tuple[str, ...]
    import_deps: tuple[str, ...]
    condition: Command | None = None
    change: Command | None = None
    analysis_error: str | None = None

    @property
    def dependencies(self) -> tuple[str, ...]:
        return self.target_deps + self.import_deps

    @property
    def file_in(self) -> tuple[str, ...]:
        return tuple(sorted(self.code_deps.input_files))

    @property
    def file_out(self) -> tuple[str, ...]:
        return tuple(sorted(self.code_deps.file_out))

    @property
    def max_attempts(self) -> int:
        return self.retries + 1


@dataclass(frozen=True)
class BuildConfig:
    """Everything a run needs, resolved once and never mutated."""

    plan: Plan
    env: Mapping[str, Any] = field(repr=False)
    options: MakeOptions
    graph: DependencyGraph = field(repr=False)
    targets: Mapping[str, ResolvedTarget]
    imports: Mapping[str, ImportSpec]
    missing: tuple[str, ...]

    def target(self, name: str) -> ResolvedTarget:
        """
        The resolved target called ``name``.

        Raises:
            PlanValidationError: If the plan has no such target.
        """
        try:
            return self.targets[name]
        except KeyError:
            raise PlanValidationError(f"Unknown target: {name}", field_name="target") from None

    def selected_targets(self) -> list[str]:
        """Targets this run should consider, in plan order."""
        wanted = self.options.targets
        if wanted is None:
            return list(self.targets)
        unknown = [n for n in wanted if n not in self.targets]
        if unknown:
            raise PlanValidationError(f"Unknown targets requested: {', '.join(unknown)}", field_name="targets")
        needed = set(wanted) | set(self.graph.upstream(*wanted))
        return [n for n in self.targets if n in needed]


class _Resolver:
    """Resolve names to targets/imports, descending into user functions."""

    def __init__(self, target_names: set[str], env: Mapping[str, Any], graph: DependencyGraph):
        self.target_names = target_names
        self.env = env
        self.graph = graph
        self.imports: dict[str, ImportSpec] = {}
        self.missing: set[str] = set()
        self._visiting: set[str] = set()

    def _lookup(self, name: str, scopes: tuple[Mapping[str, Any], ...]) -> tuple[bool, Any]:
        for scope in scopes:
            if name in scope:
                return True, scope[name]
        return False, None

    def _classify(
        self, names: frozenset[str] | set[str], scopes: tuple[Mapping[str, Any], ...], *, allow_targets: bool
    ) -> tuple[list[str], list[tuple[str, Any]]]:
        targets: list[str] = []
        found_imports: list[tuple[str, Any]] = []
        for name in sorted(names):
            if name in self.target_names:
                # Function bodies cannot see target values.
                if allow_targets:
                    targets.append(name)
                continue
            found, value = self._lookup(name, scopes)
            if not found:
                if name not in _BUILTINS:
                    self.missing.add(name)
                continue
            if isinstance(value, types.ModuleType):
                continue
            if name in _BUILTINS and getattr(builtins, name, None) is value:
                continue
            found_imports.append((name, value))
        return targets, found_imports

    def resolve_names(
        self, names: frozenset[str] | set[str], scopes: tuple[Mapping[str, Any], ...], *, allow_targets: bool
    ) -> tuple[list[str], list[str]]:
        """Split ``names`` into (targets, imports); record missing ones."""
        targets, found_imports = self._classify(names, scopes, allow_targets=allow_targets)
        for name, value in found_imports:
            self.add_import(name, value)
        return targets, [name for name, _ in found_imports]

    def add_import(self, name: str, value: Any) -> None:
        """Add ``name`` and, depth first, every import its body reaches."""
        first = self._enter(name, value)
        stack = [first] if first is not None else []
        while stack:
            pending = stack[-1]
            if pending.todo:
                child = self._enter(*pending.todo.pop())
                if child is not None:
                    stack.append(child)
                continue
            stack.pop()
            self._finish(pending)

    def _enter(self, name: str, value: Any) -> _PendingImport | None:
        if name in self.imports or name in self._visiting:
            return None
        self.graph.add_node(name, NodeKind.IMPORT)
        if not is_analyzable(value):
            self.imports[name] = ImportSpec(name=name, kind="object", value=value)
            return None
        if is_library_object(value):
            identity = f"{getattr(value, '__module__', '?')}.{getattr(value, '__qualname__', name)}"
            self.imports[name] = ImportSpec(name=name, kind="library", value=value, identity=identity)
            return None

        try:
            deps = analyze_function(value)
            code_text = function_code_text(value)
        except AnalysisError as exc:
            logger.warning("config.import_unanalyzable", name=name, error=str(exc))
            self.imports[name] = ImportSpec(name=name, kind="object", value=value)
            return None
        self._visiting.add(name)
        unwrapped = inspect.unwrap(value)
        module_globals = getattr(unwrapped, "__globals__", None)
        if module_globals is None:
            module = inspect.getmodule(unwrapped)
            module_globals = vars(module) if module is not None else {}
        _, found_imports = self._classify(deps.globals, (self.env, module_globals), allow_targets=False)
        return _PendingImport(
            name=name,
            value=value,
            code_text=code_text,
            nested=[n for n, _ in found_imports],
            todo=found_imports[::-1],
        )

    def _finish(self, pending: _PendingImport) -> None:
        name = pending.name
        self._visiting.discard(name)
        self.imports[name] = ImportSpec(
            name=name,
            kind="function",
            value=pending.value,
            code_text=pending.code_text,
            imports=tuple(pending.nested),
        )
        for dep in pending.nested:
            # Mutual recursion between helpers folds into fingerprints, not edges.
            if dep != name and name not in self.graph.upstream(dep):
                self.graph.add_dependency(name, dep)


@dataclass
class _PendingImport:
    """A function import whose nested imports are still being added."""

    name: str
    value: Any
    code_text: str
    nested: list[str]
    todo: list[tuple[str, Any]]


class _Analysis(NamedTuple):
    command: Command
    deps: CodeDependencies
    error: str | None
    target_deps: list[str]
    import_deps: list[str]
    condition: Command | None
    change: Command | None


def _parse_trigger_command(text: bool | str | None) -> Command | None:
    if isinstance(text, str):
        return Command.parse(text)
    return None


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _analyze_target(definition: TargetDef, resolver: _Resolver, plan: Plan) -> _Analysis:
    command = Command.parse(definition.command)
    trig = definition.trigger or DEFAULT_TRIGGER
    condition = _parse_trigger_command(trig.condition)
    change = _parse_trigger_command(trig.change)
    error: str | None = None
    try:
        deps = analyze_code(command)
    except AnalysisError as exc:
        error = exc.message
        deps = EMPTY_DEPENDENCIES
        logger.warning("config.analysis_failed", target=definition.name, error=error)

    names = set(deps.globals)
    for extra in (condition, change):
        if extra is None:
            continue
        try:
            names |= analyze_code(extra).globals
        except AnalysisError as exc:
            error = error or f"trigger: {exc.message}"
            logger.warning("config.trigger_analysis_failed", target=definition.name, error=exc.message)

    target_deps, import_deps = resolver.resolve_names(names, (resolver.env,), allow_targets=True)
    for ref in sorted(deps.target_refs):
        if ref in plan:
            target_deps.append(ref)
        else:
            resolver.missing.add(ref)
    return _Analysis(command, deps, error, target_deps, import_deps, condition, change)


def _file_producers(analyzed: Mapping[str, _Analysis]) -> dict[str, str]:
    producers: dict[str, str] = {}
    for name, analysis in analyzed.items():
        for path in analysis.deps.file_out:
            key = os.path.normpath(path)
            if key in producers and producers[key] != name:
                raise PlanValidationError(
                    f"Targets '{producers[key]}' and '{name}' both declare file_out('{path}')",
                    field_name="command",
                )
            producers[key] = name
    return producers


def build_config(
    plan: Plan,
    env: Mapping[str, Any] | None = None,
    options: MakeOptions | None = None,
) -> BuildConfig:
    """
    Resolve ``plan`` against ``env`` into an immutable :class:`BuildConfig`.

    Args:
        plan: Validated plan.
        env: Names available to commands (e.g. a module's ``globals()``).
            Copied; later changes to the mapping do not affect the config.
        options: Run options supplying default limits and retries.

    Raises:
        CycleDetectedError: The targets depend on each other in a loop.
        PlanValidationError: Two targets declare the same output file.
    """
    options = options or MakeOptions()
    env_snapshot = dict(env or {})
    graph = DependencyGraph()
    for definition in plan:
        graph.add_node(definition.name, NodeKind.TARGET)

    resolver = _Resolver(set(plan.names), env_snapshot, graph)
    analyzed = {d.name: _analyze_target(d, resolver, plan) for d in plan}
    producers = _file_producers(analyzed)

    targets: dict[str, ResolvedTarget] = {}
    for definition in plan:
        analysis = analyzed[definition.name]
        target_deps = list(analysis.target_deps)
        for path in analysis.deps.input_files:
            producer = producers.get(os.path.normpath(path))
            if producer is not None:
                target_deps.append(producer)
        target_deps = sorted(set(target_deps) - {definition.name}, key=plan.index)
        import_deps = sorted(set(analysis.import_deps))
        for dep in target_deps + import_deps:
            graph.add_dependency(definition.name, dep)

        targets[definition.name] = ResolvedTarget(
            name=definition.name,
            index=plan.index(definition.name),
            command=analysis.command,
            trigger=definition.trigger or DEFAULT_TRIGGER,
            elapsed=_first(definition.elapsed, definition.timeout, options.elapsed, options.timeout),
            cpu=_first(definition.cpu, definition.timeout, options.cpu, options.timeout),
            retries=_first(definition.retries, options.retries),
            code_deps=analysis.deps,
            target_deps=tuple(target_deps),
            import_deps=tuple(import_deps),
            condition=analysis.condition,
            change=analysis.change,
            analysis_error=analysis.error,
        )

    graph.validate()

    missing = tuple(sorted(resolver.missing))
    if missing:
        logger.warning("config.missing_imports", names=list(missing))
    logger.debug(
        "config.built",
        targets=len(targets),
        imports=len(resolver.imports),
        edges=len(graph.edges()),
    )
    return BuildConfig(
        plan=plan,
        env=MappingProxyType(env_snapshot),
        options=options,
        graph=graph,
        targets=MappingProxyType(targets),
        imports=MappingProxyType(dict(resolver.imports)),
        missing=missing,
    )


__all__ = ["BuildConfig", "ResolvedTarget", "ImportSpec", "build_config"]
