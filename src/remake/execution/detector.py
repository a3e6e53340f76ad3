"""
Change detection: is a target outdated?

Manifesto:
    A target is rebuilt only for a reason that can be named. The detector
    recomputes the target's current fingerprints and compares them with
    the ones recorded in the cache when it was last built:

    - ``command``  standardized command text (``ignore(...)`` stripped)
    - ``depend``   name → fingerprint of every target and import it uses
    - ``file``     content of ``file_in``/``knitr_in`` inputs, ``file_out`` outputs
    - ``change``   fingerprint of the value of a user ``change`` expression

    Dependency targets contribute the ``value_hash`` already recorded in
    their metadata; they are never re-hashed. Imports are fingerprinted
    once per run by :func:`fingerprint_imports`.

    With nothing changed, no reason is reported, so a second run of an
    unchanged plan builds nothing.

Architecture:
    ::

        ChangeDetector(config, cache, import_fingerprints)
          assess(name, load) → Assessment(reasons, fingerprints)
            │
            ├─ analysis error / never built / failed last time → outdated
            ├─ condition trigger (whitelist | blacklist | condition)
            ├─ command / depend / file / change comparisons
            └─ Fingerprints → recorded with the next build

Tags:
    change-detection, fingerprints, triggers, outdated, remake

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from remake.analysis.commands import Command
from remake.cache.store import BuildMeta, TargetCache
from remake.core.hashing import combine_hashes, combine_named, hash_text, hash_value
from remake.core.logging import get_logger
from remake.graph.config import BuildConfig, ImportSpec, ResolvedTarget
from remake.plan.markers import runtime_markers
from remake.plan.triggers import TriggerMode

logger = get_logger(__name__)


class OutdatedReason(str, Enum):
    """Why a target needs building."""

    MISSING = "missing"  # never built, or value gone from the cache
    FAILED = "failed"  # last build failed
    ANALYSIS_ERROR = "analysis_error"  # dependencies unknown
    CONDITION = "condition"  # condition trigger fired
    COMMAND = "command"
    DEPEND = "depend"
    FILE = "file"
    CHANGE = "change"
    TRIGGER_ERROR = "trigger_error"  # condition/change expression raised
    UPSTREAM = "upstream"  # a dependency is outdated (queries only)


# =============================================================================
# IMPORT FINGERPRINTS
# =============================================================================


def _own_hash(spec: ImportSpec, algorithm: str) -> str:
    if spec.kind == "function":
        return hash_text(f"function:{spec.code_text}", algorithm)
    if spec.kind == "library":
        return hash_text(f"library:{spec.identity}", algorithm)
    try:
        return hash_value(spec.value, algorithm)
    except Exception as exc:
        # Unpicklable objects fall back to their type and repr.
        logger.debug("detector.object_unhashable", name=spec.name, error=str(exc))
        kind = type(spec.value)
        return hash_text(f"object:{kind.__module__}.{kind.__qualname__}:{spec.value!r}", algorithm)


def fingerprint_imports(
    config: BuildConfig,
    algorithm: str,
    names: list[str] | None = None,
) -> dict[str, str]:
    """
    Fingerprint the imports of ``config``.

    A function's fingerprint covers its own normalized code and the code
    of every import reachable from it, so editing a nested helper changes
    the fingerprint of each function that calls it, directly or not.
    Mutually recursive helpers are handled by collecting the reachable set
    first.
    """
    wanted = sorted(config.imports) if names is None else sorted(n for n in names if n in config.imports)
    own = {name: _own_hash(spec, algorithm) for name, spec in config.imports.items()}
    fingerprints: dict[str, str] = {}
    for name in wanted:
        reachable: set[str] = set()
        stack = list(config.imports[name].imports)
        while stack:
            dep = stack.pop()
            if dep == name or dep in reachable or dep not in config.imports:
                continue
            reachable.add(dep)
            stack.extend(config.imports[dep].imports)
        if not reachable:
            fingerprints[name] = own[name]
            continue
        nested = combine_named({dep: own[dep] for dep in reachable}, algorithm)
        fingerprints[name] = combine_hashes(own[name], nested, algorithm=algorithm)
    return fingerprints


# =============================================================================
# DETECTOR
# =============================================================================


@dataclass
class Fingerprints:
    """Current fingerprints of a target, recorded with its next build."""

    command_hash: str | None = None
    depend_hash: str | None = None
    input_file_hash: str | None = None
    change_hash: str | None = None
    dependency_hashes: dict[str, str] = field(default_factory=dict)
    file_in: dict[str, str | None] = field(default_factory=dict)

    def to_meta_fields(self) -> dict[str, Any]:
        return {
            "command_hash": self.command_hash,
            "depend_hash": self.depend_hash,
            "input_file_hash": self.input_file_hash,
            "change_hash": self.change_hash,
            "dependency_hashes": dict(self.dependency_hashes),
            "file_in": dict(self.file_in),
        }


@dataclass
class Assessment:
    name: str
    reasons: list[OutdatedReason]
    fingerprints: Fingerprints
    previous: BuildMeta | None = None

    @property
    def outdated(self) -> bool:
        return bool(self.reasons)

    def meta_base(self) -> dict[str, Any]:
        """Fields the builder merges into the new :class:`BuildMeta`."""
        base = self.fingerprints.to_meta_fields()
        base["previous_value_hash"] = self.previous.value_hash if self.previous else None
        base["output_file_hash"] = self.previous.output_file_hash if self.previous else None
        return base


Loader = Callable[[str], Any]


class ChangeDetector:
    """Compare a target's current fingerprints with its cached ones."""

    def __init__(
        self,
        config: BuildConfig,
        cache: TargetCache,
        import_fingerprints: Mapping[str, str] | None = None,
    ):
        self.config = config
        self.cache = cache
        self.algorithm = cache.algorithm
        if import_fingerprints is None:
            import_fingerprints = fingerprint_imports(config, self.algorithm)
        self.import_fingerprints = dict(import_fingerprints)

    # ── Fingerprints ─────────────────────────────────────────────

    def dependency_hashes(self, target: ResolvedTarget) -> dict[str, str]:
        hashes: dict[str, str] = {}
        for dep in target.target_deps:
            meta = self.cache.meta_or_none(dep)
            hashes[dep] = (meta.value_hash if meta else None) or ""
        for dep in target.import_deps:
            hashes[dep] = self.import_fingerprints.get(dep, "")
        return hashes

    def _namespace(self, target: ResolvedTarget, load: Loader) -> dict[str, Any]:
        values = {dep: load(dep) for dep in target.target_deps}
        return {**self.config.env, **values, **runtime_markers(values)}

    def _evaluate(self, command: Command, target: ResolvedTarget, load: Loader) -> Any:
        return command.evaluate(self._namespace(target, load), name=f"{target.name}:trigger")

    def fingerprints(self, target: ResolvedTarget, load: Loader | None = None) -> Fingerprints:
        """Current fingerprints; ``change`` is evaluated only when ``load`` is given."""
        current = Fingerprints()
        if target.command.ok:
            current.command_hash = hash_text(target.command.standardized, self.algorithm)
        current.dependency_hashes = self.dependency_hashes(target)
        current.depend_hash = combine_named(current.dependency_hashes, self.algorithm)
        if target.file_in:
            current.file_in = {path: self.cache.hash_file(path) for path in target.file_in}
            current.input_file_hash = combine_named(
                {path: h or "" for path, h in current.file_in.items()}, self.algorithm
            )
        if target.change is not None and load is not None:
            current.change_hash = hash_value(self._evaluate(target.change, target, load), self.algorithm)
        return current

    def _outputs_changed(self, target: ResolvedTarget, previous: BuildMeta) -> bool:
        for path in target.file_out:
            current = self.cache.hash_file(path)
            if current is None or current != previous.file_out.get(path):
                return True
        return False

    # ── Verdict ──────────────────────────────────────────────────

    def _condition(self, target: ResolvedTarget, load: Loader) -> bool:
        condition = target.trigger.condition
        if target.condition is not None:
            return bool(self._evaluate(target.condition, target, load))
        return bool(condition)

    def assess(self, name: str, load: Loader) -> Assessment:
        """
        Decide whether ``name`` is outdated.

        Args:
            name: Target name.
            load: Returns the value of a dependency target; used only to
                evaluate ``condition``/``change`` trigger expressions.
        """
        target = self.config.target(name)
        trig = target.trigger
        previous = self.cache.meta_or_none(name)
        reasons: list[OutdatedReason] = []

        try:
            current = self.fingerprints(target, load)
        except Exception as exc:
            logger.warning("detector.trigger_failed", target=name, trigger="change", error=str(exc))
            current = self.fingerprints(target)
            reasons.append(OutdatedReason.TRIGGER_ERROR)

        if target.analysis_error is not None:
            return Assessment(name, [OutdatedReason.ANALYSIS_ERROR], current, previous)
        if previous is None or not self.cache.has_value(name):
            if previous is not None and not previous.ok:
                return Assessment(name, [OutdatedReason.FAILED], current, previous)
            return Assessment(name, [OutdatedReason.MISSING], current, previous)
        if not previous.ok:
            return Assessment(name, [OutdatedReason.FAILED], current, previous)

        try:
            condition = self._condition(target, load)
        except Exception as exc:
            logger.warning("detector.trigger_failed", target=name, trigger="condition", error=str(exc))
            return Assessment(name, [*reasons, OutdatedReason.TRIGGER_ERROR], current, previous)

        if trig.mode == TriggerMode.CONDITION:
            return Assessment(name, [OutdatedReason.CONDITION] if condition else reasons, current, previous)
        if trig.mode == TriggerMode.BLACKLIST and not condition:
            return Assessment(name, [], current, previous)
        if trig.mode == TriggerMode.WHITELIST and condition:
            reasons.append(OutdatedReason.CONDITION)

        if trig.command and current.command_hash != previous.command_hash:
            reasons.append(OutdatedReason.COMMAND)
        if trig.depend and current.depend_hash != previous.depend_hash:
            reasons.append(OutdatedReason.DEPEND)
        if trig.file and (
            current.input_file_hash != previous.input_file_hash or self._outputs_changed(target, previous)
        ):
            reasons.append(OutdatedReason.FILE)
        if target.change is not None and OutdatedReason.TRIGGER_ERROR not in reasons:
            if current.change_hash != previous.change_hash:
                reasons.append(OutdatedReason.CHANGE)
        return Assessment(name, reasons, current, previous)

    def outdated(self, name: str, load: Loader) -> list[OutdatedReason]:
        return self.assess(name, load).reasons


__all__ = [
    "OutdatedReason",
    "Fingerprints",
    "Assessment",
    "ChangeDetector",
    "fingerprint_imports",
]
