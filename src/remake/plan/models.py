"""
Plan models.

A :class:`Plan` is an ordered table of :class:`TargetDef` rows. Each row
has a unique name, a command (Python source text), and optional
per-target overrides of the run-wide limits, retries and trigger.

Manifesto:
    Plans are values. They are built up-front, validated once, never
    mutated, and combined with ``+``. Every problem with a plan surfaces
    as a :class:`~remake.core.errors.ConfigError` before anything builds.

Architecture:
    ::

        plan(a="12", b=target("-a", retries=2))        keyword spelling
        Plan.from_records([{"target": "a", ...}])      table spelling
        load_plan("plan.yaml")                         YAML (loader.py)
                 │
                 ▼
        Plan(targets=(TargetDef, ...))
          - unique, identifier-shaped names
          - string commands
          - well-typed overrides (timeout, elapsed, cpu, retries, trigger)

Examples:
    >>> p = plan(a="12", b="-a")
    >>> p.names
    ('a', 'b')
    >>> p["b"].command
    '-a'

Tags:
    remake, plan, targets, validation

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import keyword
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from remake.core.errors import DuplicateTargetError, InvalidOverrideError, PlanValidationError
from remake.plan.markers import MARKER_NAMES
from remake.plan.triggers import Trigger, TriggerMode

OVERRIDE_COLUMNS = ("trigger", "timeout", "elapsed", "cpu", "retries")
PLAN_COLUMNS = ("target", "command") + OVERRIDE_COLUMNS


@dataclass(frozen=True)
class TargetDef:
    """One row of a plan.

    ``None`` overrides inherit the run-wide value from ``MakeOptions``.
    """

    name: str
    command: str
    trigger: Trigger | None = None
    timeout: float | None = None
    elapsed: float | None = None
    cpu: float | None = None
    retries: int | None = None
    description: str = ""
    tags: tuple[str, ...] = field(default_factory=tuple)

    def to_record(self) -> dict[str, Any]:
        return {
            "target": self.name,
            "command": self.command,
            "trigger": self.trigger,
            "timeout": self.timeout,
            "elapsed": self.elapsed,
            "cpu": self.cpu,
            "retries": self.retries,
        }


def _check_name(name: Any) -> str:
    if not isinstance(name, str) or not name:
        raise PlanValidationError(f"Target names must be non-empty strings, got {name!r}", field_name="target")
    if not name.isidentifier() or keyword.iskeyword(name):
        raise PlanValidationError(
            f"Target name '{name}' is not a valid Python identifier; commands refer to targets by name",
            field_name="target",
        )
    if name in MARKER_NAMES:
        raise PlanValidationError(f"Target name '{name}' is reserved for a command marker", field_name="target")
    return name


def _check_seconds(name: str, column: str, value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        raise InvalidOverrideError(name, column, value, "a positive number of seconds")
    return float(value)


def _check_retries(name: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidOverrideError(name, "retries", value, "a non-negative integer")
    return value


def _check_trigger(name: str, value: Any) -> Trigger | None:
    if value is None or isinstance(value, Trigger):
        return value
    if isinstance(value, Mapping):
        try:
            return Trigger(**dict(value))
        except (TypeError, ValueError) as exc:
            raise InvalidOverrideError(name, "trigger", dict(value), f"valid trigger fields ({exc})") from exc
    raise InvalidOverrideError(name, "trigger", value, "a Trigger or a mapping of trigger fields")


def validate_target(definition: TargetDef) -> TargetDef:
    """Return ``definition`` with normalized overrides, or raise a ConfigError."""
    name = _check_name(definition.name)
    if not isinstance(definition.command, str):
        raise PlanValidationError(
            f"Target '{name}': command must be Python source text, got {type(definition.command).__name__}",
            field_name="command",
        )
    return replace(
        definition,
        trigger=_check_trigger(name, definition.trigger),
        timeout=_check_seconds(name, "timeout", definition.timeout),
        elapsed=_check_seconds(name, "elapsed", definition.elapsed),
        cpu=_check_seconds(name, "cpu", definition.cpu),
        retries=_check_retries(name, definition.retries),
        tags=tuple(definition.tags),
    )


class Plan:
    """An immutable, ordered, validated table of targets."""

    __slots__ = ("_targets", "_index")

    def __init__(self, targets: Iterable[TargetDef] = ()):
        rows = tuple(validate_target(t) for t in targets)
        names = [t.name for t in rows]
        duplicates = [n for n in names if names.count(n) > 1]
        if duplicates:
            raise DuplicateTargetError(duplicates)
        self._targets = rows
        self._index = {t.name: i for i, t in enumerate(rows)}

    # ── Construction ─────────────────────────────────────────────

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> Plan:
        """Build a plan from row mappings with ``target`` and ``command`` columns.

        Optional columns: ``trigger``, ``timeout``, ``elapsed``, ``cpu``,
        ``retries``. Unknown columns are a configuration error.
        """
        rows = []
        for i, record in enumerate(records):
            unknown = set(record) - set(PLAN_COLUMNS)
            if unknown:
                raise PlanValidationError(
                    f"Plan row {i}: unknown columns {sorted(unknown)}; allowed: {', '.join(PLAN_COLUMNS)}",
                    field_name=sorted(unknown)[0],
                )
            for required in ("target", "command"):
                if required not in record:
                    raise PlanValidationError(f"Plan row {i}: missing '{required}' column", field_name=required)
            rows.append(
                TargetDef(
                    name=record["target"],
                    command=record["command"],
                    **{col: record.get(col) for col in OVERRIDE_COLUMNS},
                )
            )
        return cls(rows)

    # ── Access ───────────────────────────────────────────────────

    @property
    def targets(self) -> tuple[TargetDef, ...]:
        return self._targets

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(t.name for t in self._targets)

    def index(self, name: str) -> int:
        """Position of ``name`` in the plan (used as the dispatch tie-break)."""
        return self._index[name]

    def get(self, name: str) -> TargetDef | None:
        i = self._index.get(name)
        return None if i is None else self._targets[i]

    def __getitem__(self, name: str) -> TargetDef:
        try:
            return self._targets[self._index[name]]
        except KeyError:
            raise KeyError(f"No target named '{name}' in plan") from None

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __iter__(self) -> Iterator[TargetDef]:
        return iter(self._targets)

    def __len__(self) -> int:
        return len(self._targets)

    def __add__(self, other: Plan) -> Plan:
        if not isinstance(other, Plan):
            return NotImplemented
        return Plan(self._targets + other._targets)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Plan) and self._targets == other._targets

    def __hash__(self) -> int:
        return hash(self._targets)

    def __repr__(self) -> str:
        return f"Plan({', '.join(self.names)})"

    def to_records(self) -> list[dict[str, Any]]:
        return [t.to_record() for t in self._targets]

    def select(self, names: Iterable[str]) -> Plan:
        """Sub-plan with only ``names``, in plan order."""
        wanted = set(names)
        missing = wanted - set(self._index)
        if missing:
            raise PlanValidationError(f"Unknown targets: {', '.join(sorted(missing))}", field_name="target")
        return Plan(t for t in self._targets if t.name in wanted)


def target(
    command: str,
    *,
    trigger: Trigger | Mapping[str, Any] | None = None,
    timeout: float | None = None,
    elapsed: float | None = None,
    cpu: float | None = None,
    retries: int | None = None,
    description: str = "",
    tags: Iterable[str] = (),
) -> TargetDef:
    """Describe a target with overrides; the name comes from :func:`plan`."""
    return TargetDef(
        name="",
        command=command,
        trigger=trigger,  # type: ignore[arg-type]
        timeout=timeout,
        elapsed=elapsed,
        cpu=cpu,
        retries=retries,
        description=description,
        tags=tuple(tags),
    )


def plan(*plans: Plan, **targets: str | TargetDef) -> Plan:
    """
    Build a plan from keyword arguments (and optionally existing plans).

    Each keyword is a target name; its value is command text or the
    result of :func:`target`. Keyword order is plan order.

    Example::

        p = plan(
            a="12",
            b="negate(a)",
            checked=target("check(b)", retries=1),
        )
    """
    rows: list[TargetDef] = []
    for existing in plans:
        rows.extend(existing.targets)
    for name, value in targets.items():
        if isinstance(value, TargetDef):
            rows.append(replace(value, name=name))
        else:
            rows.append(TargetDef(name=name, command=value))
    return Plan(rows)


__all__ = [
    "Plan",
    "TargetDef",
    "Trigger",
    "TriggerMode",
    "OVERRIDE_COLUMNS",
    "PLAN_COLUMNS",
    "plan",
    "target",
    "validate_target",
]
