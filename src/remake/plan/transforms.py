"""
Plan transforms: generate many targets from a few templates.

    evaluate_plan   substitute a wildcard token, one target per value
    expand_plan     copy every target once per value
    gather_plan     add one target collecting other targets into a list/dict
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import Any

from remake.core.errors import PlanValidationError
from remake.plan.models import Plan, TargetDef

_NON_IDENT = re.compile(r"\W+")


def _suffix(value: Any) -> str:
    text = _NON_IDENT.sub("_", str(value)).strip("_")
    if not text:
        raise PlanValidationError(f"Value {value!r} cannot be used as a target-name suffix")
    return text


def _literal(value: Any) -> str:
    """Source text for ``value`` inside a command."""
    if isinstance(value, str):
        return value
    return repr(value)


def evaluate_plan(plan: Plan, wildcard: str, values: Sequence[Any]) -> Plan:
    """
    Replace ``wildcard`` in commands with each of ``values``.

    Every target whose command contains ``wildcard`` becomes one target per
    value, named ``<name>_<value>``; other targets are kept unchanged.
    String values are substituted as raw source text, anything else via
    ``repr``.

    Example::

        evaluate_plan(plan(m="fit(data, k=K__)"), "K__", [1, 2])
        # m_1: fit(data, k=1)    m_2: fit(data, k=2)
    """
    if not wildcard:
        raise PlanValidationError("wildcard must be a non-empty string", field_name="wildcard")
    if not values:
        raise PlanValidationError("values must not be empty", field_name="values")
    rows: list[TargetDef] = []
    for definition in plan:
        if wildcard not in definition.command:
            rows.append(definition)
            continue
        for value in values:
            rows.append(
                replace(
                    definition,
                    name=f"{definition.name}_{_suffix(value)}",
                    command=definition.command.replace(wildcard, _literal(value)),
                )
            )
    return Plan(rows)


def expand_plan(plan: Plan, values: Sequence[Any]) -> Plan:
    """Copy each target once per value, named ``<name>_<value>``."""
    if not values:
        raise PlanValidationError("values must not be empty", field_name="values")
    return Plan(
        replace(definition, name=f"{definition.name}_{_suffix(value)}")
        for definition in plan
        for value in values
    )


def gather_plan(plan: Plan, target: str = "target", gather: str = "list", *, names: Iterable[str] | None = None) -> Plan:
    """
    Return ``plan`` plus one target combining its targets.

    ``gather="list"`` builds ``[a, b, ...]``; ``gather="dict"`` builds
    ``{"a": a, "b": b, ...}``. ``names`` restricts which targets are gathered.
    """
    members = list(names) if names is not None else list(plan.names)
    unknown = [n for n in members if n not in plan]
    if unknown:
        raise PlanValidationError(f"Cannot gather unknown targets: {', '.join(unknown)}", field_name="target")
    if gather == "list":
        command = "[" + ", ".join(members) + "]"
    elif gather == "dict":
        command = "{" + ", ".join(f"{n!r}: {n}" for n in members) + "}"
    else:
        raise PlanValidationError(f"gather must be 'list' or 'dict', got {gather!r}", field_name="gather")
    return plan + Plan([TargetDef(name=target, command=command)])


__all__ = ["evaluate_plan", "expand_plan", "gather_plan"]
