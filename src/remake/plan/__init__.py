"""Plans: ordered tables of targets, triggers, command markers, and YAML loading."""

from .loader import PlanSpec, TargetSpec, TriggerSpec, load_plan
from .markers import file_in, file_out, ignore, knitr_in, loadd, no_deps, readd
from .models import Plan, TargetDef, plan, target
from .transforms import evaluate_plan, expand_plan, gather_plan
from .triggers import Trigger, TriggerMode, trigger

__all__ = [
    "Plan",
    "TargetDef",
    "plan",
    "target",
    "Trigger",
    "TriggerMode",
    "trigger",
    "PlanSpec",
    "TargetSpec",
    "TriggerSpec",
    "load_plan",
    "evaluate_plan",
    "expand_plan",
    "gather_plan",
    "file_in",
    "file_out",
    "knitr_in",
    "ignore",
    "no_deps",
    "loadd",
    "readd",
]
