"""Run options, settings, and option-combination validation.

Manifesto:
    A run is described by a handful of pluggable choices (cache backend,
    worker model, caching mode, memory strategy, failure policy). Each
    choice is an enum, combinations are validated in one place, and the
    engine receives them as an explicit :class:`MakeOptions` value.

Quick start::

    from remake.core.config import load_settings

    settings = load_settings()
    options = settings.to_options(jobs=4)

Architecture::

    components.py     Option enums + validate_component_combination()
    options.py        MakeOptions (frozen, explicit per-run options)
    settings.py       RemakeSettings (pydantic-settings) + load_settings()

Guardrails:
    ❌ Reading REMAKE_* variables deep inside the scheduler
    ✅ ``load_settings().to_options()`` at the edge, then pass it down

Tags:
    remake, configuration, settings, pydantic

Doc-Types:
    package-overview, module-index
"""

from .components import (
    CacheBackendKind,
    CachingMode,
    ComponentWarning,
    FailurePolicy,
    MemoryStrategy,
    Parallelism,
    validate_component_combination,
)
from .options import MakeOptions
from .settings import RemakeSettings, load_settings

__all__ = [
    "CacheBackendKind",
    "CachingMode",
    "ComponentWarning",
    "FailurePolicy",
    "MemoryStrategy",
    "Parallelism",
    "validate_component_combination",
    "MakeOptions",
    "RemakeSettings",
    "load_settings",
]
