"""
remake - reproducible, make-like workflows for Python.

A plan is an ordered table of targets; each target has a command (Python
source) whose dependencies are found by static analysis. ``make`` builds
only what is outdated and records values and fingerprints in a cache::

    from remake import make, open_cache, plan, readd

    my_plan = plan(
        raw="load_data(file_in('data.csv'))",
        model="fit(raw)",
        summary="summarize(model)",
    )
    report = make(my_plan, env=globals(), cache=open_cache(".remake"))
    readd("summary", open_cache(".remake"))
"""

__version__ = "0.1.0"

from remake.cache import BuildMeta, TargetCache, new_cache, open_cache  # noqa: E402
from remake.core.config import MakeOptions, RemakeSettings, load_settings  # noqa: E402
from remake.core.errors import (  # noqa: E402
    AnalysisError,
    CacheError,
    ConfigError,
    CycleDetectedError,
    RemakeError,
    TargetTimeoutError,
)
from remake.core.logging import configure_logging, get_logger  # noqa: E402
from remake.execution import FailurePolicy, RunReport, TargetStatus, make  # noqa: E402
from remake.graph import BuildConfig, build_config  # noqa: E402
from remake.plan import (  # noqa: E402
    Plan,
    Trigger,
    evaluate_plan,
    expand_plan,
    file_in,
    file_out,
    gather_plan,
    ignore,
    knitr_in,
    load_plan,
    no_deps,
    plan,
    target,
    trigger,
)
from remake.queries import (  # noqa: E402
    build_times,
    cache_log,
    cached,
    clean,
    deps_profile,
    diagnose,
    failed,
    loadd,
    missed,
    outdated,
    progress,
    readd,
    write_cache_log,
)

__all__ = [
    "__version__",
    "make",
    "RunReport",
    "TargetStatus",
    "FailurePolicy",
    "plan",
    "target",
    "Plan",
    "Trigger",
    "trigger",
    "load_plan",
    "evaluate_plan",
    "expand_plan",
    "gather_plan",
    "file_in",
    "file_out",
    "knitr_in",
    "ignore",
    "no_deps",
    "build_config",
    "BuildConfig",
    "open_cache",
    "new_cache",
    "TargetCache",
    "BuildMeta",
    "MakeOptions",
    "RemakeSettings",
    "load_settings",
    "configure_logging",
    "get_logger",
    "cached",
    "readd",
    "loadd",
    "diagnose",
    "outdated",
    "missed",
    "cache_log",
    "write_cache_log",
    "clean",
    "progress",
    "failed",
    "build_times",
    "deps_profile",
    "RemakeError",
    "ConfigError",
    "AnalysisError",
    "CacheError",
    "CycleDetectedError",
    "TargetTimeoutError",
]
