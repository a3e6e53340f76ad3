"""
Read-only questions about a cache, plus cleanup.

These are what reporting and visualization tools consume: which names
are tracked, what a target's value and metadata are, what is outdated,
which imports are missing, and a flat fingerprint log for diffing runs.

Every function takes the cache (and, where needed, the config)
explicitly. Only :func:`clean` writes.

Examples:
    >>> report = make(my_plan, env=globals(), cache=cache)
    >>> readd("model", cache)
    >>> diagnose("model", cache).error
    >>> outdated(build_config(my_plan, globals()), cache)
    []
"""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any

from remake.cache.log import cache_log, format_cache_log, write_cache_log
from remake.cache.store import STATUS_FAILED, BuildMeta, TargetCache
from remake.core.logging import get_logger
from remake.execution.detector import ChangeDetector, OutdatedReason
from remake.graph.config import BuildConfig

logger = get_logger(__name__)


def cached(cache: TargetCache, *, targets_only: bool = False) -> list[str]:
    """Tracked names, sorted. Imports are included unless ``targets_only``."""
    return cache.targets() if targets_only else cache.names()


def readd(name: str, cache: TargetCache) -> Any:
    """The stored value of target ``name``.

    Raises:
        KeyNotFoundError: If the target has no stored value.
    """
    return cache.get_value(name)


def loadd(
    *names: str,
    cache: TargetCache,
    namespace: MutableMapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Load target values (all targets with a value when no names are given).

    When ``namespace`` is given (e.g. ``globals()``), the values are also
    assigned into it.
    """
    wanted = names or tuple(n for n in cache.targets() if cache.has_value(n))
    values = {name: cache.get_value(name) for name in wanted}
    if namespace is not None:
        namespace.update(values)
    return values


def diagnose(name: str, cache: TargetCache) -> BuildMeta:
    """Build metadata of ``name``: status, error, warnings, messages, timing."""
    return cache.get_meta(name)


def outdated(config: BuildConfig, cache: TargetCache) -> list[str]:
    """
    Targets the next run would build, in dependency order.

    A target is outdated if the change detector says so or if any target
    it depends on is outdated.
    """
    return list(outdated_reasons(config, cache))


def outdated_reasons(config: BuildConfig, cache: TargetCache) -> dict[str, list[str]]:
    """Like :func:`outdated`, with the reasons for each target."""
    detector = ChangeDetector(config, cache)
    selected = set(config.selected_targets())
    order = [n for n in config.graph.topological_order() if n in selected]
    result: dict[str, list[str]] = {}
    for name in order:
        target = config.target(name)
        reasons = [r.value for r in detector.outdated(name, cache.get_value)]
        if any(dep in result for dep in target.target_deps):
            reasons.append(OutdatedReason.UPSTREAM.value)
        if reasons:
            result[name] = reasons
    return result


def missed(config: BuildConfig) -> list[str]:
    """Names commands refer to that neither the plan nor the environment defines."""
    return list(config.missing)


def progress(cache: TargetCache, *names: str) -> dict[str, str]:
    """Last recorded status (``running``/``succeeded``/``failed``) per target."""
    recorded = cache.progress()
    if not names:
        return recorded
    return {name: recorded[name] for name in names if name in recorded}


def failed(cache: TargetCache) -> list[str]:
    """Targets whose last build failed."""
    return sorted(name for name, status in cache.progress().items() if status == STATUS_FAILED)


def build_times(cache: TargetCache, *names: str) -> list[dict[str, Any]]:
    """Elapsed and CPU seconds and attempts of each target's last build."""
    rows = []
    for meta in cache.metas():
        if meta.kind != "target" or (names and meta.name not in names):
            continue
        rows.append(
            {
                "name": meta.name,
                "elapsed": meta.elapsed,
                "cpu": meta.cpu,
                "attempts": meta.attempts,
                "finished_at": meta.finished_at,
            }
        )
    return rows


def deps_profile(name: str, config: BuildConfig, cache: TargetCache) -> list[dict[str, Any]]:
    """
    Compare the fingerprints recorded for ``name`` with the current ones.

    Returns one row per fingerprint (``command``, ``depend``, ``file``,
    ``change``) plus one per dependency, each with the old and new hash and
    whether they differ.
    """
    detector = ChangeDetector(config, cache)
    target = config.target(name)
    previous = cache.meta_or_none(name) or BuildMeta(name=name)
    try:
        current = detector.fingerprints(target, cache.get_value)
    except Exception as exc:
        logger.debug("queries.change_unavailable", target=name, error=str(exc))
        current = detector.fingerprints(target)

    def row(label: str, old: str | None, new: str | None) -> dict[str, Any]:
        return {"hash": label, "old": old, "new": new, "changed": old != new}

    rows = [
        row("command", previous.command_hash, current.command_hash),
        row("depend", previous.depend_hash, current.depend_hash),
        row("file", previous.input_file_hash, current.input_file_hash),
        row("change", previous.change_hash, current.change_hash),
    ]
    for dep in sorted(set(previous.dependency_hashes) | set(current.dependency_hashes)):
        rows.append(
            row(f"depend:{dep}", previous.dependency_hashes.get(dep), current.dependency_hashes.get(dep))
        )
    return rows


def clean(*names: str, cache: TargetCache, destroy: bool = False) -> list[str]:
    """
    Remove cache entries for ``names`` (every entry when none are given).

    With ``destroy=True`` the storage itself is removed and the cache
    object must not be used afterwards.

    Returns:
        The names that were removed.
    """
    if destroy:
        removed = cache.names()
        cache.destroy()
        return removed
    if not names:
        removed = cache.names()
        cache.clear()
        return removed
    for name in names:
        cache.delete(name)
    logger.info("cache.cleaned", names=list(names))
    return list(names)


__all__ = [
    "cached",
    "readd",
    "loadd",
    "diagnose",
    "outdated",
    "outdated_reasons",
    "missed",
    "cache_log",
    "format_cache_log",
    "write_cache_log",
    "progress",
    "failed",
    "build_times",
    "deps_profile",
    "clean",
]
