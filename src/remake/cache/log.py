"""Flat fingerprint log of a cache, for diffing two runs line by line."""

from __future__ import annotations

import csv
import io
from pathlib import Path

from remake.cache.store import TargetCache
from remake.core.logging import get_logger

logger = get_logger(__name__)

CACHE_LOG_COLUMNS = ("name", "type", "hash")


def cache_log(cache: TargetCache) -> list[dict[str, str]]:
    """One row per tracked name with its current fingerprint, sorted by name."""
    rows = []
    for meta in cache.metas():
        rows.append({"name": meta.name, "type": meta.kind, "hash": meta.value_hash or ""})
    rows.sort(key=lambda row: (row["name"], row["type"]))
    return rows


def format_cache_log(rows: list[dict[str, str]]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CACHE_LOG_COLUMNS, lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def write_cache_log(cache: TargetCache, path: str | Path) -> Path:
    """Write :func:`cache_log` to ``path`` as CSV with a ``name,type,hash`` header."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = cache_log(cache)
    path.write_text(format_cache_log(rows), encoding="utf-8")
    logger.debug("cache.log_written", path=str(path), rows=len(rows))
    return path


__all__ = ["CACHE_LOG_COLUMNS", "cache_log", "format_cache_log", "write_cache_log"]
