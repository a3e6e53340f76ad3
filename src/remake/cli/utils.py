"""
CLI helpers: loading settings, plans, environments and caches; output.
"""

from __future__ import annotations

import importlib
import importlib.util
import json
import sys
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from remake.cache.store import TargetCache, open_cache
from remake.core.config.settings import RemakeSettings, load_settings
from remake.core.errors import RemakeError
from remake.core.logging import configure_logging
from remake.graph.config import BuildConfig, build_config
from remake.plan.loader import load_plan

console = Console()
err_console = Console(stderr=True)

DEFAULT_PLAN_FILE = "remake.yaml"


# ── Loading ──────────────────────────────────────────────────────────────


def load_cli_settings(config: Path | None, **overrides: Any) -> RemakeSettings:
    """Settings for a CLI command, with logging configured from them."""
    settings = load_settings(config, **overrides)
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    return settings


def load_env(spec: str | None) -> dict[str, Any]:
    """
    Names commands may use, from a module path (``pkg.helpers``) or a
    Python file (``helpers.py``). Dunder names are left out.
    """
    if not spec:
        return {}
    path = Path(spec)
    if path.suffix == ".py" or path.exists():
        if not path.exists():
            raise typer.BadParameter(f"Environment file not found: {path}")
        name = path.stem
        module_spec = importlib.util.spec_from_file_location(name, path)
        if module_spec is None or module_spec.loader is None:
            raise typer.BadParameter(f"Cannot import {path}")
        module = importlib.util.module_from_spec(module_spec)
        # Registered so values of classes defined there can be pickled.
        sys.modules[name] = module
        module_spec.loader.exec_module(module)
    else:
        module = importlib.import_module(spec)
    return {k: v for k, v in vars(module).items() if not k.startswith("__")}


def open_settings_cache(settings: RemakeSettings, path: str | None = None) -> TargetCache:
    """Open the cache the settings point at (``path`` overrides ``cache_dir``)."""
    explicit = settings.model_fields_set
    return open_cache(
        path or settings.cache_dir,
        backend=settings.cache_backend if "cache_backend" in explicit else None,
        hash_algorithm=settings.hash_algorithm if "hash_algorithm" in explicit else None,
    )


def load_config(plan_file: Path, env_spec: str | None, settings: RemakeSettings, **overrides: Any) -> BuildConfig:
    plan = load_plan(plan_file)
    return build_config(plan, load_env(env_spec), settings.to_options(**overrides))


@contextmanager
def cli_errors() -> Iterator[None]:
    """Turn remake errors into a red message and exit code 1."""
    try:
        yield
    except RemakeError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
        raise typer.Exit(code=1) from exc


# ── Output ───────────────────────────────────────────────────────────────


def output_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def output_table(rows: Sequence[dict[str, Any]], *, title: str = "", columns: Sequence[str] | None = None) -> None:
    """Render rows of dicts as a rich table."""
    if not rows:
        console.print(f"[dim]{title + ': ' if title else ''}nothing to show[/dim]")
        return
    columns = list(columns or rows[0].keys())
    table = Table(title=title or None, show_lines=False)
    for column in columns:
        table.add_column(column, overflow="fold")
    for row in rows:
        table.add_row(*("" if row.get(c) is None else str(row.get(c)) for c in columns))
    console.print(table)


def output_names(names: Sequence[str], *, title: str, as_json: bool = False) -> None:
    if as_json:
        output_json(list(names))
        return
    output_table([{"name": n} for n in names], title=title)


__all__ = [
    "console",
    "err_console",
    "DEFAULT_PLAN_FILE",
    "load_cli_settings",
    "load_env",
    "open_settings_cache",
    "load_config",
    "cli_errors",
    "output_json",
    "output_table",
    "output_names",
]
