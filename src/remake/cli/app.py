"""
Root Typer application for the remake CLI.

Every command takes the plan file, the environment (a module or Python
file defining the functions commands call), and the cache location; the
rest comes from ``REMAKE_*`` variables or ``remake.toml``.

Example::

    remake make -p plan.yaml -e helpers.py -j 4 --parallelism persistent
    remake outdated -p plan.yaml -e helpers.py
    remake diagnose model
    remake cache-log -o cache_log.csv
"""

from __future__ import annotations

from pathlib import Path

import typer

from remake import __version__
from remake.cli.utils import (
    DEFAULT_PLAN_FILE,
    cli_errors,
    console,
    load_cli_settings,
    load_config,
    open_settings_cache,
    output_json,
    output_names,
    output_table,
)
from remake.core.config.components import CachingMode, FailurePolicy, MemoryStrategy, Parallelism
from remake.execution.scheduler import make as run_make
from remake.queries import (
    build_times,
    cache_log,
    cached,
    clean,
    deps_profile,
    diagnose,
    format_cache_log,
    missed,
    outdated_reasons,
    progress,
    readd,
    write_cache_log,
)

app = typer.Typer(
    name="remake",
    help="remake - reproducible, make-like workflows for Python.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

PlanOption = typer.Option(Path(DEFAULT_PLAN_FILE), "--plan", "-p", help="Plan YAML file")
EnvOption = typer.Option(None, "--env", "-e", help="Module or .py file defining the environment")
ConfigOption = typer.Option(None, "--config", "-c", help="remake.toml settings file")
CacheOption = typer.Option(None, "--cache", help="Cache directory or sqlite file")
JsonOption = typer.Option(False, "--json", help="Print JSON instead of a table")


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"remake {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """remake CLI: build plans, inspect the cache, clean up."""


# ── Build ────────────────────────────────────────────────────────────────


@app.command("make")
def make_command(
    plan_file: Path = PlanOption,
    env: str | None = EnvOption,
    config: Path | None = ConfigOption,
    cache_path: str | None = CacheOption,
    targets: list[str] | None = typer.Option(None, "--target", "-t", help="Build only these targets"),
    jobs: int | None = typer.Option(None, "--jobs", "-j", min=1),
    parallelism: Parallelism | None = typer.Option(None, "--parallelism"),
    caching: CachingMode | None = typer.Option(None, "--caching"),
    memory_strategy: MemoryStrategy | None = typer.Option(None, "--memory-strategy"),
    on_failure: FailurePolicy | None = typer.Option(None, "--on-failure"),
    timeout: float | None = typer.Option(None, "--timeout"),
    retries: int | None = typer.Option(None, "--retries", min=0),
    cache_log_file: Path | None = typer.Option(None, "--cache-log", help="Write the cache log here"),
    json_out: bool = JsonOption,
) -> None:
    """Build every outdated target of the plan."""
    with cli_errors():
        settings = load_cli_settings(
            config,
            jobs=jobs,
            parallelism=parallelism,
            caching=caching,
            memory_strategy=memory_strategy,
            on_failure=on_failure,
            timeout=timeout,
            retries=retries,
        )
        build = load_config(
            plan_file,
            env,
            settings,
            targets=tuple(targets) if targets else None,
            cache_log_file=cache_log_file,
        )
        cache = None if settings.parallelism == Parallelism.HASTY else open_settings_cache(settings, cache_path)
        report = run_make(build, cache=cache)

    if json_out:
        output_json(report.to_dict())
    else:
        built = set(report.built)
        rows = [
            {
                "target": name,
                "status": status.value,
                "built": "yes" if name in built else "",
                "attempts": report.attempts.get(name, ""),
                "reasons": ", ".join(report.reasons.get(name, [])),
                "error": (report.errors.get(name) or {}).get("message", report.skipped_because.get(name, "")),
            }
            for name, status in report.status.items()
        ]
        output_table(rows, title=f"Run {report.run_id}")
        console.print(
            f"built {len(report.built)}, up to date {len(report.up_to_date)}, "
            f"failed {len(report.failed)}, skipped {len(report.skipped)}"
        )
    if report.failed:
        raise typer.Exit(code=1)


# ── Queries ──────────────────────────────────────────────────────────────


@app.command("outdated")
def outdated_command(
    plan_file: Path = PlanOption,
    env: str | None = EnvOption,
    config: Path | None = ConfigOption,
    cache_path: str | None = CacheOption,
    json_out: bool = JsonOption,
) -> None:
    """List targets the next run would build, with the reasons."""
    with cli_errors():
        settings = load_cli_settings(config)
        build = load_config(plan_file, env, settings)
        result = outdated_reasons(build, open_settings_cache(settings, cache_path))
    if json_out:
        output_json(result)
        return
    output_table([{"target": n, "reasons": ", ".join(r)} for n, r in result.items()], title="Outdated")


@app.command("missed")
def missed_command(
    plan_file: Path = PlanOption,
    env: str | None = EnvOption,
    config: Path | None = ConfigOption,
    json_out: bool = JsonOption,
) -> None:
    """List names commands use that the environment does not define."""
    with cli_errors():
        settings = load_cli_settings(config)
        names = missed(load_config(plan_file, env, settings))
    output_names(names, title="Missing imports", as_json=json_out)


@app.command("cached")
def cached_command(
    config: Path | None = ConfigOption,
    cache_path: str | None = CacheOption,
    targets_only: bool = typer.Option(False, "--targets-only", help="Leave imports out"),
    json_out: bool = JsonOption,
) -> None:
    """List tracked names."""
    with cli_errors():
        settings = load_cli_settings(config)
        names = cached(open_settings_cache(settings, cache_path), targets_only=targets_only)
    output_names(names, title="Cached", as_json=json_out)


@app.command("show")
def show_command(
    name: str = typer.Argument(..., help="Target name"),
    config: Path | None = ConfigOption,
    cache_path: str | None = CacheOption,
) -> None:
    """Print the stored value of a target."""
    with cli_errors():
        settings = load_cli_settings(config)
        value = readd(name, open_settings_cache(settings, cache_path))
    console.print(repr(value))


@app.command("diagnose")
def diagnose_command(
    name: str = typer.Argument(..., help="Target or import name"),
    config: Path | None = ConfigOption,
    cache_path: str | None = CacheOption,
    json_out: bool = JsonOption,
) -> None:
    """Show build metadata: status, error, warnings, messages, timing."""
    with cli_errors():
        settings = load_cli_settings(config)
        meta = diagnose(name, open_settings_cache(settings, cache_path))
    if json_out:
        output_json(meta.to_dict())
        return
    data = meta.to_dict()
    error = data.pop("error") or {}
    rows = [{"field": k, "value": v} for k, v in data.items() if v not in (None, [], {})]
    output_table(rows, title=f"{meta.kind}: {name}")
    if error:
        console.print(f"[bold red]{error.get('type')}[/bold red]: {error.get('message')}")
        console.print(error.get("traceback", ""), markup=False, highlight=False)


@app.command("progress")
def progress_command(
    names: list[str] | None = typer.Argument(None, help="Targets (default: all)"),
    config: Path | None = ConfigOption,
    cache_path: str | None = CacheOption,
    times: bool = typer.Option(False, "--times", help="Include build times"),
    json_out: bool = JsonOption,
) -> None:
    """Last recorded status of each target."""
    with cli_errors():
        settings = load_cli_settings(config)
        cache = open_settings_cache(settings, cache_path)
        statuses = progress(cache, *(names or ()))
        timing = {row["name"]: row for row in build_times(cache)} if times else {}
    rows = []
    for name, status in statuses.items():
        row = {"target": name, "status": status}
        if times:
            row.update({k: timing.get(name, {}).get(k) for k in ("elapsed", "cpu", "attempts")})
        rows.append(row)
    if json_out:
        output_json(rows)
        return
    output_table(rows, title="Progress")


@app.command("cache-log")
def cache_log_command(
    config: Path | None = ConfigOption,
    cache_path: str | None = CacheOption,
    output: Path | None = typer.Option(None, "--output", "-o", help="Write CSV here instead of stdout"),
) -> None:
    """Print every tracked name with its fingerprint (CSV, sorted)."""
    with cli_errors():
        settings = load_cli_settings(config)
        cache = open_settings_cache(settings, cache_path)
        if output is not None:
            write_cache_log(cache, output)
            console.print(f"Wrote {output}")
            return
        typer.echo(format_cache_log(cache_log(cache)), nl=False)


@app.command("deps")
def deps_command(
    name: str = typer.Argument(..., help="Target name"),
    plan_file: Path = PlanOption,
    env: str | None = EnvOption,
    config: Path | None = ConfigOption,
    cache_path: str | None = CacheOption,
    json_out: bool = JsonOption,
) -> None:
    """Compare a target's recorded fingerprints with the current ones."""
    with cli_errors():
        settings = load_cli_settings(config)
        build = load_config(plan_file, env, settings)
        rows = deps_profile(name, build, open_settings_cache(settings, cache_path))
    if json_out:
        output_json(rows)
        return
    output_table(rows, title=f"Dependency profile: {name}", columns=["hash", "changed", "old", "new"])


@app.command("clean")
def clean_command(
    names: list[str] | None = typer.Argument(None, help="Names to remove (default: all)"),
    config: Path | None = ConfigOption,
    cache_path: str | None = CacheOption,
    destroy: bool = typer.Option(False, "--destroy", help="Remove the cache storage entirely"),
) -> None:
    """Remove cache entries, or destroy the cache."""
    with cli_errors():
        settings = load_cli_settings(config)
        removed = clean(*(names or ()), cache=open_settings_cache(settings, cache_path), destroy=destroy)
    action = "Destroyed cache" if destroy else "Removed"
    console.print(f"{action}: {len(removed)} entries")


__all__ = ["app"]
