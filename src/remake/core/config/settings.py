"""
Centralized settings for remake.

Manifesto:
    One validated settings object replaces command-line flags scattered
    across scripts. ``RemakeSettings`` reads ``REMAKE_*`` environment
    variables, a ``.env`` file, and optionally a ``remake.toml`` file.
    It is converted into explicit :class:`MakeOptions` before a run;
    the engine never looks settings up on its own.

Tags:
    remake, configuration, settings, pydantic, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from remake.core.config.components import (
    CacheBackendKind,
    CachingMode,
    ComponentWarning,
    FailurePolicy,
    MemoryStrategy,
    Parallelism,
    validate_component_combination,
)
from remake.core.config.options import MakeOptions
from remake.core.errors import ConfigError
from remake.core.hashing import DEFAULT_ALGORITHM, check_algorithm

DEFAULT_CONFIG_FILE = "remake.toml"


class RemakeSettings(BaseSettings):
    """remake run configuration.

    All fields can be set via ``REMAKE_*`` environment variables (e.g.
    ``REMAKE_JOBS=4``), a ``.env`` file, or the ``[remake]`` table of a
    ``remake.toml`` file passed to :func:`load_settings`.
    """

    model_config = SettingsConfigDict(
        env_prefix="REMAKE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Cache ────────────────────────────────────────────────────
    cache_dir: str = Field(default=".remake", description="Cache location (directory or sqlite file)")
    cache_backend: CacheBackendKind = Field(default=CacheBackendKind.FILE)
    hash_algorithm: str = Field(default=DEFAULT_ALGORITHM)

    # ── Execution ────────────────────────────────────────────────
    jobs: int = Field(default=1, ge=1)
    parallelism: Parallelism = Field(default=Parallelism.LOOP)
    caching: CachingMode = Field(default=CachingMode.COORDINATOR)
    memory_strategy: MemoryStrategy = Field(default=MemoryStrategy.KEEP_ALL)
    on_failure: FailurePolicy = Field(default=FailurePolicy.CONTINUE)

    # ── Limits / retries ─────────────────────────────────────────
    timeout: float | None = Field(default=None, gt=0)
    elapsed: float | None = Field(default=None, gt=0)
    cpu: float | None = Field(default=None, gt=0)
    retries: int = Field(default=0, ge=0)
    retry_delay: float = Field(default=0.0, ge=0)

    # ── Logging / output ─────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console", description="console or json")
    cache_log_file: str | None = Field(default=None)

    # ── Computed ─────────────────────────────────────────────────
    component_warnings: list[ComponentWarning] = Field(default_factory=list, exclude=True)

    @field_validator("hash_algorithm")
    @classmethod
    def _check_hash_algorithm(cls, value: str) -> str:
        return check_algorithm(value)

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return value

    @model_validator(mode="after")
    def _validate_components(self) -> RemakeSettings:
        """Run option-combination validation after all fields are set."""
        warnings = validate_component_combination(
            backend=self.cache_backend,
            parallelism=self.parallelism,
            caching=self.caching,
            memory_strategy=self.memory_strategy,
            jobs=self.jobs,
        )
        object.__setattr__(self, "component_warnings", warnings)
        return self

    # ── Derived ──────────────────────────────────────────────────

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir)

    @property
    def json_logs(self) -> bool:
        return self.log_format == "json"

    def to_options(self, **overrides: Any) -> MakeOptions:
        """Convert to explicit run options, applying ``overrides`` last."""
        values: dict[str, Any] = {
            "jobs": self.jobs,
            "parallelism": self.parallelism,
            "caching": self.caching,
            "memory_strategy": self.memory_strategy,
            "on_failure": self.on_failure,
            "timeout": self.timeout,
            "elapsed": self.elapsed,
            "cpu": self.cpu,
            "retries": self.retries,
            "retry_delay": self.retry_delay,
            "cache_log_file": self.cache_log_file,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return MakeOptions(**values)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}", cause=exc) from exc
    # Either a [remake] table or top-level keys
    section = data.get("remake", data)
    if not isinstance(section, dict):
        raise ConfigError(f"[remake] in {path} must be a table")
    return section


def load_settings(path: str | Path | None = None, **overrides: Any) -> RemakeSettings:
    """Load settings from the environment plus an optional TOML file.

    Precedence, highest first: ``overrides``, ``REMAKE_*`` environment
    variables and ``.env``, the TOML file, field defaults.

    ``path`` defaults to ``remake.toml`` in the working directory and is
    silently skipped when that default does not exist.
    """
    file_values: dict[str, Any] = {}
    if path is not None:
        toml_path = Path(path)
        if not toml_path.exists():
            raise ConfigError(f"Settings file not found: {toml_path}")
        file_values = _read_toml(toml_path)
    elif Path(DEFAULT_CONFIG_FILE).exists():
        file_values = _read_toml(Path(DEFAULT_CONFIG_FILE))

    # Environment wins over the file: only keep file keys the env leaves unset.
    env_settings = RemakeSettings()
    explicit = env_settings.model_fields_set
    merged = {k: v for k, v in file_values.items() if k not in explicit}
    merged.update(env_settings.model_dump(include=explicit))
    merged.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return RemakeSettings(**merged)
    except ValueError as exc:
        raise ConfigError(f"Invalid remake settings: {exc}", cause=exc) from exc
