"""Tests for settings, run options and option-combination validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from remake.core.config import (
    CacheBackendKind,
    CachingMode,
    FailurePolicy,
    MakeOptions,
    MemoryStrategy,
    Parallelism,
    RemakeSettings,
    load_settings,
    validate_component_combination,
)
from remake.core.errors import ConfigError, IncompatibleOptionsError, InvalidOverrideError


class TestComponentValidation:
    def test_defaults_are_clean(self):
        assert validate_component_combination() == []

    def test_jobs_must_be_positive(self):
        with pytest.raises(IncompatibleOptionsError, match="jobs"):
            validate_component_combination(jobs=0)

    @pytest.mark.parametrize("parallelism", [Parallelism.PERSISTENT, Parallelism.TRANSIENT])
    def test_sqlite_rejects_worker_writes(self, parallelism):
        with pytest.raises(IncompatibleOptionsError, match="single writer"):
            validate_component_combination(
                backend=CacheBackendKind.SQLITE, parallelism=parallelism, caching=CachingMode.WORKER, jobs=2
            )

    def test_memory_rejects_worker_writes(self):
        with pytest.raises(IncompatibleOptionsError, match="in-memory"):
            validate_component_combination(
                backend=CacheBackendKind.MEMORY,
                parallelism=Parallelism.PERSISTENT,
                caching=CachingMode.WORKER,
                jobs=2,
            )

    def test_file_backend_allows_worker_writes(self):
        notes = validate_component_combination(
            backend=CacheBackendKind.FILE, parallelism=Parallelism.TRANSIENT, caching=CachingMode.WORKER, jobs=4
        )
        assert notes == []

    def test_sqlite_with_coordinator_writes_is_fine(self):
        assert (
            validate_component_combination(
                backend=CacheBackendKind.SQLITE, parallelism=Parallelism.PERSISTENT, jobs=2
            )
            == []
        )

    def test_single_job_process_pool_is_noted(self):
        notes = validate_component_combination(parallelism=Parallelism.PERSISTENT, jobs=1)
        assert [n.severity for n in notes] == ["info"]

    def test_hasty_warns(self):
        notes = validate_component_combination(
            parallelism=Parallelism.HASTY, memory_strategy=MemoryStrategy.LOOKAHEAD
        )
        assert {n.severity for n in notes} == {"warning", "info"}


class TestMakeOptions:
    def test_defaults(self):
        options = MakeOptions()
        assert options.jobs == 1
        assert options.parallelism == Parallelism.LOOP
        assert options.caching == CachingMode.COORDINATOR
        assert options.memory_strategy == MemoryStrategy.KEEP_ALL
        assert options.on_failure == FailurePolicy.CONTINUE
        assert options.retries == 0

    def test_strings_are_coerced(self):
        options = MakeOptions(
            parallelism="transient",
            memory_strategy="lookahead",
            on_failure="keep_going",
            targets=["a", "b"],
            cache_log_file="log.csv",
        )
        assert options.parallelism == Parallelism.TRANSIENT
        assert options.memory_strategy == MemoryStrategy.LOOKAHEAD
        assert options.on_failure == FailurePolicy.KEEP_GOING
        assert options.targets == ("a", "b")
        assert options.cache_log_file == Path("log.csv")

    def test_unknown_enum_value(self):
        with pytest.raises(ValueError):
            MakeOptions(parallelism="threads")

    @pytest.mark.parametrize("field,value", [("timeout", 0), ("elapsed", -1), ("cpu", True), ("timeout", "5")])
    def test_limits_must_be_positive_numbers(self, field, value):
        with pytest.raises(InvalidOverrideError):
            MakeOptions(**{field: value})

    def test_retries_must_be_non_negative_int(self):
        with pytest.raises(InvalidOverrideError):
            MakeOptions(retries=-1)
        with pytest.raises(InvalidOverrideError):
            MakeOptions(retries=1.5)

    def test_with_returns_copy(self):
        options = MakeOptions()
        changed = options.with_(jobs=4)
        assert changed.jobs == 4
        assert options.jobs == 1


class TestSettings:
    def test_defaults(self, workdir):
        settings = RemakeSettings()
        assert settings.cache_dir == ".remake"
        assert settings.cache_backend == CacheBackendKind.FILE
        assert settings.hash_algorithm == "sha256"
        assert settings.cache_path == Path(".remake")
        assert settings.json_logs is False

    def test_environment_variables(self, workdir, monkeypatch):
        monkeypatch.setenv("REMAKE_JOBS", "4")
        monkeypatch.setenv("REMAKE_PARALLELISM", "persistent")
        settings = RemakeSettings()
        assert settings.jobs == 4
        assert settings.parallelism == Parallelism.PERSISTENT

    def test_invalid_combination_rejected(self, workdir):
        with pytest.raises(IncompatibleOptionsError):
            RemakeSettings(cache_backend="sqlite", parallelism="persistent", caching="worker", jobs=2)

    def test_component_warnings_recorded(self, workdir):
        settings = RemakeSettings(parallelism="hasty")
        assert settings.component_warnings
        assert "component_warnings" not in settings.model_dump()

    def test_bad_algorithm_and_log_format(self, workdir):
        with pytest.raises(ValueError):
            RemakeSettings(hash_algorithm="crc32")
        with pytest.raises(ValueError):
            RemakeSettings(log_format="xml")

    def test_to_options(self, workdir):
        settings = RemakeSettings(jobs=3, retries=2, timeout=10.0)
        options = settings.to_options(targets=("a",), jobs=None)
        assert options.jobs == 3
        assert options.retries == 2
        assert options.timeout == 10.0
        assert options.targets == ("a",)


class TestLoadSettings:
    def test_reads_toml_table(self, workdir):
        (workdir / "remake.toml").write_text('[remake]\njobs = 2\ncache_dir = "build/cache"\n')
        settings = load_settings()
        assert settings.jobs == 2
        assert settings.cache_dir == "build/cache"

    def test_reads_top_level_keys(self, workdir):
        path = workdir / "custom.toml"
        path.write_text("retries = 3\n")
        assert load_settings(path).retries == 3

    def test_environment_beats_file(self, workdir, monkeypatch):
        (workdir / "remake.toml").write_text("[remake]\njobs = 2\nretries = 1\n")
        monkeypatch.setenv("REMAKE_JOBS", "8")
        settings = load_settings()
        assert settings.jobs == 8
        assert settings.retries == 1

    def test_overrides_beat_everything(self, workdir, monkeypatch):
        monkeypatch.setenv("REMAKE_JOBS", "8")
        assert load_settings(jobs=5).jobs == 5

    def test_missing_explicit_file(self, workdir):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(workdir / "absent.toml")

    def test_invalid_toml(self, workdir):
        path = workdir / "bad.toml"
        path.write_text("jobs = = 2\n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_settings(path)

    def test_invalid_values_become_config_errors(self, workdir):
        path = workdir / "bad.toml"
        path.write_text("jobs = 0\n")
        with pytest.raises(ConfigError):
            load_settings(path)

    def test_every_load_reads_the_current_directory(self, workdir, monkeypatch):
        (workdir / "remake.toml").write_text("[remake]\njobs = 2\n")
        assert load_settings().jobs == 2
        (workdir / "remake.toml").write_text("[remake]\njobs = 3\n")
        assert load_settings().jobs == 3
        other = workdir / "other"
        other.mkdir()
        monkeypatch.chdir(other)
        assert load_settings().jobs == 1
