"""Tests for the target cache over each backend."""

from __future__ import annotations

import pytest

from remake.cache import BuildMeta, open_cache
from remake.cache.store import STATUS_FAILED, new_cache
from remake.core.errors import (
    CacheBackendError,
    HashAlgorithmMismatchError,
    KeyNotFoundError,
    SerializationError,
)
from remake.core.hashing import hash_value


class TestValues:
    def test_round_trip_returns_fingerprint(self, any_cache):
        fingerprint = any_cache.set_value("a", {"rows": [1, 2, 3]})
        assert any_cache.get_value("a") == {"rows": [1, 2, 3]}
        assert fingerprint == hash_value({"rows": [1, 2, 3]})
        assert any_cache.has_value("a")

    def test_missing_value(self, any_cache):
        with pytest.raises(KeyNotFoundError):
            any_cache.get_value("ghost")

    def test_unpicklable_value(self, any_cache):
        with pytest.raises(SerializationError, match="'gen'"):
            any_cache.set_value("gen", (x for x in range(3)))
        assert not any_cache.has_value("gen")

    def test_corrupt_value(self, any_cache):
        any_cache.storage.set("bad", b"not a pickle", "objects")
        with pytest.raises(CacheBackendError, match="Corrupt"):
            any_cache.get_value("bad")

    def test_file_hash(self, any_cache, tmp_path):
        path = tmp_path / "data.csv"
        assert any_cache.hash_file(path) is None
        path.write_text("a,b\n")
        assert any_cache.hash_file(path) is not None
        assert any_cache.hash_file(tmp_path) is None


class TestMetadata:
    def test_meta_round_trip(self, any_cache):
        meta = BuildMeta(
            name="model",
            command_hash="c",
            value_hash="v",
            dependency_hashes={"raw": "r"},
            file_out={"out.csv": None},
            warnings=["careful"],
            elapsed=1.5,
            attempts=2,
        )
        any_cache.set_meta(meta)
        assert any_cache.get_meta("model") == meta
        assert "model" in any_cache
        assert "other" not in any_cache

    def test_meta_or_none(self, any_cache):
        assert any_cache.meta_or_none("ghost") is None

    def test_unknown_json_fields_are_ignored(self, any_cache):
        any_cache.storage.set("a", b'{"name": "a", "future_field": 1}', "meta")
        assert any_cache.get_meta("a").name == "a"

    def test_failed_meta_is_not_ok(self):
        assert not BuildMeta(name="a", status=STATUS_FAILED).ok
        assert BuildMeta(name="a").ok

    def test_targets_and_imports(self, any_cache):
        any_cache.set_meta(BuildMeta(name="b"))
        any_cache.set_meta(BuildMeta(name="a"))
        any_cache.set_meta(BuildMeta(name="helper", kind="import", value_hash="h"))
        assert any_cache.names() == ["a", "b", "helper"]
        assert any_cache.targets() == ["a", "b"]
        assert any_cache.imports() == ["helper"]


class TestProgressAndRemoval:
    def test_progress(self, any_cache):
        any_cache.set_progress("a", "running")
        any_cache.set_progress("a", "succeeded")
        any_cache.set_progress("b", "failed")
        assert any_cache.get_progress("a") == "succeeded"
        assert any_cache.get_progress("c") is None
        assert any_cache.progress() == {"a": "succeeded", "b": "failed"}

    def test_delete_removes_every_namespace(self, any_cache):
        any_cache.set_value("a", 1)
        any_cache.set_meta(BuildMeta(name="a"))
        any_cache.set_progress("a", "succeeded")
        any_cache.delete("a")
        assert not any_cache.has_value("a")
        assert "a" not in any_cache
        assert any_cache.get_progress("a") is None

    def test_clear_keeps_algorithm(self, tmp_path):
        cache = open_cache(tmp_path / "cache", hash_algorithm="md5")
        cache.set_value("a", 1)
        cache.set_meta(BuildMeta(name="a"))
        cache.clear()
        assert cache.names() == []
        assert open_cache(tmp_path / "cache").algorithm == "md5"


class TestOpenCache:
    def test_backend_inferred_from_path(self, tmp_path):
        assert open_cache(tmp_path / "c").storage.kind == "file"
        assert open_cache(tmp_path / "c.db").storage.kind == "sqlite"
        assert open_cache(None).storage.kind == "memory"

    def test_explicit_backend(self, tmp_path):
        assert open_cache(tmp_path / "c", backend="sqlite").storage.kind == "sqlite"

    def test_persistent_backend_needs_path(self):
        with pytest.raises(CacheBackendError, match="needs a path"):
            open_cache(None, backend="file")

    def test_algorithm_recorded_and_checked(self, tmp_path):
        path = tmp_path / "cache"
        assert open_cache(path, hash_algorithm="sha1").algorithm == "sha1"
        assert open_cache(path).algorithm == "sha1"
        with pytest.raises(HashAlgorithmMismatchError):
            open_cache(path, hash_algorithm="sha256")

    def test_values_hash_with_cache_algorithm(self, tmp_path):
        cache = open_cache(tmp_path / "cache", hash_algorithm="md5")
        assert len(cache.set_value("a", 1)) == 32

    def test_new_cache_replaces_existing(self, tmp_path):
        path = tmp_path / "cache"
        old = open_cache(path, hash_algorithm="sha1")
        old.set_value("a", 1)
        fresh = new_cache(path)
        assert fresh.algorithm == "sha256"
        assert not fresh.has_value("a")

    def test_values_survive_reopen(self, tmp_path):
        for path in (tmp_path / "files", tmp_path / "db.sqlite"):
            first = open_cache(path)
            first.set_value("a", [1, 2])
            first.close()
            assert open_cache(path).get_value("a") == [1, 2]
