"""Contract tests shared by every storage backend."""

from __future__ import annotations

import pickle

import pytest

from remake.cache import MemoryStorage, ShardedFileStorage, SqliteStorage, StorageBackend
from remake.core.errors import CacheBackendError, KeyNotFoundError


@pytest.fixture(params=["file", "sqlite", "memory"])
def storage(request, tmp_path):
    if request.param == "file":
        backend = ShardedFileStorage(tmp_path / "store")
    elif request.param == "sqlite":
        backend = SqliteStorage(tmp_path / "store.db")
    else:
        backend = MemoryStorage()
    yield backend
    backend.close()


class TestContract:
    def test_satisfies_protocol(self, storage):
        assert isinstance(storage, StorageBackend)

    def test_set_get(self, storage):
        storage.set("a", b"\x00\x01value")
        assert storage.get("a") == b"\x00\x01value"

    def test_overwrite(self, storage):
        storage.set("a", b"1")
        storage.set("a", b"2")
        assert storage.get("a") == b"2"

    def test_missing_key_raises(self, storage):
        with pytest.raises(KeyNotFoundError) as exc:
            storage.get("nope", "meta")
        assert exc.value.namespace == "meta"

    def test_namespaces_are_separate(self, storage):
        storage.set("a", b"value", "objects")
        storage.set("a", b"meta", "meta")
        assert storage.get("a", "objects") == b"value"
        assert storage.list("progress") == []
        assert not storage.exists("a", "progress")

    def test_list_is_sorted(self, storage):
        for key in ("b", "a", "c"):
            storage.set(key, b"x")
        assert storage.list() == ["a", "b", "c"]

    def test_delete(self, storage):
        storage.set("a", b"x")
        storage.delete("a")
        storage.delete("a")
        assert not storage.exists("a")
        assert storage.list() == []

    def test_awkward_keys(self, storage):
        key = "dir/name with spaces:%"
        storage.set(key, b"x")
        assert storage.list() == [key]
        assert storage.get(key) == b"x"

    def test_destroy(self, storage):
        storage.set("a", b"x")
        storage.destroy()
        assert storage.list() == []


class TestFileStorage:
    def test_layout_is_sharded(self, tmp_path):
        storage = ShardedFileStorage(tmp_path / "store")
        storage.set("model", b"x", "objects")
        files = [p for p in (tmp_path / "store" / "objects").rglob("*") if p.is_file()]
        assert len(files) == 1
        assert files[0].name == "model"
        assert len(files[0].parent.name) == 2

    def test_temporary_files_are_not_listed(self, tmp_path):
        storage = ShardedFileStorage(tmp_path / "store")
        storage.set("a", b"x")
        shard = next((tmp_path / "store" / "objects").iterdir())
        (shard / ".b.tmp-1-2-3").write_bytes(b"partial")
        assert storage.list() == ["a"]

    def test_destroy_removes_root(self, tmp_path):
        storage = ShardedFileStorage(tmp_path / "store")
        storage.set("a", b"x")
        storage.destroy()
        assert not (tmp_path / "store").exists()

    def test_unusable_root(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(CacheBackendError):
            ShardedFileStorage(blocker / "cache")


class TestSqliteStorage:
    def test_in_memory_database(self):
        storage = SqliteStorage(":memory:")
        storage.set("a", b"x")
        assert storage.exists("a")
        storage.close()

    def test_reopens_after_pickling(self, tmp_path):
        storage = SqliteStorage(tmp_path / "store.db")
        storage.set("a", b"x")
        copy = pickle.loads(pickle.dumps(storage))
        assert copy.get("a") == b"x"
        copy.close()
        storage.close()

    def test_destroy_removes_file(self, tmp_path):
        path = tmp_path / "store.db"
        storage = SqliteStorage(path)
        storage.destroy()
        assert not path.exists()


def test_memory_storage_refuses_pickling():
    with pytest.raises(TypeError):
        pickle.dumps(MemoryStorage())
