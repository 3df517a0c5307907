"""Tests for the durable byte backends."""

import pytest

from caffeine_tracker.config import StorageConfig
from caffeine_tracker.errors import ConfigurationError, PersistenceError
from caffeine_tracker.storage import (
    FileBackend,
    KeyValueBackend,
    MemoryBackend,
    create_backend,
)


class TestFileBackend:
    def test_load_missing_file(self, tmp_path):
        assert FileBackend(tmp_path / "absent.db").load() is None

    def test_save_creates_directories(self, tmp_path):
        backend = FileBackend(tmp_path / "nested" / "dir" / "caffeine.db")
        backend.save(b"image-bytes")

        assert backend.load() == b"image-bytes"

    def test_save_overwrites(self, tmp_path):
        backend = FileBackend(tmp_path / "caffeine.db")
        backend.save(b"first")
        backend.save(b"second")

        assert backend.load() == b"second"
        # No temp files left behind
        assert [p.name for p in tmp_path.iterdir()] == ["caffeine.db"]

    def test_save_failure_raises_persistence_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        backend = FileBackend(blocker / "caffeine.db")

        with pytest.raises(PersistenceError):
            backend.save(b"data")


class TestKeyValueBackend:
    def test_roundtrip(self, tmp_path):
        backend = KeyValueBackend(tmp_path / "kv.db", "caffeine-tracker-db")
        assert backend.load() is None

        backend.save(b"\x00\x01binary\xff")
        assert backend.load() == b"\x00\x01binary\xff"
        backend.close()

    def test_persists_across_instances(self, tmp_path):
        first = KeyValueBackend(tmp_path / "kv.db", "key")
        first.save(b"payload")
        first.close()

        second = KeyValueBackend(tmp_path / "kv.db", "key")
        assert second.load() == b"payload"
        second.close()

    def test_keys_are_independent(self):
        backend = KeyValueBackend(":memory:", "a")
        backend.save(b"A")
        other = KeyValueBackend(":memory:", "b")

        assert other.load() is None
        assert backend.load() == b"A"


class TestCreateBackend:
    def test_file(self, tmp_path):
        backend = create_backend(StorageConfig(backend="file", path=str(tmp_path / "x.db")))
        assert isinstance(backend, FileBackend)

    def test_keyvalue(self, tmp_path):
        backend = create_backend(
            StorageConfig(backend="keyvalue", keyvalue_path=str(tmp_path / "kv.db"))
        )
        assert isinstance(backend, KeyValueBackend)
        assert backend.key == "caffeine-tracker-db"

    def test_memory(self):
        assert isinstance(create_backend(StorageConfig(backend="memory")), MemoryBackend)

    def test_unknown(self):
        with pytest.raises(ConfigurationError):
            create_backend(StorageConfig(backend="cloud"))
