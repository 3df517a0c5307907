"""Durable byte backends for the database image.

Each backend holds a single opaque blob that is overwritten wholesale on
every persist.
"""

import logging
import os
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from ..codec import decode_bytes, encode_bytes
from ..config import StorageConfig
from ..errors import ConfigurationError, PersistenceError

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Load and save one binary image."""

    @abstractmethod
    def load(self) -> bytes | None:
        """Return the stored image, or None if nothing has been saved."""
        pass

    @abstractmethod
    def save(self, data: bytes) -> None:
        """Overwrite the stored image.

        Raises:
            PersistenceError: If the write failed.
        """
        pass

    def close(self) -> None:
        """Release any handle held open between calls."""
        pass


class MemoryBackend(StorageBackend):
    """Keeps the image in process memory. Used for throwaway stores."""

    def __init__(self, data: bytes | None = None):
        self.data = data

    def load(self) -> bytes | None:
        return self.data

    def save(self, data: bytes) -> None:
        self.data = bytes(data)


class FileBackend(StorageBackend):
    """One named file in an app-private directory."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def load(self) -> bytes | None:
        if not self.path.exists():
            return None
        return self.path.read_bytes()

    def save(self, data: bytes) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a sibling temp file so a crash never leaves half an image
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}."
            )
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to write {self.path}: {e}") from e

        logger.debug(f"Saved {len(data)} bytes to {self.path}")


class KeyValueBackend(StorageBackend):
    """One named record in a local key-value database.

    The image is stored as base64 text, for hosts whose structured storage
    only accepts strings.
    """

    def __init__(self, db_path: str | Path, key: str):
        self.db_path = Path(db_path).expanduser() if db_path != ":memory:" else db_path
        self.key = key
        self._conn: sqlite3.Connection | None = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS keyvalue (key TEXT PRIMARY KEY, value TEXT)"
            )
            self._conn.commit()
        return self._conn

    def load(self) -> bytes | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT value FROM keyvalue WHERE key = ?", (self.key,)
        ).fetchone()
        if row is None or row[0] is None:
            return None
        return decode_bytes(row[0])

    def save(self, data: bytes) -> None:
        try:
            conn = self._ensure_connected()
            conn.execute(
                "INSERT OR REPLACE INTO keyvalue (key, value) VALUES (?, ?)",
                (self.key, encode_bytes(data)),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write key {self.key!r}: {e}") from e

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None


def create_backend(config: StorageConfig) -> StorageBackend:
    """Select the backend named in the storage configuration."""
    if config.backend == "file":
        return FileBackend(config.path)
    if config.backend == "keyvalue":
        return KeyValueBackend(config.keyvalue_path, config.keyvalue_key)
    if config.backend == "memory":
        return MemoryBackend()
    raise ConfigurationError(f"Unknown storage backend: {config.backend!r}")
