"""Local persistence for the caffeine tracker.

Provides:
- Interchangeable byte backends for the durable database image
- The SQLite-backed PersistentStore
- Conversion between images, JSON and Snapshots
"""

from .backends import (
    FileBackend,
    KeyValueBackend,
    MemoryBackend,
    StorageBackend,
    create_backend,
)
from .serializer import from_bytes, snapshot_from_json, snapshot_to_json, to_bytes
from .store import PersistentStore

__all__ = [
    "FileBackend",
    "KeyValueBackend",
    "MemoryBackend",
    "StorageBackend",
    "create_backend",
    "PersistentStore",
    "from_bytes",
    "to_bytes",
    "snapshot_from_json",
    "snapshot_to_json",
]
