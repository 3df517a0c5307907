"""Conversion between database images, JSON payloads and Snapshots."""

import json
from typing import Any

from ..errors import ParseError
from ..models import Snapshot
from .backends import MemoryBackend
from .store import PersistentStore


def from_bytes(data: bytes) -> Snapshot:
    """Read a Snapshot out of a binary database image.

    Used for downloaded payloads and imported backups. The image is opened
    in a throwaway store; the caller's store is never touched.

    Raises:
        ParseError: If the bytes are not a database image.
    """
    if not data:
        raise ParseError("Empty database image")

    store = PersistentStore(MemoryBackend(data))
    try:
        store.open(strict=True)
        return store.read_snapshot()
    finally:
        store.close()


def to_bytes(snapshot: Snapshot) -> bytes:
    """Build a fresh database image holding exactly the snapshot contents."""
    store = PersistentStore(MemoryBackend())
    try:
        store.open()
        store.import_snapshot(snapshot)
        return store.export_image()
    finally:
        store.close()


def snapshot_from_json(payload: str | bytes | dict[str, Any]) -> Snapshot:
    """Parse a JSON snapshot, accepting legacy field names.

    Raises:
        ParseError: If the payload is not valid JSON or has the wrong shape.
    """
    if isinstance(payload, dict):
        return Snapshot.from_dict(payload)
    try:
        data = json.loads(payload)
    except ValueError as e:
        raise ParseError(f"Snapshot is not valid JSON: {e}") from e
    return Snapshot.from_dict(data)


def snapshot_to_json(snapshot: Snapshot, indent: int | None = 2) -> str:
    return json.dumps(snapshot.to_dict(), indent=indent, ensure_ascii=False)
