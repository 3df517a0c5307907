"""SQLite-backed persistent store for records, drinks, settings and tombstones.

The database lives in memory and is written out as a whole image to a
:class:`~caffeine_tracker.storage.backends.StorageBackend` after every
mutation, so each write is durable before the call returns.
"""

import dataclasses
import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from ..errors import CaffeineTrackerError, ParseError, PersistenceError
from ..models import (
    CalculationMode,
    ConsumptionRecord,
    DeletionTombstone,
    Drink,
    Snapshot,
    TombstoneType,
    parse_settings,
)
from .backends import StorageBackend

logger = logging.getLogger(__name__)

# Well-known settings keys
USER_SETTINGS_KEY = "userSettings"
SYNC_PASSWORD_KEY = "webdavPassword"
SYNC_TIMESTAMP_KEY = "syncTimestamp"
LAST_MODIFIED_KEY = "localLastModified"
LAST_SYNC_KEY = "lastSyncTimestamp"

# Device bookkeeping; writing these is not a local data change
BOOKKEEPING_KEYS = frozenset(
    {SYNC_PASSWORD_KEY, SYNC_TIMESTAMP_KEY, LAST_MODIFIED_KEY, LAST_SYNC_KEY}
)

# SQL schema for the tracker database
SCHEMA = """
-- Consumption records: one row per logged intake
CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    amount REAL NOT NULL DEFAULT 0,
    volume REAL,
    timestamp INTEGER NOT NULL,
    drink_id TEXT,
    custom_name TEXT,
    custom_amount REAL,
    updated_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_timestamp ON records(timestamp);

-- Drinks: presets and user-defined drinks
CREATE TABLE IF NOT EXISTS drinks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    calculation_mode TEXT NOT NULL CHECK (calculation_mode IN ('perGram', 'per100ml')),
    caffeine_content REAL,
    caffeine_per_gram REAL,
    default_volume REAL,
    category TEXT,
    is_preset INTEGER NOT NULL DEFAULT 0,
    icon_color TEXT,
    updated_at INTEGER NOT NULL
);

-- Settings: JSON blob, sync credential and bookkeeping values
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT
);

-- Tombstones: written on every delete, never expired
CREATE TABLE IF NOT EXISTS deleted_items (
    id TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('record', 'drink')),
    deleted_at INTEGER NOT NULL,
    PRIMARY KEY (type, id)
);
"""


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _float_or_none(value: Any) -> float | None:
    return float(value) if value is not None else None


def _int_or_none(value: Any) -> int | None:
    return int(value) if value is not None else None


class PersistentStore:
    """Durable, queryable storage over a byte-oriented backend.

    Create one instance at startup and pass it to every caller. All
    "mutate + persist" sequences and reads are serialized behind one lock.
    """

    def __init__(
        self,
        backend: StorageBackend,
        clock: Callable[[], int] | None = None,
    ):
        """Initialize the store.

        Args:
            backend: Where the database image is loaded from and saved to.
            clock: Returns the current time in epoch ms. Defaults to wall clock.
        """
        self.backend = backend
        self._clock = clock or now_ms
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._dirty = False

    # ==================== Lifecycle ====================

    def open(self, strict: bool = False) -> None:
        """Load the existing image, or initialize and persist an empty one.

        Args:
            strict: Raise ParseError for an unreadable image instead of
                starting over with an empty database.
        """
        with self._lock:
            if self._conn is not None:
                return

            existing: bytes | None = None
            try:
                existing = self.backend.load()
            except (OSError, sqlite3.Error, CaffeineTrackerError) as e:
                if strict:
                    raise ParseError(f"Could not read database image: {e}") from e
                logger.warning(f"Could not load stored image, starting empty: {e}")

            conn = None
            if existing:
                try:
                    conn = self._connect(existing)
                except ParseError:
                    if strict:
                        raise
                    logger.warning("Stored image is not a valid database, starting empty")

            if conn is None:
                conn = self._connect(None)
                self._conn = conn
                self._persist()
            else:
                self._conn = conn

            logger.info(f"PersistentStore opened ({type(self.backend).__name__})")

    @staticmethod
    def _connect(image: bytes | None) -> sqlite3.Connection:
        conn = sqlite3.connect(":memory:", check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            if image:
                conn.deserialize(image)
            conn.executescript(SCHEMA)
        except sqlite3.DatabaseError as e:
            conn.close()
            raise ParseError(f"Invalid database image: {e}") from e
        return conn

    def close(self) -> None:
        """Close the in-memory database and release the backend."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("PersistentStore closed")
            self.backend.close()

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure the database is open."""
        if self._conn is None:
            self.open()
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in one transaction, rolling back on any error."""
        conn = self._ensure_connected()
        conn.execute("BEGIN")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    # ==================== Persistence ====================

    def export_image(self) -> bytes:
        """Return the full binary database image."""
        with self._lock:
            return self._ensure_connected().serialize()

    def _persist(self) -> None:
        data = self._conn.serialize()
        try:
            self.backend.save(data)
        except PersistenceError:
            self._dirty = True
            raise
        except (OSError, sqlite3.Error) as e:
            self._dirty = True
            raise PersistenceError(f"Failed to persist database image: {e}") from e
        self._dirty = False

    def save(self) -> None:
        """Persist the current in-memory state.

        Used to retry after a PersistenceError.
        """
        with self._lock:
            self._ensure_connected()
            self._persist()

    @property
    def dirty(self) -> bool:
        """True if the last persist failed and in-memory state is ahead."""
        return self._dirty

    def _touch(self, conn: sqlite3.Connection, timestamp: int) -> None:
        self._set(conn, LAST_MODIFIED_KEY, str(timestamp))

    @staticmethod
    def _set(conn: sqlite3.Connection, key: str, value: str | None) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value)
        )

    # ==================== Record Operations ====================

    def upsert_record(self, record: ConsumptionRecord | dict[str, Any]) -> ConsumptionRecord:
        """Insert or replace a record by id.

        Returns:
            The stored record, with updated_at filled in.
        """
        if isinstance(record, dict):
            record = ConsumptionRecord.from_dict(record)

        with self._lock:
            now = self._clock()
            if not record.updated_at:
                record = dataclasses.replace(record, updated_at=now)
            with self._transaction() as conn:
                self._insert_record(conn, record)
                self._touch(conn, now)
            self._persist()

        logger.debug(f"Upserted record {record.id}")
        return record

    @staticmethod
    def _insert_record(conn: sqlite3.Connection, record: ConsumptionRecord) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO records (
                id, name, amount, volume, timestamp, drink_id,
                custom_name, custom_amount, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.name,
                record.amount,
                record.volume,
                record.timestamp,
                record.drink_id,
                record.custom_name,
                record.custom_amount,
                record.updated_at,
            ),
        )

    def delete_record(self, record_id: str) -> bool:
        """Remove a record and leave a tombstone.

        Returns:
            True if a row was removed.
        """
        return self._delete("records", TombstoneType.RECORD, record_id)

    def get_record(self, record_id: str) -> ConsumptionRecord | None:
        with self._lock:
            row = self._ensure_connected().execute(
                "SELECT * FROM records WHERE id = ?", (record_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ConsumptionRecord:
        return ConsumptionRecord(
            id=row["id"],
            name=row["name"],
            amount=float(row["amount"]) if row["amount"] is not None else 0.0,
            timestamp=int(row["timestamp"]),
            volume=_float_or_none(row["volume"]),
            drink_id=row["drink_id"],
            custom_name=row["custom_name"],
            custom_amount=_float_or_none(row["custom_amount"]),
            updated_at=_int_or_none(row["updated_at"]),
        )

    # ==================== Drink Operations ====================

    def upsert_drink(self, drink: Drink | dict[str, Any]) -> Drink:
        """Insert or replace a drink by id."""
        if isinstance(drink, dict):
            drink = Drink.from_dict(drink)

        with self._lock:
            now = self._clock()
            if not drink.updated_at:
                drink = dataclasses.replace(drink, updated_at=now)
            with self._transaction() as conn:
                self._insert_drink(conn, drink)
                self._touch(conn, now)
            self._persist()

        logger.debug(f"Upserted drink {drink.id}")
        return drink

    @staticmethod
    def _insert_drink(conn: sqlite3.Connection, drink: Drink) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO drinks (
                id, name, calculation_mode, caffeine_content, caffeine_per_gram,
                default_volume, category, is_preset, icon_color, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                drink.id,
                drink.name,
                CalculationMode(drink.calculation_mode).value,
                drink.caffeine_content,
                drink.caffeine_per_gram,
                drink.default_volume,
                drink.category,
                1 if drink.is_preset else 0,
                drink.icon_color,
                drink.updated_at,
            ),
        )

    def delete_drink(self, drink_id: str) -> bool:
        """Remove a drink and leave a tombstone."""
        return self._delete("drinks", TombstoneType.DRINK, drink_id)

    def replace_all_drinks(self, drinks: list[Drink | dict[str, Any]]) -> int:
        """Replace the whole drinks table in one transaction.

        Any failure, including a malformed entry, rolls back and leaves the
        previous durable state untouched.

        Returns:
            Number of drinks written.
        """
        with self._lock:
            now = self._clock()
            with self._transaction() as conn:
                conn.execute("DELETE FROM drinks")
                for item in drinks:
                    drink = Drink.from_dict(item) if isinstance(item, dict) else item
                    if not drink.updated_at:
                        drink = dataclasses.replace(drink, updated_at=now)
                    self._insert_drink(conn, drink)
                self._touch(conn, now)
            self._persist()

        logger.info(f"Replaced drinks table with {len(drinks)} drinks")
        return len(drinks)

    def get_drink(self, drink_id: str) -> Drink | None:
        with self._lock:
            row = self._ensure_connected().execute(
                "SELECT * FROM drinks WHERE id = ?", (drink_id,)
            ).fetchone()
        return self._row_to_drink(row) if row else None

    def get_drinks(self) -> list[Drink]:
        """All drinks, ordered case-insensitively by name."""
        with self._lock:
            rows = self._ensure_connected().execute("SELECT * FROM drinks").fetchall()
        drinks = [self._row_to_drink(row) for row in rows]
        return sorted(drinks, key=lambda d: (d.name.casefold(), d.id))

    @staticmethod
    def _row_to_drink(row: sqlite3.Row) -> Drink:
        return Drink(
            id=row["id"],
            name=row["name"],
            calculation_mode=CalculationMode(row["calculation_mode"]),
            caffeine_content=_float_or_none(row["caffeine_content"]),
            caffeine_per_gram=_float_or_none(row["caffeine_per_gram"]),
            default_volume=_float_or_none(row["default_volume"]),
            category=row["category"],
            is_preset=bool(row["is_preset"]),
            icon_color=row["icon_color"],
            updated_at=_int_or_none(row["updated_at"]),
        )

    def _delete(self, table: str, item_type: TombstoneType, item_id: str) -> bool:
        with self._lock:
            now = self._clock()
            with self._transaction() as conn:
                cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (item_id,))
                conn.execute(
                    """
                    INSERT OR REPLACE INTO deleted_items (id, type, deleted_at)
                    VALUES (?, ?, ?)
                    """,
                    (item_id, item_type.value, now),
                )
                self._touch(conn, now)
            self._persist()

        removed = cursor.rowcount > 0
        logger.debug(f"Deleted {item_type.value} {item_id} (existed={removed})")
        return removed

    # ==================== Settings Operations ====================

    def get_setting(self, key: str) -> str | None:
        with self._lock:
            row = self._ensure_connected().execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def put_setting(self, key: str, value: str | None) -> None:
        with self._lock:
            with self._transaction() as conn:
                self._set(conn, key, value)
                if key not in BOOKKEEPING_KEYS:
                    self._touch(conn, self._clock())
            self._persist()

    def delete_setting(self, key: str) -> None:
        with self._lock:
            with self._transaction() as conn:
                conn.execute("DELETE FROM settings WHERE key = ?", (key,))
                if key not in BOOKKEEPING_KEYS:
                    self._touch(conn, self._clock())
            self._persist()

    def get_user_settings(self) -> dict[str, Any]:
        """The settings blob; a malformed blob reads as empty settings."""
        return parse_settings(self.get_setting(USER_SETTINGS_KEY))

    def put_user_settings(self, settings: dict[str, Any]) -> None:
        """Replace the settings blob wholesale."""
        self.put_setting(USER_SETTINGS_KEY, json.dumps(settings))

    def get_sync_password(self) -> str | None:
        return self.get_setting(SYNC_PASSWORD_KEY) or None

    def put_sync_password(self, password: str | None) -> None:
        """Store the sync credential. Does not change ``last_modified``."""
        if password:
            self.put_setting(SYNC_PASSWORD_KEY, password)
        else:
            self.delete_setting(SYNC_PASSWORD_KEY)

    def record_sync(self, sync_timestamp: int | None, synced_at: int) -> None:
        """Remember a completed sync without counting as a local change."""
        with self._lock:
            with self._transaction() as conn:
                if sync_timestamp is not None:
                    self._set(conn, SYNC_TIMESTAMP_KEY, str(sync_timestamp))
                self._set(conn, LAST_SYNC_KEY, str(synced_at))
            self._persist()

    @property
    def last_modified(self) -> int | None:
        """Epoch ms of the last local mutation, or None for a fresh store."""
        value = self.get_setting(LAST_MODIFIED_KEY)
        return int(value) if value else None

    # ==================== Snapshot Operations ====================

    def read_snapshot(self) -> Snapshot:
        """Read the full store as a Snapshot.

        Records are ordered newest first, drinks by name ignoring case.
        """
        with self._lock:
            conn = self._ensure_connected()
            record_rows = conn.execute(
                "SELECT * FROM records ORDER BY timestamp DESC, id"
            ).fetchall()
            tombstone_rows = conn.execute(
                "SELECT * FROM deleted_items ORDER BY deleted_at, id"
            ).fetchall()
            drinks = self.get_drinks()
            settings = self.get_user_settings()
            password = self.get_sync_password()
            sync_ts = self.get_setting(SYNC_TIMESTAMP_KEY)

        return Snapshot(
            records=[self._row_to_record(row) for row in record_rows],
            drinks=drinks,
            user_settings=settings,
            webdav_password=password,
            deleted_items=[
                DeletionTombstone(
                    id=row["id"],
                    type=TombstoneType(row["type"]),
                    deleted_at=int(row["deleted_at"]),
                )
                for row in tombstone_rows
            ],
            sync_timestamp=int(sync_ts) if sync_ts else None,
        )

    def import_snapshot(self, snapshot: Snapshot) -> None:
        """Replace all four tables with the snapshot contents.

        Clear-then-insert in one transaction; on failure nothing changes.
        """
        with self._lock:
            now = self._clock()
            with self._transaction() as conn:
                for table in ("records", "drinks", "deleted_items", "settings"):
                    conn.execute(f"DELETE FROM {table}")

                for record in snapshot.records:
                    if not record.updated_at:
                        record = dataclasses.replace(record, updated_at=now)
                    self._insert_record(conn, record)
                for drink in snapshot.drinks:
                    if not drink.updated_at:
                        drink = dataclasses.replace(drink, updated_at=now)
                    self._insert_drink(conn, drink)
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO deleted_items (id, type, deleted_at)
                    VALUES (?, ?, ?)
                    """,
                    [
                        (t.id, TombstoneType(t.type).value, t.deleted_at)
                        for t in snapshot.deleted_items
                    ],
                )

                self._set(conn, USER_SETTINGS_KEY, json.dumps(snapshot.user_settings))
                if snapshot.webdav_password:
                    self._set(conn, SYNC_PASSWORD_KEY, snapshot.webdav_password)
                if snapshot.sync_timestamp is not None:
                    self._set(conn, SYNC_TIMESTAMP_KEY, str(snapshot.sync_timestamp))
                self._touch(conn, snapshot.sync_timestamp or now)
            self._persist()

        logger.info(
            f"Imported snapshot: {len(snapshot.records)} records, "
            f"{len(snapshot.drinks)} drinks, {len(snapshot.deleted_items)} tombstones"
        )

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with row counts and image size.
        """
        with self._lock:
            conn = self._ensure_connected()
            stats = {
                "records_count": conn.execute("SELECT COUNT(*) FROM records").fetchone()[0],
                "drinks_count": conn.execute("SELECT COUNT(*) FROM drinks").fetchone()[0],
                "deleted_count": conn.execute(
                    "SELECT COUNT(*) FROM deleted_items"
                ).fetchone()[0],
                "image_size_bytes": len(conn.serialize()),
                "last_modified": self.last_modified,
                "dirty": self._dirty,
            }
        return stats
