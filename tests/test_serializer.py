"""Tests for image and JSON snapshot conversion."""

import json

import pytest

from caffeine_tracker.errors import ParseError
from caffeine_tracker.models import (
    CalculationMode,
    ConsumptionRecord,
    DeletionTombstone,
    Drink,
    Snapshot,
    TombstoneType,
)
from caffeine_tracker.storage import (
    MemoryBackend,
    PersistentStore,
    from_bytes,
    snapshot_from_json,
    snapshot_to_json,
    to_bytes,
)


@pytest.fixture
def snapshot():
    """A well-formed snapshot already in read order."""
    return Snapshot(
        records=[
            ConsumptionRecord(
                id="r2",
                name="Cold brew",
                amount=150.0,
                timestamp=2000,
                volume=350.0,
                drink_id="d1",
                custom_name="Big one",
                custom_amount=180.0,
                updated_at=2100,
            ),
            ConsumptionRecord(id="r1", name="Espresso", amount=95.0, timestamp=1000, updated_at=1000),
        ],
        drinks=[
            Drink(
                id="d1",
                name="Cold brew",
                calculation_mode=CalculationMode.PER_100ML,
                caffeine_content=42.5,
                default_volume=350.0,
                category="coffee",
                is_preset=True,
                icon_color="#6B4423",
                updated_at=500,
            ),
            Drink(
                id="d2",
                name="hand drip",
                calculation_mode=CalculationMode.PER_GRAM,
                caffeine_per_gram=12.0,
                updated_at=600,
            ),
        ],
        user_settings={"weight": 70, "maxDailyCaffeine": 400, "nested": {"plan": [1, 2]}},
        webdav_password="secret",
        deleted_items=[
            DeletionTombstone("r0", TombstoneType.RECORD, 10),
            DeletionTombstone("d9", TombstoneType.DRINK, 20),
        ],
        sync_timestamp=5000,
    )


class TestImageConversion:
    def test_snapshot_survives_image_roundtrip(self, snapshot):
        assert from_bytes(to_bytes(snapshot)) == snapshot

    def test_image_survives_snapshot_roundtrip(self, snapshot):
        image = to_bytes(snapshot)
        assert from_bytes(to_bytes(from_bytes(image))) == from_bytes(image)

    def test_store_image_is_readable(self, snapshot):
        backend = MemoryBackend()
        store = PersistentStore(backend)
        store.open()
        store.import_snapshot(snapshot)
        store.close()

        assert from_bytes(backend.data).record_ids() == {"r1", "r2"}

    def test_empty_snapshot(self):
        result = from_bytes(to_bytes(Snapshot()))
        assert result.records == []
        assert result.user_settings == {}
        assert result.sync_timestamp is None

    def test_empty_bytes_raise(self):
        with pytest.raises(ParseError):
            from_bytes(b"")

    def test_garbage_bytes_raise(self):
        with pytest.raises(ParseError):
            from_bytes(b"definitely not sqlite" * 50)


class TestJsonConversion:
    def test_json_roundtrip(self, snapshot):
        assert snapshot_from_json(snapshot_to_json(snapshot)) == snapshot

    def test_accepts_bytes(self, snapshot):
        payload = snapshot_to_json(snapshot).encode("utf-8")
        assert snapshot_from_json(payload).sync_timestamp == 5000

    def test_accepts_dict(self):
        snapshot = snapshot_from_json({"caffeineRecords": [{"id": "r1", "timestamp": 1}]})
        assert snapshot.record_ids() == {"r1"}

    def test_output_shape(self, snapshot):
        data = json.loads(snapshot_to_json(snapshot))
        assert set(data) == {
            "records",
            "drinks",
            "userSettings",
            "webdavPassword",
            "deletedItems",
            "syncTimestamp",
        }

    def test_invalid_json_raises(self):
        with pytest.raises(ParseError):
            snapshot_from_json("{not json")

    def test_wrong_shape_raises(self):
        with pytest.raises(ParseError):
            snapshot_from_json("[1, 2, 3]")
