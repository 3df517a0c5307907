"""Tests for the snapshot data model."""

import pytest

from caffeine_tracker.errors import ParseError
from caffeine_tracker.models import (
    CalculationMode,
    ConsumptionRecord,
    DeletionTombstone,
    Drink,
    Snapshot,
    TombstoneType,
    parse_settings,
)


class TestConsumptionRecord:
    """Tests for ConsumptionRecord conversion."""

    def test_from_dict_full(self):
        record = ConsumptionRecord.from_dict(
            {
                "id": "r1",
                "name": "Espresso",
                "amount": 95,
                "volume": 30,
                "timestamp": 1000,
                "drinkId": "preset-espresso",
                "customName": None,
                "customAmount": None,
                "updatedAt": 1000,
            }
        )

        assert record.id == "r1"
        assert record.amount == 95.0
        assert isinstance(record.amount, float)
        assert record.volume == 30.0
        assert record.drink_id == "preset-espresso"
        assert record.updated_at == 1000

    def test_amount_defaults_to_zero(self):
        record = ConsumptionRecord.from_dict({"id": "r1", "timestamp": 5})
        assert record.amount == 0.0
        assert record.volume is None
        assert record.custom_amount is None

    def test_numeric_strings_are_coerced(self):
        record = ConsumptionRecord.from_dict(
            {"id": "r1", "amount": "63.5", "timestamp": "1700000000000"}
        )
        assert record.amount == 63.5
        assert record.timestamp == 1700000000000

    def test_missing_id_derived_from_timestamp(self):
        record = ConsumptionRecord.from_dict({"timestamp": 1234, "amount": 10})
        assert record.id == "record_1234"

    def test_snake_case_aliases(self):
        record = ConsumptionRecord.from_dict(
            {"id": "r1", "drink_id": "d1", "updated_at": 7, "custom_name": "Mine"}
        )
        assert record.drink_id == "d1"
        assert record.updated_at == 7
        assert record.custom_name == "Mine"

    def test_current_name_wins_over_alias(self):
        record = ConsumptionRecord.from_dict(
            {"id": "r1", "drinkId": "current", "drink_id": "legacy"}
        )
        assert record.drink_id == "current"

    def test_non_numeric_amount_raises(self):
        with pytest.raises(ParseError):
            ConsumptionRecord.from_dict({"id": "r1", "amount": "lots"})

    def test_negative_amount_raises(self):
        with pytest.raises(ParseError):
            ConsumptionRecord.from_dict({"id": "r1", "amount": -5})

    def test_to_dict_uses_camel_case(self):
        record = ConsumptionRecord(id="r1", name="Tea", amount=40, timestamp=10, drink_id="d1")
        data = record.to_dict()
        assert data["drinkId"] == "d1"
        assert "drink_id" not in data
        assert data["updatedAt"] is None


class TestDrink:
    """Tests for Drink conversion."""

    def test_from_dict_defaults(self):
        drink = Drink.from_dict({"id": "d1", "name": "Cola"})
        assert drink.calculation_mode is CalculationMode.PER_100ML
        assert drink.is_preset is False
        assert drink.caffeine_content is None

    def test_per_gram_mode(self):
        drink = Drink.from_dict(
            {
                "id": "preset-hand-drip",
                "name": "Hand drip",
                "calculationMode": "perGram",
                "caffeinePerGram": "12",
                "defaultVolume": 15,
                "isPreset": True,
            }
        )
        assert drink.calculation_mode is CalculationMode.PER_GRAM
        assert drink.caffeine_per_gram == 12.0
        assert drink.is_preset is True
        assert drink.to_dict()["calculationMode"] == "perGram"

    def test_missing_id_raises(self):
        with pytest.raises(ParseError):
            Drink.from_dict({"name": "Nameless"})

    def test_missing_name_raises(self):
        with pytest.raises(ParseError):
            Drink.from_dict({"id": "d1"})

    def test_unknown_mode_raises(self):
        with pytest.raises(ParseError):
            Drink.from_dict({"id": "d1", "name": "X", "calculationMode": "perCup"})


class TestDeletionTombstone:
    def test_roundtrip(self):
        tombstone = DeletionTombstone(id="r1", type=TombstoneType.RECORD, deleted_at=99)
        assert DeletionTombstone.from_dict(tombstone.to_dict()) == tombstone

    def test_unknown_type_raises(self):
        with pytest.raises(ParseError):
            DeletionTombstone.from_dict({"id": "x", "type": "setting", "deletedAt": 1})


class TestParseSettings:
    def test_dict_passthrough(self):
        assert parse_settings({"weight": 70}) == {"weight": 70}

    def test_json_string(self):
        assert parse_settings('{"weight": 70}') == {"weight": 70}

    def test_malformed_string_is_empty(self):
        assert parse_settings("{not json") == {}

    def test_non_object_is_empty(self):
        assert parse_settings("[1, 2]") == {}
        assert parse_settings(None) == {}


class TestSnapshot:
    """Tests for Snapshot JSON shape."""

    def test_to_dict_omits_missing_timestamp(self):
        data = Snapshot().to_dict()
        assert "syncTimestamp" not in data
        assert data["records"] == []
        assert data["webdavPassword"] is None

    def test_to_dict_includes_timestamp(self):
        assert Snapshot(sync_timestamp=5000).to_dict()["syncTimestamp"] == 5000

    def test_legacy_keys_accepted(self):
        snapshot = Snapshot.from_dict(
            {
                "caffeineRecords": [{"id": "r1", "amount": 80, "timestamp": 1}],
                "caffeineDrinks": [{"id": "d1", "name": "Latte"}],
                "caffeineSettings": '{"weight": 60}',
            }
        )
        assert [r.id for r in snapshot.records] == ["r1"]
        assert [d.id for d in snapshot.drinks] == ["d1"]
        assert snapshot.user_settings == {"weight": 60}

    def test_current_key_wins_over_legacy(self):
        snapshot = Snapshot.from_dict(
            {
                "records": [{"id": "new", "timestamp": 1}],
                "caffeineRecords": [{"id": "old", "timestamp": 1}],
                "userSettings": {"weight": 70},
                "caffeineSettings": {"weight": 50},
            }
        )
        assert [r.id for r in snapshot.records] == ["new"]
        assert snapshot.user_settings == {"weight": 70}

    def test_records_must_be_list(self):
        with pytest.raises(ParseError):
            Snapshot.from_dict({"records": {"id": "r1"}})

    def test_not_an_object(self):
        with pytest.raises(ParseError):
            Snapshot.from_dict(["records"])

    def test_json_roundtrip(self):
        original = Snapshot(
            records=[ConsumptionRecord(id="r1", name="A", amount=1.5, timestamp=3, updated_at=3)],
            drinks=[Drink(id="d1", name="B", updated_at=2)],
            user_settings={"weight": 70},
            webdav_password="secret",
            deleted_items=[DeletionTombstone("r0", TombstoneType.RECORD, 1)],
            sync_timestamp=42,
        )
        assert Snapshot.from_dict(original.to_dict()) == original

    def test_copy_is_deep(self):
        original = Snapshot(user_settings={"nested": {"a": 1}})
        clone = original.copy()
        clone.user_settings["nested"]["a"] = 2
        assert original.user_settings["nested"]["a"] == 1


class TestNumericBounds:
    """Non-finite and out-of-range numbers are rejected as parse errors."""

    @pytest.mark.parametrize("amount", [float("nan"), float("inf"), "NaN", "-Infinity"])
    def test_non_finite_amount(self, amount):
        with pytest.raises(ParseError):
            ConsumptionRecord.from_dict({"id": "r1", "amount": amount})

    def test_infinite_timestamp(self):
        with pytest.raises(ParseError):
            Snapshot.from_dict({"records": [], "syncTimestamp": float("inf")})

    def test_timestamp_beyond_integer_range(self):
        with pytest.raises(ParseError):
            ConsumptionRecord.from_dict({"id": "r1", "timestamp": 1e19})

    def test_huge_integer(self):
        with pytest.raises(ParseError):
            Snapshot.from_dict({"syncTimestamp": 10**400})

    def test_non_finite_drink_content(self):
        with pytest.raises(ParseError):
            Drink.from_dict({"id": "d1", "name": "X", "caffeineContent": float("nan")})
