"""Data model for consumption records, drinks, tombstones and snapshots.

The JSON shape uses camelCase keys, matching the file stored on the remote
endpoint and in backups. ``from_dict`` is tolerant: it accepts older key
names, coerces numeric strings and fills documented defaults.
"""

import copy
import json
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ParseError

logger = logging.getLogger(__name__)

# Accepted top-level keys per logical field, first match wins.
RECORDS_KEYS = ("records", "caffeineRecords")
DRINKS_KEYS = ("drinks", "caffeineDrinks")
SETTINGS_KEYS = ("userSettings", "caffeineSettings")
DELETED_KEYS = ("deletedItems", "deleted_items")

# SQLite INTEGER range
MAX_INT = 2**63 - 1
MIN_INT = -(2**63)


class CalculationMode(str, Enum):
    """Which content field of a drink is authoritative."""

    PER_GRAM = "perGram"
    PER_100ML = "per100ml"


class TombstoneType(str, Enum):
    RECORD = "record"
    DRINK = "drink"


def _pick(data: dict[str, Any], *names: str, default: Any = None) -> Any:
    """Return the value of the first key present in ``data``."""
    for name in names:
        if name in data:
            return data[name]
    return default


def _to_float(value: Any, field_name: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ParseError(f"Field '{field_name}' is not numeric: {value!r}") from e
    if not math.isfinite(number):
        raise ParseError(f"Field '{field_name}' is not finite: {value!r}")
    return number


def _to_int(value: Any, field_name: str) -> int | None:
    number = _to_float(value, field_name)
    if number is None:
        return None
    if not MIN_INT <= number <= MAX_INT:
        raise ParseError(f"Field '{field_name}' is out of range: {value!r}")
    return int(number)


def _to_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _require_mapping(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ParseError(f"{what} must be an object, got {type(data).__name__}")
    return data


@dataclass
class ConsumptionRecord:
    """A single logged caffeine intake."""

    id: str
    name: str
    amount: float = 0.0  # mg
    timestamp: int = 0  # event time, epoch ms
    volume: float | None = None  # ml
    drink_id: str | None = None
    custom_name: str | None = None
    custom_amount: float | None = None
    updated_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "amount": self.amount,
            "volume": self.volume,
            "timestamp": self.timestamp,
            "drinkId": self.drink_id,
            "customName": self.custom_name,
            "customAmount": self.custom_amount,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConsumptionRecord":
        data = _require_mapping(data, "Record")
        timestamp = _to_int(data.get("timestamp"), "timestamp") or 0
        record_id = _to_str(data.get("id")) or f"record_{timestamp}"

        amount = _to_float(data.get("amount"), "amount")
        if amount is not None and amount < 0:
            raise ParseError(f"Record {record_id} has negative amount {amount}")

        return cls(
            id=record_id,
            name=_to_str(data.get("name")) or "",
            amount=amount if amount is not None else 0.0,
            timestamp=timestamp,
            volume=_to_float(data.get("volume"), "volume"),
            drink_id=_to_str(_pick(data, "drinkId", "drink_id")),
            custom_name=_to_str(_pick(data, "customName", "custom_name")),
            custom_amount=_to_float(
                _pick(data, "customAmount", "custom_amount"), "customAmount"
            ),
            updated_at=_to_int(_pick(data, "updatedAt", "updated_at"), "updatedAt"),
        )


@dataclass
class Drink:
    """A drink definition, either preset or user-defined."""

    id: str
    name: str
    calculation_mode: CalculationMode = CalculationMode.PER_100ML
    caffeine_content: float | None = None  # mg per 100 ml
    caffeine_per_gram: float | None = None
    default_volume: float | None = None
    category: str | None = None
    is_preset: bool = False
    icon_color: str | None = None
    updated_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "calculationMode": self.calculation_mode.value,
            "caffeineContent": self.caffeine_content,
            "caffeinePerGram": self.caffeine_per_gram,
            "defaultVolume": self.default_volume,
            "category": self.category,
            "isPreset": self.is_preset,
            "iconColor": self.icon_color,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Drink":
        data = _require_mapping(data, "Drink")
        drink_id = _to_str(data.get("id"))
        if not drink_id:
            raise ParseError(f"Drink without id: {data!r}")
        name = data.get("name")
        if not isinstance(name, str):
            raise ParseError(f"Drink {drink_id} has no name")

        mode = _pick(data, "calculationMode", "calculation_mode")
        try:
            calculation_mode = (
                CalculationMode(mode) if mode else CalculationMode.PER_100ML
            )
        except ValueError as e:
            raise ParseError(f"Drink {drink_id} has unknown mode {mode!r}") from e

        return cls(
            id=drink_id,
            name=name,
            calculation_mode=calculation_mode,
            caffeine_content=_to_float(
                _pick(data, "caffeineContent", "caffeine_content"), "caffeineContent"
            ),
            caffeine_per_gram=_to_float(
                _pick(data, "caffeinePerGram", "caffeine_per_gram"), "caffeinePerGram"
            ),
            default_volume=_to_float(
                _pick(data, "defaultVolume", "default_volume"), "defaultVolume"
            ),
            category=_to_str(data.get("category")),
            is_preset=bool(_pick(data, "isPreset", "is_preset", default=False)),
            icon_color=_to_str(_pick(data, "iconColor", "icon_color")),
            updated_at=_to_int(_pick(data, "updatedAt", "updated_at"), "updatedAt"),
        )


@dataclass
class DeletionTombstone:
    """Marker left behind by a local delete."""

    id: str
    type: TombstoneType
    deleted_at: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type.value, "deletedAt": self.deleted_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeletionTombstone":
        data = _require_mapping(data, "Deleted item")
        try:
            item_type = TombstoneType(data.get("type"))
        except ValueError as e:
            raise ParseError(f"Unknown deleted item type {data.get('type')!r}") from e
        if not data.get("id"):
            raise ParseError(f"Deleted item without id: {data!r}")
        return cls(
            id=str(data["id"]),
            type=item_type,
            deleted_at=_to_int(_pick(data, "deletedAt", "deleted_at"), "deletedAt") or 0,
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.type.value, self.id)


def parse_settings(raw: Any) -> dict[str, Any]:
    """Normalize a settings value into a dict.

    Older backups stored the settings blob as a JSON string. Anything that
    does not decode to an object yields empty settings.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, (str, bytes)):
        try:
            decoded = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed settings blob")
            return {}
        if isinstance(decoded, dict):
            return decoded
    logger.warning(f"Ignoring settings of type {type(raw).__name__}")
    return {}


@dataclass
class Snapshot:
    """Complete exported state of one replica."""

    records: list[ConsumptionRecord] = field(default_factory=list)
    drinks: list[Drink] = field(default_factory=list)
    user_settings: dict[str, Any] = field(default_factory=dict)
    webdav_password: str | None = None
    deleted_items: list[DeletionTombstone] = field(default_factory=list)
    sync_timestamp: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON transport shape."""
        data: dict[str, Any] = {
            "records": [r.to_dict() for r in self.records],
            "drinks": [d.to_dict() for d in self.drinks],
            "userSettings": copy.deepcopy(self.user_settings),
            "webdavPassword": self.webdav_password,
            "deletedItems": [t.to_dict() for t in self.deleted_items],
        }
        if self.sync_timestamp is not None:
            data["syncTimestamp"] = self.sync_timestamp
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        """Build a snapshot from JSON data, accepting legacy key names."""
        data = _require_mapping(data, "Snapshot")

        records = _pick(data, *RECORDS_KEYS, default=None) or []
        drinks = _pick(data, *DRINKS_KEYS, default=None) or []
        deleted = _pick(data, *DELETED_KEYS, default=None) or []
        for key, value in (("records", records), ("drinks", drinks), ("deletedItems", deleted)):
            if not isinstance(value, list):
                raise ParseError(f"'{key}' must be a list")

        password = data.get("webdavPassword")

        return cls(
            records=[ConsumptionRecord.from_dict(r) for r in records],
            drinks=[Drink.from_dict(d) for d in drinks],
            user_settings=parse_settings(_pick(data, *SETTINGS_KEYS)),
            webdav_password=str(password) if password else None,
            deleted_items=[DeletionTombstone.from_dict(t) for t in deleted],
            sync_timestamp=_to_int(data.get("syncTimestamp"), "syncTimestamp"),
        )

    def copy(self) -> "Snapshot":
        """Deep copy, so callers never share mutable state."""
        return copy.deepcopy(self)

    def record_ids(self) -> set[str]:
        return {r.id for r in self.records}

    def drink_ids(self) -> set[str]:
        return {d.id for d in self.drinks}
