"""Reconciliation of a local and a remote Snapshot.

Two policies live here:

- :func:`reconcile` picks one side wholesale by ``sync_timestamp``. This is
  the only policy :class:`~caffeine_tracker.sync.engine.SyncEngine` uses.
- :func:`union_merge` keeps every item from both sides. It is reached only
  through an explicit merge import of a backup.

Neither function mutates its inputs.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from ..models import (
    ConsumptionRecord,
    DeletionTombstone,
    Drink,
    Snapshot,
    TombstoneType,
)

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT", ConsumptionRecord, Drink)


class MergeDecision(Enum):
    """Which side a sync keeps."""

    UPLOAD_LOCAL = "upload_local"
    ADOPT_REMOTE = "adopt_remote"


@dataclass
class MergeOutcome:
    decision: MergeDecision
    snapshot: Snapshot


def decide(local: Snapshot, remote: Snapshot | None) -> MergeDecision:
    """Choose between uploading local state and adopting the remote.

    A zero timestamp counts as missing. Ties go to local.
    """
    if remote is None or not remote.sync_timestamp:
        return MergeDecision.UPLOAD_LOCAL
    if not local.sync_timestamp:
        return MergeDecision.ADOPT_REMOTE
    if local.sync_timestamp >= remote.sync_timestamp:
        return MergeDecision.UPLOAD_LOCAL
    return MergeDecision.ADOPT_REMOTE


def reconcile(local: Snapshot, remote: Snapshot | None) -> MergeOutcome:
    """Apply :func:`decide` and build the resulting snapshot.

    When the remote wins, the local sync credential is kept since it is
    never stored remotely.
    """
    decision = decide(local, remote)

    if decision is MergeDecision.UPLOAD_LOCAL:
        result = local.copy()
    else:
        result = remote.copy()
        result.webdav_password = local.webdav_password

    logger.info(
        f"Merge decision: {decision.value} "
        f"(local={local.sync_timestamp}, "
        f"remote={remote.sync_timestamp if remote else None})"
    )
    return MergeOutcome(decision=decision, snapshot=result)


def _merge_tombstones(
    local: list[DeletionTombstone], remote: list[DeletionTombstone]
) -> dict[tuple[str, str], DeletionTombstone]:
    merged: dict[tuple[str, str], DeletionTombstone] = {}
    for tombstone in [*local, *remote]:
        existing = merged.get(tombstone.key)
        if existing is None or tombstone.deleted_at > existing.deleted_at:
            merged[tombstone.key] = DeletionTombstone(
                id=tombstone.id, type=tombstone.type, deleted_at=tombstone.deleted_at
            )
    return merged


def _is_suppressed(
    item_id: str,
    updated_at: int,
    item_type: TombstoneType,
    tombstones: dict[tuple[str, str], DeletionTombstone],
) -> bool:
    tombstone = tombstones.get((item_type.value, item_id))
    return tombstone is not None and tombstone.deleted_at >= updated_at


def _union(
    local_items: list[ItemT],
    remote_items: list[ItemT],
    item_type: TombstoneType,
    tombstones: dict[tuple[str, str], DeletionTombstone],
) -> list[ItemT]:
    """Local items first, then remote items whose id is new.

    Suppression looks at the newest edit of an id on either side, so the
    surviving id set does not depend on argument order.
    """
    newest: dict[str, int] = {}
    for item in [*local_items, *remote_items]:
        newest[item.id] = max(newest.get(item.id, 0), item.updated_at or 0)

    seen: set[str] = set()
    merged: list[ItemT] = []
    for item in [*local_items, *remote_items]:
        if item.id in seen:
            continue
        seen.add(item.id)
        if _is_suppressed(item.id, newest[item.id], item_type, tombstones):
            logger.debug(f"Dropping deleted {item_type.value} {item.id}")
            continue
        merged.append(item)
    return merged


def union_merge(local: Snapshot, remote: Snapshot | None, now_ms: int) -> Snapshot:
    """Union both snapshots by id.

    Every local item is kept as-is; a remote item is added only when its id
    is absent locally. Items whose tombstone is at least as new as their
    ``updated_at`` are dropped, so deletions propagate instead of
    resurrecting. Settings come from the side with the newer (or equal)
    ``sync_timestamp``, local on ties.

    Returns:
        A new Snapshot stamped with ``now_ms``.
    """
    local = local.copy()
    if remote is None:
        local.sync_timestamp = now_ms
        return local
    remote = remote.copy()

    tombstones = _merge_tombstones(local.deleted_items, remote.deleted_items)

    records = _union(local.records, remote.records, TombstoneType.RECORD, tombstones)
    records.sort(key=lambda r: r.timestamp, reverse=True)
    drinks = _union(local.drinks, remote.drinks, TombstoneType.DRINK, tombstones)

    local_ts = local.sync_timestamp or 0
    remote_ts = remote.sync_timestamp or 0
    settings = local.user_settings if local_ts >= remote_ts else remote.user_settings

    merged = Snapshot(
        records=records,
        drinks=drinks,
        user_settings=settings,
        webdav_password=local.webdav_password,
        deleted_items=sorted(tombstones.values(), key=lambda t: (t.deleted_at, t.id)),
        sync_timestamp=now_ms,
    )
    logger.info(
        f"Union merge: {len(merged.records)} records, {len(merged.drinks)} drinks, "
        f"{len(merged.deleted_items)} tombstones"
    )
    return merged
