"""Snapshot synchronization over a WebDAV endpoint.

Provides opportunistic, eventually-consistent sync of whole snapshots
through one JSON file on the remote, with no coordinating server.
"""

from .engine import SyncEngine, SyncResult, SyncStatus
from .merge import MergeDecision, MergeOutcome, decide, reconcile, union_merge
from .webdav_client import ConnectionTestResult, WebDAVClient

__all__ = [
    "ConnectionTestResult",
    "MergeDecision",
    "MergeOutcome",
    "SyncEngine",
    "SyncResult",
    "SyncStatus",
    "WebDAVClient",
    "decide",
    "reconcile",
    "union_merge",
]
