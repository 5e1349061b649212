from edgeledger.models.connections import Connection, ConnectionType, ConnectionUpdate
from edgeledger.models.history import (
    ORIGINAL_CHANGE_TYPE_KEY,
    ROLLED_BACK_FROM_KEY,
    ChangeType,
    HistoryEntry,
    HistoryPage,
    HistoryRecord,
    HistoryStats,
)
from edgeledger.models.rollback import RollbackResult
from edgeledger.models.snapshots import (
    ConnectionSnapshot,
    ConnectionSnapshotV1,
    ConnectionSnapshotV2,
    parse_snapshot,
    snapshot_of,
)

__all__ = [
    "ChangeType",
    "Connection",
    "ConnectionSnapshot",
    "ConnectionSnapshotV1",
    "ConnectionSnapshotV2",
    "ConnectionType",
    "ConnectionUpdate",
    "HistoryEntry",
    "HistoryPage",
    "HistoryRecord",
    "HistoryStats",
    "ORIGINAL_CHANGE_TYPE_KEY",
    "ROLLED_BACK_FROM_KEY",
    "RollbackResult",
    "parse_snapshot",
    "snapshot_of",
]
