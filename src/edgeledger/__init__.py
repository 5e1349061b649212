from edgeledger.config import EdgeLedgerConfig
from edgeledger.edgeledger import EdgeLedger
from edgeledger.errors import (
    EdgeLedgerError,
    InvalidChangeTypeError,
    NotFoundError,
    PreconditionError,
    StorageError,
)
from edgeledger.models import (
    ChangeType,
    Connection,
    ConnectionSnapshot,
    ConnectionSnapshotV1,
    ConnectionSnapshotV2,
    ConnectionType,
    ConnectionUpdate,
    HistoryEntry,
    HistoryPage,
    HistoryRecord,
    HistoryStats,
    RollbackResult,
)
from edgeledger.retention import RetentionJanitor
from edgeledger.rollback import RollbackEngine
from edgeledger.service import ConnectionService
from edgeledger.storage import (
    ConnectionStore,
    HistoryLedger,
    KuzuLedgerStore,
    LedgerStore,
    UnitOfWork,
)

__all__ = [
    # Main class
    "EdgeLedger",
    # Config
    "EdgeLedgerConfig",
    # Components
    "ConnectionService",
    "RollbackEngine",
    "RetentionJanitor",
    # Errors
    "EdgeLedgerError",
    "NotFoundError",
    "PreconditionError",
    "InvalidChangeTypeError",
    "StorageError",
    # Models - Connections
    "Connection",
    "ConnectionType",
    "ConnectionUpdate",
    # Models - History
    "ChangeType",
    "ConnectionSnapshot",
    "ConnectionSnapshotV1",
    "ConnectionSnapshotV2",
    "HistoryEntry",
    "HistoryPage",
    "HistoryRecord",
    "HistoryStats",
    "RollbackResult",
    # Storage
    "ConnectionStore",
    "HistoryLedger",
    "UnitOfWork",
    "LedgerStore",
    "KuzuLedgerStore",
]
