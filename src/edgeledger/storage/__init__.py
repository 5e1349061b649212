from edgeledger.storage.kuzu_store import KuzuLedgerStore
from edgeledger.storage.protocols import (
    ConnectionStore,
    HistoryLedger,
    LedgerStore,
    UnitOfWork,
)

__all__ = [
    "ConnectionStore",
    "HistoryLedger",
    "KuzuLedgerStore",
    "LedgerStore",
    "UnitOfWork",
]
