from uuid import UUID

from pydantic import BaseModel

from edgeledger.errors import EdgeLedgerError, ErrorKind
from edgeledger.models.connections import Connection
from edgeledger.models.history import HistoryEntry


class RollbackResult(BaseModel):
    """Structured outcome of a rollback attempt.

    Successful rollbacks carry the new history entry plus either the restored
    connection (undoing a deletion or modification) or the id of the deleted
    connection (undoing a creation).
    """

    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None
    restored_connection: Connection | None = None
    deleted_connection_id: UUID | None = None
    history_entry: HistoryEntry | None = None

    @classmethod
    def failure(cls, error: EdgeLedgerError) -> "RollbackResult":
        return cls(success=False, error=error.message, error_kind=error.kind)
