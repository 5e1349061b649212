from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol
from uuid import UUID

from edgeledger.models.connections import Connection, ConnectionType, ConnectionUpdate
from edgeledger.models.history import HistoryEntry, HistoryRecord, HistoryStats


class ConnectionStore(Protocol):
    """Present-state connections.

    Pure CRUD; never touches the history ledger. Callers pair each mutation
    with a ledger append inside a ``UnitOfWork`` transaction.
    """

    async def find_by_pair(self, node_a: str, node_b: str) -> Connection | None:
        """Get the connection between two nodes, matching either ordering."""
        ...

    async def get(self, connection_id: UUID | str) -> Connection | None:
        """Get a connection by id."""
        ...

    async def list_by_node(self, node_id: str) -> list[Connection]:
        """Get all connections touching a node, newest first."""
        ...

    async def create(
        self,
        node_a: str,
        node_b: str,
        connection_type: ConnectionType = ConnectionType.RELATED_TO,
        metadata: Any = None,
    ) -> Connection:
        """Create a connection, keeping the given node order."""
        ...

    async def update(
        self, connection_id: UUID | str, fields: ConnectionUpdate
    ) -> Connection:
        """Apply a partial update. Raises NotFoundError if absent."""
        ...

    async def delete(self, connection_id: UUID | str) -> None:
        """Delete a connection. Raises NotFoundError if absent."""
        ...


class HistoryLedger(Protocol):
    """Append-only store of connection history entries.

    Entries are never edited. The only removal path is ``cleanup``, which
    purges by age.
    """

    async def record(self, record: HistoryRecord) -> HistoryEntry:
        """Assign id and timestamp, insert, and return the stored entry."""
        ...

    async def get_entry(self, history_id: UUID | str) -> HistoryEntry | None:
        """Get an entry by id."""
        ...

    async def query_by_pair(
        self, node_a: str, node_b: str, *, limit: int = 50, offset: int = 0
    ) -> list[HistoryEntry]:
        """Entries for a node pair in either ordering, newest first."""
        ...

    async def query_by_actor(
        self, actor_id: str, *, limit: int = 100, offset: int = 0
    ) -> list[HistoryEntry]:
        """Entries recorded by one actor, newest first."""
        ...

    async def query_by_node_set(
        self, node_ids: list[str], *, limit: int = 100, offset: int = 0
    ) -> list[HistoryEntry]:
        """Entries whose node_a or node_b is in ``node_ids``, newest first."""
        ...

    async def stats(self, actor_id: str | None = None) -> HistoryStats:
        """Counts per change type plus the most recent entries."""
        ...

    async def count_older_than(self, older_than_days: int) -> int:
        """Number of entries ``cleanup`` would delete."""
        ...

    async def cleanup(self, older_than_days: int) -> int:
        """Delete entries created before now - older_than_days. Returns count."""
        ...


class UnitOfWork(Protocol):
    """Serializable unit of work keyed by an unordered node pair."""

    def transaction(
        self, node_a: str, node_b: str
    ) -> AbstractAsyncContextManager[None]:
        """Run the enclosed reads and writes atomically.

        Operations on the same pair from other units of work cannot
        interleave. An exception inside the block rolls every write back.
        """
        ...


class LedgerStore(ConnectionStore, HistoryLedger, UnitOfWork, Protocol):
    """A backend holding both tables so one transaction can span them."""

    async def connect(self) -> None:
        """Connect to the database."""
        ...

    async def close(self) -> None:
        """Close the connection."""
        ...

    async def initialize_schema(self) -> None:
        """Create tables, constraints and indexes."""
        ...
