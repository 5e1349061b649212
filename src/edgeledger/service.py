"""Ordinary connection mutations, each paired with exactly one ledger entry."""

import logging
from typing import Any
from uuid import UUID

from edgeledger.errors import NotFoundError, PreconditionError
from edgeledger.models.connections import Connection, ConnectionType, ConnectionUpdate
from edgeledger.models.history import ChangeType, HistoryEntry, HistoryRecord
from edgeledger.models.snapshots import snapshot_of
from edgeledger.storage.protocols import ConnectionStore, HistoryLedger, UnitOfWork

logger = logging.getLogger(__name__)


class ConnectionService:
    """Create, update and delete connections with an audit trail.

    Each mutation runs in a unit of work together with its CREATED, MODIFIED
    or DELETED history entry. Known failures raise EdgeLedgerError
    subclasses.
    """

    def __init__(
        self,
        connections: ConnectionStore,
        history: HistoryLedger,
        transactions: UnitOfWork,
    ) -> None:
        self._connections = connections
        self._history = history
        self._transactions = transactions

    async def create(
        self,
        node_a: str,
        node_b: str,
        *,
        actor_id: str,
        actor_name: str,
        type: ConnectionType = ConnectionType.RELATED_TO,
        metadata: Any = None,
        reason: str | None = None,
    ) -> Connection:
        """Connect two nodes.

        Raises:
            PreconditionError: If the pair is already connected in either order.
        """
        async with self._transactions.transaction(node_a, node_b):
            if await self._connections.find_by_pair(node_a, node_b) is not None:
                raise PreconditionError("Connection already exists")
            connection = await self._connections.create(node_a, node_b, type, metadata)
            await self._history.record(
                HistoryRecord(
                    connection_id=connection.id,
                    node_a=connection.node_a,
                    node_b=connection.node_b,
                    change_type=ChangeType.CREATED,
                    actor_id=actor_id,
                    actor_name=actor_name,
                    after_state=snapshot_of(connection),
                    reason=reason,
                )
            )
        logger.debug("created connection id=%s node_a=%s node_b=%s", connection.id, node_a, node_b)
        return connection

    async def update(
        self,
        connection_id: UUID | str,
        fields: ConnectionUpdate,
        *,
        actor_id: str,
        actor_name: str,
        reason: str | None = None,
    ) -> Connection:
        """Apply a partial update and record the before/after snapshots."""
        current = await self._require(connection_id)
        async with self._transactions.transaction(current.node_a, current.node_b):
            # Re-read under the lock; the first read only located the pair
            current = await self._require(connection_id)
            updated = await self._connections.update(current.id, fields)
            await self._history.record(
                HistoryRecord(
                    connection_id=updated.id,
                    node_a=updated.node_a,
                    node_b=updated.node_b,
                    change_type=ChangeType.MODIFIED,
                    actor_id=actor_id,
                    actor_name=actor_name,
                    before_state=snapshot_of(current),
                    after_state=snapshot_of(updated),
                    reason=reason,
                )
            )
        logger.debug("updated connection id=%s version=%d", updated.id, updated.version)
        return updated

    async def delete(
        self,
        connection_id: UUID | str,
        *,
        actor_id: str,
        actor_name: str,
        reason: str | None = None,
    ) -> None:
        """Delete a connection, keeping its last state in the ledger."""
        current = await self._require(connection_id)
        async with self._transactions.transaction(current.node_a, current.node_b):
            current = await self._require(connection_id)
            await self._connections.delete(current.id)
            await self._history.record(
                HistoryRecord(
                    connection_id=None,
                    node_a=current.node_a,
                    node_b=current.node_b,
                    change_type=ChangeType.DELETED,
                    actor_id=actor_id,
                    actor_name=actor_name,
                    before_state=snapshot_of(current),
                    reason=reason,
                )
            )
        logger.debug("deleted connection id=%s", current.id)

    async def get(self, connection_id: UUID | str) -> Connection | None:
        return await self._connections.get(connection_id)

    async def list_for_node(self, node_id: str) -> list[Connection]:
        return await self._connections.list_by_node(node_id)

    async def history(
        self, connection_id: UUID | str, limit: int = 50, offset: int = 0
    ) -> list[HistoryEntry]:
        """History of the connection's node pair, newest first.

        Includes entries from earlier connections between the same two nodes.
        """
        connection = await self._require(connection_id)
        return await self._history.query_by_pair(
            connection.node_a, connection.node_b, limit=limit, offset=offset
        )

    async def _require(self, connection_id: UUID | str) -> Connection:
        connection = await self._connections.get(connection_id)
        if connection is None:
            raise NotFoundError("Connection not found")
        return connection
