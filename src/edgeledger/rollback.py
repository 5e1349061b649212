"""Inversion of past connection mutations.

The engine reads a history entry, computes the opposite mutation, applies it
to the present-state store and records the rollback as a new entry pointing
back at the one it inverted:

    ```python
    engine = RollbackEngine(store, store, store)
    result = await engine.rollback(entry_id, "u-1", "Ada")
    if not result.success:
        print(result.error_kind, result.error)
    ```
"""

import logging
from typing import Any
from uuid import UUID

from edgeledger.errors import (
    EdgeLedgerError,
    InvalidChangeTypeError,
    NotFoundError,
    PreconditionError,
)
from edgeledger.models.connections import Connection, ConnectionType, ConnectionUpdate
from edgeledger.models.history import (
    ORIGINAL_CHANGE_TYPE_KEY,
    ROLLED_BACK_FROM_KEY,
    ChangeType,
    HistoryEntry,
    HistoryRecord,
)
from edgeledger.models.rollback import RollbackResult
from edgeledger.models.snapshots import snapshot_of
from edgeledger.storage.protocols import ConnectionStore, HistoryLedger, UnitOfWork

logger = logging.getLogger(__name__)

STALE_CONNECTION = "Connection has changed since this history entry was recorded"


class RollbackEngine:
    """Computes and applies the inverse of a recorded connection change.

    Every attempt runs inside one unit of work keyed by the entry's node
    pair, so the read of the current connection, the mutation and the new
    ledger entry either all land or none do.

    With ``strict`` enabled, undoing a creation or a modification also
    requires the live connection to still match the entry's ``after_state``.
    """

    def __init__(
        self,
        connections: ConnectionStore,
        history: HistoryLedger,
        transactions: UnitOfWork,
        *,
        strict: bool = True,
    ) -> None:
        self._connections = connections
        self._history = history
        self._transactions = transactions
        self._strict = strict

    async def rollback(
        self,
        history_id: UUID | str,
        actor_id: str,
        actor_name: str,
        reason: str | None = None,
    ) -> RollbackResult:
        """Invert the change recorded by ``history_id``.

        Never raises for known failures: they come back as a RollbackResult
        with ``success=False`` and an ``error_kind``.
        """
        try:
            entry = await self._history.get_entry(history_id)
            if entry is None:
                raise NotFoundError("History entry not found")
            async with self._transactions.transaction(entry.node_a, entry.node_b):
                current = await self._connections.find_by_pair(entry.node_a, entry.node_b)
                result = await self._invert(entry, current, actor_id, actor_name, reason)
        except EdgeLedgerError as e:
            logger.info(
                "rollback failed history_id=%s kind=%s error=%s",
                history_id,
                e.kind,
                e.message,
            )
            return RollbackResult.failure(e)
        except Exception as e:
            logger.exception("Unexpected error rolling back history entry %s", history_id)
            return RollbackResult(success=False, error=str(e), error_kind="unexpected")

        logger.info(
            "rolled back history_id=%s new_entry=%s",
            history_id,
            result.history_entry.id if result.history_entry else None,
        )
        return result

    async def _invert(
        self,
        entry: HistoryEntry,
        current: Connection | None,
        actor_id: str,
        actor_name: str,
        reason: str | None,
    ) -> RollbackResult:
        if entry.change_type == ChangeType.CREATED:
            return await self._undo_creation(entry, current, actor_id, actor_name, reason)
        if entry.change_type == ChangeType.DELETED:
            return await self._undo_deletion(entry, current, actor_id, actor_name, reason)
        if entry.change_type == ChangeType.MODIFIED:
            return await self._undo_modification(entry, current, actor_id, actor_name, reason)
        raise InvalidChangeTypeError("Unknown change type")

    async def _undo_creation(
        self,
        entry: HistoryEntry,
        current: Connection | None,
        actor_id: str,
        actor_name: str,
        reason: str | None,
    ) -> RollbackResult:
        if current is None:
            raise PreconditionError("Connection no longer exists")
        self._check_unchanged(entry, current)

        await self._connections.delete(current.id)
        new_entry = await self._history.record(
            HistoryRecord(
                connection_id=None,
                node_a=current.node_a,
                node_b=current.node_b,
                change_type=ChangeType.DELETED,
                actor_id=actor_id,
                actor_name=actor_name,
                before_state=snapshot_of(current),
                after_state=None,
                metadata=_provenance(entry, ChangeType.CREATED),
                reason=reason or f"Rolled back creation from history entry {entry.id}",
            )
        )
        return RollbackResult(
            success=True,
            deleted_connection_id=current.id,
            history_entry=new_entry,
        )

    async def _undo_deletion(
        self,
        entry: HistoryEntry,
        current: Connection | None,
        actor_id: str,
        actor_name: str,
        reason: str | None,
    ) -> RollbackResult:
        previous = entry.before_state
        if current is not None or previous is None:
            raise PreconditionError("Connection already exists or invalid previous state")

        restored = await self._connections.create(
            previous.node_a,
            previous.node_b,
            previous.type or ConnectionType.RELATED_TO,
            previous.metadata,
        )
        new_entry = await self._history.record(
            HistoryRecord(
                connection_id=restored.id,
                node_a=restored.node_a,
                node_b=restored.node_b,
                change_type=ChangeType.CREATED,
                actor_id=actor_id,
                actor_name=actor_name,
                before_state=None,
                after_state=snapshot_of(restored),
                metadata=_provenance(entry, ChangeType.DELETED),
                reason=reason or f"Rolled back deletion from history entry {entry.id}",
            )
        )
        return RollbackResult(
            success=True,
            restored_connection=restored,
            history_entry=new_entry,
        )

    async def _undo_modification(
        self,
        entry: HistoryEntry,
        current: Connection | None,
        actor_id: str,
        actor_name: str,
        reason: str | None,
    ) -> RollbackResult:
        previous = entry.before_state
        if current is None or previous is None:
            raise PreconditionError("Connection not found or invalid previous state")
        self._check_unchanged(entry, current)

        restored = await self._connections.update(
            current.id,
            ConnectionUpdate(
                type=previous.type or ConnectionType.RELATED_TO,
                metadata=previous.metadata,
            ),
        )
        new_entry = await self._history.record(
            HistoryRecord(
                connection_id=restored.id,
                node_a=restored.node_a,
                node_b=restored.node_b,
                change_type=ChangeType.MODIFIED,
                actor_id=actor_id,
                actor_name=actor_name,
                before_state=snapshot_of(current),
                after_state=snapshot_of(restored),
                metadata=_provenance(entry, ChangeType.MODIFIED),
                reason=reason or f"Rolled back modification from history entry {entry.id}",
            )
        )
        return RollbackResult(
            success=True,
            restored_connection=restored,
            history_entry=new_entry,
        )

    def _check_unchanged(self, entry: HistoryEntry, current: Connection) -> None:
        # Entries without an after_state cannot be compared and pass through
        if not self._strict or entry.after_state is None:
            return
        if not entry.after_state.matches(current):
            raise PreconditionError(STALE_CONNECTION)

    async def lineage(self, history_id: UUID | str) -> list[HistoryEntry]:
        """Follow rollback pointers from ``history_id`` back to the root change.

        The first element is the entry for ``history_id``. The walk stops at
        an ancestor that no longer exists, for example after a retention
        purge. Returns an empty list if ``history_id`` itself is unknown.
        """
        chain: list[HistoryEntry] = []
        seen: set[UUID] = set()
        next_id: str | None = str(history_id)
        while next_id is not None:
            entry = await self._history.get_entry(next_id)
            if entry is None or entry.id in seen:
                break
            chain.append(entry)
            seen.add(entry.id)
            next_id = entry.rolled_back_from
        return chain


def _provenance(entry: HistoryEntry, original: ChangeType) -> dict[str, Any]:
    return {
        ROLLED_BACK_FROM_KEY: str(entry.id),
        ORIGINAL_CHANGE_TYPE_KEY: original.value,
    }
