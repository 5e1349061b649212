"""Kùzu embedded graph database implementation of LedgerStore."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, TypeVar
from uuid import UUID

import kuzu

from edgeledger.errors import NotFoundError, StorageError
from edgeledger.models.connections import Connection, ConnectionType, ConnectionUpdate
from edgeledger.models.history import (
    RECENT_ACTIVITY_LIMIT,
    ChangeType,
    HistoryEntry,
    HistoryRecord,
    HistoryStats,
)
from edgeledger.storage.common import (
    LedgerClock,
    check_page,
    from_timestamp,
    retention_cutoff,
    to_timestamp,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# The store whose transaction the running task is inside, if any.
_active_store: ContextVar["KuzuLedgerStore | None"] = ContextVar(
    "edgeledger_kuzu_transaction", default=None
)

_CONNECTION_COLUMNS = (
    "c.id, c.node_a, c.node_b, c.connection_type, c.metadata, "
    "c.version, c.created_at, c.updated_at"
)
_HISTORY_COLUMNS = (
    "h.id, h.connection_id, h.node_a, h.node_b, h.change_type, h.actor_id, "
    "h.actor_name, h.before_state, h.after_state, h.metadata, h.reason, h.created_at"
)


def _result_to_dicts(result: kuzu.QueryResult) -> list[dict[str, Any]]:
    """Convert a Kùzu QueryResult to a list of dicts keyed by column name."""
    columns = result.get_column_names()
    rows = []
    while result.has_next():
        values = result.get_next()
        rows.append(dict(zip(columns, values)))
    return rows


def _single(result: kuzu.QueryResult) -> dict[str, Any] | None:
    """Get a single result row as a dict, or None."""
    columns = result.get_column_names()
    if result.has_next():
        values = result.get_next()
        return dict(zip(columns, values))
    return None


# Kùzu parameters cannot carry NULL reliably; optional columns hold "".
def _dump_json(value: Any) -> str:
    return "" if value is None else json.dumps(value)


def _load_json(value: str | None) -> Any:
    return json.loads(value) if value else None


def _statement(statement: str) -> Callable[[kuzu.Connection], None]:
    """Run a result-less statement, closing its result before returning."""

    def _execute(conn: kuzu.Connection) -> None:
        conn.execute(statement).close()

    return _execute


def _row_to_connection(row: dict[str, Any]) -> Connection:
    try:
        return Connection(
            id=UUID(row["c.id"]),
            node_a=row["c.node_a"],
            node_b=row["c.node_b"],
            type=ConnectionType(row["c.connection_type"]),
            metadata=_load_json(row["c.metadata"]),
            version=row["c.version"],
            created_at=from_timestamp(row["c.created_at"]),
            updated_at=from_timestamp(row["c.updated_at"]),
        )
    except ValueError as e:
        raise StorageError(f"Corrupt connection row {row['c.id']!r}: {e}") from e


def _row_to_entry(row: dict[str, Any]) -> HistoryEntry:
    # ValidationError and malformed ids or JSON are all ValueErrors
    try:
        return HistoryEntry(
            id=UUID(row["h.id"]),
            connection_id=UUID(row["h.connection_id"]) if row["h.connection_id"] else None,
            node_a=row["h.node_a"],
            node_b=row["h.node_b"],
            change_type=row["h.change_type"],
            actor_id=row["h.actor_id"],
            actor_name=row["h.actor_name"],
            before_state=_load_json(row["h.before_state"]),
            after_state=_load_json(row["h.after_state"]),
            metadata=_load_json(row["h.metadata"]) or {},
            reason=row["h.reason"] or None,
            created_at=from_timestamp(row["h.created_at"]),
        )
    except ValueError as e:
        raise StorageError(f"Corrupt history row {row['h.id']!r}: {e}") from e


def _connection_params(connection: Connection) -> dict[str, Any]:
    return {
        "id": str(connection.id),
        "node_a": connection.node_a,
        "node_b": connection.node_b,
        "connection_type": connection.type.value,
        "metadata": _dump_json(connection.metadata),
        "version": connection.version,
        "created_at": to_timestamp(connection.created_at),
        "updated_at": to_timestamp(connection.updated_at),
    }


def _entry_params(entry: HistoryEntry) -> dict[str, Any]:
    data = entry.model_dump(mode="json")
    return {
        "id": data["id"],
        "connection_id": data["connection_id"] or "",
        "node_a": entry.node_a,
        "node_b": entry.node_b,
        "change_type": data["change_type"],
        "actor_id": entry.actor_id,
        "actor_name": entry.actor_name,
        "before_state": _dump_json(data["before_state"]),
        "after_state": _dump_json(data["after_state"]),
        "metadata": json.dumps(data["metadata"]),
        "reason": entry.reason or "",
        "created_at": to_timestamp(entry.created_at),
    }


class KuzuLedgerStore:
    """Kùzu embedded implementation of ConnectionStore, HistoryLedger and UnitOfWork.

    Uses an embedded Kùzu database that requires no external server.
    All operations are synchronous in Kùzu and wrapped with asyncio.to_thread().
    A store-wide lock serializes access to the single connection, so a
    transaction is exclusive for its whole duration.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: kuzu.Database | None = None
        self._conn: kuzu.Connection | None = None
        self._lock = asyncio.Lock()
        self._clock = LedgerClock()

    async def connect(self) -> None:
        """Connect to the Kùzu database."""
        self._db_path.mkdir(parents=True, exist_ok=True)
        # Kùzu needs a non-existing subpath or existing DB directory
        graph_dir = self._db_path / "kuzu_db"

        def _connect() -> tuple[kuzu.Database, kuzu.Connection]:
            db = kuzu.Database(str(graph_dir))
            conn = kuzu.Connection(db)
            return db, conn

        self._db, self._conn = await asyncio.to_thread(_connect)

    async def close(self) -> None:
        """Close the connection.

        Only drops the references: query results still held elsewhere keep
        the database alive until they are collected.
        """
        self._conn = None
        self._db = None

    async def initialize_schema(self) -> None:
        """Create connection and history tables."""

        def _init_schema(conn: kuzu.Connection) -> None:
            conn.execute("""
                CREATE NODE TABLE IF NOT EXISTS ContentConnection(
                    id STRING,
                    node_a STRING,
                    node_b STRING,
                    connection_type STRING,
                    metadata STRING,
                    version INT64,
                    created_at STRING,
                    updated_at STRING,
                    PRIMARY KEY(id)
                )
            """)
            conn.execute("""
                CREATE NODE TABLE IF NOT EXISTS ConnectionHistory(
                    id STRING,
                    connection_id STRING,
                    node_a STRING,
                    node_b STRING,
                    change_type STRING,
                    actor_id STRING,
                    actor_name STRING,
                    before_state STRING,
                    after_state STRING,
                    metadata STRING,
                    reason STRING,
                    created_at STRING,
                    PRIMARY KEY(id)
                )
            """)

        await self._run(_init_schema)

    # =========================================================================
    # Execution and transactions
    # =========================================================================

    def _require_conn(self) -> kuzu.Connection:
        if not self._conn:
            raise RuntimeError("Not connected")
        return self._conn

    async def _run(self, fn: Callable[[kuzu.Connection], T]) -> T:
        """Run ``fn`` on a worker thread, joining the caller's transaction."""
        conn = self._require_conn()
        if _active_store.get() is self:
            return await self._call(fn, conn)
        async with self._lock:
            return await self._call(fn, conn)

    @staticmethod
    async def _call(fn: Callable[[kuzu.Connection], T], conn: kuzu.Connection) -> T:
        try:
            return await asyncio.to_thread(fn, conn)
        except RuntimeError as e:
            # Kùzu reports binder, runtime and I/O failures as RuntimeError
            raise StorageError(str(e)) from e

    @asynccontextmanager
    async def transaction(self, node_a: str, node_b: str) -> AsyncIterator[None]:
        """Exclusive read-write transaction.

        Kùzu allows a single writer, so the unit of work covers the whole
        database rather than just the ``(node_a, node_b)`` pair. Nested calls
        join the outer transaction.
        """
        conn = self._require_conn()
        if _active_store.get() is self:
            yield
            return

        async with self._lock:
            await self._call(_statement("BEGIN TRANSACTION"), conn)
            token = _active_store.set(self)
            try:
                yield
            except BaseException:
                try:
                    await self._call(_statement("ROLLBACK"), conn)
                except StorageError as rollback_error:
                    # Kùzu aborts the transaction itself when a statement fails
                    logger.debug("rollback after failure skipped: %s", rollback_error)
                raise
            else:
                await self._call(_statement("COMMIT"), conn)
            finally:
                _active_store.reset(token)
        logger.debug("transaction committed node_a=%s node_b=%s", node_a, node_b)

    # =========================================================================
    # ConnectionStore
    # =========================================================================

    async def find_by_pair(self, node_a: str, node_b: str) -> Connection | None:
        """Get the connection between two nodes, matching either ordering."""

        def _find(conn: kuzu.Connection) -> Connection | None:
            result = conn.execute(
                "MATCH (c:ContentConnection) "
                "WHERE (c.node_a = $a AND c.node_b = $b) "
                "OR (c.node_a = $b AND c.node_b = $a) "
                f"RETURN {_CONNECTION_COLUMNS} "
                "ORDER BY c.created_at ASC LIMIT 1",
                {"a": node_a, "b": node_b},
            )
            row = _single(result)
            return _row_to_connection(row) if row else None

        return await self._run(_find)

    async def get(self, connection_id: UUID | str) -> Connection | None:
        """Get a connection by id."""

        def _get(conn: kuzu.Connection) -> Connection | None:
            result = conn.execute(
                f"MATCH (c:ContentConnection) WHERE c.id = $id RETURN {_CONNECTION_COLUMNS}",
                {"id": str(connection_id)},
            )
            row = _single(result)
            return _row_to_connection(row) if row else None

        return await self._run(_get)

    async def list_by_node(self, node_id: str) -> list[Connection]:
        """Get all connections touching a node, newest first."""

        def _list(conn: kuzu.Connection) -> list[Connection]:
            result = conn.execute(
                "MATCH (c:ContentConnection) "
                "WHERE c.node_a = $node_id OR c.node_b = $node_id "
                f"RETURN {_CONNECTION_COLUMNS} "
                "ORDER BY c.created_at DESC",
                {"node_id": node_id},
            )
            return [_row_to_connection(row) for row in _result_to_dicts(result)]

        return await self._run(_list)

    async def create(
        self,
        node_a: str,
        node_b: str,
        connection_type: ConnectionType = ConnectionType.RELATED_TO,
        metadata: Any = None,
    ) -> Connection:
        """Create a connection, keeping the given node order."""
        now = self._clock.now()
        connection = Connection(
            node_a=node_a,
            node_b=node_b,
            type=connection_type,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )

        def _create(conn: kuzu.Connection) -> None:
            conn.execute(
                """
                CREATE (c:ContentConnection {
                    id: $id,
                    node_a: $node_a,
                    node_b: $node_b,
                    connection_type: $connection_type,
                    metadata: $metadata,
                    version: $version,
                    created_at: $created_at,
                    updated_at: $updated_at
                })
                """,
                _connection_params(connection),
            )

        await self._run(_create)
        return connection

    async def update(
        self, connection_id: UUID | str, fields: ConnectionUpdate
    ) -> Connection:
        """Apply a partial update and bump the version."""
        now = self._clock.now()

        def _update(conn: kuzu.Connection) -> Connection:
            result = conn.execute(
                f"MATCH (c:ContentConnection) WHERE c.id = $id RETURN {_CONNECTION_COLUMNS}",
                {"id": str(connection_id)},
            )
            row = _single(result)
            if row is None:
                raise NotFoundError("Connection not found")
            updated = fields.apply(_row_to_connection(row), now=now)
            params = _connection_params(updated)
            conn.execute(
                """
                MATCH (c:ContentConnection) WHERE c.id = $id
                SET c.connection_type = $connection_type,
                    c.metadata = $metadata,
                    c.version = $version,
                    c.updated_at = $updated_at
                """,
                {
                    key: params[key]
                    for key in ("id", "connection_type", "metadata", "version", "updated_at")
                },
            )
            return updated

        return await self._run(_update)

    async def delete(self, connection_id: UUID | str) -> None:
        """Delete a connection by id."""

        def _delete(conn: kuzu.Connection) -> None:
            result = conn.execute(
                "MATCH (c:ContentConnection) WHERE c.id = $id RETURN count(*) AS cnt",
                {"id": str(connection_id)},
            )
            row = _single(result)
            if not row or row["cnt"] == 0:
                raise NotFoundError("Connection not found")
            conn.execute(
                "MATCH (c:ContentConnection) WHERE c.id = $id DELETE c",
                {"id": str(connection_id)},
            )

        await self._run(_delete)

    # =========================================================================
    # HistoryLedger
    # =========================================================================

    async def record(self, record: HistoryRecord) -> HistoryEntry:
        """Assign id and timestamp, insert, and return the stored entry."""
        entry = HistoryEntry.from_record(record, created_at=self._clock.now())

        def _record(conn: kuzu.Connection) -> None:
            conn.execute(
                """
                CREATE (h:ConnectionHistory {
                    id: $id,
                    connection_id: $connection_id,
                    node_a: $node_a,
                    node_b: $node_b,
                    change_type: $change_type,
                    actor_id: $actor_id,
                    actor_name: $actor_name,
                    before_state: $before_state,
                    after_state: $after_state,
                    metadata: $metadata,
                    reason: $reason,
                    created_at: $created_at
                })
                """,
                _entry_params(entry),
            )

        await self._run(_record)
        logger.debug(
            "record id=%s change_type=%s node_a=%s node_b=%s",
            entry.id,
            entry.change_type,
            entry.node_a,
            entry.node_b,
        )
        return entry

    async def get_entry(self, history_id: UUID | str) -> HistoryEntry | None:
        """Get an entry by id."""

        def _get(conn: kuzu.Connection) -> HistoryEntry | None:
            result = conn.execute(
                f"MATCH (h:ConnectionHistory) WHERE h.id = $id RETURN {_HISTORY_COLUMNS}",
                {"id": str(history_id)},
            )
            row = _single(result)
            return _row_to_entry(row) if row else None

        return await self._run(_get)

    @staticmethod
    def _query_entries(
        conn: kuzu.Connection,
        where: str,
        params: dict[str, Any],
        limit: int,
        offset: int,
    ) -> list[HistoryEntry]:
        result = conn.execute(
            f"MATCH (h:ConnectionHistory) {where} "
            f"RETURN {_HISTORY_COLUMNS} "
            "ORDER BY h.created_at DESC, h.id DESC "
            f"SKIP {int(offset)} LIMIT {int(limit)}",
            params,
        )
        return [_row_to_entry(row) for row in _result_to_dicts(result)]

    async def _query(
        self, where: str, params: dict[str, Any], limit: int, offset: int
    ) -> list[HistoryEntry]:
        check_page(limit, offset)
        return await self._run(
            lambda conn: self._query_entries(conn, where, params, limit, offset)
        )

    async def query_by_pair(
        self, node_a: str, node_b: str, *, limit: int = 50, offset: int = 0
    ) -> list[HistoryEntry]:
        """Entries for a node pair in either ordering, newest first."""
        return await self._query(
            "WHERE (h.node_a = $a AND h.node_b = $b) OR (h.node_a = $b AND h.node_b = $a)",
            {"a": node_a, "b": node_b},
            limit,
            offset,
        )

    async def query_by_actor(
        self, actor_id: str, *, limit: int = 100, offset: int = 0
    ) -> list[HistoryEntry]:
        """Entries recorded by one actor, newest first."""
        return await self._query(
            "WHERE h.actor_id = $actor_id", {"actor_id": actor_id}, limit, offset
        )

    async def query_by_node_set(
        self, node_ids: list[str], *, limit: int = 100, offset: int = 0
    ) -> list[HistoryEntry]:
        """Entries whose node_a or node_b is in ``node_ids``, newest first."""
        check_page(limit, offset)
        if not node_ids:
            return []
        return await self._query(
            "WHERE list_contains($node_ids, h.node_a) OR list_contains($node_ids, h.node_b)",
            {"node_ids": list(node_ids)},
            limit,
            offset,
        )

    async def stats(self, actor_id: str | None = None) -> HistoryStats:
        """Counts per change type plus the most recent entries."""
        where = "WHERE h.actor_id = $actor_id" if actor_id is not None else ""
        params = {"actor_id": actor_id} if actor_id is not None else {}

        def _stats(conn: kuzu.Connection) -> HistoryStats:
            result = conn.execute(
                f"MATCH (h:ConnectionHistory) {where} "
                "RETURN h.change_type AS change_type, count(*) AS cnt",
                params,
            )
            counts = {row["change_type"]: row["cnt"] for row in _result_to_dicts(result)}
            recent = self._query_entries(conn, where, params, RECENT_ACTIVITY_LIMIT, 0)
            return HistoryStats(
                created_count=counts.get(ChangeType.CREATED.value, 0),
                modified_count=counts.get(ChangeType.MODIFIED.value, 0),
                deleted_count=counts.get(ChangeType.DELETED.value, 0),
                recent_activity=recent,
            )

        return await self._run(_stats)

    async def count_older_than(self, older_than_days: int) -> int:
        """Number of entries ``cleanup`` would delete."""
        cutoff = to_timestamp(retention_cutoff(older_than_days))

        def _count(conn: kuzu.Connection) -> int:
            result = conn.execute(
                "MATCH (h:ConnectionHistory) WHERE h.created_at < $cutoff "
                "RETURN count(*) AS cnt",
                {"cutoff": cutoff},
            )
            row = _single(result)
            return row["cnt"] if row else 0

        return await self._run(_count)

    async def cleanup(self, older_than_days: int) -> int:
        """Delete entries created before now - older_than_days. Returns count."""
        cutoff = to_timestamp(retention_cutoff(older_than_days))

        def _cleanup(conn: kuzu.Connection) -> int:
            result = conn.execute(
                "MATCH (h:ConnectionHistory) WHERE h.created_at < $cutoff "
                "RETURN count(*) AS cnt",
                {"cutoff": cutoff},
            )
            row = _single(result)
            count = row["cnt"] if row else 0
            if count:
                conn.execute(
                    "MATCH (h:ConnectionHistory) WHERE h.created_at < $cutoff DELETE h",
                    {"cutoff": cutoff},
                )
            return count

        deleted = await self._run(_cleanup)
        logger.debug("cleanup older_than_days=%d deleted=%d", older_than_days, deleted)
        return deleted
