"""Neo4j implementation of LedgerStore."""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any
from uuid import UUID

from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

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
    pair_key,
    retention_cutoff,
    to_timestamp,
)

logger = logging.getLogger(__name__)

# Open driver transaction of the running task, keyed by store.
_active_tx: ContextVar[tuple["Neo4jLedgerStore", Any] | None] = ContextVar(
    "edgeledger_neo4j_transaction", default=None
)


def _record_to_connection(rec: dict[str, Any]) -> Connection:
    try:
        return Connection(
            id=UUID(rec["id"]),
            node_a=rec["node_a"],
            node_b=rec["node_b"],
            type=ConnectionType(rec["connection_type"]),
            metadata=json.loads(rec["metadata"]) if rec.get("metadata") else None,
            version=rec["version"],
            created_at=from_timestamp(rec["created_at"]),
            updated_at=from_timestamp(rec["updated_at"]),
        )
    except ValueError as e:
        raise StorageError(f"Corrupt connection node {rec.get('id')!r}: {e}") from e


def _record_to_entry(rec: dict[str, Any]) -> HistoryEntry:
    try:
        return HistoryEntry(
            id=UUID(rec["id"]),
            connection_id=UUID(rec["connection_id"]) if rec.get("connection_id") else None,
            node_a=rec["node_a"],
            node_b=rec["node_b"],
            change_type=rec["change_type"],
            actor_id=rec["actor_id"],
            actor_name=rec["actor_name"],
            before_state=json.loads(rec["before_state"]) if rec.get("before_state") else None,
            after_state=json.loads(rec["after_state"]) if rec.get("after_state") else None,
            metadata=json.loads(rec["metadata"]) if rec.get("metadata") else {},
            reason=rec.get("reason"),
            created_at=from_timestamp(rec["created_at"]),
        )
    except ValueError as e:
        raise StorageError(f"Corrupt history node {rec.get('id')!r}: {e}") from e


_CONNECTION_RETURN = (
    "RETURN c.id AS id, c.node_a AS node_a, c.node_b AS node_b, "
    "c.connection_type AS connection_type, c.metadata AS metadata, "
    "c.version AS version, c.created_at AS created_at, c.updated_at AS updated_at"
)
_HISTORY_RETURN = (
    "RETURN h.id AS id, h.connection_id AS connection_id, h.node_a AS node_a, "
    "h.node_b AS node_b, h.change_type AS change_type, h.actor_id AS actor_id, "
    "h.actor_name AS actor_name, h.before_state AS before_state, "
    "h.after_state AS after_state, h.metadata AS metadata, h.reason AS reason, "
    "h.created_at AS created_at"
)


class Neo4jLedgerStore:
    """Neo4j implementation of ConnectionStore, HistoryLedger and UnitOfWork."""

    def __init__(
        self,
        uri: str = "bolt://localhost:7687",
        user: str = "neo4j",
        password: str = "password",
        database: str = "neo4j",
        namespace: str | None = None,
    ) -> None:
        self._uri = uri
        self._user = user
        self._password = password
        self._database = database
        self._namespace = namespace
        self._driver: AsyncDriver | None = None
        self._clock = LedgerClock()

    async def connect(self) -> None:
        """Connect to the Neo4j database."""
        self._driver = AsyncGraphDatabase.driver(
            self._uri,
            auth=(self._user, self._password),
        )
        await self._driver.verify_connectivity()

    async def close(self) -> None:
        """Close the connection."""
        if self._driver:
            await self._driver.close()
            self._driver = None

    async def initialize_schema(self) -> None:
        """Create constraints and indexes."""
        statements = [
            "CREATE CONSTRAINT content_connection_id IF NOT EXISTS "
            "FOR (c:ContentConnection) REQUIRE c.id IS UNIQUE",
            "CREATE CONSTRAINT connection_history_id IF NOT EXISTS "
            "FOR (h:ConnectionHistory) REQUIRE h.id IS UNIQUE",
            "CREATE INDEX content_connection_node_a IF NOT EXISTS "
            "FOR (c:ContentConnection) ON (c.node_a)",
            "CREATE INDEX content_connection_node_b IF NOT EXISTS "
            "FOR (c:ContentConnection) ON (c.node_b)",
            "CREATE INDEX connection_history_created_at IF NOT EXISTS "
            "FOR (h:ConnectionHistory) ON (h.created_at)",
            "CREATE INDEX connection_history_actor IF NOT EXISTS "
            "FOR (h:ConnectionHistory) ON (h.actor_id)",
            "CREATE INDEX connection_history_nodes IF NOT EXISTS "
            "FOR (h:ConnectionHistory) ON (h.node_a, h.node_b)",
            "CREATE CONSTRAINT connection_pair_lock_key IF NOT EXISTS "
            "FOR (l:ConnectionPairLock) REQUIRE l.key IS UNIQUE",
        ]
        # Namespace index for multi-tenant isolation
        if self._namespace:
            for label in ("ContentConnection", "ConnectionHistory"):
                statements.append(
                    f"CREATE INDEX {label.lower()}_namespace IF NOT EXISTS "
                    f"FOR (n:{label}) ON (n.namespace)"
                )
        for statement in statements:
            await self._run(statement)

    def _ns_filter(self, var: str) -> str:
        """Return a Cypher WHERE clause fragment for namespace filtering."""
        if self._namespace:
            return f" AND {var}.namespace = $namespace"
        return ""

    @property
    def _ns_params(self) -> dict[str, str]:
        """Return namespace parameter dict."""
        if self._namespace:
            return {"namespace": self._namespace}
        return {}

    def _ns_set_clause(self, var: str) -> str:
        """Return SET clause for namespace on node creation."""
        if self._namespace:
            return f" SET {var}.namespace = $namespace"
        return ""

    # =========================================================================
    # Execution and transactions
    # =========================================================================

    async def _run(self, query: str, **params: Any) -> list[dict[str, Any]]:
        """Run a query inside the caller's transaction, or in its own session."""
        if not self._driver:
            raise RuntimeError("Not connected")
        params = {**self._ns_params, **params}
        active = _active_tx.get()
        try:
            if active is not None and active[0] is self:
                result = await active[1].run(query, params)
                return await result.data()
            async with self._driver.session(database=self._database) as session:
                result = await session.run(query, params)
                return await result.data()
        except (Neo4jError, DriverError) as e:
            raise StorageError(str(e)) from e

    @asynccontextmanager
    async def transaction(self, node_a: str, node_b: str) -> AsyncIterator[None]:
        """Explicit transaction holding a write lock on the pair's lock node.

        Concurrent units of work on the same unordered pair block on the
        MERGE until this transaction ends.
        """
        if not self._driver:
            raise RuntimeError("Not connected")
        active = _active_tx.get()
        if active is not None and active[0] is self:
            yield
            return

        key = pair_key(node_a, node_b)
        if self._namespace:
            key = f"{self._namespace}\x1f{key}"

        async with self._driver.session(database=self._database) as session:
            tx = await session.begin_transaction()
            token = _active_tx.set((self, tx))
            try:
                await self._run(
                    "MERGE (l:ConnectionPairLock {key: $key}) SET l.locked_at = $now",
                    key=key,
                    now=to_timestamp(self._clock.now()),
                )
                yield
            except BaseException:
                await tx.rollback()
                raise
            else:
                await tx.commit()
            finally:
                _active_tx.reset(token)
                await tx.close()

    # =========================================================================
    # ConnectionStore
    # =========================================================================

    async def find_by_pair(self, node_a: str, node_b: str) -> Connection | None:
        """Get the connection between two nodes, matching either ordering."""
        records = await self._run(
            "MATCH (c:ContentConnection) "
            "WHERE ((c.node_a = $a AND c.node_b = $b) "
            f"OR (c.node_a = $b AND c.node_b = $a)){self._ns_filter('c')} "
            f"{_CONNECTION_RETURN} ORDER BY c.created_at ASC LIMIT 1",
            a=node_a,
            b=node_b,
        )
        return _record_to_connection(records[0]) if records else None

    async def get(self, connection_id: UUID | str) -> Connection | None:
        """Get a connection by id."""
        records = await self._run(
            "MATCH (c:ContentConnection) "
            f"WHERE c.id = $id{self._ns_filter('c')} {_CONNECTION_RETURN}",
            id=str(connection_id),
        )
        return _record_to_connection(records[0]) if records else None

    async def list_by_node(self, node_id: str) -> list[Connection]:
        """Get all connections touching a node, newest first."""
        records = await self._run(
            "MATCH (c:ContentConnection) "
            f"WHERE (c.node_a = $node_id OR c.node_b = $node_id){self._ns_filter('c')} "
            f"{_CONNECTION_RETURN} ORDER BY c.created_at DESC",
            node_id=node_id,
        )
        return [_record_to_connection(rec) for rec in records]

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
        await self._run(
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
            """
            + self._ns_set_clause("c"),
            id=str(connection.id),
            node_a=node_a,
            node_b=node_b,
            connection_type=connection.type.value,
            metadata=json.dumps(metadata) if metadata is not None else None,
            version=connection.version,
            created_at=to_timestamp(now),
            updated_at=to_timestamp(now),
        )
        return connection

    async def update(
        self, connection_id: UUID | str, fields: ConnectionUpdate
    ) -> Connection:
        """Apply a partial update and bump the version."""
        current = await self.get(connection_id)
        if current is None:
            raise NotFoundError("Connection not found")
        updated = fields.apply(current, now=self._clock.now())
        records = await self._run(
            "MATCH (c:ContentConnection) "
            f"WHERE c.id = $id AND c.version = $expected_version{self._ns_filter('c')} "
            "SET c.connection_type = $connection_type, c.metadata = $metadata, "
            "c.version = $version, c.updated_at = $updated_at "
            "RETURN c.id AS id",
            id=str(current.id),
            expected_version=current.version,
            connection_type=updated.type.value,
            metadata=json.dumps(updated.metadata) if updated.metadata is not None else None,
            version=updated.version,
            updated_at=to_timestamp(updated.updated_at),
        )
        if not records:
            # Deleted or bumped by another writer between the read and the SET
            raise NotFoundError("Connection not found")
        return updated

    async def delete(self, connection_id: UUID | str) -> None:
        """Delete a connection by id."""
        records = await self._run(
            "MATCH (c:ContentConnection) "
            f"WHERE c.id = $id{self._ns_filter('c')} "
            "DETACH DELETE c RETURN count(c) AS deleted",
            id=str(connection_id),
        )
        if not records or records[0]["deleted"] == 0:
            raise NotFoundError("Connection not found")

    # =========================================================================
    # HistoryLedger
    # =========================================================================

    async def record(self, record: HistoryRecord) -> HistoryEntry:
        """Assign id and timestamp, insert, and return the stored entry."""
        entry = HistoryEntry.from_record(record, created_at=self._clock.now())
        data = entry.model_dump(mode="json")
        await self._run(
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
            """
            + self._ns_set_clause("h"),
            id=data["id"],
            connection_id=data["connection_id"],
            node_a=entry.node_a,
            node_b=entry.node_b,
            change_type=data["change_type"],
            actor_id=entry.actor_id,
            actor_name=entry.actor_name,
            before_state=json.dumps(data["before_state"]) if data["before_state"] else None,
            after_state=json.dumps(data["after_state"]) if data["after_state"] else None,
            metadata=json.dumps(data["metadata"]),
            reason=entry.reason,
            created_at=to_timestamp(entry.created_at),
        )
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
        records = await self._run(
            "MATCH (h:ConnectionHistory) "
            f"WHERE h.id = $id{self._ns_filter('h')} {_HISTORY_RETURN}",
            id=str(history_id),
        )
        return _record_to_entry(records[0]) if records else None

    async def _query(
        self, condition: str, limit: int, offset: int, **params: Any
    ) -> list[HistoryEntry]:
        check_page(limit, offset)
        records = await self._run(
            f"MATCH (h:ConnectionHistory) WHERE ({condition}){self._ns_filter('h')} "
            f"{_HISTORY_RETURN} ORDER BY h.created_at DESC, h.id DESC "
            "SKIP $offset LIMIT $limit",
            offset=offset,
            limit=limit,
            **params,
        )
        return [_record_to_entry(rec) for rec in records]

    async def query_by_pair(
        self, node_a: str, node_b: str, *, limit: int = 50, offset: int = 0
    ) -> list[HistoryEntry]:
        """Entries for a node pair in either ordering, newest first."""
        return await self._query(
            "(h.node_a = $a AND h.node_b = $b) OR (h.node_a = $b AND h.node_b = $a)",
            limit,
            offset,
            a=node_a,
            b=node_b,
        )

    async def query_by_actor(
        self, actor_id: str, *, limit: int = 100, offset: int = 0
    ) -> list[HistoryEntry]:
        """Entries recorded by one actor, newest first."""
        return await self._query("h.actor_id = $actor_id", limit, offset, actor_id=actor_id)

    async def query_by_node_set(
        self, node_ids: list[str], *, limit: int = 100, offset: int = 0
    ) -> list[HistoryEntry]:
        """Entries whose node_a or node_b is in ``node_ids``, newest first."""
        check_page(limit, offset)
        if not node_ids:
            return []
        return await self._query(
            "h.node_a IN $node_ids OR h.node_b IN $node_ids",
            limit,
            offset,
            node_ids=list(node_ids),
        )

    async def stats(self, actor_id: str | None = None) -> HistoryStats:
        """Counts per change type plus the most recent entries."""
        condition = "h.actor_id = $actor_id" if actor_id is not None else "true"
        params = {"actor_id": actor_id} if actor_id is not None else {}
        records = await self._run(
            f"MATCH (h:ConnectionHistory) WHERE ({condition}){self._ns_filter('h')} "
            "RETURN h.change_type AS change_type, count(h) AS cnt",
            **params,
        )
        counts = {rec["change_type"]: rec["cnt"] for rec in records}
        recent = await self._query(condition, RECENT_ACTIVITY_LIMIT, 0, **params)
        return HistoryStats(
            created_count=counts.get(ChangeType.CREATED.value, 0),
            modified_count=counts.get(ChangeType.MODIFIED.value, 0),
            deleted_count=counts.get(ChangeType.DELETED.value, 0),
            recent_activity=recent,
        )

    async def count_older_than(self, older_than_days: int) -> int:
        """Number of entries ``cleanup`` would delete."""
        records = await self._run(
            "MATCH (h:ConnectionHistory) "
            f"WHERE h.created_at < $cutoff{self._ns_filter('h')} "
            "RETURN count(h) AS cnt",
            cutoff=to_timestamp(retention_cutoff(older_than_days)),
        )
        return records[0]["cnt"] if records else 0

    async def cleanup(self, older_than_days: int) -> int:
        """Delete entries created before now - older_than_days. Returns count."""
        records = await self._run(
            "MATCH (h:ConnectionHistory) "
            f"WHERE h.created_at < $cutoff{self._ns_filter('h')} "
            "DETACH DELETE h RETURN count(h) AS deleted",
            cutoff=to_timestamp(retention_cutoff(older_than_days)),
        )
        deleted = records[0]["deleted"] if records else 0
        logger.debug("cleanup older_than_days=%d deleted=%d", older_than_days, deleted)
        return deleted
