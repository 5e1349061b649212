"""EdgeLedger - connection history and rollback engine.

Usage:
    ```python
    from edgeledger import EdgeLedger

    async with EdgeLedger() as ledger:
        conn = await ledger.connections.create(
            "doc-1", "doc-2", actor_id="u-1", actor_name="Ada"
        )
        page = await ledger.history_by_pair("doc-1", "doc-2")
        result = await ledger.rollback(page.entries[0].id, "u-1", "Ada")
    ```
"""

from typing import Any
from uuid import UUID

from edgeledger.config import EdgeLedgerConfig
from edgeledger.models.history import HistoryEntry, HistoryPage, HistoryStats
from edgeledger.models.rollback import RollbackResult
from edgeledger.retention import RetentionJanitor
from edgeledger.rollback import RollbackEngine
from edgeledger.service import ConnectionService
from edgeledger.storage.kuzu_store import KuzuLedgerStore
from edgeledger.storage.protocols import LedgerStore


class EdgeLedger:
    """Audited connections between content nodes, with rollback.

    EdgeLedger owns one storage backend and wires it into:

    - **connections**: the ordinary create/update/delete path, where every
      mutation is paired with one history entry.
    - **engine**: rollback of any recorded change, itself recorded as a new
      entry pointing back at the one it inverted.
    - **janitor**: age-based purge of old history entries.

    Each instance is independent; nothing is shared between instances.
    """

    def __init__(
        self,
        config: EdgeLedgerConfig | None = None,
        store: LedgerStore | None = None,
    ) -> None:
        """Initialize EdgeLedger.

        Args:
            config: Configuration settings. Uses defaults if not provided.
            store: Custom storage backend. Built from ``config.graph_store``
                if not provided.
        """
        self._config = config or EdgeLedgerConfig()

        if store is not None:
            self._store = store
        elif self._config.graph_store == "neo4j":
            from edgeledger.storage.neo import Neo4jLedgerStore

            self._store = Neo4jLedgerStore(
                uri=self._config.neo4j_uri,
                user=self._config.neo4j_user,
                password=self._config.neo4j_password,
                database=self._config.neo4j_database,
                namespace=self._config.namespace,
            )
        else:
            self._store = KuzuLedgerStore(db_path=self._config.get_graph_path())

        self._connections = ConnectionService(self._store, self._store, self._store)
        self._engine = RollbackEngine(
            self._store,
            self._store,
            self._store,
            strict=self._config.strict_rollback,
        )
        self._janitor = RetentionJanitor(
            self._store, retention_days=self._config.retention_days
        )

    async def __aenter__(self) -> "EdgeLedger":
        """Async context manager entry."""
        await self._store.connect()
        await self._store.initialize_schema()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        """Async context manager exit - stops the janitor and closes the store."""
        await self._janitor.stop()
        await self._store.close()

    @property
    def config(self) -> EdgeLedgerConfig:
        return self._config

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def connections(self) -> ConnectionService:
        return self._connections

    @property
    def engine(self) -> RollbackEngine:
        return self._engine

    @property
    def janitor(self) -> RetentionJanitor:
        return self._janitor

    async def rollback(
        self,
        history_id: UUID | str,
        actor_id: str,
        actor_name: str,
        reason: str | None = None,
    ) -> RollbackResult:
        """Invert a recorded change. See ``RollbackEngine.rollback``."""
        return await self._engine.rollback(history_id, actor_id, actor_name, reason)

    async def get_history_entry(self, history_id: UUID | str) -> HistoryEntry | None:
        return await self._store.get_entry(history_id)

    async def history_by_pair(
        self, node_a: str, node_b: str, limit: int = 50, offset: int = 0
    ) -> HistoryPage:
        """History of a node pair in either ordering, newest first."""
        entries = await self._store.query_by_pair(node_a, node_b, limit=limit, offset=offset)
        return HistoryPage(entries=entries, limit=limit, offset=offset)

    async def history_by_actor(
        self, actor_id: str, limit: int = 100, offset: int = 0
    ) -> HistoryPage:
        """Changes made by one actor, newest first."""
        entries = await self._store.query_by_actor(actor_id, limit=limit, offset=offset)
        return HistoryPage(entries=entries, limit=limit, offset=offset)

    async def history_by_nodes(
        self, node_ids: list[str], limit: int = 100, offset: int = 0
    ) -> HistoryPage:
        """Changes touching any of ``node_ids``, newest first."""
        entries = await self._store.query_by_node_set(node_ids, limit=limit, offset=offset)
        return HistoryPage(entries=entries, limit=limit, offset=offset)

    async def stats(self, actor_id: str | None = None) -> HistoryStats:
        return await self._store.stats(actor_id)

    async def lineage(self, history_id: UUID | str) -> list[HistoryEntry]:
        """Rollback provenance chain starting at ``history_id``."""
        return await self._engine.lineage(history_id)

    async def cleanup(
        self, older_than_days: int | None = None, *, dry_run: bool = False
    ) -> int:
        """Purge old history entries. See ``RetentionJanitor.cleanup``."""
        return await self._janitor.cleanup(older_than_days, dry_run=dry_run)
