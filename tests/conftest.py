from pathlib import Path

import pytest

from edgeledger.config import EdgeLedgerConfig
from edgeledger.edgeledger import EdgeLedger
from edgeledger.rollback import RollbackEngine
from edgeledger.service import ConnectionService
from edgeledger.storage.kuzu_store import KuzuLedgerStore


@pytest.fixture
def actor() -> dict[str, str]:
    """Actor keyword arguments for service calls."""
    return {"actor_id": "user-1", "actor_name": "Ada Lovelace"}


@pytest.fixture
def config(tmp_path: Path) -> EdgeLedgerConfig:
    """Config pointing at a fresh home directory."""
    return EdgeLedgerConfig(home=tmp_path / "home")


@pytest.fixture
async def store(tmp_path: Path):
    """Connected KuzuLedgerStore with fresh database."""
    store = KuzuLedgerStore(db_path=tmp_path / "graph")
    await store.connect()
    await store.initialize_schema()
    yield store
    await store.close()


@pytest.fixture
def service(store: KuzuLedgerStore) -> ConnectionService:
    return ConnectionService(store, store, store)


@pytest.fixture
def engine(store: KuzuLedgerStore) -> RollbackEngine:
    return RollbackEngine(store, store, store)


@pytest.fixture
async def ledger(config: EdgeLedgerConfig):
    """Opened EdgeLedger on an embedded Kùzu database."""
    async with EdgeLedger(config=config) as ledger:
        yield ledger
