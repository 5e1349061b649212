"""EdgeLedger HTTP API - FastAPI application factory.

The app factory creates a FastAPI instance with:
- Lifespan handler that opens the ledger on startup and closes it on shutdown
- Scheduled retention sweeps when `retention_interval_seconds` is configured
- Health endpoint at GET /api/health
- Connection and history routers mounted under /api
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from edgeledger.config import EdgeLedgerConfig
from edgeledger.edgeledger import EdgeLedger
from edgeledger.web.api.connections import router as connections_router
from edgeledger.web.api.history import router as history_router

logger = logging.getLogger(__name__)


def create_app(
    ledger: EdgeLedger | None = None,
    config: EdgeLedgerConfig | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    ledger:
        An already opened EdgeLedger. The caller keeps ownership and closes
        it. When omitted, the app opens its own ledger from ``config`` for
        the duration of its lifespan.
    config:
        Configuration for the app-owned ledger. Ignored when ``ledger`` is
        given.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if ledger is not None:
            yield
            return
        async with EdgeLedger(config) as owned:
            app.state.ledger = owned
            logger.info("EdgeLedger opened (graph_store=%s)", owned.config.graph_store)
            interval = owned.config.retention_interval_seconds
            if interval:
                await owned.janitor.start(interval)
            yield
        app.state.ledger = None
        logger.info("EdgeLedger closed")

    app = FastAPI(
        title="EdgeLedger API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.ledger = ledger

    # history first so /connections/history is not taken for a connection id
    app.include_router(history_router, prefix="/api")
    app.include_router(connections_router, prefix="/api")

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
