"""
Connection CRUD API endpoints.

Every mutation goes through ConnectionService, so each one is recorded in
the history ledger under the calling actor.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from edgeledger.edgeledger import EdgeLedger
from edgeledger.errors import EdgeLedgerError, NotFoundError
from edgeledger.models.connections import Connection, ConnectionType, ConnectionUpdate
from edgeledger.models.history import HistoryEntry
from edgeledger.web.dependencies import Actor, check_page, get_actor, get_ledger, http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["connections"])


class CreateConnectionRequest(BaseModel):
    """Request model for connecting two nodes."""

    node_a: str = Field(..., min_length=1)
    node_b: str = Field(..., min_length=1)
    type: ConnectionType = ConnectionType.RELATED_TO
    metadata: Any = None
    reason: str | None = None


class UpdateConnectionRequest(BaseModel):
    """Request model for a partial update.

    Omitted fields are left unchanged; ``"metadata": null`` clears metadata.
    """

    type: ConnectionType | None = None
    metadata: Any = None
    reason: str | None = None

    def to_update(self) -> ConnectionUpdate:
        return ConnectionUpdate(**self.model_dump(include=self.model_fields_set - {"reason"}))


class ConnectionHistoryResponse(BaseModel):
    """Response model for the history of one connection."""

    history: list[HistoryEntry]
    connection: Connection


@router.post("", response_model=Connection, status_code=201)
async def create_connection(
    request: CreateConnectionRequest,
    actor: Actor = Depends(get_actor),
    ledger: EdgeLedger = Depends(get_ledger),
) -> Connection:
    """Connect two nodes. Fails with 409 when they are already connected."""
    try:
        return await ledger.connections.create(
            request.node_a,
            request.node_b,
            actor_id=actor.id,
            actor_name=actor.name,
            type=request.type,
            metadata=request.metadata,
            reason=request.reason,
        )
    except EdgeLedgerError as e:
        raise http_error(e) from e


@router.get("", response_model=list[Connection])
async def list_connections(
    node_id: str,
    _actor: Actor = Depends(get_actor),
    ledger: EdgeLedger = Depends(get_ledger),
) -> list[Connection]:
    """List the connections touching a node, newest first."""
    try:
        return await ledger.connections.list_for_node(node_id)
    except EdgeLedgerError as e:
        raise http_error(e) from e


@router.get("/{connection_id}", response_model=Connection)
async def get_connection(
    connection_id: str,
    _actor: Actor = Depends(get_actor),
    ledger: EdgeLedger = Depends(get_ledger),
) -> Connection:
    try:
        connection = await ledger.connections.get(connection_id)
    except EdgeLedgerError as e:
        raise http_error(e) from e
    if connection is None:
        raise http_error(NotFoundError("Connection not found"))
    return connection


@router.put("/{connection_id}", response_model=Connection)
async def update_connection(
    connection_id: str,
    request: UpdateConnectionRequest,
    actor: Actor = Depends(get_actor),
    ledger: EdgeLedger = Depends(get_ledger),
) -> Connection:
    """Change a connection's type and/or metadata."""
    try:
        return await ledger.connections.update(
            connection_id,
            request.to_update(),
            actor_id=actor.id,
            actor_name=actor.name,
            reason=request.reason,
        )
    except EdgeLedgerError as e:
        raise http_error(e) from e


@router.delete("/{connection_id}", status_code=204)
async def delete_connection(
    connection_id: str,
    reason: str | None = None,
    actor: Actor = Depends(get_actor),
    ledger: EdgeLedger = Depends(get_ledger),
) -> Response:
    try:
        await ledger.connections.delete(
            connection_id,
            actor_id=actor.id,
            actor_name=actor.name,
            reason=reason,
        )
    except EdgeLedgerError as e:
        raise http_error(e) from e
    return Response(status_code=204)


@router.get("/{connection_id}/history", response_model=ConnectionHistoryResponse)
async def get_history_for_connection(
    connection_id: str,
    limit: int = 50,
    offset: int = 0,
    _actor: Actor = Depends(get_actor),
    ledger: EdgeLedger = Depends(get_ledger),
) -> ConnectionHistoryResponse:
    """History of the connection's node pair, newest first."""
    check_page(ledger, limit, offset)
    try:
        connection = await ledger.connections.get(connection_id)
        if connection is None:
            raise NotFoundError("Connection not found")
        history = await ledger.connections.history(connection_id, limit=limit, offset=offset)
    except EdgeLedgerError as e:
        raise http_error(e) from e
    return ConnectionHistoryResponse(history=history, connection=connection)
