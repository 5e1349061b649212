"""
Connection history API endpoints.

Provides endpoints to:
- Browse the history ledger by node pair, node set, or acting user
- Roll back a recorded change
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from edgeledger.edgeledger import EdgeLedger
from edgeledger.errors import EdgeLedgerError
from edgeledger.models.connections import Connection
from edgeledger.models.history import HistoryEntry, HistoryPage, HistoryStats
from edgeledger.web.dependencies import (
    Actor,
    check_page,
    get_actor,
    get_ledger,
    http_error,
    status_for,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections/history", tags=["history"])


class Pagination(BaseModel):
    limit: int
    offset: int
    has_more: bool = Field(..., description="True when the page came back full")


class HistoryResponse(BaseModel):
    """Response model for history queries."""

    history: list[HistoryEntry]
    stats: HistoryStats
    pagination: Pagination


class RollbackRequest(BaseModel):
    """Request model for rolling back a history entry."""

    history_id: str = Field(..., description="Id of the history entry to invert")
    reason: str | None = Field(None, description="Recorded on the new history entry")


class RollbackResponse(BaseModel):
    """Response model for a successful rollback."""

    success: bool
    message: str
    restored_connection: Connection | None = None
    deleted_connection_id: UUID | None = None
    history_entry: HistoryEntry | None = None


@router.get("", response_model=HistoryResponse)
async def get_connection_history(
    node_a: str | None = None,
    node_b: str | None = None,
    node_ids: str | None = None,
    limit: int = 100,
    offset: int = 0,
    actor: Actor = Depends(get_actor),
    ledger: EdgeLedger = Depends(get_ledger),
) -> HistoryResponse:
    """
    Query connection history, newest first.

    Filters, in order of precedence:
    - node_a and node_b: history of one node pair, in either ordering
    - node_ids: comma-separated ids; entries touching any of them
    - neither: changes made by the calling actor

    Stats are always scoped to the calling actor.
    """
    check_page(ledger, limit, offset)
    if (node_a is None) != (node_b is None):
        raise HTTPException(status_code=400, detail="node_a and node_b must be given together")

    try:
        if node_a is not None and node_b is not None:
            page = await ledger.history_by_pair(node_a, node_b, limit=limit, offset=offset)
        elif node_ids:
            ids = [node_id.strip() for node_id in node_ids.split(",") if node_id.strip()]
            page = await ledger.history_by_nodes(ids, limit=limit, offset=offset)
        else:
            page = await ledger.history_by_actor(actor.id, limit=limit, offset=offset)
        stats = await ledger.stats(actor.id)
    except EdgeLedgerError as e:
        raise http_error(e) from e

    return _history_response(page, stats)


@router.post("/rollback", response_model=RollbackResponse)
async def rollback_history_entry(
    request: RollbackRequest,
    actor: Actor = Depends(get_actor),
    ledger: EdgeLedger = Depends(get_ledger),
) -> RollbackResponse:
    """
    Invert the change recorded by a history entry.

    The rollback is itself recorded as a new history entry. Fails with 404
    when the entry does not exist and 409 when the current connection no
    longer has the shape the inversion needs.
    """
    result = await ledger.rollback(request.history_id, actor.id, actor.name, request.reason)
    if not result.success:
        raise HTTPException(
            status_code=status_for(result.error_kind),
            detail=result.error or "Rollback failed",
        )

    return RollbackResponse(
        success=True,
        message="Successfully rolled back connection change",
        restored_connection=result.restored_connection,
        deleted_connection_id=result.deleted_connection_id,
        history_entry=result.history_entry,
    )


def _history_response(page: HistoryPage, stats: HistoryStats) -> HistoryResponse:
    return HistoryResponse(
        history=page.entries,
        stats=stats,
        pagination=Pagination(limit=page.limit, offset=page.offset, has_more=page.has_more),
    )
