"""
FastAPI dependencies for the HTTP interface.
"""

import logging

from fastapi import Header, HTTPException, Request
from pydantic import BaseModel

from edgeledger.edgeledger import EdgeLedger
from edgeledger.errors import EdgeLedgerError, ErrorKind

logger = logging.getLogger(__name__)

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    "not_found": 404,
    "precondition": 409,
    "invalid_change_type": 500,
    "storage": 500,
    "unexpected": 500,
}


class Actor(BaseModel):
    """Caller identity, forwarded by the upstream authentication layer."""

    id: str
    name: str


def get_ledger(request: Request) -> EdgeLedger:
    """Get the EdgeLedger instance attached to the application."""
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        raise HTTPException(status_code=503, detail="Ledger not initialized")
    return ledger


def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_name: str | None = Header(default=None),
) -> Actor:
    """Read the acting user from the X-Actor-Id / X-Actor-Name headers."""
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return Actor(id=x_actor_id, name=x_actor_name or "Unknown User")


def check_page(ledger: EdgeLedger, limit: int, offset: int) -> None:
    """Reject page parameters outside 1..max_page_size and negative offsets."""
    max_page_size = ledger.config.max_page_size
    if limit < 1 or limit > max_page_size:
        raise HTTPException(
            status_code=400,
            detail=f"limit must be between 1 and {max_page_size}",
        )
    if offset < 0:
        raise HTTPException(status_code=400, detail="offset must be >= 0")


def status_for(kind: ErrorKind | None) -> int:
    return _STATUS_BY_KIND.get(kind, 500) if kind else 500


def http_error(error: EdgeLedgerError) -> HTTPException:
    """Translate a known failure into the matching HTTP error."""
    status_code = status_for(error.kind)
    if status_code >= 500:
        logger.error("Request failed (%s): %s", error.kind, error.message)
    return HTTPException(status_code=status_code, detail=error.message)
