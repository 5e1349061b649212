from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class ConnectionType(str, Enum):
    """Kinds of relationship a connection can express."""

    DEPENDS_ON = "DEPENDS_ON"
    RELATED_TO = "RELATED_TO"
    INSPIRES = "INSPIRES"
    CONFLICTS_WITH = "CONFLICTS_WITH"


class Connection(BaseModel):
    """Present-state, undirected edge between two content nodes.

    ``node_a``/``node_b`` keep the order given at creation; lookups by pair
    match either order. ``version`` starts at 1 and is bumped on every update
    so history snapshots can detect intervening edits.
    """

    node_a: str
    node_b: str
    type: ConnectionType = ConnectionType.RELATED_TO
    # Opaque JSON value, stored and restored unchanged
    metadata: Any = None
    id: UUID = Field(default_factory=uuid4)
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ConnectionUpdate(BaseModel):
    """Partial update for a connection.

    ``type`` is applied when not None. ``metadata`` is applied whenever it was
    passed explicitly, so ``ConnectionUpdate(metadata=None)`` clears it while
    ``ConnectionUpdate()`` leaves it alone.
    """

    type: ConnectionType | None = None
    metadata: Any = None

    @property
    def sets_metadata(self) -> bool:
        return "metadata" in self.model_fields_set

    def apply(self, connection: Connection, *, now: datetime | None = None) -> Connection:
        """Return a copy of ``connection`` with this update applied."""
        changes: dict[str, Any] = {
            "version": connection.version + 1,
            "updated_at": now or datetime.now(UTC),
        }
        if self.type is not None:
            changes["type"] = self.type
        if self.sets_metadata:
            changes["metadata"] = self.metadata
        return connection.model_copy(update=changes)
