"""Versioned connection snapshots stored in history entries.

Snapshots form a discriminated union keyed by ``schema_version`` so entries
written under an older connection shape keep deserializing after the shape
evolves. Payloads without a ``schema_version`` key are read as version 1.
"""

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter

from edgeledger.models.connections import Connection, ConnectionType


class ConnectionSnapshotV1(BaseModel):
    """Legacy snapshot: no version token, type may be missing."""

    model_config = ConfigDict(frozen=True)

    schema_version: Literal[1] = 1
    id: UUID | None = None
    node_a: str = Field(validation_alias=AliasChoices("node_a", "nodeA"))
    node_b: str = Field(validation_alias=AliasChoices("node_b", "nodeB"))
    type: ConnectionType | None = None
    metadata: Any = None
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )

    def matches(self, connection: Connection) -> bool:
        """Compare by field values since there is no version token."""
        if self.id is not None and self.id != connection.id:
            return False
        if self.type is not None and self.type != connection.type:
            return False
        return self.metadata == connection.metadata


class ConnectionSnapshotV2(BaseModel):
    """Current snapshot shape, carrying the connection's version token."""

    model_config = ConfigDict(frozen=True)

    schema_version: Literal[2] = 2
    id: UUID
    node_a: str
    node_b: str
    type: ConnectionType
    metadata: Any = None
    created_at: datetime
    updated_at: datetime
    version: int

    def matches(self, connection: Connection) -> bool:
        return self.id == connection.id and self.version == connection.version


ConnectionSnapshot = Annotated[
    ConnectionSnapshotV1 | ConnectionSnapshotV2,
    Field(discriminator="schema_version"),
]

_snapshot_adapter: TypeAdapter[ConnectionSnapshotV1 | ConnectionSnapshotV2] = TypeAdapter(
    ConnectionSnapshot
)


def with_schema_version(value: Any) -> Any:
    """Tag an untagged snapshot payload as version 1."""
    if isinstance(value, dict) and "schema_version" not in value:
        return {**value, "schema_version": 1}
    return value


def parse_snapshot(data: dict[str, Any] | None) -> ConnectionSnapshotV1 | ConnectionSnapshotV2 | None:
    """Deserialize a stored snapshot payload, or None."""
    if data is None:
        return None
    return _snapshot_adapter.validate_python(with_schema_version(data))


def snapshot_of(connection: Connection) -> ConnectionSnapshotV2:
    """Capture the current field values of a connection."""
    return ConnectionSnapshotV2(
        id=connection.id,
        node_a=connection.node_a,
        node_b=connection.node_b,
        type=connection.type,
        metadata=connection.metadata,
        created_at=connection.created_at,
        updated_at=connection.updated_at,
        version=connection.version,
    )
