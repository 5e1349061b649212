from datetime import datetime
from enum import Enum
from typing import Annotated, Any
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from edgeledger.models.snapshots import ConnectionSnapshot, with_schema_version

# Metadata keys linking a rollback entry to the entry it inverted.
ROLLED_BACK_FROM_KEY = "rolled_back_from_history"
ORIGINAL_CHANGE_TYPE_KEY = "original_change_type"

RECENT_ACTIVITY_LIMIT = 10


class ChangeType(str, Enum):
    """Kind of mutation a history entry records."""

    CREATED = "CREATED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class _HistoryFields(BaseModel):
    """Fields shared by the record payload and the stored entry."""

    model_config = ConfigDict(frozen=True)

    node_a: str
    node_b: str
    # Stored values outside ChangeType survive as plain strings so corrupt
    # rows can still be loaded and reported.
    change_type: Annotated[ChangeType | str, Field(union_mode="left_to_right")]
    actor_id: str
    actor_name: str
    connection_id: UUID | None = None
    before_state: ConnectionSnapshot | None = None
    after_state: ConnectionSnapshot | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    reason: str | None = None

    @field_validator("before_state", "after_state", mode="before")
    @classmethod
    def _tag_legacy_snapshot(cls, value: Any) -> Any:
        return with_schema_version(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_metadata(cls, value: Any) -> Any:
        return {} if value is None else value


class HistoryRecord(_HistoryFields):
    """Payload for ``HistoryLedger.record``.

    Enforces the state shape of each change type:

    - CREATED: no before state, an after state
    - DELETED: a before state, no after state
    - MODIFIED: both
    """

    change_type: ChangeType

    @model_validator(mode="after")
    def _check_state_shape(self) -> "HistoryRecord":
        has_before = self.before_state is not None
        has_after = self.after_state is not None
        expected = {
            ChangeType.CREATED: (False, True),
            ChangeType.DELETED: (True, False),
            ChangeType.MODIFIED: (True, True),
        }[self.change_type]
        if (has_before, has_after) != expected:
            raise ValueError(
                f"{self.change_type.value} entries require "
                f"before_state={'set' if expected[0] else 'null'} and "
                f"after_state={'set' if expected[1] else 'null'}"
            )
        return self


class HistoryEntry(_HistoryFields):
    """Immutable audit record of exactly one connection mutation."""

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime

    @classmethod
    def from_record(
        cls,
        record: HistoryRecord,
        *,
        created_at: datetime,
        entry_id: UUID | None = None,
    ) -> "HistoryEntry":
        return cls(
            **record.model_dump(),
            id=entry_id or uuid4(),
            created_at=created_at,
        )

    @property
    def rolled_back_from(self) -> str | None:
        """Id of the entry this one inverted, if it records a rollback."""
        value = self.metadata.get(ROLLED_BACK_FROM_KEY)
        return str(value) if value is not None else None


class HistoryStats(BaseModel):
    """Aggregate counts over the ledger, optionally scoped to one actor."""

    created_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    recent_activity: list[HistoryEntry] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_changes(self) -> int:
        return self.created_count + self.modified_count + self.deleted_count


class HistoryPage(BaseModel):
    """One page of history entries.

    ``has_more`` is True whenever the page came back full. When the remaining
    result set is exactly ``limit`` long this over-reports by one page; the
    next request then returns an empty page.
    """

    entries: list[HistoryEntry]
    limit: int
    offset: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_more(self) -> bool:
        return len(self.entries) == self.limit
