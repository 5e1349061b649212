from datetime import UTC, datetime
from uuid import UUID, uuid4

import pytest
from pydantic import ValidationError

from edgeledger.errors import NotFoundError
from edgeledger.models import (
    ChangeType,
    Connection,
    ConnectionSnapshotV1,
    ConnectionSnapshotV2,
    ConnectionType,
    ConnectionUpdate,
    HistoryEntry,
    HistoryPage,
    HistoryRecord,
    HistoryStats,
    RollbackResult,
    parse_snapshot,
    snapshot_of,
)


def _entry(**overrides) -> HistoryEntry:
    fields = {
        "node_a": "a",
        "node_b": "b",
        "change_type": ChangeType.CREATED,
        "actor_id": "user-1",
        "actor_name": "Ada",
        "created_at": datetime.now(UTC),
    }
    fields.update(overrides)
    return HistoryEntry(**fields)


class TestConnectionModels:
    """Test Connection and ConnectionUpdate."""

    def test_connection_defaults(self) -> None:
        """Connection should have auto-generated defaults."""
        connection = Connection(node_a="a", node_b="b")

        assert isinstance(connection.id, UUID)
        assert connection.type == ConnectionType.RELATED_TO
        assert connection.metadata is None
        assert connection.version == 1
        assert connection.created_at.tzinfo is not None

    def test_connection_rejects_zero_version(self) -> None:
        with pytest.raises(ValidationError):
            Connection(node_a="a", node_b="b", version=0)

    def test_metadata_is_any_json_value(self) -> None:
        """Metadata is opaque: lists and scalars are kept as given."""
        connection = Connection(node_a="a", node_b="b", metadata=["x", 1])

        assert connection.metadata == ["x", 1]
        assert snapshot_of(connection).metadata == ["x", 1]
        assert parse_snapshot({"nodeA": "a", "nodeB": "b", "metadata": "note"}).metadata == "note"

    def test_update_type_keeps_metadata(self) -> None:
        """An update without metadata leaves metadata alone."""
        connection = Connection(node_a="a", node_b="b", metadata={"note": "x"})
        updated = ConnectionUpdate(type=ConnectionType.DEPENDS_ON).apply(connection)

        assert updated.type == ConnectionType.DEPENDS_ON
        assert updated.metadata == {"note": "x"}
        assert updated.version == 2
        assert updated.id == connection.id
        # Original is not mutated
        assert connection.type == ConnectionType.RELATED_TO
        assert connection.version == 1

    def test_update_explicit_none_clears_metadata(self) -> None:
        connection = Connection(node_a="a", node_b="b", metadata={"note": "x"})
        update = ConnectionUpdate(metadata=None)

        assert update.sets_metadata
        assert update.apply(connection).metadata is None

    def test_empty_update_only_bumps_version(self) -> None:
        connection = Connection(node_a="a", node_b="b", metadata={"note": "x"})
        now = datetime(2030, 1, 1, tzinfo=UTC)
        updated = ConnectionUpdate().apply(connection, now=now)

        assert not ConnectionUpdate().sets_metadata
        assert updated.metadata == {"note": "x"}
        assert updated.type == connection.type
        assert updated.version == 2
        assert updated.updated_at == now


class TestSnapshots:
    """Test versioned snapshots."""

    def test_snapshot_of_is_current_version(self) -> None:
        connection = Connection(
            node_a="a", node_b="b", type=ConnectionType.INSPIRES, metadata={"k": 1}
        )
        snapshot = snapshot_of(connection)

        assert isinstance(snapshot, ConnectionSnapshotV2)
        assert snapshot.schema_version == 2
        assert snapshot.id == connection.id
        assert snapshot.type == ConnectionType.INSPIRES
        assert snapshot.metadata == {"k": 1}
        assert snapshot.version == 1

    def test_untagged_payload_is_read_as_legacy(self) -> None:
        """Payloads without schema_version deserialize as version 1."""
        snapshot = parse_snapshot({"nodeA": "a", "nodeB": "b", "metadata": {"k": 1}})

        assert isinstance(snapshot, ConnectionSnapshotV1)
        assert snapshot.node_a == "a"
        assert snapshot.node_b == "b"
        assert snapshot.type is None
        assert snapshot.id is None

    def test_tagged_payload_round_trips(self) -> None:
        snapshot = snapshot_of(Connection(node_a="a", node_b="b"))
        parsed = parse_snapshot(snapshot.model_dump(mode="json"))

        assert parsed == snapshot

    def test_parse_none(self) -> None:
        assert parse_snapshot(None) is None

    def test_unknown_schema_version_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_snapshot({"schema_version": 99, "node_a": "a", "node_b": "b"})

    def test_current_snapshot_matches_by_version(self) -> None:
        connection = Connection(node_a="a", node_b="b")
        snapshot = snapshot_of(connection)

        assert snapshot.matches(connection)
        assert not snapshot.matches(ConnectionUpdate().apply(connection))
        assert not snapshot.matches(Connection(node_a="a", node_b="b"))

    def test_legacy_snapshot_matches_by_fields(self) -> None:
        connection = Connection(node_a="a", node_b="b", metadata={"k": 1})

        assert ConnectionSnapshotV1(node_a="a", node_b="b", metadata={"k": 1}).matches(connection)
        assert not ConnectionSnapshotV1(node_a="a", node_b="b", metadata={"k": 2}).matches(
            connection
        )
        assert not ConnectionSnapshotV1(
            node_a="a", node_b="b", type=ConnectionType.DEPENDS_ON, metadata={"k": 1}
        ).matches(connection)


class TestHistoryModels:
    """Test HistoryRecord, HistoryEntry, HistoryStats and HistoryPage."""

    def test_record_requires_after_state_for_created(self) -> None:
        with pytest.raises(ValidationError, match="CREATED"):
            HistoryRecord(
                node_a="a",
                node_b="b",
                change_type=ChangeType.CREATED,
                actor_id="u",
                actor_name="U",
            )

    def test_record_rejects_after_state_for_deleted(self) -> None:
        snapshot = snapshot_of(Connection(node_a="a", node_b="b"))
        with pytest.raises(ValidationError, match="DELETED"):
            HistoryRecord(
                node_a="a",
                node_b="b",
                change_type=ChangeType.DELETED,
                actor_id="u",
                actor_name="U",
                before_state=snapshot,
                after_state=snapshot,
            )

    def test_record_modified_needs_both_states(self) -> None:
        snapshot = snapshot_of(Connection(node_a="a", node_b="b"))
        record = HistoryRecord(
            node_a="a",
            node_b="b",
            change_type=ChangeType.MODIFIED,
            actor_id="u",
            actor_name="U",
            before_state=snapshot,
            after_state=snapshot,
        )
        assert record.metadata == {}

        with pytest.raises(ValidationError, match="MODIFIED"):
            HistoryRecord(
                node_a="a",
                node_b="b",
                change_type=ChangeType.MODIFIED,
                actor_id="u",
                actor_name="U",
                before_state=snapshot,
            )

    def test_record_rejects_unknown_change_type(self) -> None:
        snapshot = snapshot_of(Connection(node_a="a", node_b="b"))
        with pytest.raises(ValidationError):
            HistoryRecord(
                node_a="a",
                node_b="b",
                change_type="RENAMED",
                actor_id="u",
                actor_name="U",
                after_state=snapshot,
            )

    def test_from_record_assigns_id_and_timestamp(self) -> None:
        connection = Connection(node_a="a", node_b="b")
        record = HistoryRecord(
            connection_id=connection.id,
            node_a="a",
            node_b="b",
            change_type=ChangeType.CREATED,
            actor_id="u",
            actor_name="U",
            after_state=snapshot_of(connection),
            reason="initial",
        )
        now = datetime.now(UTC)
        entry = HistoryEntry.from_record(record, created_at=now)

        assert isinstance(entry.id, UUID)
        assert entry.created_at == now
        assert entry.connection_id == connection.id
        assert entry.after_state == snapshot_of(connection)
        assert entry.reason == "initial"

    def test_entry_keeps_unknown_change_type_as_string(self) -> None:
        """Corrupt stored change types still load."""
        entry = _entry(change_type="RENAMED")

        assert entry.change_type == "RENAMED"
        assert not isinstance(entry.change_type, ChangeType)
        assert isinstance(_entry(change_type="DELETED").change_type, ChangeType)

    def test_entry_reads_legacy_snapshot(self) -> None:
        entry = _entry(
            change_type=ChangeType.DELETED,
            before_state={"nodeA": "a", "nodeB": "b", "type": "DEPENDS_ON"},
        )

        assert isinstance(entry.before_state, ConnectionSnapshotV1)
        assert entry.before_state.type == ConnectionType.DEPENDS_ON

    def test_entry_is_frozen(self) -> None:
        entry = _entry()
        with pytest.raises(ValidationError):
            entry.reason = "changed"

    def test_null_metadata_becomes_empty(self) -> None:
        assert _entry(metadata=None).metadata == {}

    def test_rolled_back_from(self) -> None:
        original = uuid4()

        assert _entry().rolled_back_from is None
        assert (
            _entry(metadata={"rolled_back_from_history": str(original)}).rolled_back_from
            == str(original)
        )

    def test_stats_total_is_sum(self) -> None:
        stats = HistoryStats(created_count=3, modified_count=2, deleted_count=1)

        assert stats.total_changes == 6
        assert stats.model_dump()["total_changes"] == 6

    def test_page_has_more_when_full(self) -> None:
        entries = [_entry(), _entry()]

        assert HistoryPage(entries=entries, limit=2, offset=0).has_more
        assert not HistoryPage(entries=entries, limit=3, offset=0).has_more
        assert HistoryPage(entries=entries, limit=2, offset=0).model_dump()["has_more"] is True


class TestRollbackResult:
    def test_failure_copies_kind_and_message(self) -> None:
        result = RollbackResult.failure(NotFoundError("History entry not found"))

        assert not result.success
        assert result.error == "History entry not found"
        assert result.error_kind == "not_found"
        assert result.history_entry is None
