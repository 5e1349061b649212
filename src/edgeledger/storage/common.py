"""Helpers shared by the storage backends."""

from datetime import UTC, datetime, timedelta


class LedgerClock:
    """Server-side timestamps that strictly increase per store instance.

    History ordering is by ``created_at``; two entries recorded within the
    clock's resolution would otherwise tie.
    """

    def __init__(self) -> None:
        self._last: datetime | None = None

    def now(self) -> datetime:
        now = datetime.now(UTC)
        if self._last is not None and now <= self._last:
            now = self._last + timedelta(microseconds=1)
        self._last = now
        return now


def to_timestamp(value: datetime) -> str:
    """Fixed-width ISO-8601 string that sorts lexicographically by time."""
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def retention_cutoff(older_than_days: int) -> datetime:
    """Entries created strictly before this instant are eligible for purge."""
    if older_than_days < 0:
        raise ValueError("older_than_days must be >= 0")
    return datetime.now(UTC) - timedelta(days=older_than_days)


def pair_key(node_a: str, node_b: str) -> str:
    """Order-independent key for a node pair."""
    first, second = sorted((node_a, node_b))
    return f"{first}\x1f{second}"


def check_page(limit: int, offset: int) -> None:
    if limit < 1:
        raise ValueError("limit must be >= 1")
    if offset < 0:
        raise ValueError("offset must be >= 0")
