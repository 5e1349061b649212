"""Age-based purge of old history entries.

Purging is irreversible. It only removes entries older than the retention
window, which no "recent activity" query returns, so it can run alongside
ordinary reads. Sweeps can be triggered by an operator (``edgeledger cleanup``)
or scheduled with ``start``.
"""

import asyncio
import logging

from edgeledger.storage.protocols import HistoryLedger

logger = logging.getLogger(__name__)


class RetentionJanitor:
    """Deletes ledger entries older than a retention window."""

    def __init__(self, ledger: HistoryLedger, retention_days: int = 365) -> None:
        if retention_days < 0:
            raise ValueError("retention_days must be >= 0")
        self._ledger = ledger
        self._retention_days = retention_days
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def retention_days(self) -> int:
        return self._retention_days

    @property
    def running(self) -> bool:
        return self._task is not None

    async def cleanup(
        self, older_than_days: int | None = None, *, dry_run: bool = False
    ) -> int:
        """Purge entries older than ``older_than_days`` (default: retention_days).

        Args:
            older_than_days: Age cutoff in days. ``0`` removes every entry
                created before now.
            dry_run: If True, return the number of entries that would be
                deleted without deleting them.

        Returns:
            Number of entries deleted, or eligible for deletion on a dry run.
        """
        days = self._retention_days if older_than_days is None else older_than_days
        if days < 0:
            raise ValueError("older_than_days must be >= 0")

        if dry_run:
            count = await self._ledger.count_older_than(days)
            logger.info("Retention dry run: %d history entries older than %d days", count, days)
            return count

        deleted = await self._ledger.cleanup(days)
        logger.info("Retention: deleted %d history entries older than %d days", deleted, days)
        return deleted

    async def start(self, interval_seconds: float) -> None:
        """Start sweeping every ``interval_seconds`` on a background task."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if self._task is not None:
            logger.warning("Retention janitor already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop(interval_seconds))
        logger.info(
            "Retention janitor started (interval=%ss, retention_days=%d)",
            interval_seconds,
            self._retention_days,
        )

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Retention janitor stopped")

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while self._running:
            try:
                await self.cleanup()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Retention sweep failed")
            await asyncio.sleep(interval_seconds)
