"""Tests for the edgeledger CLI."""

import asyncio
import gc
import json
import subprocess
import sys
from pathlib import Path

import pytest

from edgeledger import EdgeLedger, EdgeLedgerConfig
from edgeledger.cli import build_parser, main


def _seed(home: Path) -> list[str]:
    """Create two connections and delete one; returns history ids, newest first."""

    async def _run() -> list[str]:
        async with EdgeLedger(EdgeLedgerConfig(home=home)) as ledger:
            actor = {"actor_id": "user-1", "actor_name": "Ada"}
            first = await ledger.connections.create("a", "b", **actor)
            await ledger.connections.create("c", "d", actor_id="user-2", actor_name="Bob")
            await ledger.connections.delete(first.id, **actor)
            page = await ledger.history_by_nodes(["a", "b", "c", "d"])
            return [str(entry.id) for entry in page.entries]

    return asyncio.run(_run())


@pytest.fixture
def home(tmp_path: Path) -> Path:
    return tmp_path / "home"


class TestParser:
    def test_history_requires_a_selector(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["history"])

    def test_history_selectors_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["history", "--actor", "u", "--nodes", "a"])

    def test_no_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main([])

        assert exc.value.code == 1
        assert "usage" in capsys.readouterr().out


class TestCommands:
    def test_stats(self, home, capsys):
        _seed(home)

        main(["--home", str(home), "stats"])

        stats = json.loads(capsys.readouterr().out)
        assert stats["total_changes"] == 3
        assert stats["deleted_count"] == 1

    def test_stats_for_actor(self, home, capsys):
        _seed(home)

        main(["--home", str(home), "stats", "--actor", "user-2"])

        assert json.loads(capsys.readouterr().out)["created_count"] == 1

    def test_history_by_pair(self, home, capsys):
        _seed(home)

        main(["--home", str(home), "history", "--pair", "b", "a"])

        page = json.loads(capsys.readouterr().out)
        assert [e["change_type"] for e in page["entries"]] == ["DELETED", "CREATED"]
        assert page["has_more"] is False

    def test_history_by_actor_paged(self, home, capsys):
        _seed(home)

        main(["--home", str(home), "history", "--actor", "user-1", "--limit", "1"])

        page = json.loads(capsys.readouterr().out)
        assert len(page["entries"]) == 1
        assert page["has_more"] is True

    def test_rollback_and_lineage(self, home, capsys):
        deleted_id = _seed(home)[0]

        main(["--home", str(home), "rollback", deleted_id, "--actor-id", "ops"])
        result = json.loads(capsys.readouterr().out)
        assert result["success"] is True
        assert result["restored_connection"]["node_a"] == "a"
        assert result["history_entry"]["actor_name"] == "ops"

        new_id = result["history_entry"]["id"]
        main(["--home", str(home), "lineage", new_id])
        chain = json.loads(capsys.readouterr().out)
        assert [e["id"] for e in chain] == [new_id, deleted_id]

    def test_rollback_process_exits_cleanly(self, home):
        """A fresh process survives closing the store after a rollback."""
        deleted_id = _seed(home)[0]
        # Release this process's file lock on the database
        gc.collect()

        completed = subprocess.run(
            [
                sys.executable, "-m", "edgeledger.cli",
                "--home", str(home),
                "rollback", deleted_id, "--actor-id", "ops",
            ],
            capture_output=True,
            text=True,
            timeout=120,
        )

        assert completed.returncode == 0, completed.stderr
        assert json.loads(completed.stdout)["success"] is True

    def test_failed_rollback_exits_nonzero(self, home, capsys):
        _seed(home)

        with pytest.raises(SystemExit) as exc:
            main(["--home", str(home), "rollback", "missing", "--actor-id", "ops"])

        assert exc.value.code == 1
        assert json.loads(capsys.readouterr().out)["error"] == "History entry not found"

    def test_lineage_unknown(self, home, capsys):
        _seed(home)

        with pytest.raises(SystemExit) as exc:
            main(["--home", str(home), "lineage", "missing"])

        assert exc.value.code == 1
        assert "not found" in capsys.readouterr().err

    def test_cleanup(self, home, capsys):
        _seed(home)

        main(["--home", str(home), "cleanup", "--days", "0", "--dry-run"])
        assert capsys.readouterr().out.strip() == (
            "Would delete 3 history entries older than 0 days"
        )

        main(["--home", str(home), "cleanup"])
        assert capsys.readouterr().out.strip() == (
            "Deleted 0 history entries older than 365 days"
        )

    def test_negative_days_is_an_error(self, home, capsys):
        _seed(home)

        with pytest.raises(SystemExit) as exc:
            main(["--home", str(home), "cleanup", "--days", "-1"])

        assert exc.value.code == 2
        assert "older_than_days" in capsys.readouterr().err
