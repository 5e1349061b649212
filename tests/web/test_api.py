"""Tests for the HTTP API.

Requests go through httpx's ASGI transport on the test's event loop, with
the app bound to the already opened ``ledger`` fixture.
"""

import httpx
import pytest

from edgeledger.config import EdgeLedgerConfig
from edgeledger.web.app import create_app

HEADERS = {"X-Actor-Id": "user-1", "X-Actor-Name": "Ada Lovelace"}


@pytest.fixture
async def client(ledger):
    app = create_app(ledger=ledger)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _connect(client, node_a="a", node_b="b", **body):
    response = await client.post(
        "/api/connections", json={"node_a": node_a, "node_b": node_b, **body}, headers=HEADERS
    )
    assert response.status_code == 201
    return response.json()


async def _latest_entry(client, node_a="a", node_b="b"):
    response = await client.get(
        "/api/connections/history",
        params={"node_a": node_a, "node_b": node_b, "limit": 1},
        headers=HEADERS,
    )
    return response.json()["history"][0]


# =============================================================================
# App
# =============================================================================


class TestApp:
    async def test_health(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_missing_actor_is_unauthorized(self, client):
        response = await client.get("/api/connections/history")

        assert response.status_code == 401
        assert response.json()["detail"] == "Unauthorized"

    async def test_ledger_not_initialized(self):
        transport = httpx.ASGITransport(app=create_app())
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/connections/history", headers=HEADERS)

        assert response.status_code == 503


# =============================================================================
# Connections
# =============================================================================


class TestConnectionsApi:
    async def test_create_and_get(self, client):
        created = await _connect(client, type="DEPENDS_ON", metadata={"k": 1})

        assert created["type"] == "DEPENDS_ON"
        assert created["version"] == 1

        response = await client.get(f"/api/connections/{created['id']}", headers=HEADERS)
        assert response.status_code == 200
        assert response.json() == created

    async def test_duplicate_is_conflict(self, client):
        await _connect(client)

        response = await client.post(
            "/api/connections", json={"node_a": "b", "node_b": "a"}, headers=HEADERS
        )

        assert response.status_code == 409
        assert response.json()["detail"] == "Connection already exists"

    async def test_unknown_connection(self, client):
        response = await client.get("/api/connections/missing", headers=HEADERS)

        assert response.status_code == 404

    async def test_list_for_node(self, client):
        await _connect(client, "a", "b")
        await _connect(client, "c", "d")

        response = await client.get("/api/connections", params={"node_id": "b"}, headers=HEADERS)

        assert [(c["node_a"], c["node_b"]) for c in response.json()] == [("a", "b")]

    async def test_partial_update(self, client):
        created = await _connect(client, metadata={"k": 1})

        response = await client.put(
            f"/api/connections/{created['id']}",
            json={"type": "INSPIRES", "reason": "retag"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["type"] == "INSPIRES"
        assert response.json()["metadata"] == {"k": 1}
        assert response.json()["version"] == 2
        assert (await _latest_entry(client))["reason"] == "retag"

    async def test_update_can_clear_metadata(self, client):
        created = await _connect(client, metadata={"k": 1})

        response = await client.put(
            f"/api/connections/{created['id']}", json={"metadata": None}, headers=HEADERS
        )

        assert response.json()["metadata"] is None

    async def test_delete(self, client):
        created = await _connect(client)

        response = await client.delete(
            f"/api/connections/{created['id']}", params={"reason": "gone"}, headers=HEADERS
        )

        assert response.status_code == 204
        missing = await client.get(f"/api/connections/{created['id']}", headers=HEADERS)
        assert missing.status_code == 404
        entry = await _latest_entry(client)
        assert entry["change_type"] == "DELETED"
        assert entry["reason"] == "gone"

    async def test_connection_history(self, client):
        created = await _connect(client)
        await client.put(
            f"/api/connections/{created['id']}", json={"metadata": {"k": 2}}, headers=HEADERS
        )

        response = await client.get(
            f"/api/connections/{created['id']}/history", headers=HEADERS
        )

        body = response.json()
        assert response.status_code == 200
        assert body["connection"]["id"] == created["id"]
        assert [e["change_type"] for e in body["history"]] == ["MODIFIED", "CREATED"]

    async def test_connection_history_unknown(self, client):
        response = await client.get("/api/connections/missing/history", headers=HEADERS)

        assert response.status_code == 404


# =============================================================================
# History
# =============================================================================


class TestHistoryApi:
    async def test_defaults_to_calling_actor(self, client):
        await _connect(client, "a", "b")
        await client.post(
            "/api/connections",
            json={"node_a": "c", "node_b": "d"},
            headers={"X-Actor-Id": "user-2"},
        )

        response = await client.get("/api/connections/history", headers=HEADERS)

        body = response.json()
        assert response.status_code == 200
        assert [(e["node_a"], e["node_b"]) for e in body["history"]] == [("a", "b")]
        assert body["stats"]["total_changes"] == 1
        assert body["pagination"] == {"limit": 100, "offset": 0, "has_more": False}

    async def test_unknown_actor_name_default(self, client):
        await client.post(
            "/api/connections",
            json={"node_a": "a", "node_b": "b"},
            headers={"X-Actor-Id": "user-2"},
        )

        entry = await _latest_entry(client)

        assert entry["actor_name"] == "Unknown User"

    async def test_by_pair_either_order(self, client):
        await _connect(client, "a", "b")
        await _connect(client, "a", "c")

        response = await client.get(
            "/api/connections/history", params={"node_a": "b", "node_b": "a"}, headers=HEADERS
        )

        assert len(response.json()["history"]) == 1

    async def test_by_node_ids(self, client):
        await _connect(client, "a", "b")
        await _connect(client, "c", "d")
        await _connect(client, "e", "f")

        response = await client.get(
            "/api/connections/history",
            params={"node_ids": "a, d", "limit": 1},
            headers=HEADERS,
        )

        body = response.json()
        assert len(body["history"]) == 1
        assert body["pagination"]["has_more"] is True

    async def test_half_pair_is_bad_request(self, client):
        response = await client.get(
            "/api/connections/history", params={"node_a": "a"}, headers=HEADERS
        )

        assert response.status_code == 400

    @pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 501}, {"offset": -1}])
    async def test_bad_page_parameters(self, client, params):
        response = await client.get("/api/connections/history", params=params, headers=HEADERS)

        assert response.status_code == 400


class TestRollbackApi:
    async def test_rollback_creation(self, client):
        created = await _connect(client)
        entry = await _latest_entry(client)

        response = await client.post(
            "/api/connections/history/rollback",
            json={"history_id": entry["id"], "reason": "mistake"},
            headers=HEADERS,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["message"] == "Successfully rolled back connection change"
        assert body["deleted_connection_id"] == created["id"]
        assert body["restored_connection"] is None
        assert body["history_entry"]["change_type"] == "DELETED"
        assert body["history_entry"]["reason"] == "mistake"
        assert body["history_entry"]["metadata"]["rolled_back_from_history"] == entry["id"]

    async def test_rollback_deletion_restores(self, client):
        created = await _connect(client, metadata={"k": 1})
        await client.delete(f"/api/connections/{created['id']}", headers=HEADERS)
        entry = await _latest_entry(client)

        response = await client.post(
            "/api/connections/history/rollback",
            json={"history_id": entry["id"]},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["restored_connection"]["metadata"] == {"k": 1}

    async def test_unknown_entry_is_not_found(self, client):
        response = await client.post(
            "/api/connections/history/rollback",
            json={"history_id": "nonexistent"},
            headers=HEADERS,
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "History entry not found"

    async def test_precondition_failure_is_conflict(self, client):
        created = await _connect(client)
        await client.delete(f"/api/connections/{created['id']}", headers=HEADERS)
        deleted = await _latest_entry(client)
        await _connect(client, "b", "a")

        response = await client.post(
            "/api/connections/history/rollback",
            json={"history_id": deleted["id"]},
            headers=HEADERS,
        )

        assert response.status_code == 409
        assert response.json()["detail"] == "Connection already exists or invalid previous state"

    async def test_rollback_requires_actor(self, client):
        response = await client.post(
            "/api/connections/history/rollback", json={"history_id": "x"}
        )

        assert response.status_code == 401


class TestStorageFailures:
    async def test_corrupt_row_is_server_error(self, ledger, client):
        """Undecodable stored rows are reported as 500, not as bad input."""
        ledger.store._conn.execute(
            """
            CREATE (h:ConnectionHistory {
                id: 'bad', connection_id: '', node_a: 'a', node_b: 'b',
                change_type: 'CREATED', actor_id: 'user-1', actor_name: 'Ada',
                before_state: '', after_state: '', metadata: '{}',
                reason: '', created_at: '2030-01-01T00:00:00.000000+00:00'
            })
            """
        )

        response = await client.get(
            "/api/connections/history", params={"node_a": "a", "node_b": "b"}, headers=HEADERS
        )

        assert response.status_code == 500
        assert "Corrupt history row" in response.json()["detail"]


class TestLifespan:
    async def test_owned_ledger_runs_scheduled_sweeps(self, tmp_path):
        config = EdgeLedgerConfig(home=tmp_path, retention_interval_seconds=3600)
        app = create_app(config=config)

        async with app.router.lifespan_context(app):
            ledger = app.state.ledger
            assert ledger.janitor.running

        assert not ledger.janitor.running
        assert app.state.ledger is None

    async def test_sweeps_off_by_default(self, tmp_path):
        app = create_app(config=EdgeLedgerConfig(home=tmp_path))

        async with app.router.lifespan_context(app):
            assert not app.state.ledger.janitor.running
