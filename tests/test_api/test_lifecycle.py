"""Tests for lifecycle config, state and transition endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi.testclient import TestClient

    from skuld.db import Database

BASE = "/api/v1/lifecycle"


def _config_id(client: TestClient, experiment_id: str = "exp_1") -> str:
    return client.get(f"{BASE}/experiments/{experiment_id}/config").json()["id"]


class TestConfigs:
    def test_create_returns_config(self, client: TestClient):
        resp = client.post(
            f"{BASE}/configs", json={"experiment_id": "exp_9", "config": {"auto_start": True}}
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["experiment_id"] == "exp_9"
        assert data["auto_start"] is True
        assert data["id"].startswith("lifecycle_")

    def test_create_duplicate(self, created_client: TestClient):
        resp = created_client.post(f"{BASE}/configs", json={"experiment_id": "exp_1"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "conflict"

    def test_create_rejects_empty_experiment_id(self, client: TestClient):
        resp = client.post(f"{BASE}/configs", json={"experiment_id": ""})
        assert resp.status_code == 422

    def test_create_rejects_bad_timezone(self, client: TestClient):
        resp = client.post(
            f"{BASE}/configs",
            json={"experiment_id": "exp_9", "config": {"schedule": {"timezone": "Mars/Olympus"}}},
        )
        assert resp.status_code == 422

    def test_get_by_id(self, created_client: TestClient):
        config_id = _config_id(created_client)
        resp = created_client.get(f"{BASE}/configs/{config_id}")
        assert resp.status_code == 200
        assert resp.json()["experiment_id"] == "exp_1"

    def test_get_unknown(self, client: TestClient):
        resp = client.get(f"{BASE}/configs/lifecycle_missing")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"
        assert client.get(f"{BASE}/experiments/nope/config").status_code == 404

    def test_patch(self, created_client: TestClient):
        config_id = _config_id(created_client)
        resp = created_client.patch(
            f"{BASE}/configs/{config_id}",
            json={"patch": {"auto_stop": True}, "actor": "bob"},
        )
        assert resp.status_code == 200
        assert resp.json()["auto_stop"] is True

    def test_patch_identity_field(self, created_client: TestClient):
        config_id = _config_id(created_client)
        resp = created_client.patch(
            f"{BASE}/configs/{config_id}", json={"patch": {"experiment_id": "exp_2"}}
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "bad_request"

    def test_patch_unknown_config(self, client: TestClient):
        resp = client.patch(f"{BASE}/configs/lifecycle_missing", json={"patch": {}})
        assert resp.status_code == 404


class TestStateAndTransitions:
    def test_initial_state(self, created_client: TestClient):
        resp = created_client.get(f"{BASE}/experiments/exp_1/state")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "draft"
        assert data["total_steps"] == 2

    def test_unknown_state(self, client: TestClient):
        assert client.get(f"{BASE}/experiments/nope/state").status_code == 404

    def test_start_applies_first_step(self, created_client: TestClient):
        resp = created_client.post(
            f"{BASE}/experiments/exp_1/start", json={"actor": "alice"}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "running"
        assert data["rollout_percentage"] == 25
        assert data["next_check"] is not None

    def test_start_without_body(self, created_client: TestClient):
        resp = created_client.post(f"{BASE}/experiments/exp_1/start")
        assert resp.status_code == 200

    def test_invalid_transition(self, created_client: TestClient):
        resp = created_client.post(f"{BASE}/experiments/exp_1/pause")
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "invalid_transition"
        assert "draft" in body["detail"]

    def test_pause_stop_flow(self, created_client: TestClient):
        created_client.post(f"{BASE}/experiments/exp_1/start")
        paused = created_client.post(
            f"{BASE}/experiments/exp_1/pause", json={"reason": "holiday"}
        )
        assert paused.json()["status"] == "paused"

        stopped = created_client.post(f"{BASE}/experiments/exp_1/stop", json={"reason": "done"})
        assert stopped.status_code == 200
        assert stopped.json()["status"] == "completed"

    def test_advance_and_rollback(self, created_client: TestClient):
        created_client.post(f"{BASE}/experiments/exp_1/start")

        advanced = created_client.post(f"{BASE}/experiments/exp_1/advance")
        assert advanced.status_code == 200
        assert advanced.json()["rollout_percentage"] == 100

        rolled_back = created_client.post(
            f"{BASE}/experiments/exp_1/rollback", json={"reason": "checkout errors"}
        )
        data = rolled_back.json()
        assert data["status"] == "failed"
        assert data["health"] == "critical"
        assert data["rollout_percentage"] == 0

    def test_experiment_busy_in_other_worker(self, created_client: TestClient, db: Database):
        db.acquire_lease("exp_1", "worker:elsewhere", 60)

        resp = created_client.post(f"{BASE}/experiments/exp_1/start")
        assert resp.status_code == 409
        assert resp.json()["error"] == "busy"

        db.release_lease("exp_1", "worker:elsewhere")
        resp = created_client.post(f"{BASE}/experiments/exp_1/start")
        assert resp.status_code == 200

    def test_list_states_filtered(self, created_client: TestClient):
        created_client.post(f"{BASE}/configs", json={"experiment_id": "exp_2"})
        created_client.post(f"{BASE}/experiments/exp_1/start")

        all_states = created_client.get(f"{BASE}/states").json()
        assert all_states["total"] == 2

        running = created_client.get(f"{BASE}/states", params={"status": "running"}).json()
        assert [s["experiment_id"] for s in running["states"]] == ["exp_1"]

    def test_events_newest_first(self, created_client: TestClient):
        created_client.post(f"{BASE}/experiments/exp_1/start")
        created_client.post(f"{BASE}/experiments/exp_1/pause")

        resp = created_client.get(f"{BASE}/experiments/exp_1/events", params={"limit": 2})
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 2
        assert data["events"][0]["type"] == "paused"

    def test_events_unknown_experiment(self, client: TestClient):
        assert client.get(f"{BASE}/experiments/nope/events").status_code == 404

    def test_audit_trail(self, created_client: TestClient):
        created_client.post(f"{BASE}/experiments/exp_1/start", json={"actor": "alice"})

        entries = created_client.get(f"{BASE}/experiments/exp_1/audit").json()["entries"]
        assert [e["action"] for e in entries] == ["lifecycle.start", "lifecycle.config_created"]
        assert entries[0]["actor"] == "alice"
        assert entries[0]["new_value"] == "running"

    def test_ack_unknown_alert(self, created_client: TestClient):
        resp = created_client.post(f"{BASE}/experiments/exp_1/alerts/alert_missing/ack")
        assert resp.status_code == 404


class TestControlLoop:
    def test_tick_starts_auto_start_configs(self, client: TestClient):
        client.post(
            f"{BASE}/configs", json={"experiment_id": "exp_9", "config": {"auto_start": True}}
        )

        resp = client.post(f"{BASE}/tick")
        assert resp.status_code == 200
        assert resp.json() == {"serviced": 1}
        state = client.get(f"{BASE}/experiments/exp_9/state").json()
        assert state["status"] == "running"

    def test_idle_tick(self, created_client: TestClient):
        assert created_client.post(f"{BASE}/tick").json() == {"serviced": 0}


class TestNotifications:
    def test_inbox_and_mark_read(self, created_client: TestClient):
        created_client.post(f"{BASE}/experiments/exp_1/start")

        inbox = created_client.get(f"{BASE}/notifications").json()
        assert inbox["total"] == 1
        notification = inbox["notifications"][0]
        assert notification["event"] == "started"
        assert notification["read"] is False

        resp = created_client.post(f"{BASE}/notifications/{notification['id']}/read")
        assert resp.json() == {"read": True}
        unread = created_client.get(f"{BASE}/notifications", params={"unread_only": True})
        assert unread.json()["total"] == 0

    def test_mark_unknown_notification(self, client: TestClient):
        resp = client.post(f"{BASE}/notifications/notification_missing/read")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"
