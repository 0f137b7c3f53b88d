"""Tests for the resolution and work item API endpoints."""

from datetime import datetime, timedelta, timezone

import pytest


@pytest.fixture
def ids(org):
    return {key: obj.id for key, obj in org.items()}


@pytest.fixture
def staffed(client, ids):
    client.post(
        f"/api/companies/{ids['company']}/positions/{ids['analyst']}/assignments",
        json={"user_id": "alice"},
    )
    return ids


class TestEffectiveAssignmentEndpoint:
    """Tests for GET .../effective-assignment."""

    def test_occupied(self, client, staffed):
        response = client.get(
            f"/api/companies/{staffed['company']}/positions/{staffed['analyst']}/effective-assignment"
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["vacant"] is False
        assert data["effective_assignment"]["user_id"] == "alice"
        assert data["effective_assignment"]["is_delegated"] is False

    def test_vacant(self, client, ids):
        response = client.get(
            f"/api/companies/{ids['company']}/positions/{ids['engineer']}/effective-assignment"
        )

        data = response.get_json()
        assert data["vacant"] is True
        assert data["effective_assignment"] is None

    def test_delegated(self, client, staffed):
        now = datetime.now(timezone.utc)
        client.post(
            f"/api/companies/{staffed['company']}/delegations",
            json={
                "delegator_position_id": staffed["analyst"],
                "delegate_user_id": "dave",
                "start_at": (now - timedelta(minutes=5)).isoformat(),
                "end_at": (now + timedelta(days=1)).isoformat(),
            },
        )

        data = client.get(
            f"/api/companies/{staffed['company']}/positions/{staffed['analyst']}/effective-assignment"
        ).get_json()

        assert data["effective_assignment"]["user_id"] == "dave"
        assert data["effective_assignment"]["occupant_user_id"] == "alice"
        assert data["effective_assignment"]["delegation_chain"][0]["to_user_id"] == "dave"

    def test_unknown_position(self, client, ids):
        response = client.get(f"/api/companies/{ids['company']}/positions/999/effective-assignment")
        assert response.status_code == 404


class TestWorkItemResolutionEndpoints:
    """Tests for work item resolve endpoints."""

    def test_resolve_one(self, client, staffed):
        response = client.post(
            f"/api/companies/{staffed['company']}/work-items/resolve",
            json={"item_type": "approval", "item_id": 5, "position_id": staffed["analyst"], "user_id": "zoe"},
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["effective_user_id"] == "alice"
        assert data["original_user_id"] == "zoe"
        assert data["timed_out"] is False

    def test_resolve_requires_item_id(self, client, staffed):
        response = client.post(f"/api/companies/{staffed['company']}/work-items/resolve", json={})
        assert response.status_code == 400

    def test_unknown_item_type(self, client, staffed):
        response = client.post(
            f"/api/companies/{staffed['company']}/work-items/resolve",
            json={"item_type": "memo", "item_id": 5},
        )
        assert response.status_code == 400
        assert "Unknown work item type" in response.get_json()["error"]

    def test_resolve_batch(self, client, staffed):
        response = client.post(
            f"/api/companies/{staffed['company']}/work-items/resolve-batch",
            json={
                "items": [
                    {"item_type": "task", "item_id": 1, "position_id": staffed["analyst"]},
                    {"item_type": "task", "item_id": 2, "position_id": staffed["engineer"], "user_id": "zoe"},
                ],
                "deadline_seconds": 10,
            },
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["count"] == 2
        assert data["timed_out"] == 0
        assert [r["effective_user_id"] for r in data["results"]] == ["alice", "zoe"]

    def test_batch_requires_list(self, client, staffed):
        response = client.post(
            f"/api/companies/{staffed['company']}/work-items/resolve-batch", json={"items": "all"}
        )
        assert response.status_code == 400

    def test_negative_deadline(self, client, staffed):
        response = client.post(
            f"/api/companies/{staffed['company']}/work-items/resolve",
            json={"item_id": 1, "deadline_seconds": -1},
        )
        assert response.status_code == 400


class TestWorkItemEndpoints:
    """Tests for creating and assigning work items."""

    def test_create_and_assign(self, client, staffed):
        created = client.post(
            f"/api/companies/{staffed['company']}/work-items",
            json={"item_type": "safety_inspection", "title": "Forklift check", "assigned_position_id": staffed["analyst"]},
        )
        assert created.status_code == 201
        item = created.get_json()
        assert item["status"] == "pending"

        response = client.post(f"/api/companies/{staffed['company']}/work-items/{item['id']}/assign", json={})

        assert response.status_code == 200
        data = response.get_json()
        assert data["work_item"]["assignee_user_id"] == "alice"
        assert data["work_item"]["occupant_user_id"] == "alice"
        assert data["context"]["effective_user_id"] == "alice"

    def test_create_requires_title(self, client, staffed):
        response = client.post(f"/api/companies/{staffed['company']}/work-items", json={"item_type": "task"})
        assert response.status_code == 400

    def test_create_rejects_bad_status(self, client, staffed):
        response = client.post(
            f"/api/companies/{staffed['company']}/work-items",
            json={"item_type": "task", "title": "x", "status": "archived"},
        )
        assert response.status_code == 400

    def test_assign_unknown_item(self, client, staffed):
        response = client.post(f"/api/companies/{staffed['company']}/work-items/999/assign", json={})
        assert response.status_code == 404


class TestStatsEndpoint:
    """Tests for GET /api/resolution/stats."""

    def test_stats(self, client, staffed):
        client.get(f"/api/companies/{staffed['company']}/positions/{staffed['analyst']}/effective-assignment")

        data = client.get("/api/resolution/stats").get_json()

        assert set(data) == {"resolution", "cache", "ledger", "events", "notifications"}
        assert data["resolution"]["count"] >= 1
        assert data["ledger"]["committed"] >= 1
        assert data["events"]["published"] >= 1
