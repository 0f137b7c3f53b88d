"""Tests for the assignment API endpoints."""

import pytest


@pytest.fixture
def ids(org):
    return {key: obj.id for key, obj in org.items()}


class TestAssignUserEndpoint:
    """Tests for POST /api/companies/<id>/positions/<id>/assignments."""

    def test_assign(self, client, ids):
        url = f"/api/companies/{ids['company']}/positions/{ids['analyst']}/assignments"
        response = client.post(
            url,
            json={"user_id": "alice", "assignment_type": "acting", "reason": "cover"},
            headers={"X-Actor": "hr"},
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data["user_id"] == "alice"
        assert data["assignment_type"] == "acting"
        assert data["status"] == "active"
        assert data["created_by"] == "hr"

    def test_reassign_links_previous(self, client, ids):
        url = f"/api/companies/{ids['company']}/positions/{ids['analyst']}/assignments"
        first = client.post(url, json={"user_id": "alice"}).get_json()
        second = client.post(url, json={"user_id": "bob"}).get_json()

        assert second["previous_assignment_id"] == first["id"]

        history = client.get(url).get_json()
        assert [a["user_id"] for a in history["assignments"]] == ["bob", "alice"]
        assert history["assignments"][1]["status"] == "ended"

    def test_missing_user(self, client, ids):
        url = f"/api/companies/{ids['company']}/positions/{ids['analyst']}/assignments"
        response = client.post(url, json={})

        assert response.status_code == 400
        assert response.get_json()["type"] == "ValidationError"

    def test_bad_timestamp(self, client, ids):
        url = f"/api/companies/{ids['company']}/positions/{ids['analyst']}/assignments"
        response = client.post(url, json={"user_id": "alice", "start_at": "next tuesday"})

        assert response.status_code == 400
        assert "ISO-8601" in response.get_json()["error"]

    def test_unknown_assignment_type(self, client, ids):
        url = f"/api/companies/{ids['company']}/positions/{ids['analyst']}/assignments"
        response = client.post(url, json={"user_id": "alice", "assignment_type": "forever"})
        assert response.status_code == 400

    def test_unknown_position(self, client, ids):
        response = client.post(
            f"/api/companies/{ids['company']}/positions/9999/assignments", json={"user_id": "alice"}
        )
        assert response.status_code == 404
        assert response.get_json()["type"] == "NotFoundError"


class TestEndAssignmentEndpoint:
    """Tests for ending and cancelling assignments."""

    def test_end_then_end_again(self, client, ids):
        url = f"/api/companies/{ids['company']}/positions/{ids['analyst']}/assignments"
        assignment = client.post(url, json={"user_id": "alice"}).get_json()
        end_url = f"/api/companies/{ids['company']}/assignments/{assignment['id']}/end"

        response = client.post(end_url, json={"end_at": "2030-01-01T00:00:00Z", "reason": "retired"})
        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "ended"
        assert data["end_at"].startswith("2030-01-01T00:00:00")

        again = client.post(end_url, json={})
        assert again.status_code == 409
        assert again.get_json()["type"] == "InvalidStateError"

    def test_cancel(self, client, ids):
        url = f"/api/companies/{ids['company']}/positions/{ids['analyst']}/assignments"
        assignment = client.post(url, json={"user_id": "alice"}).get_json()

        response = client.post(f"/api/companies/{ids['company']}/assignments/{assignment['id']}/cancel")

        assert response.status_code == 200
        assert response.get_json()["status"] == "cancelled"

    def test_end_unknown(self, client, ids):
        response = client.post(f"/api/companies/{ids['company']}/assignments/424242/end")
        assert response.status_code == 404


class TestHistoryEndpoints:
    """Tests for position history and user assignment lookups."""

    def test_position_history_at(self, client, ids):
        url = f"/api/companies/{ids['company']}/positions/{ids['analyst']}/assignments"
        client.post(url, json={"user_id": "alice", "start_at": "2026-01-01T00:00:00Z"})

        response = client.get(
            f"/api/companies/{ids['company']}/positions/{ids['analyst']}/history",
            query_string={"at": "2026-02-01T00:00:00Z"},
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["position_title"] == "Analyst"
        assert data["current"]["user_id"] == "alice"
        assert data["occupant_at"]["user_id"] == "alice"

    def test_user_assignments(self, client, ids):
        base = f"/api/companies/{ids['company']}/positions"
        client.post(f"{base}/{ids['analyst']}/assignments", json={"user_id": "alice"})
        client.post(f"{base}/{ids['analyst']}/assignments", json={"user_id": "bob"})
        client.post(f"{base}/{ids['engineer']}/assignments", json={"user_id": "alice"})

        everything = client.get(f"/api/companies/{ids['company']}/users/alice/assignments").get_json()
        active = client.get(
            f"/api/companies/{ids['company']}/users/alice/assignments", query_string={"active": "true"}
        ).get_json()

        assert len(everything["assignments"]) == 2
        assert [a["position_id"] for a in active["assignments"]] == [ids["engineer"]]
