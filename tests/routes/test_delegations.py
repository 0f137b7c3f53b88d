"""Tests for the delegation API endpoints."""

from datetime import datetime, timedelta, timezone

import pytest


@pytest.fixture
def ids(client, org):
    ids = {key: obj.id for key, obj in org.items()}
    client.post(
        f"/api/companies/{ids['company']}/positions/{ids['analyst']}/assignments",
        json={"user_id": "alice"},
    )
    return ids


def _payload(ids, **overrides):
    now = datetime.now(timezone.utc)
    payload = {
        "delegator_position_id": ids["analyst"],
        "delegate_user_id": "dave",
        "start_at": (now - timedelta(minutes=5)).isoformat(),
        "end_at": (now + timedelta(days=2)).isoformat(),
        "reason": "conference",
    }
    payload.update(overrides)
    return payload


class TestCreateDelegationEndpoint:
    """Tests for POST /api/companies/<id>/delegations."""

    def test_create_active(self, client, ids):
        response = client.post(
            f"/api/companies/{ids['company']}/delegations", json=_payload(ids), headers={"X-Actor": "alice"}
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data["status"] == "active"
        assert data["delegator_user_id"] == "alice"

    def test_create_pending_then_approve(self, client, ids):
        created = client.post(
            f"/api/companies/{ids['company']}/delegations", json=_payload(ids, requires_approval=True)
        ).get_json()
        assert created["status"] == "pending"

        response = client.post(
            f"/api/companies/{ids['company']}/delegations/{created['id']}/approve", json={"actor": "boss"}
        )

        assert response.status_code == 200
        assert response.get_json()["status"] == "active"
        assert response.get_json()["approved_by"] == "boss"

    def test_reject(self, client, ids):
        created = client.post(
            f"/api/companies/{ids['company']}/delegations", json=_payload(ids, requires_approval=True)
        ).get_json()

        response = client.post(
            f"/api/companies/{ids['company']}/delegations/{created['id']}/reject", json={"reason": "no"}
        )

        assert response.get_json()["status"] == "rejected"
        assert response.get_json()["rejection_reason"] == "no"

    def test_revoke_twice_conflicts(self, client, ids):
        created = client.post(f"/api/companies/{ids['company']}/delegations", json=_payload(ids)).get_json()
        url = f"/api/companies/{ids['company']}/delegations/{created['id']}/revoke"

        assert client.post(url, json={}).status_code == 200
        again = client.post(url, json={})
        assert again.status_code == 409

    def test_self_delegation(self, client, ids):
        response = client.post(
            f"/api/companies/{ids['company']}/delegations", json=_payload(ids, delegate_user_id="alice")
        )
        assert response.status_code == 400

    def test_missing_window(self, client, ids):
        response = client.post(
            f"/api/companies/{ids['company']}/delegations", json=_payload(ids, end_at=None)
        )
        assert response.status_code == 400

    def test_get_unknown(self, client, ids):
        assert client.get(f"/api/companies/{ids['company']}/delegations/987").status_code == 404


class TestListDelegationsEndpoint:
    """Tests for GET /api/companies/<id>/delegations."""

    def test_by_position(self, client, ids):
        client.post(f"/api/companies/{ids['company']}/delegations", json=_payload(ids))

        data = client.get(
            f"/api/companies/{ids['company']}/delegations", query_string={"position_id": ids["analyst"]}
        ).get_json()

        assert len(data["delegations"]) == 1

    def test_by_user(self, client, ids):
        client.post(f"/api/companies/{ids['company']}/delegations", json=_payload(ids))
        url = f"/api/companies/{ids['company']}/delegations"

        outgoing = client.get(url, query_string={"user_id": "alice"}).get_json()
        incoming = client.get(url, query_string={"user_id": "dave", "direction": "incoming"}).get_json()
        nothing = client.get(url, query_string={"user_id": "dave"}).get_json()

        assert len(outgoing["delegations"]) == 1
        assert len(incoming["delegations"]) == 1
        assert nothing["delegations"] == []

    def test_requires_filter(self, client, ids):
        assert client.get(f"/api/companies/{ids['company']}/delegations").status_code == 400

    def test_bad_direction(self, client, ids):
        response = client.get(
            f"/api/companies/{ids['company']}/delegations", query_string={"user_id": "alice", "direction": "up"}
        )
        assert response.status_code == 400


class TestExpireEndpoint:
    """Tests for POST /api/delegations/expire."""

    def test_expire(self, client, ids):
        created = client.post(f"/api/companies/{ids['company']}/delegations", json=_payload(ids)).get_json()
        later = (datetime.now(timezone.utc) + timedelta(days=3)).isoformat()

        data = client.post("/api/delegations/expire", json={"now": later}).get_json()

        assert data == {"expired": [created["id"]], "count": 1}
        status = client.get(f"/api/companies/{ids['company']}/delegations/{created['id']}").get_json()["status"]
        assert status == "expired"
