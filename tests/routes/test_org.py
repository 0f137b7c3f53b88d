"""Tests for the company, department and position endpoints."""

import pytest


@pytest.fixture
def company_id(client, app_context):
    response = client.post("/api/companies", json={"name": "Acme"})
    assert response.status_code == 201
    return response.get_json()["id"]


@pytest.fixture
def department_id(client, company_id):
    response = client.post(
        f"/api/companies/{company_id}/departments",
        json={"name": "Operations", "code": "OPS"},
        headers={"X-Actor": "admin"},
    )
    assert response.status_code == 201
    return response.get_json()["id"]


class TestCompanyEndpoints:
    """Tests for /api/companies."""

    def test_get_company(self, client, company_id):
        data = client.get(f"/api/companies/{company_id}").get_json()
        assert data["name"] == "Acme"
        assert data["status"] == "active"

    def test_create_requires_name(self, client, app_context):
        assert client.post("/api/companies", json={}).status_code == 400

    def test_unknown_company(self, client, app_context):
        assert client.get("/api/companies/999").status_code == 404


class TestDepartmentEndpoints:
    """Tests for department endpoints."""

    def test_list_update_deactivate(self, client, company_id, department_id):
        base = f"/api/companies/{company_id}/departments"

        listed = client.get(base).get_json()["departments"]
        assert [d["code"] for d in listed] == ["OPS"]

        updated = client.patch(f"{base}/{department_id}", json={"location": "Plant 1"})
        assert updated.status_code == 200
        assert updated.get_json()["location"] == "Plant 1"

        deactivated = client.post(f"{base}/{department_id}/deactivate")
        assert deactivated.get_json()["status"] == "inactive"
        assert client.get(base).get_json()["departments"] == []

    def test_unknown_field(self, client, company_id, department_id):
        response = client.patch(
            f"/api/companies/{company_id}/departments/{department_id}", json={"headcount": 4}
        )
        assert response.status_code == 400


class TestPositionEndpoints:
    """Tests for position endpoints."""

    def test_create_tree(self, client, company_id, department_id):
        base = f"/api/companies/{company_id}/positions"
        head = client.post(
            base,
            json={"department_id": department_id, "title": "Head of Ops", "code": "HOO", "expense_ceiling": 10000},
        )
        assert head.status_code == 201
        head_id = head.get_json()["id"]
        assert head.get_json()["approval_authority"]["expense_ceiling"] == 10000

        lead = client.post(
            base,
            json={"department_id": department_id, "title": "Shift Lead", "code": "SL", "level": 2, "reports_to_id": head_id},
        ).get_json()

        chain = client.get(f"{base}/{lead['id']}/reporting-chain").get_json()
        reports = client.get(f"{base}/{head_id}/direct-reports").get_json()
        assert [p["id"] for p in chain["chain"]] == [head_id]
        assert [p["id"] for p in reports["direct_reports"]] == [lead["id"]]

        listed = client.get(base, query_string={"department_id": department_id}).get_json()
        assert len(listed["positions"]) == 2

    def test_level_violation(self, client, company_id, department_id):
        base = f"/api/companies/{company_id}/positions"
        head_id = client.post(
            base, json={"department_id": department_id, "title": "Head", "code": "H"}
        ).get_json()["id"]

        response = client.post(
            base,
            json={"department_id": department_id, "title": "Peer", "code": "PEER", "level": 1, "reports_to_id": head_id},
        )
        assert response.status_code == 400

    def test_update_and_deactivate(self, client, company_id, department_id):
        base = f"/api/companies/{company_id}/positions"
        position_id = client.post(
            base, json={"department_id": department_id, "title": "Clerk", "code": "CLK"}
        ).get_json()["id"]

        updated = client.patch(f"{base}/{position_id}", json={"title": "Senior Clerk", "actor": "admin"})
        assert updated.get_json()["title"] == "Senior Clerk"

        client.post(f"{base}/{position_id}/deactivate")
        assert client.get(f"{base}/{position_id}").get_json()["status"] == "inactive"
        assert client.get(base).get_json()["positions"] == []
        assert len(client.get(base, query_string={"include_inactive": "true"}).get_json()["positions"]) == 1

    def test_missing_department(self, client, company_id):
        response = client.post(f"/api/companies/{company_id}/positions", json={"title": "X", "code": "X"})
        assert response.status_code == 400
