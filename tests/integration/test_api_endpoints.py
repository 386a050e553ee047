"""API endpoint integration tests.

Tests the FastAPI endpoints for applications and rate tables.
"""

from decimal import Decimal
from uuid import uuid4

from httpx import AsyncClient

from .conftest import Seed

GRADES_PAYLOAD = [
    {"grade": 1, "standard_reward_amount": "60000", "min_amount": "0", "max_amount": "65000"},
    {"grade": 2, "pension_grade": 1, "standard_reward_amount": "70000", "min_amount": "65000"},
]


async def create(client: AsyncClient, seeded: Seed, code: str = "LEAVE_REQUEST", **body) -> dict:
    response = await client.post(
        "/api/v1/applications",
        headers=seeded.employee_headers(),
        json={"application_type_id": str(seeded.application_type_ids[code]), **body},
    )
    assert response.status_code == 201, response.text
    return response.json()


async def act(client: AsyncClient, headers: dict, application_id: str, action: str, reason=None):
    return await client.post(
        f"/api/v1/applications/{application_id}/transitions",
        headers=headers,
        json={"action": action, "reason": reason},
    )


class TestHealthEndpoints:
    """Test health check endpoints."""

    async def test_health_check(self, client: AsyncClient):
        """Health endpoint should return 200."""
        response = await client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert "timestamp" in data

    async def test_readiness_check(self, client: AsyncClient):
        response = await client.get("/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_liveness_check(self, client: AsyncClient):
        response = await client.get("/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"


class TestCallerContext:
    """Test header-derived caller context."""

    async def test_requires_organization(self, client: AsyncClient):
        response = await client.get("/api/v1/applications", headers={"X-User-ID": str(uuid4())})
        assert response.status_code == 400

    async def test_requires_user(self, client: AsyncClient, seeded: Seed):
        response = await client.get(
            "/api/v1/applications",
            headers={"X-Organization-ID": str(seeded.organization_id)},
        )
        assert response.status_code == 400

    async def test_rejects_unknown_role(self, client: AsyncClient, seeded: Seed):
        headers = {**seeded.admin_headers(), "X-Role": "superuser"}
        response = await client.get("/api/v1/applications", headers=headers)
        assert response.status_code == 400


class TestApplicationEndpoints:
    """Test the application lifecycle over HTTP."""

    async def test_create_and_get(self, client: AsyncClient, seeded: Seed):
        created = await create(client, seeded, data={"reason": "wedding"})

        assert created["status"] == "draft"
        assert created["employee_id"] == str(seeded.employee_id)
        assert created["application_type"]["code"] == "LEAVE_REQUEST"

        response = await client.get(
            f"/api/v1/applications/{created['application_id']}",
            headers=seeded.admin_headers(),
        )
        assert response.status_code == 200
        assert response.json()["data"] == {"reason": "wedding"}

    async def test_other_employee_gets_404(self, client: AsyncClient, seeded: Seed):
        created = await create(client, seeded)

        response = await client.get(
            f"/api/v1/applications/{created['application_id']}",
            headers=seeded.employee_headers(seeded.other_employee_id),
        )
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    async def test_full_review_cycle(self, client: AsyncClient, seeded: Seed):
        """Submit, return, edit, resubmit and approve."""
        app_id = (await create(client, seeded, data={"reason": "trip"}))["application_id"]
        employee = seeded.employee_headers()
        admin = seeded.admin_headers()

        response = await act(client, employee, app_id, "submit")
        assert response.status_code == 200, response.text
        assert response.json()["to_status"] == "pending"

        response = await act(client, admin, app_id, "return", reason="dates missing")
        assert response.json()["to_status"] == "returned"

        response = await client.get(f"/api/v1/applications/{app_id}/has-changes", headers=employee)
        assert response.json()["has_changes"] is False

        response = await act(client, employee, app_id, "submit")
        assert response.status_code == 409
        assert response.json()["code"] == "GUARD_VIOLATION"

        response = await client.patch(
            f"/api/v1/applications/{app_id}",
            headers=employee,
            json={"data": {"reason": "trip", "from": "2024-05-01"}},
        )
        assert response.status_code == 200

        response = await act(client, employee, app_id, "submit")
        assert response.json()["to_status"] == "pending"

        response = await act(client, admin, app_id, "approve")
        body = response.json()
        assert body["to_status"] == "approved"
        actions = [h["action"] for h in body["application"]["history"]]
        assert actions == ["submit", "return", "submit", "approve"]
        assert len(body["application"]["return_history"]) == 1

    async def test_employee_cannot_approve(self, client: AsyncClient, seeded: Seed):
        app_id = (await create(client, seeded))["application_id"]
        await act(client, seeded.employee_headers(), app_id, "submit")

        response = await act(client, seeded.employee_headers(), app_id, "approve")

        assert response.status_code == 409
        body = response.json()
        assert body["from_status"] == "pending"
        assert body["action"] == "approve"

    async def test_unknown_action_is_422(self, client: AsyncClient, seeded: Seed):
        app_id = (await create(client, seeded))["application_id"]
        response = await act(client, seeded.admin_headers(), app_id, "escalate")
        assert response.status_code == 422

    async def test_delete_draft(self, client: AsyncClient, seeded: Seed):
        app_id = (await create(client, seeded))["application_id"]

        response = await client.delete(f"/api/v1/applications/{app_id}", headers=seeded.employee_headers())
        assert response.status_code == 204

        response = await client.get(f"/api/v1/applications/{app_id}", headers=seeded.employee_headers())
        assert response.status_code == 404

    async def test_list(self, client: AsyncClient, seeded: Seed):
        await create(client, seeded)
        await create(client, seeded)

        response = await client.get("/api/v1/applications", headers=seeded.admin_headers())
        assert response.json()["total"] == 2

        response = await client.get(
            "/api/v1/applications",
            headers=seeded.employee_headers(seeded.other_employee_id),
        )
        assert response.json()["total"] == 0

    async def test_external_flow_with_reflection(self, client: AsyncClient, seeded: Seed):
        """Approving a received address change updates the employee."""
        admin = seeded.admin_headers()
        response = await client.post(
            "/api/v1/applications",
            headers=admin,
            json={
                "application_type_id": str(seeded.application_type_ids["ADDRESS_CHANGE_EXTERNAL"]),
                "employee_id": str(seeded.employee_id),
                "status": "created",
                "data": {"insuredPerson": {"insuranceNumber": "101", "newCity": "Osaka"}},
            },
        )
        app_id = response.json()["application_id"]
        assert response.json()["external_application_status"] == "unset"

        response = await act(client, admin, app_id, "approve")
        assert response.status_code == 409

        for external_status, expected in (("sent", "pending_not_received"), ("received", "pending_received")):
            response = await client.post(
                f"/api/v1/applications/{app_id}/external-status",
                headers=admin,
                json={"external_status": external_status},
            )
            assert response.status_code == 200, response.text
            assert response.json()["status"] == expected

        response = await act(client, admin, app_id, "approve")
        body = response.json()
        assert body["to_status"] == "approved"
        assert body["reflection"]["reflected"][0]["employee_id"] == str(seeded.employee_id)

        response = await client.post(f"/api/v1/applications/{app_id}/reflection", headers=admin)
        assert response.status_code == 200
        assert response.json()["already_reflected"] == [str(seeded.employee_id)]

    async def test_comment(self, client: AsyncClient, seeded: Seed):
        app_id = (await create(client, seeded))["application_id"]

        response = await client.post(
            f"/api/v1/applications/{app_id}/comments",
            headers=seeded.admin_headers(),
            json={"text": "looks fine"},
        )

        assert response.status_code == 200
        assert response.json()["comments"][-1]["content"] == "looks fine"


class TestRateTableEndpoints:
    """Test rate table lookup and publishing."""

    async def test_resolve(self, client: AsyncClient, seeded: Seed):
        response = await client.get(
            "/api/v1/rate-tables/resolve",
            headers=seeded.admin_headers(),
            params={"amount": "63000", "as_of": "2024-05-01"},
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["grade"] == 2
        assert Decimal(body["standard_reward_amount"]) == Decimal("68000")

    async def test_resolve_without_active_table(self, client: AsyncClient, seeded: Seed):
        response = await client.get(
            "/api/v1/rate-tables/resolve",
            headers=seeded.admin_headers(),
            params={"amount": "63000", "as_of": "2025-01-01"},
        )
        assert response.status_code == 404
        assert response.json()["code"] == "RATE_NOT_FOUND"

    async def test_active_entries(self, client: AsyncClient, seeded: Seed):
        response = await client.get(
            "/api/v1/rate-tables/active",
            headers=seeded.admin_headers(),
            params={"as_of": "2024-03-01"},
        )
        assert [e["grade"] for e in response.json()] == [1, 2, 3, 4]

    async def test_publish_requires_admin(self, client: AsyncClient, seeded: Seed):
        response = await client.post(
            "/api/v1/rate-tables",
            headers=seeded.employee_headers(),
            json={"effective_from": "2024-07-01", "entries": GRADES_PAYLOAD},
        )
        assert response.status_code == 403

    async def test_publish_conflict_then_decision(self, client: AsyncClient, seeded: Seed):
        """Overlap answers 409 until a decision is supplied."""
        payload = {"effective_from": "2024-04-01", "entries": GRADES_PAYLOAD}

        response = await client.post("/api/v1/rate-tables", headers=seeded.admin_headers(), json=payload)
        assert response.status_code == 409
        conflict = response.json()["conflict"]
        assert conflict["case"] == "starts_within_existing"
        assert conflict["suggested"] == {"existing_effective_to": "2024-03-31"}

        payload["decisions"] = {"starts_within_existing": {"action": "truncate_existing"}}
        response = await client.post("/api/v1/rate-tables", headers=seeded.admin_headers(), json=payload)
        assert response.status_code == 201, response.text
        assert response.json()["moved_count"] == 4

        response = await client.get(
            "/api/v1/rate-tables/resolve",
            headers=seeded.admin_headers(),
            params={"amount": "64000", "as_of": "2024-05-01"},
        )
        assert response.json()["grade"] == 1

        response = await client.get(
            "/api/v1/rate-tables/resolve",
            headers=seeded.admin_headers(),
            params={"amount": "64000", "as_of": "2024-03-01"},
        )
        assert response.json()["grade"] == 2

    async def test_publish_abort(self, client: AsyncClient, seeded: Seed):
        response = await client.post(
            "/api/v1/rate-tables",
            headers=seeded.admin_headers(),
            json={
                "effective_from": "2024-04-01",
                "entries": GRADES_PAYLOAD,
                "decisions": {"starts_within_existing": {"action": "abort"}},
            },
        )
        assert response.status_code == 409
        assert response.json()["conflict"]["aborted"] is True

    async def test_publish_invalid_entries(self, client: AsyncClient, seeded: Seed):
        response = await client.post(
            "/api/v1/rate-tables",
            headers=seeded.admin_headers(),
            json={
                "effective_from": "2024-07-01",
                "entries": [GRADES_PAYLOAD[0], GRADES_PAYLOAD[0]],
            },
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"
