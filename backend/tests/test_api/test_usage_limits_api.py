"""Tests for the usage-limits (plan catalog) endpoints."""

import uuid

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


async def _create(client: AsyncClient, payload: dict) -> dict:
    response = await client.post("/api/v1/usage-limits", json=payload)
    assert response.status_code == 201, f"Failed to create plan: {response.text}"
    return response.json()


class TestCreateUsageLimits:
    async def test_create_success(self, client: AsyncClient, plan_payload) -> None:
        data = await _create(client, plan_payload(classrooms=-1, teachers="custom"))
        assert data["plan_name"] == "basic"
        assert data["classrooms"] == "unlimited"
        assert data["teachers"] == "custom"
        assert data["questions"] == 1000
        assert data["ai"]["rag_agent"] == 25
        assert data["is_active"] is True

    async def test_invalid_limit_is_422(self, client: AsyncClient, plan_payload) -> None:
        response = await client.post("/api/v1/usage-limits", json=plan_payload(teachers="many"))
        assert response.status_code == 422

    async def test_duplicate_name_is_409(self, client: AsyncClient, plan_payload) -> None:
        await _create(client, plan_payload())
        response = await client.post("/api/v1/usage-limits", json=plan_payload())
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"


class TestReadUsageLimits:
    async def test_get_and_by_plan(self, client: AsyncClient, plan_payload) -> None:
        created = await _create(client, plan_payload())

        by_id = await client.get(f"/api/v1/usage-limits/{created['id']}")
        assert by_id.json()["plan_name"] == "basic"

        by_plan = await client.get("/api/v1/usage-limits/plan/basic")
        assert by_plan.json()["id"] == created["id"]

    async def test_unknown_plan_is_404(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/usage-limits/plan/platinum")
        assert response.status_code == 404
        assert response.json()["error"] == "plan_not_found"

    async def test_unknown_id_is_404(self, client: AsyncClient) -> None:
        response = await client.get(f"/api/v1/usage-limits/{uuid.uuid4()}")
        assert response.status_code == 404

    async def test_list_and_soft_delete(self, client: AsyncClient, plan_payload) -> None:
        await _create(client, plan_payload("basic"))
        legacy = await _create(client, plan_payload("legacy"))

        deleted = await client.post(f"/api/v1/usage-limits/{legacy['id']}/soft-delete")
        assert deleted.json()["is_active"] is False

        listed = await client.get("/api/v1/usage-limits")
        assert listed.json()["total"] == 1
        assert [p["plan_name"] for p in listed.json()["items"]] == ["basic"]

        everything = await client.get("/api/v1/usage-limits", params={"include_inactive": True})
        assert everything.json()["total"] == 2

        historical = await client.get(
            "/api/v1/usage-limits/plan/legacy", params={"include_inactive": True}
        )
        assert historical.status_code == 200

        stats = await client.get("/api/v1/usage-limits/stats")
        assert stats.json() == {
            "total_usage_limits": 2,
            "active_usage_limits": 1,
            "inactive_usage_limits": 1,
        }


class TestModifyUsageLimits:
    async def test_put_replaces(self, client: AsyncClient, plan_payload) -> None:
        created = await _create(client, plan_payload())
        response = await client.put(
            f"/api/v1/usage-limits/{created['id']}", json=plan_payload("basic", questions="unlimited")
        )
        assert response.status_code == 200
        assert response.json()["questions"] == "unlimited"

    async def test_patch_partial(self, client: AsyncClient, plan_payload) -> None:
        created = await _create(client, plan_payload())
        response = await client.patch(
            f"/api/v1/usage-limits/{created['id']}",
            json={"teachers": 9, "ai": {"lumen_agent": -1}},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["teachers"] == 9
        assert data["classrooms"] == 10
        assert data["ai"]["lumen_agent"] == "unlimited"
        assert data["ai"]["rag_agent"] == 25

    async def test_patch_unknown_field_is_422(self, client: AsyncClient, plan_payload) -> None:
        created = await _create(client, plan_payload())
        response = await client.patch(f"/api/v1/usage-limits/{created['id']}", json={"seats": 2})
        assert response.status_code == 422
        assert response.json()["details"]["unknown_fields"] == ["seats"]

    async def test_patch_null_is_422(self, client: AsyncClient, plan_payload) -> None:
        created = await _create(client, plan_payload())
        response = await client.patch(f"/api/v1/usage-limits/{created['id']}", json={"questions": None})
        assert response.status_code == 422

    async def test_hard_delete(self, client: AsyncClient, plan_payload) -> None:
        created = await _create(client, plan_payload())
        response = await client.delete(f"/api/v1/usage-limits/{created['id']}")
        assert response.status_code == 204

        gone = await client.get(f"/api/v1/usage-limits/{created['id']}")
        assert gone.status_code == 404


class TestDefaultsAndChecks:
    async def test_initialize_defaults(self, client: AsyncClient) -> None:
        first = await client.post("/api/v1/usage-limits/initialize-defaults")
        assert first.json() == {"created": ["basic", "premium", "enterprise"]}

        second = await client.post("/api/v1/usage-limits/initialize-defaults")
        assert second.json() == {"created": []}

    async def test_check_usage(self, client: AsyncClient, plan_payload) -> None:
        await _create(client, plan_payload(teachers=5))
        await client.post("/api/v1/usage/user-1/track/teachers", json={"count": 5})

        response = await client.get("/api/v1/usage-limits/check/user-1", params={"plan_name": "basic"})
        assert response.status_code == 200
        report = response.json()
        assert report["within_limits"] is False
        assert report["exceeded_limits"] == ["teachers"]

    async def test_check_against_unknown_plan(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/usage-limits/check/user-1", params={"plan_name": "nope"})
        assert response.status_code == 404
