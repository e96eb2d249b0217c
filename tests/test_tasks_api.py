"""
Tasks API Tests
===============

End-to-end tests through the FastAPI app: envelopes, status codes and
error codes for the task and auth endpoints.
"""

import uuid
from datetime import datetime

import httpx
import pytest
from httpx import AsyncClient

from tasktracker.services.external_sync import ExternalTodoClient

PASSWORD = "correct-horse-battery"
POPULATE_KEY = "test-populate-key"


async def _create(client, headers, **payload):
    payload.setdefault("title", "A task")
    response = await client.post("/api/v1/tasks", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_requests_without_token_are_rejected(self, client: AsyncClient):
        response = await client.get("/api/v1/tasks")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"].startswith("AUTH_")

    @pytest.mark.asyncio
    async def test_login_me_refresh(self, client: AsyncClient, alice):
        response = await client.post(
            "/api/v1/auth/login",
            json={"email": "alice@example.com", "password": PASSWORD},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user"]["email"] == "alice@example.com"
        assert data["user"]["roles"] == ["user"]
        access = data["tokens"]["access_token"]

        me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {access}"})
        assert me.status_code == 200
        assert me.json()["data"]["id"] == str(alice.user_id)

        refreshed = await client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": data["tokens"]["refresh_token"]},
        )
        assert refreshed.status_code == 200
        assert refreshed.json()["data"]["access_token"]

    @pytest.mark.asyncio
    async def test_login_with_wrong_password(self, client: AsyncClient, alice):
        response = await client.post(
            "/api/v1/auth/login",
            json={"email": "alice@example.com", "password": "nope"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_001"

    @pytest.mark.asyncio
    async def test_access_token_cannot_refresh(self, client: AsyncClient, alice, headers_for):
        access = headers_for(alice)["Authorization"].split()[1]

        response = await client.post("/api/v1/auth/refresh", json={"refresh_token": access})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_sixth_login_in_a_minute_is_throttled(self, client: AsyncClient, alice):
        credentials = {"email": "alice@example.com", "password": "nope"}
        for _ in range(5):
            response = await client.post("/api/v1/auth/login", json=credentials)
            assert response.status_code == 401

        response = await client.post("/api/v1/auth/login", json=credentials)

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMIT"
        assert response.headers["Retry-After"] == "60"

    @pytest.mark.asyncio
    async def test_refresh_shares_the_login_budget(self, client: AsyncClient, alice):
        for _ in range(5):
            await client.post(
                "/api/v1/auth/login",
                json={"email": "alice@example.com", "password": PASSWORD},
            )

        response = await client.post("/api/v1/auth/refresh", json={"refresh_token": "x"})

        assert response.status_code == 429


class TestTaskEndpoints:
    @pytest.mark.asyncio
    async def test_create_and_show(self, client: AsyncClient, alice, headers_for):
        headers = headers_for(alice)

        task = await _create(client, headers, title="Write report")

        assert task["priority"] == "medium"
        assert task["is_completed"] is False
        assert task["owner_id"] == str(alice.user_id)
        assert uuid.UUID(task["id"])

        shown = await client.get(f"/api/v1/tasks/{task['id']}", headers=headers)
        assert shown.status_code == 200
        assert shown.json()["data"]["title"] == "Write report"

    @pytest.mark.asyncio
    async def test_paginated_listing_envelope(self, client: AsyncClient, alice, headers_for):
        headers = headers_for(alice)
        for i in range(12):
            await _create(client, headers, title=f"Task {i}")

        response = await client.get("/api/v1/tasks?per_page=10&page=2", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert len(body["data"]) == 2
        assert body["pagination"] == {
            "current_page": 2,
            "total_pages": 2,
            "total_items": 12,
            "per_page": 10,
            "has_next": False,
            "has_previous": True,
        }

    @pytest.mark.asyncio
    async def test_large_page_size_is_accepted(self, client: AsyncClient, alice, headers_for):
        headers = headers_for(alice)
        await _create(client, headers)

        response = await client.get("/api/v1/tasks?per_page=500", headers=headers)

        assert response.status_code == 200
        assert response.json()["pagination"]["per_page"] == 500
        assert len(response.json()["data"]) == 1

    @pytest.mark.asyncio
    async def test_listing_filters(self, client: AsyncClient, alice, headers_for):
        headers = headers_for(alice)
        await _create(client, headers, title="Urgent", priority="high")
        await _create(client, headers, title="Done", priority="high", is_completed=True)
        await _create(client, headers, title="Later", priority="low")

        response = await client.get(
            "/api/v1/tasks", params={"priority": "high", "completed": "0"}, headers=headers
        )

        assert [t["title"] for t in response.json()["data"]] == ["Urgent"]

    @pytest.mark.asyncio
    async def test_invalid_priority_filter(self, client: AsyncClient, alice, headers_for):
        response = await client.get(
            "/api/v1/tasks", params={"priority": "urgent"}, headers=headers_for(alice)
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_update_complete_incomplete(self, client: AsyncClient, alice, headers_for):
        headers = headers_for(alice)
        task = await _create(client, headers, title="Draft")

        patched = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"priority": "high"}, headers=headers
        )
        assert patched.status_code == 200
        assert patched.json()["data"]["priority"] == "high"
        assert patched.json()["data"]["title"] == "Draft"

        put = await client.put(
            f"/api/v1/tasks/{task['id']}", json={"title": "Final"}, headers=headers
        )
        assert put.json()["data"]["title"] == "Final"

        done = await client.post(f"/api/v1/tasks/{task['id']}/complete", headers=headers)
        assert done.json()["data"]["is_completed"] is True
        assert datetime.fromisoformat(done.json()["data"]["updated_at"]) > datetime.fromisoformat(
            task["updated_at"]
        )

        reopened = await client.post(f"/api/v1/tasks/{task['id']}/incomplete", headers=headers)
        assert reopened.json()["data"]["is_completed"] is False

        listing = await client.get("/api/v1/tasks", headers=headers)
        assert listing.json()["data"][0]["title"] == "Final"
        assert listing.json()["data"][0]["is_completed"] is False

    @pytest.mark.asyncio
    async def test_invalid_payloads(self, client: AsyncClient, alice, headers_for):
        headers = headers_for(alice)
        task = await _create(client, headers)

        blank = await client.post("/api/v1/tasks", json={"title": "  "}, headers=headers)
        assert blank.status_code == 422
        assert blank.json()["error"]["code"] == "VALIDATION_ERROR"

        null_flag = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"is_completed": None}, headers=headers
        )
        assert null_flag.status_code == 422

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient, alice, headers_for):
        headers = headers_for(alice)
        task = await _create(client, headers)

        deleted = await client.delete(f"/api/v1/tasks/{task['id']}", headers=headers)
        assert deleted.status_code == 200
        assert deleted.json()["success"] is True

        missing = await client.get(f"/api/v1/tasks/{task['id']}", headers=headers)
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "TASK_001"


class TestAccessControl:
    @pytest.mark.asyncio
    async def test_other_user_gets_forbidden(self, client: AsyncClient, alice, bob, headers_for):
        task = await _create(client, headers_for(alice), title="Private")

        for method, path in [
            ("GET", f"/api/v1/tasks/{task['id']}"),
            ("PATCH", f"/api/v1/tasks/{task['id']}"),
            ("DELETE", f"/api/v1/tasks/{task['id']}"),
            ("POST", f"/api/v1/tasks/{task['id']}/complete"),
        ]:
            kwargs = {"json": {"title": "Hijacked"}} if method == "PATCH" else {}
            response = await client.request(method, path, headers=headers_for(bob), **kwargs)
            assert response.status_code == 403, (method, path)
            assert response.json()["error"]["code"] == "FORBIDDEN"

        shown = await client.get(f"/api/v1/tasks/{task['id']}", headers=headers_for(alice))
        assert shown.json()["data"]["title"] == "Private"

    @pytest.mark.asyncio
    async def test_admin_can_manage_any_task(self, client: AsyncClient, alice, admin, headers_for):
        task = await _create(client, headers_for(alice))

        response = await client.post(
            f"/api/v1/tasks/{task['id']}/complete", headers=headers_for(admin)
        )

        assert response.status_code == 200
        assert response.json()["data"]["owner_id"] == str(alice.user_id)

    @pytest.mark.asyncio
    async def test_malformed_id_is_not_found(self, client: AsyncClient, alice, headers_for):
        response = await client.get("/api/v1/tasks/not-a-uuid", headers=headers_for(alice))

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "TASK_001"


# ---------------------------------------------------------------------------
# Populate
# ---------------------------------------------------------------------------

def _upstream(status_code=200, json=None):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=json)

    return handler


@pytest.fixture
def external_client(request):
    handler = getattr(request, "param", _upstream(json=[
        {"userId": 1, "id": 1, "title": "Imported one", "completed": False},
        {"userId": 1, "id": 2, "title": "Imported two", "completed": True},
    ]))

    async def no_sleep(_):
        return None

    return ExternalTodoClient(
        url="https://todos.example.com/todos",
        transport=httpx.MockTransport(handler),
        sleep=no_sleep,
    )


class TestPopulate:
    @pytest.mark.asyncio
    async def test_missing_or_wrong_key(self, client: AsyncClient, alice, headers_for):
        headers = headers_for(alice)

        missing = await client.get("/api/v1/tasks/populate", headers=headers)
        wrong = await client.get(
            "/api/v1/tasks/populate", headers={**headers, "X-API-KEY": "guess"}
        )

        for response in (missing, wrong):
            assert response.status_code == 403
            assert response.json()["error"]["code"] == "INVALID_API_KEY"

    @pytest.mark.asyncio
    async def test_imports_todos(self, client: AsyncClient, alice, headers_for):
        headers = {**headers_for(alice), "X-API-KEY": POPULATE_KEY}

        response = await client.get("/api/v1/tasks/populate", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"] == {"received": 2, "inserted": 2, "affected": 2}

        again = await client.get("/api/v1/tasks/populate", headers=headers)
        assert again.json()["data"] == {"received": 2, "inserted": 0, "affected": 2}

        listing = await client.get("/api/v1/tasks", headers=headers)
        assert listing.json()["pagination"]["total_items"] == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("external_client", [_upstream(status_code=503)], indirect=True)
    async def test_upstream_failure_is_502(self, client: AsyncClient, alice, headers_for):
        headers = {**headers_for(alice), "X-API-KEY": POPULATE_KEY}

        response = await client.get("/api/v1/tasks/populate", headers=headers)

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "UPSTREAM_UNAVAILABLE"

        listing = await client.get("/api/v1/tasks", headers=headers)
        assert listing.json()["pagination"]["total_items"] == 0
