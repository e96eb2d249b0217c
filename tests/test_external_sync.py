"""
External Sync Tests
===================

Tests for the external todo client and the reconciler including:
- One matching and one new record
- Retry on transport errors and non-2xx responses
- No writes when the upstream is unavailable
- Record normalization
"""

from unittest.mock import AsyncMock, call

import httpx
import pytest

from tasktracker.core.errors import UpstreamUnavailableError
from tasktracker.models.task import TaskPriority
from tasktracker.services.cache import CacheKeys
from tasktracker.services.external_sync import (
    ExternalTodoClient,
    TaskSyncReconciler,
    normalize_todo,
)
from tasktracker.services.task_store import TaskStore

URL = "https://todos.example.com/todos"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class Upstream:
    """MockTransport handler that replays scripted responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(
            outcome.status_code, content=outcome.content, headers=outcome.headers
        )


def _client(upstream, sleep=None):
    return ExternalTodoClient(
        url=URL,
        transport=httpx.MockTransport(upstream),
        sleep=sleep or AsyncMock(),
    )


# ---------------------------------------------------------------------------
# ExternalTodoClient
# ---------------------------------------------------------------------------

class TestFetchTodos:
    @pytest.mark.asyncio
    async def test_returns_array(self):
        upstream = Upstream(httpx.Response(200, json=[{"title": "a"}]))

        assert await _client(upstream).fetch_todos() == [{"title": "a"}]
        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        upstream = Upstream(
            httpx.ConnectError("refused"),
            httpx.Response(500),
            httpx.Response(200, json=[]),
        )
        sleep = AsyncMock()

        assert await _client(upstream, sleep).fetch_todos(attempts=3, backoff_ms=100) == []
        assert upstream.calls == 3
        assert sleep.await_args_list == [call(0.1), call(0.1)]

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        upstream = Upstream(httpx.Response(503))
        sleep = AsyncMock()

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await _client(upstream, sleep).fetch_todos(attempts=3)

        assert exc_info.value.status_code == 502
        assert upstream.calls == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_non_array_body_is_rejected_without_retry(self):
        upstream = Upstream(httpx.Response(200, json={"todos": []}))

        with pytest.raises(UpstreamUnavailableError):
            await _client(upstream).fetch_todos()
        assert upstream.calls == 1


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

class TestNormalizeTodo:
    def test_maps_fields_and_defaults(self):
        row = normalize_todo({"id": 7, "title": "Buy milk", "completed": True}, "owner")

        assert row == {
            "owner_id": "owner",
            "title": "Buy milk",
            "description": None,
            "is_completed": True,
            "priority": TaskPriority.MEDIUM,
        }

    @pytest.mark.parametrize("record", [{}, {"title": None}, {"title": "   "}, "junk"])
    def test_missing_title_becomes_untitled(self, record):
        assert normalize_todo(record, "owner")["title"] == "Untitled"

    def test_long_titles_are_truncated(self):
        assert len(normalize_todo({"title": "x" * 400}, "owner")["title"]) == 255


# ---------------------------------------------------------------------------
# TaskSyncReconciler
# ---------------------------------------------------------------------------

class TestSyncForUser:
    @pytest.mark.asyncio
    async def test_one_matching_and_one_new_record(self, db, cache, alice):
        store = TaskStore(db)
        existing = await store.create({"owner_id": alice.user_id, "title": "Alpha"})
        await db.commit()
        upstream = Upstream(httpx.Response(200, json=[
            {"userId": 1, "id": 1, "title": "Alpha", "completed": True},
            {"userId": 1, "id": 2, "title": "Brand new", "completed": False},
        ]))
        reconciler = TaskSyncReconciler(db, client=_client(upstream), cache=cache)

        result = await reconciler.sync_for_user(alice)

        assert (result.received, result.inserted, result.affected) == (2, 1, 2)
        tasks = {t.title: t for t in await store.list_all(alice.user_id)}
        assert set(tasks) == {"Alpha", "Brand new"}
        assert tasks["Alpha"].id == existing.id
        assert tasks["Alpha"].is_completed is True
        assert tasks["Brand new"].priority == TaskPriority.MEDIUM
        assert tasks["Brand new"].is_completed is False

    @pytest.mark.asyncio
    async def test_sync_invalidates_cached_listings(self, db, cache, service, alice):
        await service.get_paginated_for_user(alice)
        key = CacheKeys.user_tasks(alice.user_id, "paginate", {"per_page": 15, "page": 1})
        assert key in cache

        upstream = Upstream(httpx.Response(200, json=[{"title": "Fresh"}]))
        await TaskSyncReconciler(db, client=_client(upstream), cache=cache).sync_for_user(alice)

        assert key not in cache
        listing = await service.get_paginated_for_user(alice)
        assert [t["title"] for t in listing["items"]] == ["Fresh"]

    @pytest.mark.asyncio
    async def test_upstream_failure_writes_nothing(self, db, cache, alice):
        upstream = Upstream(httpx.Response(500))
        reconciler = TaskSyncReconciler(
            db, client=_client(upstream), cache=cache, attempts=3, backoff_ms=0
        )

        with pytest.raises(UpstreamUnavailableError):
            await reconciler.sync_for_user(alice)

        assert await TaskStore(db).list_all(alice.user_id) == []
        assert upstream.calls == 3

    @pytest.mark.asyncio
    async def test_empty_payload(self, db, cache, alice):
        upstream = Upstream(httpx.Response(200, json=[]))

        result = await TaskSyncReconciler(db, client=_client(upstream), cache=cache).sync_for_user(alice)

        assert result.to_dict() == {"received": 0, "inserted": 0, "affected": 0}
