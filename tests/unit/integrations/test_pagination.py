"""
Unit tests for the shared page iterators and HTTP helpers.
"""
import uuid

import httpx
import pytest

from app.core.exceptions import AuthenticationFailedError, PaginationLimitExceededError
from app.integrations.adapter import SyncContext
from app.integrations.pagination import (
    fetch_json,
    iterate_cursor,
    iterate_offset,
    iterate_page_numbers,
    next_link,
    send,
)
from app.models.enums import IntegrationProvider


def make_context(handler, provider=IntegrationProvider.TODOIST) -> SyncContext:
    return SyncContext(
        integration_id=uuid.uuid4(),
        provider=provider,
        user_id=uuid.uuid4(),
        workspace_id=uuid.uuid4(),
        access_token="token-1",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


async def collect(iterator):
    return [page async for page in iterator]


class TestIterators:

    @pytest.mark.asyncio
    async def test_cursor_follows_until_exhausted(self):
        pages = {None: ([{"id": 1}], "c1"), "c1": ([{"id": 2}], "c2"), "c2": ([{"id": 3}], None)}
        seen = []

        async def fetch(cursor):
            seen.append(cursor)
            return pages[cursor]

        result = await collect(iterate_cursor(fetch, max_pages=10, label="tasks"))

        assert result == [[{"id": 1}], [{"id": 2}], [{"id": 3}]]
        assert seen == [None, "c1", "c2"]

    @pytest.mark.asyncio
    async def test_cursor_ceiling_raises(self):
        async def fetch(cursor):
            return [{"id": 1}], "again"

        with pytest.raises(PaginationLimitExceededError, match="did not terminate after 3 pages"):
            await collect(iterate_cursor(fetch, max_pages=3, label="tasks"))

    @pytest.mark.asyncio
    async def test_cursor_ending_exactly_at_ceiling(self):
        async def fetch(cursor):
            return [{"id": cursor}], None if cursor == "c1" else "c1"

        result = await collect(iterate_cursor(fetch, max_pages=2, label="tasks"))
        assert len(result) == 2

    @pytest.mark.asyncio
    async def test_cursor_stops_on_empty_page_with_cursor(self):
        pages = {None: ([{"id": "A"}], "c1"), "c1": ([], "c2")}
        seen = []

        async def fetch(cursor):
            seen.append(cursor)
            return pages[cursor]

        result = await collect(iterate_cursor(fetch, max_pages=3, label="tasks"))

        assert result == [[{"id": "A"}]]
        assert seen == [None, "c1"]

    @pytest.mark.asyncio
    async def test_offset_stops_at_total(self):
        offsets = []

        async def fetch(offset):
            offsets.append(offset)
            return [{"id": offset + i} for i in range(2)], 4

        result = await collect(iterate_offset(fetch, max_pages=10, label="issues"))

        assert offsets == [0, 2]
        assert len(result) == 2

    @pytest.mark.asyncio
    async def test_offset_stops_on_empty_page(self):
        async def fetch(offset):
            return ([{"id": 1}], None) if offset == 0 else ([], None)

        assert await collect(iterate_offset(fetch, max_pages=10, label="issues")) == [[{"id": 1}]]

    @pytest.mark.asyncio
    async def test_page_numbers_stop_on_short_page(self):
        requested = []

        async def fetch(page):
            requested.append(page)
            return [{"id": i} for i in range(3 if page < 3 else 1)], None

        result = await collect(iterate_page_numbers(fetch, max_pages=10, label="tasks", page_size=3))

        assert requested == [1, 2, 3]
        assert [len(page) for page in result] == [3, 3, 1]

    @pytest.mark.asyncio
    async def test_page_numbers_last_page_flag(self):
        async def fetch(page):
            return [{"id": page}], page == 1

        result = await collect(iterate_page_numbers(fetch, max_pages=10, label="tasks", start=0))
        assert result == [[{"id": 0}], [{"id": 1}]]

    @pytest.mark.asyncio
    async def test_page_numbers_ceiling(self):
        async def fetch(page):
            return [{"id": page}], False

        with pytest.raises(PaginationLimitExceededError):
            await collect(iterate_page_numbers(fetch, max_pages=5, label="tasks"))


class TestHttpHelpers:

    @pytest.mark.asyncio
    async def test_send_uses_bearer_token(self):
        captured = {}

        def handler(request):
            captured["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"ok": True})

        ctx = make_context(handler)
        assert await fetch_json(ctx, "https://api.example.com/things") == {"ok": True}
        assert captured["auth"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_401_raises_authentication_failed(self):
        ctx = make_context(lambda request: httpx.Response(401))

        with pytest.raises(AuthenticationFailedError):
            await send(ctx, "https://api.example.com/things")

    @pytest.mark.asyncio
    async def test_other_errors_raise_http_status_error(self):
        ctx = make_context(lambda request: httpx.Response(503))

        with pytest.raises(httpx.HTTPStatusError):
            await send(ctx, "https://api.example.com/things")

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self):
        ctx = make_context(lambda request: httpx.Response(204))
        assert await fetch_json(ctx, "https://api.example.com/things") is None

    def test_next_link(self):
        response = httpx.Response(
            200,
            headers={"Link": '<https://api.github.com/issues?page=2>; rel="next", <https://api.github.com/issues?page=5>; rel="last"'},
            request=httpx.Request("GET", "https://api.github.com/issues"),
        )
        assert next_link(response) == "https://api.github.com/issues?page=2"

    def test_next_link_missing(self):
        response = httpx.Response(200, request=httpx.Request("GET", "https://api.github.com/issues"))
        assert next_link(response) is None
