"""
Trello: open cards of every board the member belongs to.

Trello authenticates with the application key and the member token as query
parameters instead of a bearer header. Tokens do not expire, so there is no
refresh. Card listings are returned in one response per board.
"""
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from app.core.config import settings
from app.core.time_utils import parse_datetime
from app.integrations.adapter import Page, ProviderAdapter, SyncContext, TaskRecord, task_record
from app.integrations.pagination import fetch_json
from app.integrations.richtext import markdown_to_doc
from app.models.enums import IntegrationProvider

API_BASE = "https://api.trello.com/1"


def _auth_params(ctx: SyncContext) -> Dict[str, Any]:
    return {"key": settings.trello_api_key, "token": ctx.access_token}


async def _get(ctx: SyncContext, path: str) -> Any:
    return await fetch_json(
        ctx,
        f"{API_BASE}{path}",
        params=_auth_params(ctx),
        headers={"Accept": "application/json"},
    )


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    boards = await _get(ctx, "/members/me/boards") or []

    for board in boards:
        if board.get("closed"):
            continue
        try:
            cards = await _get(ctx, f"/boards/{board['id']}/cards/open") or []
        except httpx.HTTPError as exc:
            ctx.skip_scope(f"board {board.get('name')} ({board['id']})", exc)
            continue
        if cards:
            yield Page(records=cards, scope={"board": board})


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    if raw.get("closed"):
        return None

    return task_record(
        ctx,
        external_id=raw["id"],
        host=raw.get("url") or "https://trello.com",
        name=raw.get("name") or "Untitled Task",
        description=markdown_to_doc(raw.get("desc")),
        external_data=raw,
        due_date=parse_datetime(raw.get("due")),
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.TRELLO,
    iter_pages=iter_pages,
    map_record=map_record,
)
