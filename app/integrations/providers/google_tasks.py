"""
Google Tasks: incomplete tasks of every task list.

Both the list and task endpoints page with ``nextPageToken``.
"""
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from app.core.config import settings
from app.core.time_utils import parse_datetime
from app.integrations.adapter import Page, ProviderAdapter, SyncContext, TaskRecord, TokenGrant, task_record
from app.integrations.oauth import exchange_refresh_token
from app.integrations.pagination import fetch_json, iterate_cursor
from app.integrations.richtext import plain_text_to_doc
from app.models.enums import IntegrationProvider

API_BASE = "https://tasks.googleapis.com/tasks/v1"
TOKEN_URL = "https://oauth2.googleapis.com/token"


async def refresh(client: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    return await exchange_refresh_token(
        client,
        TOKEN_URL,
        provider=IntegrationProvider.GOOGLE_TASKS.value,
        refresh_token=refresh_token,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
    )


async def _task_lists(ctx: SyncContext):
    async def fetch(page_token: Optional[str]):
        params: Dict[str, Any] = {"maxResults": 100}
        if page_token:
            params["pageToken"] = page_token
        body = await fetch_json(ctx, f"{API_BASE}/users/@me/lists", params=params)
        return body.get("items") or [], body.get("nextPageToken")

    task_lists = []
    async for records in iterate_cursor(fetch, max_pages=ctx.max_pages, label="google task lists"):
        task_lists.extend(records)
    return task_lists


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    for task_list in await _task_lists(ctx):
        async def fetch(page_token: Optional[str], list_id=task_list["id"]):
            params: Dict[str, Any] = {"showCompleted": "false", "showDeleted": "false", "maxResults": 100}
            if page_token:
                params["pageToken"] = page_token
            body = await fetch_json(ctx, f"{API_BASE}/lists/{list_id}/tasks", params=params)
            return body.get("items") or [], body.get("nextPageToken")

        try:
            async for records in iterate_cursor(fetch, max_pages=ctx.max_pages, label=f"google task list {task_list['id']}"):
                yield Page(records=records, scope={"task_list": task_list})
        except httpx.HTTPError as exc:
            ctx.skip_scope(f"task list {task_list.get('title')} ({task_list['id']})", exc)


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    if raw.get("status") == "completed" or raw.get("deleted"):
        return None

    task_list = page.scope["task_list"]
    return task_record(
        ctx,
        external_id=raw["id"],
        host="tasks.google.com",
        name=raw.get("title") or "Untitled Task",
        description=plain_text_to_doc(raw.get("notes")),
        external_data={**raw, "taskListId": task_list["id"], "taskListTitle": task_list.get("title")},
        due_date=parse_datetime(raw.get("due")),
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.GOOGLE_TASKS,
    iter_pages=iter_pages,
    map_record=map_record,
    refresh=refresh,
)
