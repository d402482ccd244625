"""
Microsoft To Do: open tasks of every list through Microsoft Graph.

Graph pages with ``@odata.nextLink``. Completed tasks are filtered
server-side and skipped again during mapping.
"""
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from app.core.config import settings
from app.core.time_utils import parse_graph_datetime
from app.integrations.adapter import Page, ProviderAdapter, SyncContext, TaskRecord, TokenGrant, task_record
from app.integrations.oauth import exchange_refresh_token
from app.integrations.pagination import fetch_json, iterate_cursor
from app.integrations.richtext import html_to_doc, plain_text_to_doc
from app.models.enums import IntegrationProvider

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
TOKEN_SCOPE = "https://graph.microsoft.com/Tasks.ReadWrite https://graph.microsoft.com/User.Read offline_access"


async def refresh(client: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    return await exchange_refresh_token(
        client,
        TOKEN_URL,
        provider=IntegrationProvider.MICROSOFT_TODO.value,
        refresh_token=refresh_token,
        client_id=settings.microsoft_todo_client_id,
        client_secret=settings.microsoft_todo_client_secret,
        encoding="form",
        extra={"scope": TOKEN_SCOPE},
    )


def graph_fetcher(ctx: SyncContext, first_url: str, first_params: Optional[Dict[str, Any]] = None):
    """Page fetcher for Graph collections (``value`` + ``@odata.nextLink``)."""
    async def fetch(next_url: Optional[str]):
        if next_url:
            body = await fetch_json(ctx, next_url)
        else:
            body = await fetch_json(ctx, first_url, params=first_params)
        return body.get("value") or [], body.get("@odata.nextLink")
    return fetch


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    task_lists = []
    async for records in iterate_cursor(
        graph_fetcher(ctx, f"{GRAPH_BASE}/me/todo/lists"), max_pages=ctx.max_pages, label="microsoft todo lists"
    ):
        task_lists.extend(records)

    for task_list in task_lists:
        fetch = graph_fetcher(
            ctx,
            f"{GRAPH_BASE}/me/todo/lists/{task_list['id']}/tasks",
            {"$filter": "status ne 'completed'"},
        )
        try:
            async for records in iterate_cursor(fetch, max_pages=ctx.max_pages, label=f"microsoft todo list {task_list['id']}"):
                yield Page(records=records, scope={"task_list": task_list})
        except httpx.HTTPError as exc:
            ctx.skip_scope(f"list {task_list.get('displayName')} ({task_list['id']})", exc)


def _description(body: Optional[Dict[str, Any]]):
    if not body or not body.get("content"):
        return None
    if (body.get("contentType") or "").lower() == "html":
        return html_to_doc(body["content"])
    return plain_text_to_doc(body["content"])


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    if raw.get("status") == "completed":
        return None

    task_list = page.scope["task_list"]
    return task_record(
        ctx,
        external_id=raw["id"],
        host="https://to-do.office.com",
        name=raw.get("title") or "Untitled Task",
        description=_description(raw.get("body")),
        external_data={**raw, "listId": task_list["id"], "listName": task_list.get("displayName")},
        due_date=parse_graph_datetime(raw.get("dueDateTime")),
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.MICROSOFT_TODO,
    iter_pages=iter_pages,
    map_record=map_record,
    refresh=refresh,
)
