"""
Asana: incomplete tasks assigned to the user, per workspace.

``completed_since=now`` restricts the listing to open tasks. Pagination
follows ``next_page.uri``. Asana identifies everything by ``gid``.
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

API_BASE = "https://app.asana.com/api/1.0"
TOKEN_URL = "https://app.asana.com/-/oauth_token"
TASK_FIELDS = "name,notes,completed,due_on,due_at,created_at,modified_at,assignee,projects,tags,custom_fields,permalink_url"


async def refresh(client: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    return await exchange_refresh_token(
        client,
        TOKEN_URL,
        provider=IntegrationProvider.ASANA.value,
        refresh_token=refresh_token,
        client_id=settings.asana_client_id,
        client_secret=settings.asana_client_secret,
        encoding="form",
    )


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    workspaces = (await fetch_json(ctx, f"{API_BASE}/workspaces")).get("data") or []

    for workspace in workspaces:
        first_url = f"{API_BASE}/tasks"
        first_params = {
            "assignee": "me",
            "workspace": workspace["gid"],
            "completed_since": "now",
            "limit": 100,
            "opt_fields": TASK_FIELDS,
        }

        async def fetch(next_url: Optional[str], first_url=first_url, first_params=first_params):
            if next_url:
                body = await fetch_json(ctx, next_url)
            else:
                body = await fetch_json(ctx, first_url, params=first_params)
            return body.get("data") or [], (body.get("next_page") or {}).get("uri")

        try:
            async for records in iterate_cursor(fetch, max_pages=ctx.max_pages, label=f"asana workspace {workspace['gid']}"):
                yield Page(records=records, scope={"workspace": workspace})
        except httpx.HTTPError as exc:
            ctx.skip_scope(f"workspace {workspace.get('name')} ({workspace['gid']})", exc)


def remote_id(raw: Dict[str, Any]) -> str:
    return str(raw["gid"])


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    if raw.get("completed"):
        return None

    return task_record(
        ctx,
        external_id=raw["gid"],
        host="https://app.asana.com",
        name=raw.get("name") or "Untitled Task",
        description=plain_text_to_doc(raw.get("notes")),
        external_data=raw,
        due_date=parse_datetime(raw.get("due_at") or raw.get("due_on")),
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.ASANA,
    iter_pages=iter_pages,
    map_record=map_record,
    refresh=refresh,
    remote_id=remote_id,
)
