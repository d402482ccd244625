"""
Nifty: open tasks assigned to the user.

Pages are numbered from 1; a page shorter than the limit is the last one.
Descriptions are plain text.
"""
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from app.core.config import settings
from app.core.time_utils import parse_datetime
from app.integrations.adapter import Page, ProviderAdapter, SyncContext, TaskRecord, TokenGrant, task_record
from app.integrations.oauth import exchange_refresh_token
from app.integrations.pagination import fetch_json, iterate_page_numbers
from app.integrations.richtext import plain_text_to_doc
from app.models.enums import IntegrationProvider

TASKS_URL = "https://api.niftypm.com/api/v1.0/tasks"
TOKEN_URL = "https://nifty.pm/oauth/token"
PAGE_SIZE = 100


async def refresh(client: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    return await exchange_refresh_token(
        client,
        TOKEN_URL,
        provider=IntegrationProvider.NIFTY.value,
        refresh_token=refresh_token,
        client_id=settings.nifty_client_id,
        client_secret=settings.nifty_client_secret,
    )


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    async def fetch(page: int):
        body = await fetch_json(
            ctx,
            TASKS_URL,
            params={"assignee": "me", "status": "open", "limit": PAGE_SIZE, "page": page},
        )
        if isinstance(body, list):
            return body, None
        return (body or {}).get("data") or (body or {}).get("tasks") or [], None

    async for records in iterate_page_numbers(
        fetch, max_pages=ctx.max_pages, label="nifty tasks", page_size=PAGE_SIZE
    ):
        yield Page(records=records)


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    if raw.get("completed"):
        return None

    return task_record(
        ctx,
        external_id=raw["id"],
        host="https://nifty.pm",
        name=raw.get("name") or raw.get("title") or "Untitled Task",
        description=plain_text_to_doc(raw.get("description")),
        external_data=raw,
        due_date=parse_datetime(raw.get("due_date")),
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.NIFTY,
    iter_pages=iter_pages,
    map_record=map_record,
    refresh=refresh,
    max_duration=3000,
)
