"""
awork: tasks assigned to the user.

The listing cannot filter by status, so tasks whose status type is ``done``
are skipped during mapping. Pages are numbered from 1; a short page is the
last one.
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

TASKS_URL = "https://api.awork.com/api/v1/tasks"
TOKEN_URL = "https://api.awork.com/oauth2/token"
PAGE_SIZE = 100


async def refresh(client: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    return await exchange_refresh_token(
        client,
        TOKEN_URL,
        provider=IntegrationProvider.AWORK.value,
        refresh_token=refresh_token,
        client_id=settings.awork_client_id,
        client_secret=settings.awork_client_secret,
    )


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    async def fetch(page: int):
        body = await fetch_json(
            ctx,
            TASKS_URL,
            params={
                "page": page,
                "pageSize": PAGE_SIZE,
                "filterBy": "assignedToMe",
                "orderBy": "createdOn desc",
            },
        )
        if isinstance(body, list):
            return body, None
        return (body or {}).get("data") or [], None

    async for records in iterate_page_numbers(
        fetch, max_pages=ctx.max_pages, label="awork tasks", page_size=PAGE_SIZE
    ):
        yield Page(records=records)


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    if raw.get("taskStatusType") == "done":
        return None

    return task_record(
        ctx,
        external_id=raw["id"],
        host="https://app.awork.com",
        name=raw.get("name") or "Untitled Task",
        description=plain_text_to_doc(raw.get("description")),
        external_data=raw,
        due_date=parse_datetime(raw.get("dueOn")),
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.AWORK,
    iter_pages=iter_pages,
    map_record=map_record,
    refresh=refresh,
    max_duration=3000,
)
