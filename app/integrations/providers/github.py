"""
GitHub: open issues assigned to the user across all repositories.

The ``/issues`` endpoint also returns pull requests; those are skipped.
Pagination follows the ``Link`` response header.
"""
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from app.core.config import settings
from app.integrations.adapter import Page, ProviderAdapter, SyncContext, TaskRecord, TokenGrant, task_record
from app.integrations.oauth import exchange_refresh_token
from app.integrations.pagination import iterate_cursor, next_link, send
from app.integrations.richtext import markdown_to_doc
from app.models.enums import IntegrationProvider

ISSUES_URL = "https://api.github.com/issues"
TOKEN_URL = "https://github.com/login/oauth/access_token"


async def refresh(client: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    return await exchange_refresh_token(
        client,
        TOKEN_URL,
        provider=IntegrationProvider.GITHUB.value,
        refresh_token=refresh_token,
        client_id=settings.github_client_id,
        client_secret=settings.github_client_secret,
    )


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    headers = ctx.auth_headers(Accept="application/vnd.github+json")

    async def fetch(next_url: Optional[str]):
        if next_url:
            response = await send(ctx, next_url, headers=headers)
        else:
            response = await send(
                ctx,
                ISSUES_URL,
                headers=headers,
                params={"filter": "assigned", "state": "open", "per_page": 100},
            )
        return response.json() or [], next_link(response)

    async for records in iterate_cursor(fetch, max_pages=ctx.max_pages, label="github issues"):
        yield Page(records=records)


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    if raw.get("pull_request") or raw.get("state") == "closed":
        return None

    return task_record(
        ctx,
        external_id=raw["id"],
        host="https://github.com",
        name=raw.get("title") or "Untitled Issue",
        description=markdown_to_doc(raw.get("body")),
        external_data=raw,
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.GITHUB,
    iter_pages=iter_pages,
    map_record=map_record,
    refresh=refresh,
    max_duration=3000,
)
