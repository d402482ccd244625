"""
Jira Cloud: unresolved issues assigned to the user on every accessible site.

Issues are listed through the Atlassian API gateway with a JQL search and
``startAt``/``total`` pagination. Descriptions arrive as Atlassian Document
Format.
"""
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from app.core.config import settings
from app.core.time_utils import parse_datetime
from app.integrations.adapter import Page, ProviderAdapter, SyncContext, TaskRecord, TokenGrant, task_record
from app.integrations.oauth import exchange_refresh_token
from app.integrations.pagination import fetch_json, iterate_offset
from app.integrations.richtext import adf_to_doc
from app.models.enums import IntegrationProvider

RESOURCES_URL = "https://api.atlassian.com/oauth/token/accessible-resources"
SEARCH_URL = "https://api.atlassian.com/ex/jira/{cloud_id}/rest/api/3/search"
TOKEN_URL = "https://auth.atlassian.com/oauth/token"
OPEN_ISSUES_JQL = "assignee=currentUser() AND statusCategory!=Done"
PAGE_SIZE = 50


async def refresh(client: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    return await exchange_refresh_token(
        client,
        TOKEN_URL,
        provider=IntegrationProvider.JIRA.value,
        refresh_token=refresh_token,
        client_id=settings.jira_client_id,
        client_secret=settings.jira_client_secret,
    )


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    resources = await fetch_json(ctx, RESOURCES_URL) or []

    for resource in resources:
        async def fetch(start_at: int, cloud_id=resource["id"]):
            body = await fetch_json(
                ctx,
                SEARCH_URL.format(cloud_id=cloud_id),
                params={"jql": OPEN_ISSUES_JQL, "startAt": start_at, "maxResults": PAGE_SIZE},
            )
            return body.get("issues") or [], body.get("total")

        try:
            async for records in iterate_offset(fetch, max_pages=ctx.max_pages, label=f"jira site {resource['id']}"):
                yield Page(records=records, scope={"resource": resource})
        except httpx.HTTPError as exc:
            ctx.skip_scope(f"site {resource.get('name')} ({resource['id']})", exc)


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    fields = raw.get("fields") or {}
    status_category = ((fields.get("status") or {}).get("statusCategory") or {}).get("key")
    if status_category == "done":
        return None

    return task_record(
        ctx,
        external_id=raw["id"],
        host=page.scope["resource"]["url"],
        name=fields.get("summary") or raw.get("key") or "Untitled Issue",
        description=adf_to_doc(fields.get("description")),
        external_data=raw,
        due_date=parse_datetime(fields.get("duedate")),
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.JIRA,
    iter_pages=iter_pages,
    map_record=map_record,
    refresh=refresh,
)
