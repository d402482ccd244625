"""
Zoho Projects: open tasks of every project.

Zoho serves each account from a regional API domain, stored as
``api_domain`` in the integration's external data when the account is
connected. Tasks are paged with a 1-based ``index`` and a fixed ``range``;
an empty listing comes back as 204 No Content.
"""
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from app.core.config import settings
from app.core.time_utils import from_epoch_millis
from app.integrations.adapter import Page, ProviderAdapter, SyncContext, TaskRecord, TokenGrant, task_record
from app.integrations.oauth import exchange_refresh_token
from app.integrations.pagination import fetch_json, iterate_page_numbers
from app.integrations.richtext import html_to_doc
from app.models.enums import IntegrationProvider

TOKEN_URL = "https://accounts.zoho.com/oauth/v2/token"
DEFAULT_API_DOMAIN = "https://projectsapi.zoho.com"
TASKS_PAGE_SIZE = 200


async def refresh(client: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    return await exchange_refresh_token(
        client,
        TOKEN_URL,
        provider=IntegrationProvider.ZOHO_PROJECTS.value,
        refresh_token=refresh_token,
        client_id=settings.zoho_projects_client_id,
        client_secret=settings.zoho_projects_client_secret,
        encoding="form",
    )


def _api_base(ctx: SyncContext) -> str:
    domain = (ctx.external_data or {}).get("api_domain") or DEFAULT_API_DOMAIN
    return f"{domain.rstrip('/')}/restapi"


def _headers(ctx: SyncContext) -> Dict[str, str]:
    return ctx.auth_headers(Authorization=f"Zoho-oauthtoken {ctx.access_token}")


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    api_base = _api_base(ctx)
    headers = _headers(ctx)
    projects = (await fetch_json(ctx, f"{api_base}/projects/", headers=headers) or {}).get("projects") or []

    for project in projects:
        async def fetch(page: int, project_id=project["id"]):
            params = {
                "index": (page - 1) * TASKS_PAGE_SIZE + 1,
                "range": TASKS_PAGE_SIZE,
                "status": "notcompleted",
            }
            body = await fetch_json(ctx, f"{api_base}/projects/{project_id}/tasks/", params=params, headers=headers)
            return (body or {}).get("tasks") or [], None

        try:
            async for records in iterate_page_numbers(
                fetch, max_pages=ctx.max_pages, label=f"zoho project {project['id']}", page_size=TASKS_PAGE_SIZE
            ):
                yield Page(records=records, scope={"project": project})
        except httpx.HTTPError as exc:
            ctx.skip_scope(f"project {project.get('name')} ({project['id']})", exc)


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    if raw.get("completed"):
        return None

    project = page.scope["project"]
    return task_record(
        ctx,
        external_id=raw["id"],
        host=f"{DEFAULT_API_DOMAIN}/restapi/projects/{project['id']}",
        name=raw.get("name") or "Untitled Task",
        description=html_to_doc(raw.get("description")),
        external_data={**raw, "projectId": project["id"], "projectName": project.get("name")},
        due_date=from_epoch_millis(raw.get("end_date_long")),
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.ZOHO_PROJECTS,
    iter_pages=iter_pages,
    map_record=map_record,
    refresh=refresh,
    token_expiry_margin=600,
)
