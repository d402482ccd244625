"""
ClickUp: tasks assigned to the authorized user across every workspace ("team").

ClickUp OAuth tokens do not expire. Task pages are numbered from 0 and the
API flags the final page with ``last_page``.
"""
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from app.core.time_utils import from_epoch_millis
from app.integrations.adapter import Page, ProviderAdapter, SyncContext, TaskRecord, task_record
from app.integrations.pagination import fetch_json, iterate_page_numbers
from app.integrations.richtext import markdown_to_doc
from app.models.enums import IntegrationProvider

API_BASE = "https://api.clickup.com/api/v2"


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    user = (await fetch_json(ctx, f"{API_BASE}/user"))["user"]
    teams = (await fetch_json(ctx, f"{API_BASE}/team")).get("teams") or []

    for team in teams:
        async def fetch(page: int, team_id=team["id"]):
            body = await fetch_json(
                ctx,
                f"{API_BASE}/team/{team_id}/task",
                params={
                    "page": page,
                    "assignees[]": user["id"],
                    "include_markdown_description": "true",
                },
            )
            return body.get("tasks") or [], bool(body.get("last_page"))

        try:
            async for records in iterate_page_numbers(
                fetch, max_pages=ctx.max_pages, label=f"clickup team {team['id']}", start=0
            ):
                yield Page(records=records, scope={"team": team})
        except httpx.HTTPError as exc:
            ctx.skip_scope(f"team {team.get('name')} ({team['id']})", exc)


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    status_type = (raw.get("status") or {}).get("type")
    if status_type in ("closed", "done"):
        return None

    return task_record(
        ctx,
        external_id=raw["id"],
        host=raw.get("url") or f"https://app.clickup.com/t/{raw['id']}",
        name=raw.get("name") or "Untitled Task",
        description=markdown_to_doc(raw.get("markdown_description")),
        external_data=raw,
        due_date=from_epoch_millis(raw.get("due_date")),
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.CLICKUP,
    iter_pages=iter_pages,
    map_record=map_record,
    max_duration=3000,
)
