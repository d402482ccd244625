"""
TickTick: undone tasks of every project plus the Inbox.

The project listing omits the Inbox, so it is added explicitly. Each
project's ``/data`` endpoint returns all of its open tasks in one response.
"""
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from app.core.time_utils import parse_datetime
from app.integrations.adapter import Page, ProviderAdapter, SyncContext, TaskRecord, task_record
from app.integrations.pagination import fetch_json
from app.integrations.richtext import markdown_to_doc
from app.models.enums import IntegrationProvider

API_BASE = "https://api.ticktick.com/open/v1"
INBOX_PROJECT = {"id": "inbox", "name": "Inbox"}
# TickTick marks completed tasks with status 2
COMPLETED_STATUS = 2


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    projects = await fetch_json(ctx, f"{API_BASE}/project") or []

    for project in [INBOX_PROJECT, *projects]:
        try:
            data = await fetch_json(ctx, f"{API_BASE}/project/{project['id']}/data") or {}
        except httpx.HTTPError as exc:
            ctx.skip_scope(f"project {project.get('name')} ({project['id']})", exc)
            continue

        tasks = data.get("tasks") or []
        if tasks:
            yield Page(records=tasks, scope={"project": project})


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    if raw.get("status") == COMPLETED_STATUS:
        return None

    project_id = raw.get("projectId") or page.scope["project"]["id"]
    return task_record(
        ctx,
        external_id=raw["id"],
        host=f"https://ticktick.com/webapp/#p/{project_id}/tasks/{raw['id']}",
        name=raw.get("title") or "Untitled Task",
        description=markdown_to_doc(raw.get("content")),
        external_data=raw,
        due_date=parse_datetime(raw.get("dueDate")),
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.TICKTICK,
    iter_pages=iter_pages,
    map_record=map_record,
)
