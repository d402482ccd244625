"""
Todoist: open tasks from the v1 REST API.

Todoist OAuth tokens do not expire, so there is no refresh step.
Pagination follows ``next_cursor``.
"""
from typing import Any, AsyncIterator, Dict, Optional

from app.core.time_utils import parse_datetime
from app.integrations.adapter import Page, ProviderAdapter, SyncContext, TaskRecord, task_record
from app.integrations.pagination import fetch_json, iterate_cursor
from app.integrations.richtext import markdown_to_doc
from app.models.enums import IntegrationProvider

TASKS_URL = "https://api.todoist.com/api/v1/tasks"
PAGE_LIMIT = 200


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    async def fetch(cursor: Optional[str]):
        params: Dict[str, Any] = {"limit": PAGE_LIMIT}
        if cursor:
            params["cursor"] = cursor
        body = await fetch_json(ctx, TASKS_URL, params=params)
        return body.get("results") or [], body.get("next_cursor")

    async for records in iterate_cursor(fetch, max_pages=ctx.max_pages, label="todoist tasks"):
        yield Page(records=records)


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[TaskRecord]:
    if raw.get("checked") or raw.get("is_deleted"):
        return None

    due = raw.get("due") or {}
    return task_record(
        ctx,
        external_id=raw["id"],
        host=f"https://todoist.com/app/task/{raw['id']}",
        name=raw.get("content") or "Untitled Task",
        description=markdown_to_doc(raw.get("description")),
        external_data=raw,
        due_date=parse_datetime(due.get("datetime") or due.get("date")),
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.TODOIST,
    iter_pages=iter_pages,
    map_record=map_record,
)
