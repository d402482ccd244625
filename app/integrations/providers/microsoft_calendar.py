"""
Microsoft Outlook calendars through Microsoft Graph.

Shareable calendars are upserted first, then the events of each calendar are
listed with ``@odata.nextLink`` paging. A calendar whose events cannot be
listed is skipped. Events are never reconciled.
"""
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.time_utils import parse_graph_datetime
from app.integrations.adapter import CalendarRecord, EventRecord, Page, ProviderAdapter, SyncContext, TokenGrant
from app.integrations.oauth import exchange_refresh_token
from app.integrations.pagination import fetch_json, iterate_cursor
from app.integrations.providers.microsoft_todo import GRAPH_BASE, TOKEN_URL, graph_fetcher
from app.models.enums import IntegrationProvider

SOURCE = IntegrationProvider.MICROSOFT_CALENDAR.value
EVENTS_PAGE_SIZE = 50


async def refresh(client: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    return await exchange_refresh_token(
        client,
        TOKEN_URL,
        provider=SOURCE,
        refresh_token=refresh_token,
        client_id=settings.microsoft_client_id,
        client_secret=settings.microsoft_client_secret,
        encoding="form",
    )


async def list_calendars(ctx: SyncContext) -> List[CalendarRecord]:
    calendars: List[CalendarRecord] = []
    async for records in iterate_cursor(
        graph_fetcher(ctx, f"{GRAPH_BASE}/me/calendars"), max_pages=ctx.max_pages, label="microsoft calendars"
    ):
        for calendar in records:
            if not calendar.get("canShare"):
                continue
            calendars.append(CalendarRecord(
                integration_id=ctx.integration_id,
                external_id=calendar["id"],
                name=calendar.get("name") or "Calendar",
                color=calendar.get("color") or None,
                source=SOURCE,
                workspace_id=ctx.workspace_id,
                user_id=ctx.user_id,
            ))
    return calendars


def _event_fetcher(ctx: SyncContext, calendar_id: str):
    headers = ctx.auth_headers(Prefer='outlook.timezone="UTC"')

    async def fetch(next_url: Optional[str]):
        if next_url:
            body = await fetch_json(ctx, next_url, headers=headers)
        else:
            body = await fetch_json(
                ctx,
                f"{GRAPH_BASE}/me/calendars/{calendar_id}/events",
                params={"$top": EVENTS_PAGE_SIZE},
                headers=headers,
            )
        return body.get("value") or [], body.get("@odata.nextLink")
    return fetch


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    for external_id in list(ctx.calendar_ids):
        try:
            async for records in iterate_cursor(
                _event_fetcher(ctx, external_id), max_pages=ctx.max_pages, label=f"microsoft calendar {external_id}"
            ):
                yield Page(records=records, scope={"calendar_external_id": external_id})
        except httpx.HTTPError as exc:
            ctx.skip_scope(f"calendar {external_id}", exc)


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[EventRecord]:
    if raw.get("isCancelled"):
        return None

    location = raw.get("location") or {}
    online_meeting = raw.get("onlineMeeting") or {}
    body = raw.get("body") or {}
    return EventRecord(
        calendar_id=ctx.calendar_ids[page.scope["calendar_external_id"]],
        external_id=raw["id"],
        title=raw.get("subject") or "Untitled Event",
        description=body.get("content") or None,
        start_time=parse_graph_datetime(raw.get("start")),
        end_time=parse_graph_datetime(raw.get("end")),
        is_all_day=bool(raw.get("isAllDay")),
        source=SOURCE,
        web_link=raw.get("webLink") or None,
        meeting_url=raw.get("onlineMeetingUrl") or online_meeting.get("joinUrl") or None,
        location_label=location.get("displayName") or None,
        location_address=(location.get("address") or {}).get("street") or None,
        external_data=raw,
        workspace_id=ctx.workspace_id,
        user_id=ctx.user_id,
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.MICROSOFT_CALENDAR,
    iter_pages=iter_pages,
    map_record=map_record,
    refresh=refresh,
    list_calendars=list_calendars,
    reconcile=False,
)
