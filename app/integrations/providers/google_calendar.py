"""
Google Calendar: events of every calendar the user can edit.

Calendars with owner or writer access are upserted first, then each
calendar's expanded single events in a window from one month back to one
year ahead are listed with ``nextPageToken`` paging. A calendar whose events
cannot be listed is skipped. Events are never reconciled.
"""
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote

import httpx

from app.core.config import settings
from app.core.time_utils import parse_datetime, utc_now
from app.integrations.adapter import CalendarRecord, EventRecord, Page, ProviderAdapter, SyncContext, TokenGrant
from app.integrations.oauth import exchange_refresh_token
from app.integrations.pagination import fetch_json, iterate_cursor
from app.models.enums import IntegrationProvider

API_BASE = "https://www.googleapis.com/calendar/v3"
TOKEN_URL = "https://oauth2.googleapis.com/token"
SOURCE = IntegrationProvider.GOOGLE_CALENDAR.value
EDITABLE_ACCESS_ROLES = ("owner", "writer")
EVENTS_PAGE_SIZE = 2500
WINDOW_PAST = timedelta(days=30)
WINDOW_FUTURE = timedelta(days=365)


async def refresh(client: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    return await exchange_refresh_token(
        client,
        TOKEN_URL,
        provider=SOURCE,
        refresh_token=refresh_token,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
    )


async def list_calendars(ctx: SyncContext) -> List[CalendarRecord]:
    async def fetch(page_token: Optional[str]):
        params: Dict[str, Any] = {"maxResults": 250}
        if page_token:
            params["pageToken"] = page_token
        body = await fetch_json(ctx, f"{API_BASE}/users/me/calendarList", params=params)
        return body.get("items") or [], body.get("nextPageToken")

    calendars: List[CalendarRecord] = []
    async for records in iterate_cursor(fetch, max_pages=ctx.max_pages, label="google calendars"):
        for calendar in records:
            if calendar.get("accessRole") not in EDITABLE_ACCESS_ROLES:
                continue
            calendars.append(CalendarRecord(
                integration_id=ctx.integration_id,
                external_id=calendar["id"],
                name=calendar.get("summary") or "Calendar",
                color=calendar.get("backgroundColor") or None,
                source=SOURCE,
                workspace_id=ctx.workspace_id,
                user_id=ctx.user_id,
            ))
    return calendars


def _event_fetcher(ctx: SyncContext, calendar_id: str):
    now = utc_now()
    window = {
        "timeMin": (now - WINDOW_PAST).isoformat(),
        "timeMax": (now + WINDOW_FUTURE).isoformat(),
    }
    url = f"{API_BASE}/calendars/{quote(calendar_id, safe='')}/events"

    async def fetch(page_token: Optional[str]):
        params: Dict[str, Any] = {
            "maxResults": EVENTS_PAGE_SIZE,
            "singleEvents": "true",
            "orderBy": "startTime",
            **window,
        }
        if page_token:
            params["pageToken"] = page_token
        body = await fetch_json(ctx, url, params=params)
        return body.get("items") or [], body.get("nextPageToken")
    return fetch


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    for external_id in list(ctx.calendar_ids):
        try:
            async for records in iterate_cursor(
                _event_fetcher(ctx, external_id), max_pages=ctx.max_pages, label=f"google calendar {external_id}"
            ):
                yield Page(records=records, scope={"calendar_external_id": external_id})
        except httpx.HTTPError as exc:
            ctx.skip_scope(f"calendar {external_id}", exc)


def _meeting_url(raw: Dict[str, Any]) -> Optional[str]:
    for entry_point in (raw.get("conferenceData") or {}).get("entryPoints") or []:
        if entry_point.get("entryPointType") == "video" and entry_point.get("uri"):
            return entry_point["uri"]
    return raw.get("hangoutLink") or None


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[EventRecord]:
    if raw.get("status") == "cancelled":
        return None

    start = raw.get("start") or {}
    end = raw.get("end") or {}
    return EventRecord(
        calendar_id=ctx.calendar_ids[page.scope["calendar_external_id"]],
        external_id=raw["id"],
        title=raw.get("summary") or "Untitled Event",
        description=raw.get("description") or None,
        start_time=parse_datetime(start.get("dateTime") or start.get("date")),
        end_time=parse_datetime(end.get("dateTime") or end.get("date")),
        is_all_day=bool(start.get("date")),
        source=SOURCE,
        web_link=raw.get("htmlLink") or None,
        meeting_url=_meeting_url(raw),
        location_label=raw.get("location") or None,
        external_data=raw,
        workspace_id=ctx.workspace_id,
        user_id=ctx.user_id,
    )


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.GOOGLE_CALENDAR,
    iter_pages=iter_pages,
    map_record=map_record,
    refresh=refresh,
    list_calendars=list_calendars,
    reconcile=False,
)
