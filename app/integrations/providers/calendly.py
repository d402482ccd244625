"""
Calendly: active scheduled events of the connected user.

The user is mirrored as a single calendar keyed by its URI. Scheduled
events page with ``pagination.next_page``. Tokens are refreshed with
HTTP Basic client authentication and expire ten minutes early.
"""
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.time_utils import parse_datetime
from app.integrations.adapter import CalendarRecord, EventRecord, Page, ProviderAdapter, SyncContext, TokenGrant
from app.integrations.oauth import exchange_refresh_token
from app.integrations.pagination import fetch_json, iterate_cursor
from app.models.enums import IntegrationProvider

API_BASE = "https://api.calendly.com"
TOKEN_URL = "https://auth.calendly.com/oauth/token"
SOURCE = IntegrationProvider.CALENDLY.value
PAGE_SIZE = 50


async def refresh(client: httpx.AsyncClient, refresh_token: str) -> TokenGrant:
    return await exchange_refresh_token(
        client,
        TOKEN_URL,
        provider=SOURCE,
        refresh_token=refresh_token,
        client_id=settings.calendly_client_id,
        client_secret=settings.calendly_client_secret,
        encoding="form",
        basic_auth=True,
    )


async def list_calendars(ctx: SyncContext) -> List[CalendarRecord]:
    body = await fetch_json(ctx, f"{API_BASE}/users/me")
    user = body["resource"]
    ctx.state["calendly_user_uri"] = user["uri"]
    return [CalendarRecord(
        integration_id=ctx.integration_id,
        external_id=user["uri"],
        name=user.get("slug") or user.get("name") or "Calendly",
        source=SOURCE,
        workspace_id=ctx.workspace_id,
        user_id=ctx.user_id,
    )]


async def iter_pages(ctx: SyncContext) -> AsyncIterator[Page]:
    user_uri = ctx.state["calendly_user_uri"]

    async def fetch(next_url: Optional[str]):
        if next_url:
            body = await fetch_json(ctx, next_url)
        else:
            body = await fetch_json(
                ctx,
                f"{API_BASE}/scheduled_events",
                params={"user": user_uri, "status": "active", "count": PAGE_SIZE},
            )
        return body.get("collection") or [], (body.get("pagination") or {}).get("next_page")

    async for records in iterate_cursor(fetch, max_pages=ctx.max_pages, label="calendly scheduled events"):
        yield Page(records=records)


def map_record(ctx: SyncContext, raw: Dict[str, Any], page: Page) -> Optional[EventRecord]:
    location = raw.get("location") or {}
    return EventRecord(
        calendar_id=ctx.calendar_ids[ctx.state["calendly_user_uri"]],
        external_id=raw["uri"],
        title=raw.get("name") or "Untitled Event",
        description=raw.get("meeting_notes_html") or None,
        start_time=parse_datetime(raw.get("start_time")),
        end_time=parse_datetime(raw.get("end_time")),
        source=SOURCE,
        web_link=raw["uri"],
        meeting_url=location.get("join_url") or None,
        location_label=location.get("location") or location.get("join_url") or None,
        external_data=raw,
        workspace_id=ctx.workspace_id,
        user_id=ctx.user_id,
    )


def remote_id(raw: Dict[str, Any]) -> str:
    return str(raw["uri"])


ADAPTER = ProviderAdapter(
    provider=IntegrationProvider.CALENDLY,
    iter_pages=iter_pages,
    map_record=map_record,
    refresh=refresh,
    list_calendars=list_calendars,
    remote_id=remote_id,
    reconcile=False,
    token_expiry_margin=600,
)
