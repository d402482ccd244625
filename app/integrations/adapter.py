"""
Provider adapter contract and the records that flow through a sync pass.

An adapter is a capability set assembled from plain module functions in
``app/integrations/providers/{provider}.py``:

    iter_pages(ctx)             -> async iterator of Page
    map_record(ctx, raw, page)  -> TaskRecord | EventRecord | None
    refresh(client, token)      -> TokenGrant            (optional)
    list_calendars(ctx)         -> list[CalendarRecord]  (optional)

``map_record`` returns ``None`` for remote records that are not active
(closed issues, completed tasks, pull requests...); such records are
skipped and do not count as observed for reconciliation.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from app.core.logging_config import log_warning
from app.models.enums import IntegrationProvider


@dataclass
class TokenGrant:
    """Result of a refresh-token exchange."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


@dataclass
class Page:
    """One page of remote records and the container it was listed from."""
    records: List[Dict[str, Any]]
    scope: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskRecord:
    integration_source: str
    external_id: str
    host: str
    workspace_id: uuid.UUID
    name: str
    description: Optional[Dict[str, Any]]
    external_data: Dict[str, Any]
    assignee: uuid.UUID
    creator: uuid.UUID
    project_id: Optional[uuid.UUID] = None
    due_date: Optional[datetime] = None


@dataclass
class CalendarRecord:
    integration_id: uuid.UUID
    external_id: str
    name: str
    source: str
    workspace_id: uuid.UUID
    user_id: uuid.UUID
    color: Optional[str] = None
    is_enabled: bool = True


@dataclass
class EventRecord:
    calendar_id: uuid.UUID
    external_id: str
    title: str
    source: str
    workspace_id: uuid.UUID
    user_id: uuid.UUID
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_all_day: bool = False
    description: Optional[str] = None
    web_link: Optional[str] = None
    meeting_url: Optional[str] = None
    location_label: Optional[str] = None
    location_address: Optional[str] = None
    external_data: Dict[str, Any] = field(default_factory=dict)


LocalRecord = Union[TaskRecord, EventRecord]


@dataclass
class SyncContext:
    """
    Per-pass state handed to adapter functions.

    A fresh context is built for every attempt, so a restart after a
    reactive token refresh starts with an empty observed set.
    """
    integration_id: uuid.UUID
    provider: IntegrationProvider
    user_id: uuid.UUID
    workspace_id: uuid.UUID
    access_token: str
    client: httpx.AsyncClient
    config: Dict[str, Any] = field(default_factory=dict)
    external_data: Dict[str, Any] = field(default_factory=dict)
    project_id: Optional[uuid.UUID] = None
    max_pages: int = 500
    calendar_ids: Dict[str, uuid.UUID] = field(default_factory=dict)
    state: Dict[str, Any] = field(default_factory=dict)
    skipped_scopes: List[str] = field(default_factory=list)

    @property
    def snapshot_complete(self) -> bool:
        """False once any container was skipped during enumeration."""
        return not self.skipped_scopes

    def auth_headers(self, **extra: str) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}
        headers.update(extra)
        return headers

    def skip_scope(self, scope: str, error: Exception) -> None:
        """Record a container that could not be listed and keep going."""
        self.skipped_scopes.append(scope)
        log_warning(
            f"Skipping {scope}: {type(error).__name__}: {error}",
            provider=self.provider.value,
            integration_id=str(self.integration_id),
        )


RefreshFn = Callable[[httpx.AsyncClient, str], Awaitable[TokenGrant]]
PagesFn = Callable[[SyncContext], AsyncIterator[Page]]
MapFn = Callable[[SyncContext, Dict[str, Any], Page], Optional[LocalRecord]]
CalendarsFn = Callable[[SyncContext], Awaitable[List[CalendarRecord]]]


def default_remote_id(raw: Dict[str, Any]) -> str:
    return str(raw["id"])


@dataclass(frozen=True)
class ProviderAdapter:
    """
    Capabilities of one provider.

    ``refresh`` is None for providers whose tokens never expire; the
    freshness check is skipped for them and an authentication failure is
    fatal. ``reconcile`` enables completion of local tasks that vanished from
    the provider's active listing. ``max_duration`` bounds a scheduled pass.
    """
    provider: IntegrationProvider
    iter_pages: PagesFn
    map_record: MapFn
    refresh: Optional[RefreshFn] = None
    list_calendars: Optional[CalendarsFn] = None
    remote_id: Callable[[Dict[str, Any]], str] = default_remote_id
    reconcile: bool = True
    token_expiry_margin: Optional[int] = None
    max_duration: int = 3600

    @property
    def supports_refresh(self) -> bool:
        return self.refresh is not None


def task_record(ctx: SyncContext, *, external_id: Any, host: str, name: str,
                description: Optional[Dict[str, Any]], external_data: Dict[str, Any],
                due_date: Optional[datetime] = None) -> TaskRecord:
    """Build a TaskRecord owned by the integration's user and workspace."""
    return TaskRecord(
        integration_source=ctx.provider.value,
        external_id=str(external_id),
        host=host,
        workspace_id=ctx.workspace_id,
        name=name,
        description=description,
        external_data=external_data,
        assignee=ctx.user_id,
        creator=ctx.user_id,
        project_id=ctx.project_id,
        due_date=due_date,
    )
