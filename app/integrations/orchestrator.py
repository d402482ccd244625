"""
Generic sync pass shared by every provider.

``SyncOrchestrator.run_sync`` drives one pass for one integration:

1. Freshness check: a missing or past expiry means the token is expired.
2. Refresh (when expired): exchange the refresh token, persist the new
   credentials and mark the integration active. Never retried in a pass.
3. Paginated fetch through the adapter, one page at a time.
4. Projection and batched upsert: pages sequential, batches sequential,
   records inside a batch concurrent.
5. One reactive refresh when the provider rejects the token mid-pass,
   followed by a restart from the first page. A second rejection is fatal.
6. Reconciliation: open local tasks the provider no longer lists are
   completed, but only after an enumeration that skipped no container.
7. Finalize: ``last_synced_at`` + active on success, error status on failure.

Provider differences live entirely in ``ProviderAdapter``.
"""
import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import List, Optional, Set

import httpx

from app.core.config import settings
from app.core.encryption import decrypt_optional_token, decrypt_token
from app.core.exceptions import (
    AuthenticationFailedError,
    MissingRefreshCredentialError,
    PersistenceError,
    ProviderRequestError,
    RemoteRecordError,
    SyncError,
    UnreadableCredentialError,
)
from app.core.logging_config import log_error, log_sync_event, log_warning
from app.core.time_utils import compute_expires_at, is_token_expired, utc_now
from app.integrations.adapter import LocalRecord, Page, ProviderAdapter, SyncContext, TaskRecord
from app.integrations.store import SqlSyncStore
from app.models.enums import IntegrationProvider
from app.models.integration import Integration


@dataclass
class SyncStats:
    pages: int = 0
    records_seen: int = 0
    records_upserted: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    records_completed: int = 0


@dataclass
class SyncResult:
    """Outcome of one pass, as reported to the scheduler."""
    success: bool
    integration_id: Optional[str] = None
    provider: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    token_refreshed: bool = False
    stats: SyncStats = field(default_factory=SyncStats)

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "integration_id": self.integration_id,
            "provider": self.provider,
            "token_refreshed": self.token_refreshed,
            **asdict(self.stats),
        }
        if not self.success:
            data["error"] = self.error
            data["error_code"] = self.error_code
        return data


class _Credentials:
    """Decrypted credentials held for the duration of one pass."""

    def __init__(self, access_token: str, refresh_token: Optional[str], expires_at: Optional[datetime]):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.expires_at = expires_at


class SyncOrchestrator:
    """Runs sync passes against an explicitly supplied store and HTTP client."""

    def __init__(
        self,
        store: SqlSyncStore,
        http_client: httpx.AsyncClient,
        *,
        batch_size: Optional[int] = None,
        max_pages: Optional[int] = None,
    ):
        self.store = store
        self.client = http_client
        self.batch_size = batch_size or settings.sync_batch_size
        self.max_pages = max_pages or settings.sync_max_pages

    async def run_sync(self, integration: Integration, adapter: ProviderAdapter) -> SyncResult:
        provider = IntegrationProvider(integration.provider)
        result = SyncResult(success=False, integration_id=str(integration.id), provider=provider.value)
        log_sync_event(provider.value, "Sync started", integration_id=str(integration.id))

        try:
            credentials = _Credentials(
                access_token=decrypt_token(integration.access_token_encrypted),
                refresh_token=decrypt_optional_token(integration.refresh_token_encrypted),
                expires_at=integration.token_expires_at,
            )
        except ValueError as exc:
            await self._finalize_failure(integration, provider, UnreadableCredentialError(str(exc), provider=provider.value), result)
            return result

        try:
            if adapter.supports_refresh and is_token_expired(credentials.expires_at):
                await self._refresh(integration, adapter, credentials, reason="expired")
                result.token_refreshed = True

            try:
                ctx = await self._sync_records(integration, adapter, credentials, result)
            except AuthenticationFailedError:
                if not adapter.supports_refresh:
                    raise
                log_warning(
                    "Access token rejected mid-pass, refreshing and restarting",
                    provider=provider.value,
                    integration_id=str(integration.id),
                )
                await self._refresh(integration, adapter, credentials, reason="rejected")
                result.token_refreshed = True
                result.stats = SyncStats()
                try:
                    ctx = await self._sync_records(integration, adapter, credentials, result)
                except AuthenticationFailedError as exc:
                    raise AuthenticationFailedError(
                        f"{provider.value} rejected a freshly refreshed token: {exc}",
                        provider=provider.value,
                    ) from exc

            if adapter.reconcile:
                await self._reconcile(integration, provider, ctx, result)

        except SyncError as exc:
            await self._finalize_failure(integration, provider, exc, result)
            return result

        try:
            await self.store.mark_synced(integration.id, utc_now())
        except PersistenceError as exc:
            log_error(exc, integration_id=str(integration.id), provider=provider.value)

        result.success = True
        log_sync_event(
            provider.value,
            "Sync completed",
            integration_id=str(integration.id),
            **asdict(result.stats),
        )
        return result

    # ================================================================================
    # TOKEN REFRESH
    # ================================================================================

    async def _refresh(
        self,
        integration: Integration,
        adapter: ProviderAdapter,
        credentials: _Credentials,
        *,
        reason: str,
    ) -> None:
        provider = adapter.provider.value
        if not credentials.refresh_token:
            raise MissingRefreshCredentialError(
                f"{provider} access token is {reason} and no refresh token is stored",
                provider=provider,
            )

        grant = await adapter.refresh(self.client, credentials.refresh_token)

        margin = settings.token_expiry_margin_for(provider, adapter.token_expiry_margin)
        credentials.access_token = grant.access_token
        credentials.refresh_token = grant.refresh_token or credentials.refresh_token
        credentials.expires_at = compute_expires_at(grant.expires_in, margin)

        await self.store.save_tokens(
            integration.id,
            access_token=credentials.access_token,
            refresh_token=credentials.refresh_token,
            expires_at=credentials.expires_at,
        )
        log_sync_event(provider, "Access token refreshed", integration_id=str(integration.id), reason=reason)

    # ================================================================================
    # FETCH AND UPSERT
    # ================================================================================

    def _new_context(self, integration: Integration, provider: IntegrationProvider, credentials: _Credentials) -> SyncContext:
        return SyncContext(
            integration_id=integration.id,
            provider=provider,
            user_id=integration.user_id,
            workspace_id=integration.workspace_id,
            access_token=credentials.access_token,
            client=self.client,
            config=dict(integration.config or {}),
            external_data=dict(integration.external_data or {}),
            project_id=integration.project_id,
            max_pages=self.max_pages,
        )

    async def _sync_records(
        self,
        integration: Integration,
        adapter: ProviderAdapter,
        credentials: _Credentials,
        result: SyncResult,
    ) -> SyncContext:
        ctx = self._new_context(integration, adapter.provider, credentials)
        stats = result.stats
        ctx.state["observed"] = set()

        try:
            if adapter.list_calendars is not None:
                for calendar in await adapter.list_calendars(ctx):
                    try:
                        ctx.calendar_ids[calendar.external_id] = await self.store.upsert_calendar(calendar)
                    except PersistenceError as exc:
                        # Events of an unstored calendar are not listed
                        ctx.skip_scope(f"calendar {calendar.external_id}", exc)

            async for page in adapter.iter_pages(ctx):
                stats.pages += 1
                records = self._project_page(ctx, adapter, page, stats)
                await self._upsert_batches(ctx, records, stats)
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            # Transport failures and listing payloads of an unexpected shape
            raise ProviderRequestError(
                f"{adapter.provider.value} listing failed: {type(exc).__name__}: {exc}",
                provider=adapter.provider.value,
            ) from exc

        return ctx

    def _project_page(self, ctx: SyncContext, adapter: ProviderAdapter, page: Page, stats: SyncStats) -> List[LocalRecord]:
        observed: Set[str] = ctx.state["observed"]
        records: List[LocalRecord] = []

        for raw in page.records:
            stats.records_seen += 1
            try:
                record = adapter.map_record(ctx, raw, page)
            except Exception as exc:
                stats.records_failed += 1
                error = RemoteRecordError(f"Cannot map {adapter.provider.value} record: {type(exc).__name__}: {exc}")
                log_warning(str(error), integration_id=str(ctx.integration_id))
                # State unknown: keep it open locally
                try:
                    observed.add(adapter.remote_id(raw))
                except Exception:
                    ctx.skip_scope("record without id", exc)
                continue

            if record is None:
                stats.records_skipped += 1
                continue

            if isinstance(record, TaskRecord):
                observed.add(record.external_id)
            records.append(record)

        return records

    async def _upsert_batches(self, ctx: SyncContext, records: List[LocalRecord], stats: SyncStats) -> None:
        for start in range(0, len(records), self.batch_size):
            batch = records[start:start + self.batch_size]
            outcomes = await asyncio.gather(
                *(self.store.upsert_record(record) for record in batch),
                return_exceptions=True,
            )
            for record, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    stats.records_failed += 1
                    log_warning(
                        f"Failed to store record {record.external_id}: {outcome}",
                        provider=ctx.provider.value,
                        integration_id=str(ctx.integration_id),
                    )
                else:
                    stats.records_upserted += 1

    # ================================================================================
    # RECONCILIATION AND FINALIZE
    # ================================================================================

    async def _reconcile(self, integration: Integration, provider: IntegrationProvider, ctx: SyncContext, result: SyncResult) -> None:
        if not ctx.snapshot_complete:
            log_warning(
                "Skipping reconciliation after incomplete listing",
                provider=provider.value,
                integration_id=str(integration.id),
                skipped=", ".join(ctx.skipped_scopes),
            )
            return

        try:
            completed = await self.store.complete_missing_tasks(
                integration_source=provider.value,
                workspace_id=integration.workspace_id,
                creator=integration.user_id,
                active_external_ids=ctx.state["observed"],
                completed_at=utc_now(),
            )
        except PersistenceError as exc:
            log_error(exc, integration_id=str(integration.id), provider=provider.value)
            return

        result.stats.records_completed = completed
        if completed:
            log_sync_event(provider.value, f"Completed {completed} tasks no longer open remotely", integration_id=str(integration.id))

    async def _finalize_failure(self, integration: Integration, provider: IntegrationProvider, exc: SyncError, result: SyncResult) -> None:
        result.success = False
        result.error = str(exc)
        result.error_code = exc.code
        log_error(exc, integration_id=str(integration.id), provider=provider.value, error_code=exc.code)
        try:
            await self.store.mark_error(integration.id, str(exc))
        except PersistenceError as status_exc:
            log_error(status_exc, integration_id=str(integration.id), action="mark_error")
