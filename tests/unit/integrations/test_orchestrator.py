"""
Unit tests for the generic sync pass.

Most scenarios run against the real SQLite store with a scripted adapter;
batching is checked with a recording store.
"""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlmodel import select

from app.core.encryption import decrypt_token
from app.core.exceptions import AuthenticationFailedError, PersistenceError
from app.core.time_utils import ensure_utc
from app.integrations.adapter import CalendarRecord, Page, ProviderAdapter, TokenGrant, task_record
from app.integrations.oauth import exchange_refresh_token
from app.integrations.orchestrator import SyncOrchestrator
from app.integrations.pagination import iterate_cursor
from app.integrations.store import SqlSyncStore
from app.models.enums import IntegrationProvider, IntegrationStatus, TaskStatus
from app.models.integration import Integration
from app.models.task import Task

PROVIDER = IntegrationProvider.ASANA


def in_one_hour() -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=1)


def records(*ids):
    return [{"id": external_id, "name": f"Task {external_id}"} for external_id in ids]


def map_task(ctx, raw, page):
    if raw.get("completed"):
        return None
    return task_record(
        ctx,
        external_id=raw["id"],
        host="https://app.example.com",
        name=raw["name"],
        description=None,
        external_data=raw,
    )


def make_adapter(pages, *, refresh=None, map_record=map_task, seen_tokens=None) -> ProviderAdapter:
    """
    Adapter that lists ``pages`` (a list of record lists, or a callable
    taking the context and returning one).
    """

    async def iter_pages(ctx):
        if seen_tokens is not None:
            seen_tokens.append(ctx.access_token)
        listing = pages(ctx) if callable(pages) else pages
        for page in listing:
            yield Page(records=page)

    return ProviderAdapter(provider=PROVIDER, iter_pages=iter_pages, map_record=map_record, refresh=refresh)


def mock_client(handler=None) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler or (lambda request: httpx.Response(404))))


async def stored_integration(session_factory, integration_id) -> Integration:
    async with session_factory() as session:
        return await session.get(Integration, integration_id)


async def task_statuses(session_factory):
    async with session_factory() as session:
        return {task.external_id: task.status for task in (await session.exec(select(Task))).all()}


@pytest.fixture
def store(session_factory):
    return SqlSyncStore(session_factory, serialize_writes=True)


class RecordingStore:
    """In-memory store that tracks upsert concurrency."""

    def __init__(self, fail_ids=()):
        self.in_flight = 0
        self.max_in_flight = 0
        self.in_flight_at_start = []
        self.upserted = []
        self.fail_ids = set(fail_ids)
        self.save_tokens = AsyncMock()
        self.mark_synced = AsyncMock()
        self.mark_error = AsyncMock()
        self.complete_missing_tasks = AsyncMock(return_value=0)
        self.upsert_calendar = AsyncMock()

    async def upsert_record(self, record):
        self.in_flight_at_start.append(self.in_flight)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if record.external_id in self.fail_ids:
                raise PersistenceError(f"write failed for {record.external_id}")
            self.upserted.append(record.external_id)
        finally:
            self.in_flight -= 1


# ================================================================================
# TOKEN FRESHNESS
# ================================================================================

class TestTokenRefresh:

    @pytest.mark.asyncio
    async def test_missing_expiry_refreshes_before_listing(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=PROVIDER, access_token="stale", refresh_token="r1")
        refresh = AsyncMock(return_value=TokenGrant(access_token="fresh", refresh_token="r2", expires_in=3600))
        seen_tokens = []
        adapter = make_adapter([records("A")], refresh=refresh, seen_tokens=seen_tokens)
        client = mock_client()

        before = datetime.now(timezone.utc)
        result = await SyncOrchestrator(store, client).run_sync(integration, adapter)

        assert result.success is True
        assert result.token_refreshed is True
        refresh.assert_awaited_once_with(client, "r1")
        assert seen_tokens == ["fresh"]

        stored = await stored_integration(session_factory, integration.id)
        assert decrypt_token(stored.access_token_encrypted) == "fresh"
        assert decrypt_token(stored.refresh_token_encrypted) == "r2"
        expires_at = ensure_utc(stored.token_expires_at)
        # Lifetime minus the default ten-minute margin
        assert before + timedelta(seconds=2990) <= expires_at <= datetime.now(timezone.utc) + timedelta(seconds=3000)

    @pytest.mark.asyncio
    async def test_fresh_token_is_not_refreshed(self, store, integration_factory):
        integration = await integration_factory(provider=PROVIDER, refresh_token="r1", token_expires_at=in_one_hour())
        refresh = AsyncMock()

        result = await SyncOrchestrator(store, mock_client()).run_sync(integration, make_adapter([records("A")], refresh=refresh))

        assert result.success is True
        assert result.token_refreshed is False
        refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_grant_fails_without_listing(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=PROVIDER, refresh_token="revoked")
        seen_tokens = []

        async def refresh(client, refresh_token):
            return await exchange_refresh_token(
                client, "https://auth.example.com/token", provider=PROVIDER.value,
                refresh_token=refresh_token, client_id="cid", client_secret="secret",
            )

        client = mock_client(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
        adapter = make_adapter([records("A")], refresh=refresh, seen_tokens=seen_tokens)

        result = await SyncOrchestrator(store, client).run_sync(integration, adapter)

        assert result.success is False
        assert result.error_code == "refresh_failed"
        assert seen_tokens == []
        stored = await stored_integration(session_factory, integration.id)
        assert stored.status == IntegrationStatus.ERROR.value
        assert "invalid_grant" in stored.last_error
        assert await task_statuses(session_factory) == {}

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=PROVIDER, token_expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc))
        seen_tokens = []
        adapter = make_adapter([records("A")], refresh=AsyncMock(), seen_tokens=seen_tokens)

        result = await SyncOrchestrator(store, mock_client()).run_sync(integration, adapter)

        assert result.error_code == "missing_refresh_credential"
        assert seen_tokens == []
        assert (await stored_integration(session_factory, integration.id)).status == IntegrationStatus.ERROR.value

    @pytest.mark.asyncio
    async def test_unreadable_credentials(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=PROVIDER, token_expires_at=in_one_hour())
        integration.access_token_encrypted = "not-a-fernet-token"

        result = await SyncOrchestrator(store, mock_client()).run_sync(integration, make_adapter([records("A")]))

        assert result.error_code == "credential_unreadable"
        assert (await stored_integration(session_factory, integration.id)).status == IntegrationStatus.ERROR.value


# ================================================================================
# REACTIVE REFRESH
# ================================================================================

class TestReactiveRefresh:

    @pytest.mark.asyncio
    async def test_rejected_token_refreshed_once_and_pass_restarted(self, store, session_factory, integration_factory):
        integration = await integration_factory(
            provider=PROVIDER, access_token="revoked", refresh_token="r1", token_expires_at=in_one_hour(),
        )
        refresh = AsyncMock(return_value=TokenGrant(access_token="fresh", expires_in=3600))
        seen_tokens = []

        def pages(ctx):
            if ctx.access_token == "revoked":
                raise AuthenticationFailedError("401", provider=PROVIDER.value)
            return [records("A", "B")]

        result = await SyncOrchestrator(store, mock_client()).run_sync(
            integration, make_adapter(pages, refresh=refresh, seen_tokens=seen_tokens)
        )

        assert result.success is True
        assert result.token_refreshed is True
        refresh.assert_awaited_once()
        assert seen_tokens == ["revoked", "fresh"]
        assert await task_statuses(session_factory) == {"A": "pending", "B": "pending"}

    @pytest.mark.asyncio
    async def test_second_rejection_is_fatal(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=PROVIDER, refresh_token="r1", token_expires_at=in_one_hour())
        refresh = AsyncMock(return_value=TokenGrant(access_token="fresh", expires_in=3600))

        def pages(ctx):
            raise AuthenticationFailedError("401", provider=PROVIDER.value)

        result = await SyncOrchestrator(store, mock_client()).run_sync(integration, make_adapter(pages, refresh=refresh))

        assert result.success is False
        assert result.error_code == "authentication_failed"
        refresh.assert_awaited_once()
        assert (await stored_integration(session_factory, integration.id)).status == IntegrationStatus.ERROR.value

    @pytest.mark.asyncio
    async def test_rejection_without_refresh_capability_is_fatal(self, store, integration_factory):
        integration = await integration_factory(provider=PROVIDER)

        def pages(ctx):
            raise AuthenticationFailedError("401", provider=PROVIDER.value)

        result = await SyncOrchestrator(store, mock_client()).run_sync(integration, make_adapter(pages))

        assert result.success is False
        assert result.error_code == "authentication_failed"
        assert result.token_refreshed is False


# ================================================================================
# UPSERT AND RECONCILIATION
# ================================================================================

class TestUpsertAndReconcile:

    @pytest.mark.asyncio
    async def test_repeated_passes_are_idempotent(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=PROVIDER)
        adapter = make_adapter([records("A", "B")])
        orchestrator = SyncOrchestrator(store, mock_client())

        await orchestrator.run_sync(integration, adapter)
        result = await orchestrator.run_sync(integration, adapter)

        assert result.success is True
        assert result.stats.records_upserted == 2
        assert await task_statuses(session_factory) == {"A": "pending", "B": "pending"}

    @pytest.mark.asyncio
    async def test_tasks_missing_remotely_are_completed(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=PROVIDER)
        orchestrator = SyncOrchestrator(store, mock_client())
        await orchestrator.run_sync(integration, make_adapter([records("A", "B", "C")]))

        result = await orchestrator.run_sync(integration, make_adapter([records("A"), records("C")]))

        assert result.stats.records_completed == 1
        assert await task_statuses(session_factory) == {
            "A": TaskStatus.PENDING.value,
            "B": TaskStatus.COMPLETED.value,
            "C": TaskStatus.PENDING.value,
        }
        stored = await stored_integration(session_factory, integration.id)
        assert stored.status == IntegrationStatus.ACTIVE.value
        assert stored.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_skipped_records_are_not_observed(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=PROVIDER)
        orchestrator = SyncOrchestrator(store, mock_client())
        await orchestrator.run_sync(integration, make_adapter([records("A", "B")]))

        closed = {"id": "B", "name": "Task B", "completed": True}
        result = await orchestrator.run_sync(integration, make_adapter([records("A") + [closed]]))

        assert result.stats.records_skipped == 1
        assert (await task_statuses(session_factory))["B"] == TaskStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_unmappable_record_stays_open(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=PROVIDER)
        orchestrator = SyncOrchestrator(store, mock_client())
        await orchestrator.run_sync(integration, make_adapter([records("A", "B")]))

        broken = {"id": "B"}  # no name
        result = await orchestrator.run_sync(integration, make_adapter([records("A") + [broken]]))

        assert result.success is True
        assert result.stats.records_failed == 1
        assert (await task_statuses(session_factory))["B"] == TaskStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_skipped_container_disables_reconciliation(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=PROVIDER)
        orchestrator = SyncOrchestrator(store, mock_client())
        await orchestrator.run_sync(integration, make_adapter([records("A", "B")]))

        def pages(ctx):
            ctx.skip_scope("project P2", httpx.ConnectError("timeout"))
            return [records("A")]

        result = await orchestrator.run_sync(integration, make_adapter(pages))

        assert result.success is True
        assert result.stats.records_completed == 0
        assert (await task_statuses(session_factory))["B"] == TaskStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_pagination_ceiling_fails_pass_without_reconciliation(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=PROVIDER)
        orchestrator = SyncOrchestrator(store, mock_client(), max_pages=3)
        await orchestrator.run_sync(integration, make_adapter([records("A", "B")]))

        async def endless(ctx):
            async def fetch(cursor):
                return records("A"), "more"

            async for page in iterate_cursor(fetch, max_pages=ctx.max_pages, label="endless"):
                yield Page(records=page)

        adapter = ProviderAdapter(provider=PROVIDER, iter_pages=endless, map_record=map_task)
        result = await orchestrator.run_sync(integration, adapter)

        assert result.success is False
        assert result.error_code == "pagination_limit_exceeded"
        assert (await task_statuses(session_factory))["B"] == TaskStatus.PENDING.value
        assert (await stored_integration(session_factory, integration.id)).status == IntegrationStatus.ERROR.value

    @pytest.mark.asyncio
    async def test_transport_failure_is_fatal(self, store, integration_factory):
        integration = await integration_factory(provider=PROVIDER)

        def pages(ctx):
            raise httpx.ConnectError("connection refused")

        result = await SyncOrchestrator(store, mock_client()).run_sync(integration, make_adapter(pages))

        assert result.success is False
        assert result.error_code == "provider_request_failed"


class TestBatching:

    @pytest.mark.asyncio
    async def test_records_upserted_in_bounded_batches(self, integration_factory):
        integration = await integration_factory(provider=PROVIDER)
        recording = RecordingStore()
        ids = [str(i) for i in range(60)]

        result = await SyncOrchestrator(recording, mock_client(), batch_size=50).run_sync(
            integration, make_adapter([records(*ids)])
        )

        assert result.success is True
        assert sorted(recording.upserted, key=int) == ids
        assert recording.max_in_flight == 50
        # The 51st record starts only after the first batch settled
        assert recording.in_flight_at_start[50] == 0

    @pytest.mark.asyncio
    async def test_failed_upserts_do_not_abort_the_pass(self, integration_factory):
        integration = await integration_factory(provider=PROVIDER)
        recording = RecordingStore(fail_ids={"B"})

        result = await SyncOrchestrator(recording, mock_client()).run_sync(
            integration, make_adapter([records("A", "B", "C")])
        )

        assert result.success is True
        assert result.stats.records_upserted == 2
        assert result.stats.records_failed == 1
        recording.mark_synced.assert_awaited_once()
        recording.complete_missing_tasks.assert_awaited_once()
        observed = recording.complete_missing_tasks.await_args.kwargs["active_external_ids"]
        assert observed == {"A", "B", "C"}

    @pytest.mark.asyncio
    async def test_calendar_write_failure_skips_its_events(self, integration_factory):
        integration = await integration_factory(provider=PROVIDER)
        recording = RecordingStore()
        stored_id = uuid.uuid4()

        async def upsert_calendar(calendar):
            if calendar.external_id == "broken":
                raise PersistenceError("calendar write failed")
            return stored_id

        recording.upsert_calendar = AsyncMock(side_effect=upsert_calendar)
        listed = []

        async def list_calendars(ctx):
            return [
                CalendarRecord(
                    integration_id=ctx.integration_id,
                    external_id=external_id,
                    name=external_id,
                    source=PROVIDER.value,
                    workspace_id=ctx.workspace_id,
                    user_id=ctx.user_id,
                )
                for external_id in ("ok", "broken")
            ]

        async def iter_pages(ctx):
            for external_id, calendar_id in ctx.calendar_ids.items():
                listed.append((external_id, calendar_id))
                yield Page(records=records(f"{external_id}-1"))

        adapter = ProviderAdapter(
            provider=PROVIDER, iter_pages=iter_pages, map_record=map_task, list_calendars=list_calendars
        )

        result = await SyncOrchestrator(recording, mock_client()).run_sync(integration, adapter)

        assert result.success is True
        assert listed == [("ok", stored_id)]
        assert recording.upserted == ["ok-1"]
        # Listing was incomplete, so nothing is completed locally
        recording.complete_missing_tasks.assert_not_awaited()
        recording.mark_synced.assert_awaited_once()
