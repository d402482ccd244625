"""
Unit tests for SqlSyncStore against an in-memory SQLite database.
"""
import uuid
from datetime import date, datetime, timezone

import pytest
from sqlmodel import select

from app.core.encryption import decrypt_token
from app.core.time_utils import ensure_utc
from app.integrations.adapter import CalendarRecord, EventRecord, TaskRecord
from app.integrations.store import SqlSyncStore
from app.models.calendar import Calendar, Event
from app.models.enums import IntegrationProvider, IntegrationStatus, TaskStatus
from app.models.integration import Integration
from app.models.task import Task

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_task_record(integration: Integration, external_id: str, name: str = "Task") -> TaskRecord:
    return TaskRecord(
        integration_source=integration.provider,
        external_id=external_id,
        host="https://todoist.com/app/task/" + external_id,
        workspace_id=integration.workspace_id,
        name=name,
        description=None,
        external_data={"id": external_id},
        assignee=integration.user_id,
        creator=integration.user_id,
    )


async def fetch_tasks(session_factory):
    async with session_factory() as session:
        return {task.external_id: task for task in (await session.exec(select(Task))).all()}


@pytest.fixture
def store(session_factory):
    return SqlSyncStore(session_factory, serialize_writes=True)


# ================================================================================
# CREDENTIALS AND STATUS
# ================================================================================

class TestIntegrationUpdates:

    @pytest.mark.asyncio
    async def test_save_tokens_encrypts_and_activates(self, store, session_factory, integration_factory):
        integration = await integration_factory(status=IntegrationStatus.ERROR)

        await store.save_tokens(integration.id, access_token="new-access", refresh_token="new-refresh", expires_at=NOW)

        async with session_factory() as session:
            stored = await session.get(Integration, integration.id)
        assert decrypt_token(stored.access_token_encrypted) == "new-access"
        assert decrypt_token(stored.refresh_token_encrypted) == "new-refresh"
        assert ensure_utc(stored.token_expires_at) == NOW
        assert stored.status == IntegrationStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_save_tokens_keeps_refresh_token_when_not_rotated(self, store, session_factory, integration_factory):
        integration = await integration_factory(refresh_token="original-refresh")

        await store.save_tokens(integration.id, access_token="new-access", refresh_token=None, expires_at=None)

        async with session_factory() as session:
            stored = await session.get(Integration, integration.id)
        assert decrypt_token(stored.refresh_token_encrypted) == "original-refresh"
        assert stored.token_expires_at is None

    @pytest.mark.asyncio
    async def test_mark_error_then_synced(self, store, session_factory, integration_factory):
        integration = await integration_factory()

        await store.mark_error(integration.id, "refresh_failed: invalid_grant")
        async with session_factory() as session:
            stored = await session.get(Integration, integration.id)
            assert stored.status == IntegrationStatus.ERROR.value
            assert stored.last_error == "refresh_failed: invalid_grant"

        await store.mark_synced(integration.id, NOW)
        async with session_factory() as session:
            stored = await session.get(Integration, integration.id)
            assert stored.status == IntegrationStatus.ACTIVE.value
            assert stored.last_error is None
            assert ensure_utc(stored.last_synced_at) == NOW


# ================================================================================
# TASK UPSERT AND RECONCILIATION
# ================================================================================

class TestTaskUpsert:

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, store, session_factory, integration_factory):
        integration = await integration_factory()
        record = make_task_record(integration, "A", name="First")

        await store.upsert_task(record)
        await store.upsert_task(record)

        tasks = await fetch_tasks(session_factory)
        assert list(tasks) == ["A"]
        assert tasks["A"].status == TaskStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_upsert_overwrites_remote_fields_only(self, store, session_factory, integration_factory):
        integration = await integration_factory()
        await store.upsert_task(make_task_record(integration, "A", name="First"))

        async with session_factory() as session:
            task = (await session.exec(select(Task))).one()
            task.status = TaskStatus.IN_PROGRESS.value
            task.date = date(2024, 5, 2)
            session.add(task)
            await session.commit()

        await store.upsert_task(make_task_record(integration, "A", name="Renamed"))

        task = (await fetch_tasks(session_factory))["A"]
        assert task.name == "Renamed"
        assert task.status == TaskStatus.IN_PROGRESS.value
        assert task.date == date(2024, 5, 2)

    @pytest.mark.asyncio
    async def test_complete_missing_tasks(self, store, session_factory, integration_factory):
        integration = await integration_factory()
        for external_id in ("A", "B", "C"):
            await store.upsert_task(make_task_record(integration, external_id))

        completed = await store.complete_missing_tasks(
            integration_source=integration.provider,
            workspace_id=integration.workspace_id,
            creator=integration.user_id,
            active_external_ids={"A", "C"},
            completed_at=NOW,
        )

        tasks = await fetch_tasks(session_factory)
        assert completed == 1
        assert tasks["B"].status == TaskStatus.COMPLETED.value
        assert ensure_utc(tasks["B"].completed_at) == NOW
        assert tasks["A"].status == TaskStatus.PENDING.value
        assert tasks["C"].status == TaskStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_complete_missing_tasks_scoped_to_owner(self, store, session_factory, integration_factory):
        mine = await integration_factory()
        other = await integration_factory(workspace_id=mine.workspace_id)
        await store.upsert_task(make_task_record(mine, "A"))
        await store.upsert_task(make_task_record(other, "B"))

        completed = await store.complete_missing_tasks(
            integration_source=mine.provider,
            workspace_id=mine.workspace_id,
            creator=mine.user_id,
            active_external_ids=set(),
            completed_at=NOW,
        )

        tasks = await fetch_tasks(session_factory)
        assert completed == 1
        assert tasks["A"].status == TaskStatus.COMPLETED.value
        assert tasks["B"].status == TaskStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_already_completed_tasks_untouched(self, store, session_factory, integration_factory):
        integration = await integration_factory()
        await store.upsert_task(make_task_record(integration, "A"))
        first = await store.complete_missing_tasks(
            integration_source=integration.provider,
            workspace_id=integration.workspace_id,
            creator=integration.user_id,
            active_external_ids=[],
            completed_at=NOW,
        )
        second = await store.complete_missing_tasks(
            integration_source=integration.provider,
            workspace_id=integration.workspace_id,
            creator=integration.user_id,
            active_external_ids=[],
            completed_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )

        tasks = await fetch_tasks(session_factory)
        assert (first, second) == (1, 0)
        assert ensure_utc(tasks["A"].completed_at) == NOW


# ================================================================================
# CALENDARS, EVENTS AND DISCONNECT
# ================================================================================

class TestCalendarUpsert:

    @pytest.mark.asyncio
    async def test_upsert_calendar_returns_stable_id(self, store, integration_factory):
        integration = await integration_factory(provider=IntegrationProvider.MICROSOFT_CALENDAR)
        record = CalendarRecord(
            integration_id=integration.id,
            external_id="cal-1",
            name="Work",
            source="microsoft_calendar",
            workspace_id=integration.workspace_id,
            user_id=integration.user_id,
        )

        first = await store.upsert_calendar(record)
        second = await store.upsert_calendar(record)

        assert isinstance(first, uuid.UUID)
        assert first == second

    @pytest.mark.asyncio
    async def test_upsert_event(self, store, session_factory, integration_factory):
        integration = await integration_factory(provider=IntegrationProvider.CALENDLY)
        calendar_id = await store.upsert_calendar(CalendarRecord(
            integration_id=integration.id,
            external_id="https://api.calendly.com/users/U1",
            name="ann",
            source="calendly",
            workspace_id=integration.workspace_id,
            user_id=integration.user_id,
        ))
        event = EventRecord(
            calendar_id=calendar_id,
            external_id="https://api.calendly.com/scheduled_events/E1",
            title="Intro call",
            source="calendly",
            workspace_id=integration.workspace_id,
            user_id=integration.user_id,
            start_time=NOW,
        )

        await store.upsert_record(event)
        event.title = "Intro call (moved)"
        await store.upsert_record(event)

        async with session_factory() as session:
            events = (await session.exec(select(Event))).all()
        assert len(events) == 1
        assert events[0].title == "Intro call (moved)"
        assert events[0].calendar_id == calendar_id


class TestDeleteIntegrationData:

    @pytest.mark.asyncio
    async def test_removes_pending_unscheduled_tasks_and_calendars(self, store, session_factory, integration_factory):
        integration = await integration_factory()
        for external_id in ("pending", "scheduled", "started"):
            await store.upsert_task(make_task_record(integration, external_id))
        calendar_id = await store.upsert_calendar(CalendarRecord(
            integration_id=integration.id,
            external_id="cal-1",
            name="Work",
            source=integration.provider,
            workspace_id=integration.workspace_id,
            user_id=integration.user_id,
        ))
        await store.upsert_event(EventRecord(
            calendar_id=calendar_id,
            external_id="ev-1",
            title="Standup",
            source=integration.provider,
            workspace_id=integration.workspace_id,
            user_id=integration.user_id,
        ))

        async with session_factory() as session:
            for task in (await session.exec(select(Task))).all():
                if task.external_id == "scheduled":
                    task.date = date(2024, 5, 3)
                elif task.external_id == "started":
                    task.status = TaskStatus.IN_PROGRESS.value
                session.add(task)
            await session.commit()

        deleted = await store.delete_integration_data(integration)

        assert deleted == 1
        assert set(await fetch_tasks(session_factory)) == {"scheduled", "started"}
        async with session_factory() as session:
            assert (await session.exec(select(Calendar))).all() == []
            assert (await session.exec(select(Event))).all() == []
            assert await session.get(Integration, integration.id) is None
