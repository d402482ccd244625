"""
SQL-backed store used by the sync orchestrator.

One ``SqlSyncStore`` is handed explicitly to each pass. It covers both
sides the orchestrator writes to: the integration row (credentials, status,
last sync) and the local records (tasks, calendars, events).

Every operation opens its own session, so the members of an upsert batch
can run concurrently on the connection pool. SQLite allows a single writer,
so writes are serialized there.
"""
import asyncio
import uuid
from contextlib import nullcontext
from dataclasses import asdict
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.encryption import encrypt_token
from app.core.exceptions import PersistenceError
from app.core.time_utils import utc_now
from app.integrations.adapter import CalendarRecord, EventRecord, LocalRecord, TaskRecord
from app.models.calendar import Calendar, Event
from app.models.enums import IntegrationProvider, IntegrationStatus, NON_TERMINAL_TASK_STATUSES, TaskStatus
from app.models.integration import Integration
from app.models.task import Task

TASK_CONFLICT_KEY = ("integration_source", "external_id", "host", "workspace_id")
CALENDAR_CONFLICT_KEY = ("integration_id", "external_id", "source", "workspace_id", "user_id")
EVENT_CONFLICT_KEY = ("calendar_id", "external_id", "source", "workspace_id", "user_id")

# Columns owned by the local app, never overwritten by a sync upsert
LOCAL_COLUMNS = {"status", "completed_at", "date"}


class SqlSyncStore:
    """Credential and local-record store over an async session factory."""

    def __init__(self, session_factory: async_sessionmaker, *, serialize_writes: bool = False):
        self._session_factory = session_factory
        self._write_lock = asyncio.Lock() if serialize_writes else None

    def _writing(self):
        return self._write_lock if self._write_lock is not None else nullcontext()

    def _insert(self, session, model):
        dialect = session.bind.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise PersistenceError(f"Upserts are not supported on dialect '{dialect}'")

    # ================================================================================
    # CREDENTIALS AND STATUS
    # ================================================================================

    async def save_tokens(
        self,
        integration_id: uuid.UUID,
        *,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: Optional[datetime],
    ) -> None:
        """Persist refreshed credentials and mark the integration active."""
        values = {
            "access_token_encrypted": encrypt_token(access_token),
            "token_expires_at": expires_at,
            "status": IntegrationStatus.ACTIVE.value,
            "updated_at": utc_now(),
        }
        if refresh_token:
            values["refresh_token_encrypted"] = encrypt_token(refresh_token)
        await self._update_integration(integration_id, values)

    async def mark_synced(self, integration_id: uuid.UUID, synced_at: datetime) -> None:
        await self._update_integration(integration_id, {
            "status": IntegrationStatus.ACTIVE.value,
            "last_synced_at": synced_at,
            "last_error": None,
            "last_error_at": None,
            "updated_at": utc_now(),
        })

    async def mark_error(self, integration_id: uuid.UUID, error: str) -> None:
        now = utc_now()
        await self._update_integration(integration_id, {
            "status": IntegrationStatus.ERROR.value,
            "last_error": error[:2000],
            "last_error_at": now,
            "updated_at": now,
        })

    async def _update_integration(self, integration_id: uuid.UUID, values: dict) -> None:
        try:
            async with self._writing():
                async with self._session_factory() as session:
                    await session.execute(
                        update(Integration).where(Integration.id == integration_id).values(**values)
                    )
                    await session.commit()
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Failed to update integration {integration_id}: {exc}") from exc

    # ================================================================================
    # LOCAL RECORDS
    # ================================================================================

    async def upsert_record(self, record: LocalRecord) -> None:
        if isinstance(record, TaskRecord):
            await self.upsert_task(record)
        elif isinstance(record, EventRecord):
            await self.upsert_event(record)
        else:
            raise PersistenceError(f"Unsupported record type {type(record).__name__}")

    async def upsert_task(self, record: TaskRecord) -> None:
        """Insert or overwrite a task keyed on (source, external id, host, workspace)."""
        values = asdict(record)
        values["updated_at"] = utc_now()
        await self._upsert(Task, values, TASK_CONFLICT_KEY, insert_only={"id": uuid.uuid4(), "created_at": utc_now(), "status": TaskStatus.PENDING.value})

    async def upsert_event(self, record: EventRecord) -> None:
        values = asdict(record)
        values["updated_at"] = utc_now()
        await self._upsert(Event, values, EVENT_CONFLICT_KEY, insert_only={"id": uuid.uuid4(), "created_at": utc_now()})

    async def upsert_calendar(self, record: CalendarRecord) -> uuid.UUID:
        """Insert or refresh a calendar and return its local id."""
        values = asdict(record)
        values["updated_at"] = utc_now()
        return await self._upsert(
            Calendar, values, CALENDAR_CONFLICT_KEY,
            insert_only={"id": uuid.uuid4(), "created_at": utc_now()},
            returning=Calendar.id,
        )

    async def _upsert(self, model, values: dict, conflict_key: Iterable[str], *, insert_only: dict, returning=None):
        try:
            async with self._writing():
                async with self._session_factory() as session:
                    stmt = self._insert(session, model).values(**insert_only, **values)
                    update_columns = {
                        name: stmt.excluded[name]
                        for name in values
                        if name not in conflict_key and name not in LOCAL_COLUMNS
                    }
                    stmt = stmt.on_conflict_do_update(index_elements=list(conflict_key), set_=update_columns)
                    if returning is not None:
                        stmt = stmt.returning(returning)
                    result = await session.execute(stmt)
                    returned = result.scalar_one() if returning is not None else None
                    await session.commit()
                    return returned
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(
                f"Failed to upsert {model.__tablename__} {values.get('external_id')}: {type(exc).__name__}: {exc}"
            ) from exc

    async def complete_missing_tasks(
        self,
        *,
        integration_source: str,
        workspace_id: uuid.UUID,
        creator: uuid.UUID,
        active_external_ids: Iterable[str],
        completed_at: datetime,
    ) -> int:
        """
        Complete open tasks of one integration that the provider no longer lists.

        Only tasks in a non-terminal status are touched. Returns the number of
        tasks moved to completed.
        """
        active = sorted(set(active_external_ids))
        stmt = (
            update(Task)
            .where(Task.workspace_id == workspace_id)
            .where(Task.integration_source == integration_source)
            .where(Task.creator == creator)
            .where(Task.status.in_(NON_TERMINAL_TASK_STATUSES))
            .values(status=TaskStatus.COMPLETED.value, completed_at=completed_at, updated_at=utc_now())
        )
        if active:
            stmt = stmt.where(Task.external_id.not_in(active))

        try:
            async with self._writing():
                async with self._session_factory() as session:
                    result = await session.execute(stmt.execution_options(synchronize_session=False))
                    await session.commit()
                    return result.rowcount or 0
        except Exception as exc:
            raise PersistenceError(f"Failed to reconcile {integration_source} tasks: {exc}") from exc

    async def delete_integration_data(self, integration: Integration) -> int:
        """
        Remove what a disconnect leaves behind.

        Deletes the integration's pending, unscheduled tasks (tasks the user
        already planned or finished are kept), its calendars and events, and
        the integration row. Returns the number of deleted tasks.
        """
        try:
            async with self._writing():
                async with self._session_factory() as session:
                    tasks = await session.execute(
                        delete(Task)
                        .where(Task.integration_source == IntegrationProvider(integration.provider).value)
                        .where(Task.workspace_id == integration.workspace_id)
                        .where(Task.creator == integration.user_id)
                        .where(Task.status == TaskStatus.PENDING.value)
                        .where(Task.date.is_(None))
                        .execution_options(synchronize_session=False)
                    )
                    calendar_ids = (await session.execute(
                        select(Calendar.id).where(Calendar.integration_id == integration.id)
                    )).scalars().all()
                    if calendar_ids:
                        await session.execute(delete(Event).where(Event.calendar_id.in_(calendar_ids)))
                        await session.execute(delete(Calendar).where(Calendar.id.in_(calendar_ids)))
                    await session.execute(delete(Integration).where(Integration.id == integration.id))
                    await session.commit()
                    return tasks.rowcount or 0
        except Exception as exc:
            raise PersistenceError(f"Failed to remove integration {integration.id}: {exc}") from exc
