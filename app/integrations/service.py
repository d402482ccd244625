"""
Integration service layer and provider registry.

This module ties integrations, adapters, the store and the per-integration
lock together. Celery tasks and API endpoints call into it; provider
specifics stay in ``app/integrations/providers``.

Architecture:
- PROVIDER_REGISTRY: Maps provider enum → ProviderAdapter
- Service functions: Lookups, sync passes and disconnects
- Orchestrator: Runs the pass itself (see orchestrator.py)
"""
import uuid
from inspect import isawaitable
from typing import List, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import Session, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.database import is_sqlite_engine
from app.core.exceptions import IntegrationNotFoundError, SyncInProgressError, UnsupportedProviderError
from app.core.logging_config import log_info
from app.core.sync_lock import SyncLockManager
from app.integrations.adapter import ProviderAdapter
from app.integrations.orchestrator import SyncOrchestrator, SyncResult
from app.integrations.providers import (
    asana,
    awork,
    calendly,
    clickup,
    github,
    google_calendar,
    google_tasks,
    jira,
    microsoft_calendar,
    microsoft_todo,
    nifty,
    ticktick,
    todoist,
    trello,
    zoho_projects,
)
from app.integrations.schemas import IntegrationStatusResponse
from app.integrations.store import SqlSyncStore
from app.models.enums import IntegrationProvider, IntegrationStatus
from app.models.integration import Integration


# ================================================================================
# ASYNC COMPAT HELPERS
# ================================================================================

async def _exec(session: Session | AsyncSession, statement):
    result = session.exec(statement)
    if isawaitable(result):
        return await result
    return result


# ================================================================================
# PROVIDER REGISTRY
# ================================================================================

# Maps IntegrationProvider enum → adapter
PROVIDER_REGISTRY = {
    IntegrationProvider.ASANA: asana.ADAPTER,
    IntegrationProvider.AWORK: awork.ADAPTER,
    IntegrationProvider.CALENDLY: calendly.ADAPTER,
    IntegrationProvider.CLICKUP: clickup.ADAPTER,
    IntegrationProvider.GITHUB: github.ADAPTER,
    IntegrationProvider.GOOGLE_CALENDAR: google_calendar.ADAPTER,
    IntegrationProvider.GOOGLE_TASKS: google_tasks.ADAPTER,
    IntegrationProvider.JIRA: jira.ADAPTER,
    IntegrationProvider.MICROSOFT_CALENDAR: microsoft_calendar.ADAPTER,
    IntegrationProvider.MICROSOFT_TODO: microsoft_todo.ADAPTER,
    IntegrationProvider.NIFTY: nifty.ADAPTER,
    IntegrationProvider.TICKTICK: ticktick.ADAPTER,
    IntegrationProvider.TODOIST: todoist.ADAPTER,
    IntegrationProvider.TRELLO: trello.ADAPTER,
    IntegrationProvider.ZOHO_PROJECTS: zoho_projects.ADAPTER,
}


def get_provider_adapter(provider) -> ProviderAdapter:
    """
    Get the adapter for a given provider (enum member or stored string).
    """
    try:
        provider = IntegrationProvider(provider)
    except ValueError:
        provider = None

    adapter = PROVIDER_REGISTRY.get(provider) if provider is not None else None
    if not adapter:
        raise UnsupportedProviderError(
            f"Provider '{provider}' is not supported. "
            f"Supported providers: {[p.value for p in PROVIDER_REGISTRY]}"
        )
    return adapter


def _store_for(session_factory: async_sessionmaker) -> SqlSyncStore:
    bind = session_factory.kw.get("bind")
    return SqlSyncStore(session_factory, serialize_writes=bind is not None and is_sqlite_engine(bind))


# ================================================================================
# SERVICE FUNCTIONS
# ================================================================================

async def get_integration(session: Session | AsyncSession, integration_id: uuid.UUID) -> Integration:
    integration = (await _exec(
        session,
        select(Integration).where(Integration.id == integration_id)
    )).first()

    if not integration:
        raise IntegrationNotFoundError(f"Integration {integration_id} not found")
    return integration


async def get_integration_status(
    session: Session | AsyncSession,
    integration_id: uuid.UUID
) -> IntegrationStatusResponse:
    """
    Get the current status of an integration.
    """
    integration = await get_integration(session, integration_id)
    return IntegrationStatusResponse(
        id=integration.id,
        provider=IntegrationProvider(integration.provider),
        status=IntegrationStatus(integration.status),
        user_id=integration.user_id,
        workspace_id=integration.workspace_id,
        connected_at=integration.connected_at,
        last_synced_at=integration.last_synced_at,
        last_error=integration.last_error,
        last_error_at=integration.last_error_at,
        token_expires_at=integration.token_expires_at,
    )


async def list_integrations_to_sync(session: Session | AsyncSession) -> List[Integration]:
    """
    All integrations eligible for a scheduled pass.

    Integrations in ``error`` status are included: a successful pass is
    what moves them back to ``active``.
    """
    return list((await _exec(
        session,
        select(Integration)
        .where(Integration.status.in_([IntegrationStatus.ACTIVE.value, IntegrationStatus.ERROR.value]))
        .order_by(Integration.created_at)
    )).all())


async def sync_integration(
    integration_id: uuid.UUID,
    *,
    session_factory: async_sessionmaker,
    http_client: httpx.AsyncClient,
    lock_manager: SyncLockManager,
    batch_size: Optional[int] = None,
    max_pages: Optional[int] = None,
) -> SyncResult:
    """
    Run one sync pass for an integration while holding its lock.

    A pass that finds the lock taken returns an unsuccessful result and leaves
    the integration's status untouched.

    Raises:
        IntegrationNotFoundError: no such integration
        UnsupportedProviderError: no adapter registered for its provider
    """
    try:
        async with lock_manager.hold(integration_id):
            async with session_factory() as session:
                integration = await get_integration(session, integration_id)
            adapter = get_provider_adapter(integration.provider)

            orchestrator = SyncOrchestrator(
                _store_for(session_factory),
                http_client,
                batch_size=batch_size,
                max_pages=max_pages,
            )
            return await orchestrator.run_sync(integration, adapter)
    except SyncInProgressError as exc:
        log_info(f"Skipping sync: {exc}", integration_id=str(integration_id))
        return SyncResult(
            success=False,
            integration_id=str(integration_id),
            error=str(exc),
            error_code="sync_in_progress",
        )


async def disconnect_integration(
    integration_id: uuid.UUID,
    *,
    session_factory: async_sessionmaker,
    lock_manager: SyncLockManager,
) -> int:
    """
    Disconnect an integration and remove its synced data.

    Runs under the sync lock so a pass in flight cannot recreate records
    afterwards. Returns the number of deleted tasks.

    Raises:
        IntegrationNotFoundError: no such integration
        SyncInProgressError: a sync pass currently holds the lock
    """
    async with lock_manager.hold(integration_id):
        async with session_factory() as session:
            integration = await get_integration(session, integration_id)

        deleted = await _store_for(session_factory).delete_integration_data(integration)

    log_info(
        f"Disconnected {integration.provider} integration {integration_id}",
        deleted_tasks=deleted,
    )
    return deleted
