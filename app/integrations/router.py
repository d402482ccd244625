"""
FastAPI router for integration endpoints.

Endpoints:
- POST /integrations/{integration_id}/sync: Queue a sync pass
- GET /integrations/{integration_id}/status: Connection and sync status
- DELETE /integrations/{integration_id}: Disconnect and remove synced data

Authentication:
- All endpoints require the service bearer token
"""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from app.api.dependencies import get_session_factory, get_sync_lock_manager, require_service_token
from app.core.database import get_session
from app.core.exceptions import IntegrationNotFoundError, SyncInProgressError, UnsupportedProviderError
from app.core.logging_config import log_error, log_info, log_warning
from app.core.sync_lock import SyncLockManager
from app.integrations.schemas import IntegrationStatusResponse, SyncTriggerResponse
from app.integrations.service import (
    disconnect_integration,
    get_integration,
    get_integration_status,
    get_provider_adapter,
)
from app.integrations.tasks import sync_integration_task

router = APIRouter(
    prefix="/integrations",
    tags=["integrations"],
    dependencies=[Depends(require_service_token)],
)


@router.post(
    "/{integration_id}/sync",
    response_model=SyncTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        400: {"description": "Provider not supported"},
        401: {"description": "Not authenticated"},
        404: {"description": "Integration not found"},
    }
)
async def trigger_sync(
    integration_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_session)]
) -> SyncTriggerResponse:
    """
    Queue a sync pass for an integration.

    The pass runs on a Celery worker; poll the status endpoint for the outcome.
    """
    try:
        integration = await get_integration(session, integration_id)
        adapter = get_provider_adapter(integration.provider)
    except IntegrationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except UnsupportedProviderError as e:
        log_warning(f"Sync requested for unsupported provider: {e}", integration_id=str(integration_id))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    task = sync_integration_task.apply_async(
        args=[str(integration_id)],
        soft_time_limit=adapter.max_duration,
    )
    log_info(f"Queued {adapter.provider.value} sync", integration_id=str(integration_id), task_id=task.id)
    return SyncTriggerResponse(
        integration_id=integration_id,
        provider=adapter.provider,
        task_id=task.id,
    )


@router.get(
    "/{integration_id}/status",
    response_model=IntegrationStatusResponse,
    status_code=status.HTTP_200_OK,
    responses={
        401: {"description": "Not authenticated"},
        404: {"description": "Integration not found"},
    }
)
async def get_status(
    integration_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_session)]
) -> IntegrationStatusResponse:
    """
    Get the status of an integration.

    Returns the current status, sync history and the last recorded error.
    """
    try:
        return await get_integration_status(session, integration_id)
    except IntegrationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete(
    "/{integration_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={
        401: {"description": "Not authenticated"},
        404: {"description": "Integration not found"},
        409: {"description": "A sync pass is running for this integration"},
    }
)
async def disconnect(
    integration_id: uuid.UUID,
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
    lock_manager: Annotated[SyncLockManager, Depends(get_sync_lock_manager)],
) -> Response:
    """
    Disconnect an integration.

    Removes the integration together with its calendars, events and the
    pending tasks the user has not scheduled yet.
    """
    try:
        await disconnect_integration(
            integration_id,
            session_factory=session_factory,
            lock_manager=lock_manager,
        )
    except IntegrationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SyncInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        log_error(e, integration_id=str(integration_id))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to disconnect integration"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
