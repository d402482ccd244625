"""
Background tasks for integration synchronization.

Architecture:
- sync_integration_task: One sync pass for one integration
- sync_all_integrations_task: Fans out one sync_integration_task per
  integration (scheduled by Celery Beat every SYNC_INTERVAL_MINUTES)
- Task wrapper: Each task runs in its own event loop with its own engine,
  HTTP client and lock manager, all closed when the task ends

Failed passes are recorded on the integration and logged here; they never
propagate to Celery as task failures.
"""
import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, List

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.database import create_engine_for_url, create_session_factory
from app.core.exceptions import TaskfuseAppException
from app.core.http_client import http_client_context
from app.core.logging_config import log_error, log_info, log_warning
from app.core.sync_lock import create_sync_lock_manager
from app.integrations.service import get_provider_adapter, list_integrations_to_sync, sync_integration


async def _run_with_session_factory(task_func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
    engine = create_engine_for_url(settings.effective_database_url)
    try:
        return await task_func(create_session_factory(engine), *args, **kwargs)
    finally:
        await engine.dispose()


def _run_async(task_func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
    log_info(f"Starting background task: {task_func.__name__}")
    try:
        result = asyncio.run(_run_with_session_factory(task_func, *args, **kwargs))
        log_info(f"Completed background task: {task_func.__name__}")
        return result
    except Exception as e:
        log_error(e, task_name=task_func.__name__)
        raise


async def _sync_integration_task(session_factory: async_sessionmaker, integration_id: str) -> Dict[str, Any]:
    """
    Background task to run one sync pass.

    This task:
    1. Takes the integration's sync lock (skips when another pass holds it)
    2. Runs the orchestrator with a per-pass HTTP client
    3. Returns the pass result; failures are already stored on the integration
    """
    lock_manager = create_sync_lock_manager()
    try:
        async with http_client_context() as client:
            result = await sync_integration(
                uuid.UUID(integration_id),
                session_factory=session_factory,
                http_client=client,
                lock_manager=lock_manager,
            )
    except TaskfuseAppException as e:
        log_error(e, integration_id=integration_id)
        return {"success": False, "integration_id": integration_id, "error": str(e)}
    finally:
        await lock_manager.close()

    if not result.success:
        log_warning(
            f"Sync failed: {result.error}",
            integration_id=integration_id,
            error_code=result.error_code,
        )
    return result.to_dict()


async def _sync_all_integrations_task(session_factory: async_sessionmaker) -> List[str]:
    """
    Background task to enqueue a pass for every integration.

    Each pass gets its provider's maximum duration as soft time limit.
    Integrations of unsupported providers are logged and skipped.
    """
    async with session_factory() as session:
        integrations = await list_integrations_to_sync(session)

    log_info(f"Scheduling sync for {len(integrations)} integrations")

    queued = []
    for integration in integrations:
        try:
            adapter = get_provider_adapter(integration.provider)
        except TaskfuseAppException as e:
            log_warning(str(e), integration_id=str(integration.id))
            continue

        sync_integration_task.apply_async(
            args=[str(integration.id)],
            soft_time_limit=adapter.max_duration,
        )
        queued.append(str(integration.id))

    return queued


@celery_app.task(name="app.integrations.tasks.sync_integration_task")
def sync_integration_task(integration_id: str) -> Dict[str, Any]:
    try:
        uuid.UUID(integration_id)
    except ValueError as e:
        log_error(e, integration_id=integration_id)
        return {"success": False, "integration_id": integration_id, "error": "invalid integration id"}

    return _run_async(_sync_integration_task, integration_id)


@celery_app.task(name="app.integrations.tasks.sync_all_integrations_task")
def sync_all_integrations_task() -> List[str]:
    return _run_async(_sync_all_integrations_task)
