"""
Shared API dependencies.
"""
import logging
import secrets
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import settings
from app.core.database import async_session_factory
from app.core.sync_lock import SyncLockManager, create_sync_lock_manager
from app.middleware.request_logging import request_id_ctx

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_request_id() -> str:
    """
    Dependency to get the current request ID from context.

    Returns:
        The current request ID, or 'unknown' if not in a request context.
    """
    return request_id_ctx.get()


def get_session_factory() -> async_sessionmaker:
    """Session factory for operations that open their own sessions (store, disconnect)."""
    return async_session_factory


def get_sync_lock_manager(request: Request) -> SyncLockManager:
    """Lock manager created during application startup."""
    manager = getattr(request.app.state, "sync_lock_manager", None)
    if manager is None:
        manager = create_sync_lock_manager()
        request.app.state.sync_lock_manager = manager
    return manager


async def require_service_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> None:
    """
    Validate the service bearer token.

    When SERVICE_API_TOKEN is unset (development only; production refuses to
    start without it) every request is accepted.
    """
    expected = settings.service_api_token
    if not expected:
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials, expected):
        logger.warning("Rejected request with missing or invalid service token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing service token",
            headers={"WWW-Authenticate": "Bearer"},
        )
