"""
Simple health check endpoint.
"""
from datetime import datetime, timezone
from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import settings
from app.core.database import get_session
from app.core.logging_config import log_error

router = APIRouter(tags=["health"])


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get(
    "/health",
    response_model=Dict[str, Any],
    responses={
        500: {"description": "Internal server error"},
    }
)
async def health_check(session: Annotated[AsyncSession, Depends(get_session)]):
    """
    Health check with database status.

    Returns degraded status if database is unreachable but service is running.
    """
    try:
        db_status = "connected"
        try:
            await session.execute(text("SELECT 1"))
        except Exception as e:
            db_status = f"disconnected: {str(e)}"

        return {
            "status": "healthy" if db_status == "connected" else "degraded",
            "timestamp": _utc_now_iso(),
            "service": settings.app_name,
            "version": settings.app_version,
            "database": db_status
        }
    except Exception as e:
        log_error(e, request_id=None)
        raise HTTPException(status_code=500, detail="Health check failed")
