"""
Main FastAPI application for Taskfuse Sync.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.database import init_db
from app.core.exceptions import (
    IntegrationNotFoundError,
    SyncInProgressError,
    TaskfuseAppException,
    UnsupportedProviderError,
)
from app.core.logging_config import log_error, log_info, log_warning, setup_logging
from app.core.sync_lock import create_sync_lock_manager
from app.middleware.request_logging import RequestLoggingMiddleware, request_id_ctx

# -----------------------------------------------------------------------------
# Startup / Shutdown
# -----------------------------------------------------------------------------
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    log_info("Starting up Taskfuse Sync Service...")
    try:
        await init_db()
        log_info("Database initialization completed!")
        app.state.sync_lock_manager = create_sync_lock_manager()
    except Exception as exc:
        log_error(exc)
        raise
    yield
    log_info("Shutting down Taskfuse Sync Service...")
    try:
        await app.state.sync_lock_manager.close()
    except Exception as exc:
        log_warning(f"Failed to close sync lock manager: {exc}")


# -----------------------------------------------------------------------------
# App Initialization
# -----------------------------------------------------------------------------
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Mirrors tasks and calendar events from third-party providers into a local store",
    openapi_url=f"{settings.api_v1_prefix}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

# -----------------------------------------------------------------------------
# Exception Handlers
# -----------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle FastAPI request validation errors with detailed logging."""
    request_id = request_id_ctx.get()
    errors = exc.errors()

    sanitized_errors = [
        {
            "loc": err.get("loc"),
            "msg": err.get("msg"),
            "type": err.get("type")
        }
        for err in errors
    ]

    log_warning(
        "Request validation failed",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
        event="validation_error"
    )

    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": sanitized_errors,
            "request_id": request_id
        },
    )


@app.exception_handler(TaskfuseAppException)
async def taskfuse_app_exception_handler(request: Request, exc: TaskfuseAppException):
    request_id = request_id_ctx.get()
    log_error(exc, request_id=request_id)

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(exc, IntegrationNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, SyncInProgressError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, UnsupportedProviderError):
        status_code = status.HTTP_400_BAD_REQUEST

    message = (
        "An unexpected internal error occurred."
        if settings.environment == "production" and status_code == 500
        else str(exc)
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "message": message, "request_id": request_id},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    request_id = request_id_ctx.get()
    log_error(exc, request_id=request_id)
    msg = (
        "An unexpected error occurred. Please try again later."
        if settings.environment == "production"
        else str(exc)
    )
    return JSONResponse(
        status_code=500,
        content={"error": "internal_server_error", "message": msg, "request_id": request_id},
    )

# -----------------------------------------------------------------------------
# API Routers
# -----------------------------------------------------------------------------
app.include_router(api_router, prefix=settings.api_v1_prefix)
