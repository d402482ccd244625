"""
Outbound HTTP client used by provider adapters.

Each sync pass runs inside its own event loop (Celery tasks call
``asyncio.run``), so clients are created per pass instead of being shared
process-wide.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from app.core.config import settings
from app.core.logging_config import log_debug


def create_http_client(**overrides) -> httpx.AsyncClient:
    """Build an AsyncClient with the configured timeouts and pool limits."""
    options = {
        "timeout": httpx.Timeout(
            settings.http_timeout_seconds,
            connect=settings.http_connect_timeout_seconds,
        ),
        "limits": httpx.Limits(
            max_connections=settings.http_max_connections,
            max_keepalive_connections=settings.http_max_connections,
        ),
        "headers": {"User-Agent": f"{settings.app_name}/{settings.app_version}"},
        "follow_redirects": True,
    }
    options.update(overrides)
    return httpx.AsyncClient(**options)


@asynccontextmanager
async def http_client_context(**overrides) -> AsyncIterator[httpx.AsyncClient]:
    """Yield a client that is closed when the pass ends."""
    client = create_http_client(**overrides)
    log_debug("HTTP client created", timeout=settings.http_timeout_seconds)
    try:
        yield client
    finally:
        await client.aclose()
