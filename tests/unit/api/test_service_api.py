"""
Tests for shared API dependencies, the health endpoint and request logging.
"""
import uuid
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import pytest
import pytest_asyncio
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from app.api import dependencies
from app.core.database import get_session
from app.core.sync_lock import SyncLockManager
from app.main import app


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


@pytest.mark.asyncio
async def test_service_token_unset_accepts_everything():
    with patch.object(dependencies.settings, "service_api_token", None):
        assert await dependencies.require_service_token(credentials=None) is None


@pytest.mark.asyncio
async def test_service_token_mismatch_raises_401():
    with patch.object(dependencies.settings, "service_api_token", "expected"):
        with pytest.raises(HTTPException) as exc_info:
            await dependencies.require_service_token(credentials=bearer("other"))

    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_service_token_match_passes():
    with patch.object(dependencies.settings, "service_api_token", "expected"):
        assert await dependencies.require_service_token(credentials=bearer("expected")) is None


def test_lock_manager_is_created_once_per_app():
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))

    first = dependencies.get_sync_lock_manager(request)
    second = dependencies.get_sync_lock_manager(request)

    assert isinstance(first, SyncLockManager)
    assert first is second


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    try:
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
            yield http
    finally:
        app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health_reports_database(client):
    response = await client.get(f"{dependencies.settings.api_v1_prefix}/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database"] == "connected"


@pytest.mark.asyncio
async def test_response_carries_request_id(client):
    response = await client.get(f"{dependencies.settings.api_v1_prefix}/health")

    assert uuid.UUID(response.headers["x-request-id"])
