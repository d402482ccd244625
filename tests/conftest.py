"""
Pytest fixtures shared across the unit suites.

Settings are read at import time, so the environment is prepared before
any application module is imported.
"""
from __future__ import annotations

import os
import uuid
from datetime import datetime
from typing import Callable

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-32-chars")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.pop("REDIS_URL", None)
os.environ.pop("POSTGRES_URL", None)

import pytest
import pytest_asyncio

from app.core.database import create_engine_for_url, create_session_factory, init_db
from app.core.encryption import encrypt_token, reset_key_cache
from app.models.enums import IntegrationProvider, IntegrationStatus
from app.models.integration import Integration


@pytest.fixture(autouse=True)
def _reset_encryption_key_cache():
    reset_key_cache()
    yield
    reset_key_cache()


@pytest_asyncio.fixture
async def db_engine():
    """
    Fresh in-memory SQLite database per test.

    The engine uses a StaticPool, so every session shares one connection
    and sees the same tables.
    """
    engine = create_engine_for_url("sqlite:///:memory:")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def integration_factory(session_factory) -> Callable:
    """
    Factory that stores an integration and returns it.

    Tokens are given in plain text and encrypted on the way in.
    """

    async def _create(
        provider: IntegrationProvider = IntegrationProvider.TODOIST,
        access_token: str = "access-1",
        refresh_token: str | None = None,
        token_expires_at: datetime | None = None,
        status: IntegrationStatus = IntegrationStatus.ACTIVE,
        **overrides,
    ) -> Integration:
        integration = Integration(
            user_id=overrides.pop("user_id", uuid.uuid4()),
            workspace_id=overrides.pop("workspace_id", uuid.uuid4()),
            provider=provider.value,
            status=status.value,
            access_token_encrypted=encrypt_token(access_token),
            refresh_token_encrypted=encrypt_token(refresh_token) if refresh_token else None,
            token_expires_at=token_expires_at,
            **overrides,
        )
        async with session_factory() as session:
            session.add(integration)
            await session.commit()
            await session.refresh(integration)
        return integration

    return _create
