"""
Fixtures for provider adapter tests.

Adapters talk to an ``httpx.MockTransport`` whose handler routes on the
request path, so every test describes the provider API it expects.
"""
import uuid
from typing import Callable, List

import httpx
import pytest

from app.integrations.adapter import ProviderAdapter, SyncContext


@pytest.fixture
def make_ctx() -> Callable[..., SyncContext]:
    def _make(adapter: ProviderAdapter, handler, **overrides) -> SyncContext:
        return SyncContext(
            integration_id=overrides.pop("integration_id", uuid.uuid4()),
            provider=adapter.provider,
            user_id=overrides.pop("user_id", uuid.uuid4()),
            workspace_id=overrides.pop("workspace_id", uuid.uuid4()),
            access_token=overrides.pop("access_token", "token-1"),
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            max_pages=overrides.pop("max_pages", 20),
            **overrides,
        )
    return _make


@pytest.fixture
def run_adapter() -> Callable:
    """List every page and map every record; returns (pages, mapped records)."""

    async def _run(adapter: ProviderAdapter, ctx: SyncContext):
        pages = []
        mapped: List = []
        async for page in adapter.iter_pages(ctx):
            pages.append(page)
            for raw in page.records:
                mapped.append(adapter.map_record(ctx, raw, page))
        return pages, mapped

    return _run
