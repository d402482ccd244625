"""
Per-integration mutual exclusion for sync passes and disconnects.

Uses a Redis lock when REDIS_URL is configured so that every worker process
observes the same lock, and a process-local lock set otherwise.
"""
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Set

import redis.asyncio as redis_asyncio

from app.core.config import settings
from app.core.exceptions import SyncInProgressError
from app.core.logging_config import log_debug, log_warning


def sync_lock_key(integration_id) -> str:
    return f"taskfuse:sync-lock:{integration_id}"


class InMemorySyncLock:
    """Process-local lock set. Safe across event loops and threads."""

    def __init__(self):
        self._held: Set[str] = set()
        self._guard = threading.Lock()

    def try_acquire(self, key: str) -> bool:
        with self._guard:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def release(self, key: str) -> None:
        with self._guard:
            self._held.discard(key)

    def is_held(self, key: str) -> bool:
        with self._guard:
            return key in self._held


# Shared by every manager in this process so that per-task managers still
# exclude each other.
_process_locks = InMemorySyncLock()


class SyncLockManager:
    """
    Hands out non-blocking per-integration locks.

    ``hold`` raises ``SyncInProgressError`` when the lock is already taken.
    Redis locks expire after ``timeout_seconds`` so a crashed worker cannot
    block an integration forever.
    """

    def __init__(self, redis_url: Optional[str] = None, timeout_seconds: Optional[int] = None, redis_client=None):
        self._timeout = timeout_seconds or settings.sync_lock_timeout_seconds
        self._redis = redis_client
        self._redis_url = redis_url
        self._local = _process_locks if not (redis_url or redis_client) else None

    def _get_redis(self):
        if self._redis is None:
            self._redis = redis_asyncio.Redis.from_url(self._redis_url)
        return self._redis

    @asynccontextmanager
    async def hold(self, integration_id) -> AsyncIterator[None]:
        key = sync_lock_key(integration_id)

        if self._local is not None:
            if not self._local.try_acquire(key):
                raise SyncInProgressError(f"Sync already in progress for integration {integration_id}")
            try:
                yield
            finally:
                self._local.release(key)
            return

        lock = self._get_redis().lock(key, timeout=self._timeout, blocking=False)
        acquired = await lock.acquire(blocking=False)
        if not acquired:
            raise SyncInProgressError(f"Sync already in progress for integration {integration_id}")
        log_debug("Acquired sync lock", integration_id=str(integration_id))
        try:
            yield
        finally:
            try:
                await lock.release()
            except Exception as exc:
                # Lock expired while the pass was still running
                log_warning(
                    f"Failed to release sync lock: {type(exc).__name__}: {exc}",
                    integration_id=str(integration_id),
                )

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_sync_lock_manager(redis_url: Optional[str] = None) -> SyncLockManager:
    """Build a lock manager for the configured backend."""
    return SyncLockManager(redis_url=redis_url if redis_url is not None else settings.redis_url)
