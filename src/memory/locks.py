"""Per-session exclusive locks.

Turns of the same (project, topic) conversation run one at a time; turns of
different conversations do not wait for each other.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockError, RedisError

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import SessionBusyError

logger = logging.getLogger(__name__)


def session_lock_key(project_id: int, topic_id: str) -> str:
    """Lock key of a (project, topic) conversation."""
    return f"{project_id}:{topic_id}"


class SessionLockManager:
    """Keyed map of asyncio locks for a single process.

    Waiters on one key are served in arrival order. A key's lock is dropped
    once nobody holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @property
    def active_keys(self) -> int:
        return len(self._locks)

    async def connect(self) -> None:
        """Nothing to connect for process-local locks."""

    async def disconnect(self) -> None:
        """Nothing to release for process-local locks."""


class RedisSessionLockManager(SessionLockManager):
    """Session locks shared between processes through Redis."""

    def __init__(self, settings: Settings | None = None) -> None:
        super().__init__()
        self.settings = settings or default_settings
        self.redis_client: redis.Redis | None = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        try:
            self.redis_client = redis.from_url(
                self.settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await self.redis_client.ping()
            logger.info("Connected to Redis for session locks")
        except (RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            raise SessionBusyError(f"Redis connection failed: {str(e)}") from e

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.close()
            self.redis_client = None
            logger.info("Disconnected from Redis")

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        if self.redis_client is None:
            raise SessionBusyError("Redis client not connected")

        lock = Lock(
            self.redis_client,
            f"lock:chat_session:{key}",
            timeout=self.settings.session_lock_timeout,
            blocking_timeout=self.settings.session_lock_blocking_timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            logger.warning(f"Session {key} is busy, lock not acquired")
            raise SessionBusyError(f"Session {key} is busy, try again shortly")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lock expired while the turn was running
                logger.warning(f"Session lock {key} was already released: {e}")


def build_lock_manager(settings: Settings | None = None) -> SessionLockManager:
    """Lock manager for the configured backend."""
    settings = settings or default_settings
    if settings.lock_backend == "redis":
        return RedisSessionLockManager(settings)
    return SessionLockManager()
