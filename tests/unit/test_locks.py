"""Unit tests for per-session locks."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from src.core.config import Settings
from src.core.exceptions import SessionBusyError
from src.memory import RedisSessionLockManager, SessionLockManager, build_lock_manager
from src.memory.locks import session_lock_key


class TestSessionLockKey:
    """Test cases for lock keys."""

    def test_key_per_project_and_topic(self):
        """Test that keys identify one conversation."""
        assert session_lock_key(1, "highlight_ordering") == "1:highlight_ordering"
        assert session_lock_key(1, "a") != session_lock_key(2, "a")


@pytest.mark.asyncio
class TestSessionLockManager:
    """Test cases for the process-local lock manager."""

    async def test_same_key_is_serialized(self):
        """Test that holders of one key never overlap."""
        manager = SessionLockManager()
        events = []

        async def turn(name: str) -> None:
            async with manager.acquire("1:topic"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(turn("first"), turn("second"))

        assert events == ["first-start", "first-end", "second-start", "second-end"]

    async def test_different_keys_run_in_parallel(self):
        """Test that different conversations do not wait for each other."""
        manager = SessionLockManager()
        inside = asyncio.Event()
        release = asyncio.Event()

        async def holder() -> None:
            async with manager.acquire("1:a"):
                inside.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await inside.wait()

        async with manager.acquire("1:b"):
            assert manager.is_locked("1:a")

        release.set()
        await task

    async def test_locks_are_dropped_when_unused(self):
        """Test that idle keys do not accumulate."""
        manager = SessionLockManager()

        async with manager.acquire("1:a"):
            assert manager.active_keys == 1

        assert manager.active_keys == 0
        assert manager.is_locked("1:a") is False

    async def test_lock_released_on_error(self):
        """Test that a failing turn releases its lock."""
        manager = SessionLockManager()

        with pytest.raises(RuntimeError):
            async with manager.acquire("1:a"):
                raise RuntimeError("boom")

        assert manager.active_keys == 0


@pytest.mark.asyncio
class TestRedisSessionLockManager:
    """Test cases for the Redis backed lock manager."""

    async def test_acquire_requires_connection(self):
        """Test that an unconnected manager refuses to lock."""
        manager = RedisSessionLockManager(Settings())

        with pytest.raises(SessionBusyError):
            async with manager.acquire("1:a"):
                pass

    @patch("src.memory.locks.Lock")
    async def test_acquire_and_release(self, mock_lock_class):
        """Test that the Redis lock is taken and released around the block."""
        lock = mock_lock_class.return_value
        lock.acquire = AsyncMock(return_value=True)
        lock.release = AsyncMock()
        manager = RedisSessionLockManager(Settings())
        manager.redis_client = AsyncMock()

        async with manager.acquire("1:a"):
            lock.release.assert_not_called()

        assert mock_lock_class.call_args.args[1] == "lock:chat_session:1:a"
        lock.acquire.assert_awaited_once()
        lock.release.assert_awaited_once()

    @patch("src.memory.locks.Lock")
    async def test_busy_session(self, mock_lock_class):
        """Test that an unavailable lock reports a busy session."""
        lock = mock_lock_class.return_value
        lock.acquire = AsyncMock(return_value=False)
        manager = RedisSessionLockManager(Settings())
        manager.redis_client = AsyncMock()

        with pytest.raises(SessionBusyError):
            async with manager.acquire("1:a"):
                pass


class TestBuildLockManager:
    """Test cases for the lock manager factory."""

    def test_local_backend(self):
        """Test the default backend."""
        manager = build_lock_manager(Settings(lock_backend="local"))
        assert type(manager) is SessionLockManager

    def test_redis_backend(self):
        """Test the Redis backend."""
        manager = build_lock_manager(Settings(lock_backend="redis"))
        assert isinstance(manager, RedisSessionLockManager)
