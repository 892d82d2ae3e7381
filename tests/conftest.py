"""Shared fixtures for the test suite."""

import pytest

from src.action_plane.functions import InMemoryProjectRepository
from src.core.config import Settings
from src.memory import InMemorySessionStore
from tests.fakes import seeded_repository


@pytest.fixture
def test_settings() -> Settings:
    """Settings without retry pauses."""
    return Settings(execution_retry_wait_seconds=0, turn_timeout_seconds=10)


@pytest.fixture
def repository() -> InMemoryProjectRepository:
    """Project repository seeded with five highlights."""
    return seeded_repository()


@pytest.fixture
def store() -> InMemorySessionStore:
    """Empty in-memory session store."""
    return InMemorySessionStore()
