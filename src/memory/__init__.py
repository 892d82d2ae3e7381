"""Conversation memory for the chat orchestration core.

This package holds the session stores (in-memory and PostgreSQL), the
per-session locks and the context window builder that keeps model input
inside its token budget.
"""

from .base import SessionStore
from .in_memory import InMemorySessionStore
from .locks import RedisSessionLockManager, SessionLockManager, build_lock_manager

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "SessionLockManager",
    "RedisSessionLockManager",
    "build_lock_manager",
]
