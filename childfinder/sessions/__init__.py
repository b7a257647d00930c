"""
Sessions Package

Server-side session state keyed by an opaque cookie.

Modules:
- store: Session model, transient (memory) and durable (Redis) backends
- middleware: per-request cookie <-> session binding and request helpers
"""

from .middleware import (
    SessionMiddleware,
    destroy_session,
    ensure_session,
    get_session,
    regenerate_session,
)
from .store import (
    MemorySessionStore,
    RedisSessionStore,
    Session,
    SessionStore,
    create_session_store,
)

__all__ = [
    "Session",
    "SessionStore",
    "MemorySessionStore",
    "RedisSessionStore",
    "create_session_store",
    "SessionMiddleware",
    "get_session",
    "ensure_session",
    "regenerate_session",
    "destroy_session",
]
