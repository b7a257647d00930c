"""
Session Stores
==============

Server-side session persistence behind one async contract:

    create(session_id) -> Session
    load(session_id)   -> Session | None
    save(session)
    destroy(session_id)

Backends:
    - MemorySessionStore: transient, in-process; lost on restart, never fails
    - RedisSessionStore:  durable; entries expire after SESSION_MAX_AGE via
                          Redis key expiry. Connectivity failures surface as
                          SessionStoreUnavailable.
"""

import asyncio
import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..config import Settings
from ..errors import SessionStoreUnavailable

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Session state for one cookie. Mutations mark the session modified."""

    session_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    modified: bool = False

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value
        self.modified = True

    def to_document(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "data": self.data,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Session":
        return cls(
            session_id=document["session_id"],
            data=document.get("data") or {},
            created_at=datetime.fromisoformat(document["created_at"]),
        )


class SessionStore(Protocol):
    async def create(self, session_id: str) -> Session: ...

    async def load(self, session_id: str) -> Optional[Session]: ...

    async def save(self, session: Session) -> None: ...

    async def destroy(self, session_id: str) -> None: ...

    async def close(self) -> None: ...


# ============================================================================
# Transient Backend
# ============================================================================

class MemorySessionStore:
    """
    In-process session store.

    Copies are stored and handed out so that request-local mutations only
    become visible once the session is saved.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def create(self, session_id: str) -> Session:
        session = Session(session_id=session_id)
        async with self._lock:
            self._sessions[session_id] = copy.deepcopy(session)
        return session

    async def load(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            stored = self._sessions.get(session_id)
            if stored is None:
                return None
            return copy.deepcopy(stored)

    async def save(self, session: Session) -> None:
        stored = copy.deepcopy(session)
        stored.modified = False
        async with self._lock:
            self._sessions[session.session_id] = stored

    async def destroy(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)

    async def close(self) -> None:
        async with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)


# ============================================================================
# Durable Backend
# ============================================================================

class RedisSessionStore:
    """
    Redis-backed session store.

    Each session is a JSON document under ``sess:<id>`` written with a TTL of
    ``max_age`` seconds; Redis drops expired sessions on its own.
    """

    KEY_PREFIX = "sess:"

    def __init__(self, client: aioredis.Redis, max_age: int):
        self.client = client
        self.max_age = max_age

    @classmethod
    def from_url(cls, url: str, max_age: int, *, socket_timeout: float = 5.0) -> "RedisSessionStore":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, max_age)

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    async def create(self, session_id: str) -> Session:
        # Nothing is written until the session is saved.
        return Session(session_id=session_id)

    async def load(self, session_id: str) -> Optional[Session]:
        try:
            raw = await self.client.get(self._key(session_id))
        except RedisError as e:
            logger.error(f"Session store read failed: {e}")
            raise SessionStoreUnavailable("Session store is unavailable") from e

        if raw is None:
            return None

        try:
            return Session.from_document(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable session document", extra={"session_id": session_id})
            return None

    async def save(self, session: Session) -> None:
        document = json.dumps(session.to_document())
        try:
            await self.client.set(self._key(session.session_id), document, ex=self.max_age)
        except RedisError as e:
            logger.error(f"Session store write failed: {e}")
            raise SessionStoreUnavailable("Session store is unavailable") from e
        session.modified = False

    async def destroy(self, session_id: str) -> None:
        try:
            await self.client.delete(self._key(session_id))
        except RedisError as e:
            logger.error(f"Session store delete failed: {e}")
            raise SessionStoreUnavailable("Session store is unavailable") from e

    async def close(self) -> None:
        await self.client.aclose()


def create_session_store(settings: Settings) -> SessionStore:
    """
    Select the session backend once at startup.

    Args:
        settings: Application settings (SESSION_STORE, DATABASE_URI, SESSION_MAX_AGE)

    Returns:
        RedisSessionStore for 'durable', MemorySessionStore otherwise
    """
    if settings.durable_sessions:
        logger.info("Using durable session store", extra={"max_age": settings.SESSION_MAX_AGE})
        return RedisSessionStore.from_url(
            settings.DATABASE_URI,
            settings.SESSION_MAX_AGE,
            socket_timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    logger.info("Using transient in-memory session store")
    return MemorySessionStore()
