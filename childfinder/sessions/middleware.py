"""
Session Middleware
==================

Binds the session cookie to a server-side Session for each request.

Per request:
    1. Load the session named by the cookie (if any) into request.state.session
    2. Run the route
    3. Save the session and (re)set the cookie if the route modified it, or
       delete the cookie if the route destroyed the session

Routes use get_session / ensure_session / regenerate_session / destroy_session
rather than touching request.state directly. The store is read from
app.state.session_store.
"""

import logging
import secrets
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..errors import SessionStoreUnavailable
from ..models import ErrorResponse
from .store import Session, SessionStore

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def _store(request: Request) -> SessionStore:
    return request.app.state.session_store


def _unavailable_response() -> JSONResponse:
    body = ErrorResponse(
        error="session_store_unavailable",
        message="Session storage is temporarily unavailable",
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(mode="json"),
    )


# ============================================================================
# Request Helpers
# ============================================================================

def get_session(request: Request) -> Optional[Session]:
    """Return the session bound to this request, or None."""
    return getattr(request.state, "session", None)


async def ensure_session(request: Request) -> Session:
    """
    Return the request's session, creating one if the request has none.

    Raises:
        SessionStoreUnavailable: If the durable backend cannot be reached
    """
    session = get_session(request)
    if session is None:
        session = await _store(request).create(new_session_id())
        session.modified = True
        request.state.session = session
        request.state.session_destroyed = False
    return session


async def regenerate_session(request: Request) -> Session:
    """
    Move the request's session data to a fresh session id.

    The previous session is destroyed in the store, so its cookie value no
    longer resolves. Called when a session gains privileges (login).

    Raises:
        SessionStoreUnavailable: If the durable backend cannot be reached
    """
    store = _store(request)
    previous = get_session(request)

    session = await store.create(new_session_id())
    if previous is not None:
        session.data = dict(previous.data)
        await store.destroy(previous.session_id)

    session.modified = True
    request.state.session = session
    request.state.session_destroyed = False
    return session


async def destroy_session(request: Request) -> None:
    """
    Destroy the request's session in the store and clear the cookie.

    Raises:
        SessionStoreUnavailable: If the durable backend cannot be reached
    """
    session = get_session(request)
    if session is not None:
        await _store(request).destroy(session.session_id)
        logger.info("Session destroyed")
    request.state.session = None
    request.state.session_destroyed = True


# ============================================================================
# Middleware
# ============================================================================

class SessionMiddleware(BaseHTTPMiddleware):
    """Load and persist server-side sessions keyed by an opaque cookie."""

    def __init__(
        self,
        app,
        cookie_name: str,
        max_age: Optional[int] = None,
        secure: bool = True,
        samesite: str = "lax",
    ):
        super().__init__(app)
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure
        self.samesite = samesite

    async def dispatch(self, request: Request, call_next) -> Response:
        store = _store(request)
        session_id = request.cookies.get(self.cookie_name)

        session = None
        if session_id:
            try:
                session = await store.load(session_id)
            except SessionStoreUnavailable:
                logger.error(
                    "Session load failed",
                    extra={"path": request.url.path, "method": request.method}
                )
                return _unavailable_response()

        request.state.session = session
        request.state.session_destroyed = False

        response = await call_next(request)

        if request.state.session_destroyed:
            response.delete_cookie(
                self.cookie_name,
                path="/",
                secure=self.secure,
                httponly=True,
                samesite=self.samesite,
            )
            return response

        session = get_session(request)
        if session is not None and session.modified:
            try:
                await store.save(session)
            except SessionStoreUnavailable:
                logger.error(
                    "Session save failed",
                    extra={"path": request.url.path, "method": request.method}
                )
                return _unavailable_response()

            response.set_cookie(
                self.cookie_name,
                session.session_id,
                max_age=self.max_age,
                path="/",
                secure=self.secure,
                httponly=True,
                samesite=self.samesite,
            )

        return response
