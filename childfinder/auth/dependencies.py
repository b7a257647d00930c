"""
Access control dependencies.

Two FastAPI dependencies guard protected routes:

    ensure_authenticated            session only
    ensure_authenticated_or_token   bearer token first, session as fallback

Denial raises AuthenticationRequired, which the application turns into a
redirect to /login. API routes are redirected too rather than answered with
an error body.

Decision for ensure_authenticated_or_token:

    start -> token present? -- no --------------------------> check session
                   | yes                                           |
                 verify -- rejected / service error -----------> check session
                   | verified                                      |
                 allow                               valid: allow | invalid: deny
"""

import logging
from typing import Optional

from fastapi import Path, Query, Request

from ..errors import AuthenticationRequired, TokenVerificationFailure
from ..models import UserRecord
from ..sessions import get_session

logger = logging.getLogger(__name__)

SESSION_SUBJECT_KEY = "subject_id"


async def resolve_user(request: Request) -> Optional[UserRecord]:
    """
    Resolve the request's session to a registered user.

    Returns:
        The user bound to the session, or None when there is no session,
        the session is anonymous, or the subject is not registered

    Raises:
        DirectoryError: If the directory lookup fails
    """
    session = get_session(request)
    if session is None:
        return None

    subject_id = session.get(SESSION_SUBJECT_KEY)
    if not subject_id:
        return None

    return await request.app.state.directory.find_by_subject_id(subject_id)


async def ensure_authenticated(request: Request) -> UserRecord:
    """
    Require a session bound to a registered user.

    Raises:
        AuthenticationRequired: If the request is not authenticated
    """
    user = await resolve_user(request)
    if user is None:
        raise AuthenticationRequired()
    return user


async def ensure_authenticated_or_token(
    request: Request,
    profile_id: str = Path(..., description="Resource id checked against the token"),
    access_token: Optional[str] = Query(None, description="Bearer token for the resource"),
) -> Optional[UserRecord]:
    """
    Allow a valid bearer token for the resource, otherwise require a session.

    A failed token check is never terminal on its own: the request can still
    pass with a valid session.

    Returns:
        None when access was granted by the token, otherwise the session user

    Raises:
        AuthenticationRequired: If neither the token nor the session is valid
    """
    if access_token is not None:
        try:
            await request.app.state.token_verifier.verify(profile_id, access_token)
        except TokenVerificationFailure as e:
            logger.warning(
                f"Error verifying token, falling back to session: {e}",
                extra={"resource_id": profile_id}
            )
        else:
            return None

    return await ensure_authenticated(request)
