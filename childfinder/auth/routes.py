"""
Authentication routes for OIDC login, callback and logout.

Every handshake outcome is a redirect: to the provider on login, to / on a
successful callback, and to FAILURE_REDIRECT_URL on any failure. Provider
errors are never rendered to the user.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Request, status
from fastapi.responses import RedirectResponse

from ..errors import AuthenticationError, DirectoryError
from ..sessions import destroy_session, regenerate_session
from .dependencies import SESSION_SUBJECT_KEY


logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    tags=["authentication"],
)


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login", response_class=RedirectResponse)
async def login(request: Request):
    """
    Initiate OIDC login by redirecting to the identity provider.

    This endpoint:
    1. Generates state and nonce parameters
    2. Stores them (session or encrypted cookie) for callback validation
    3. Redirects the browser to the provider's authorization endpoint

    No session is required to reach this endpoint.
    """
    settings = request.app.state.settings
    provider = request.app.state.identity_provider

    response = _redirect(settings.FAILURE_REDIRECT_URL)
    try:
        authorization_url = await provider.initiate(request, response)
    except AuthenticationError as e:
        logger.error(f"Unable to start login: {e}")
        return response

    response.headers["location"] = authorization_url
    logger.info("Login was called, redirecting to identity provider")
    return response


# =============================================================================
# Callback Endpoint
# =============================================================================

async def _complete_login(request: Request, params: Dict[str, str]) -> RedirectResponse:
    """
    Validate the provider response, register the user and bind the session.

    On any failure no session binding is made and no user is registered.
    """
    settings = request.app.state.settings
    provider = request.app.state.identity_provider
    directory = request.app.state.directory

    response = _redirect("/")
    try:
        profile = await provider.complete(request, response, params)
        user = await directory.find_or_register(profile)
    except (AuthenticationError, DirectoryError) as e:
        logger.warning(
            f"Authentication failed: {e}",
            extra={"reason": type(e).__name__}
        )
        response.headers["location"] = settings.FAILURE_REDIRECT_URL
        return response

    session = await regenerate_session(request)
    session.set(SESSION_SUBJECT_KEY, user.subject_id)

    logger.info(
        "We received a return from the identity provider",
        extra={"subject_id": user.subject_id}
    )
    return response


@auth_router.get("/auth/openid/return", response_class=RedirectResponse)
async def openid_return_get(request: Request):
    """Handle a provider callback delivered as query parameters."""
    return await _complete_login(request, dict(request.query_params))


@auth_router.post("/auth/openid/return", response_class=RedirectResponse)
async def openid_return_post(request: Request):
    """Handle a provider callback delivered with response_mode=form_post."""
    params = dict(request.query_params)
    form = await request.form()
    params.update({key: value for key, value in form.items() if isinstance(value, str)})
    return await _complete_login(request, params)


# =============================================================================
# Logout Endpoint
# =============================================================================

@auth_router.get("/logout", response_class=RedirectResponse)
async def logout(request: Request):
    """Destroy the session and redirect to the post-logout location."""
    settings = request.app.state.settings
    await destroy_session(request)
    return _redirect(settings.DESTROY_SESSION_URL)
