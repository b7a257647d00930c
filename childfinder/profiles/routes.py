"""
Profile Routes
==============

Protected routes over the profile service and the notification sender.

Endpoints:
----------
- GET /profile/{id}:      profile document (session or bearer token for that id)
- GET /api/profiles:      profile list (session)
- PUT/POST /api/notify:   forward a notification request (session)
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request

from ..auth.dependencies import ensure_authenticated, ensure_authenticated_or_token
from ..models import UserRecord

logger = logging.getLogger(__name__)

profiles_router = APIRouter(tags=["profiles"])


@profiles_router.get("/profile/{profile_id}")
async def show_profile(
    request: Request,
    profile_id: str,
    user: Optional[UserRecord] = Depends(ensure_authenticated_or_token),
):
    """Return one profile document; the token path leaves `user` as None."""
    logger.info(
        "Showing profile",
        extra={"profile_id": profile_id, "via": "session" if user else "token"}
    )
    return await request.app.state.profile_client.get_profile(profile_id)


@profiles_router.get("/api/profiles")
async def list_profiles(
    request: Request,
    user: UserRecord = Depends(ensure_authenticated),
):
    return await request.app.state.profile_client.list_profiles()


@profiles_router.api_route("/api/notify", methods=["PUT", "POST"])
async def notify(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    user: UserRecord = Depends(ensure_authenticated),
):
    """Forward the JSON body to the notification sender unchanged."""
    logger.info("Forwarding notification request", extra={"subject_id": user.subject_id})
    return await request.app.state.token_verifier.send(payload)
