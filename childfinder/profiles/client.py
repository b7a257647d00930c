"""
Profile service client.

Fetches profile documents from the external profile/document service. The
document shape belongs to that service and is passed through unchanged.
"""

import logging
from typing import Any

import httpx
from fastapi import HTTPException, status

from ..config import Settings

logger = logging.getLogger(__name__)


class ProfileServiceClient:
    """Async client for GET /api/profiles and GET /api/profiles/{id}."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.base_url = settings.PROFILE_SERVICE_URL.rstrip("/")
        self.timeout = httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS)
        self.http_client = http_client

    async def list_profiles(self) -> Any:
        return await self._get("/api/profiles")

    async def get_profile(self, profile_id: str) -> Any:
        return await self._get(f"/api/profiles/{profile_id}")

    async def _get(self, path: str) -> Any:
        """
        GET a JSON document from the profile service.

        Raises:
            HTTPException: 404 when missing, 502 on upstream 5xx,
                           503 when unreachable, 504 on timeout
        """
        try:
            response = await self.http_client.get(
                f"{self.base_url}{path}",
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            logger.error("Profile service request timeout", extra={"path": path})
            raise HTTPException(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                detail="Profile service timeout - please try again"
            )
        except httpx.HTTPError as e:
            logger.error(f"Profile service network error: {e}", extra={"path": path})
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Cannot reach profile service"
            )

        if response.status_code == 200:
            return response.json()

        if response.status_code == 404:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")

        if response.status_code >= 500:
            logger.error(
                f"Profile service error: {response.status_code}",
                extra={"path": path}
            )
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Profile service temporarily unavailable"
            )

        logger.warning(f"Profile service client error: {response.status_code}")
        raise HTTPException(status_code=response.status_code, detail="Profile request failed")
