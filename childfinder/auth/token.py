"""
Token service client.

The token service is an external collaborator with two responsibilities:
- verify that a bearer token grants access to a resource id
- send notifications (the /api/notify pass-through)

Only its contract is relied upon:
    POST /api/token/verify  {"id": ..., "token": ...}  -> any 2xx means valid
    POST /api/token/send    <notify payload>           -> JSON result
"""

import logging
from typing import Any, Dict

import httpx
from fastapi import HTTPException, status

from ..config import Settings
from ..errors import TokenVerificationFailure

logger = logging.getLogger(__name__)


class TokenServiceClient:
    """Thin async client for the token service."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.base_url = settings.TOKEN_SERVICE_URL.rstrip("/")
        self.timeout = settings.HTTP_TIMEOUT_SECONDS
        self.http_client = http_client

    async def verify(self, resource_id: str, token: str) -> None:
        """
        Verify a bearer token for a resource.

        Transport errors and timeouts are verification failures, never
        a silent success.

        Raises:
            TokenVerificationFailure: If the token is rejected or the
                                      service cannot be consulted
        """
        try:
            response = await self.http_client.post(
                f"{self.base_url}/api/token/verify",
                json={"id": resource_id, "token": token},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TokenVerificationFailure(f"Token service unreachable: {e}") from e

        if not response.is_success:
            raise TokenVerificationFailure(f"Token rejected with status {response.status_code}")

    async def send(self, payload: Dict[str, Any]) -> Any:
        """
        Forward a notification request to the token service.

        Returns:
            JSON body returned by the token service (None if empty)

        Raises:
            HTTPException: 504 on timeout, 503 when unreachable,
                           502 on upstream 5xx, upstream status otherwise
        """
        try:
            response = await self.http_client.post(
                f"{self.base_url}/api/token/send",
                json=payload,
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            logger.error("Token service timeout while sending notification")
            raise HTTPException(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                detail="Notification service timeout - please try again"
            )
        except httpx.HTTPError as e:
            logger.error(f"Token service network error: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Cannot reach notification service"
            )

        if response.status_code >= 500:
            logger.error(f"Token service error while sending notification: {response.status_code}")
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Notification service temporarily unavailable"
            )
        if not response.is_success:
            raise HTTPException(status_code=response.status_code, detail="Notification request rejected")

        return response.json() if response.content else None
