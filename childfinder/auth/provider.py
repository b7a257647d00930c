"""
Identity Provider Client
========================

Drives the OpenID Connect handshake with the external identity provider as
two operations over read-only configuration:

    initiate  - store a state/nonce pair and build the authorization URL
    complete  - validate the provider's response and return the profile

Provider endpoints come from the discovery document (IDENTITY_METADATA).
Discovery metadata and signing keys are cached per client instance.

Supported response types: 'id_token', 'code', and the hybrid 'code id_token'.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlencode

import httpx
from fastapi import Request
from starlette.responses import Response

from ..config import Settings
from ..errors import ProtocolValidationFailure, ProviderUnavailable
from ..models import IdentityProfile
from .nonce import NonceStore
from .utils import (
    build_identity_profile,
    decode_id_token,
    get_signing_key,
    get_token_kid,
    validate_nonce,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderMetadata:
    """Subset of the discovery document used by the handshake."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str


class IdentityProviderClient:
    """OpenID Connect relying party for one configured provider."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        nonce_store: NonceStore,
    ):
        self.settings = settings
        self.http_client = http_client
        self.nonce_store = nonce_store

        self._metadata: Optional[ProviderMetadata] = None
        self._metadata_time: float = 0.0
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_time: float = 0.0

    # =========================================================================
    # Provider Documents
    # =========================================================================

    async def _fetch_json(self, url: str, *, purpose: str) -> Mapping[str, Any]:
        try:
            response = await self.http_client.get(
                url,
                headers={"Accept": "application/json"},
                timeout=self.settings.HTTP_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Unable to contact identity provider during {purpose}: {e}") from e
        except ValueError as e:
            raise ProtocolValidationFailure(f"Identity provider returned invalid JSON during {purpose}") from e

        if not isinstance(data, Mapping):
            raise ProtocolValidationFailure(f"Identity provider returned invalid JSON during {purpose}")
        return data

    async def get_metadata(self) -> ProviderMetadata:
        """
        Fetch the discovery document, cached for METADATA_CACHE_SECONDS.

        Raises:
            ProviderUnavailable: If the document cannot be fetched
            ProtocolValidationFailure: If the document is incomplete
        """
        now = time.time()
        if self._metadata and (now - self._metadata_time) < self.settings.METADATA_CACHE_SECONDS:
            return self._metadata

        data = await self._fetch_json(self.settings.IDENTITY_METADATA, purpose="discovery")

        try:
            metadata = ProviderMetadata(
                issuer=str(data["issuer"]),
                authorization_endpoint=str(data["authorization_endpoint"]),
                token_endpoint=str(data["token_endpoint"]),
                jwks_uri=str(data["jwks_uri"]),
            )
        except KeyError as e:
            raise ProtocolValidationFailure(f"Incomplete discovery document: missing {e}") from e

        self._metadata = metadata
        self._metadata_time = now
        return metadata

    async def get_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the provider's signing keys, cached for JWKS_CACHE_SECONDS.

        Args:
            force_refresh: If True, bypass cache and fetch fresh JWKS
        """
        now = time.time()
        if not force_refresh and self._jwks and (now - self._jwks_time) < self.settings.JWKS_CACHE_SECONDS:
            return self._jwks

        metadata = await self.get_metadata()
        jwks = dict(await self._fetch_json(metadata.jwks_uri, purpose="key retrieval"))

        if "keys" not in jwks:
            raise ProtocolValidationFailure("Invalid JWKS response: missing 'keys' field")

        self._jwks = jwks
        self._jwks_time = now
        return jwks

    async def _accepted_issuers(self) -> Optional[List[str]]:
        if not self.settings.VALIDATE_ISSUER:
            return None

        issuers = self.settings.issuer_list
        if issuers:
            return issuers

        metadata = await self.get_metadata()
        if "{tenantid}" in metadata.issuer:
            # Multi-tenant metadata has no concrete issuer to compare against
            raise ProtocolValidationFailure(
                "VALIDATE_ISSUER requires ISSUER when using multi-tenant metadata"
            )
        return [metadata.issuer]

    # =========================================================================
    # Initiate
    # =========================================================================

    async def initiate(self, request: Request, response: Response) -> str:
        """
        Start a login: remember a fresh state/nonce pair and build the
        provider authorization URL.

        Args:
            request: Incoming request (session-based nonce storage)
            response: Outgoing response (cookie-based nonce storage)

        Returns:
            Authorization URL to redirect the browser to

        Raises:
            ProviderUnavailable: If the discovery document cannot be fetched
        """
        metadata = await self.get_metadata()

        state = secrets.token_urlsafe(32)
        nonce = secrets.token_urlsafe(32)
        await self.nonce_store.add(request, response, state, nonce)

        params = {
            "client_id": self.settings.CLIENT_ID,
            "response_type": self.settings.RESPONSE_TYPE,
            "response_mode": self.settings.RESPONSE_MODE,
            "redirect_uri": self.settings.REDIRECT_URL,
            "scope": " ".join(self.settings.scope_list),
            "state": state,
            "nonce": nonce,
        }
        if self.settings.RESOURCE_URL:
            params["resource"] = self.settings.RESOURCE_URL

        separator = "&" if "?" in metadata.authorization_endpoint else "?"
        return f"{metadata.authorization_endpoint}{separator}{urlencode(params)}"

    # =========================================================================
    # Complete
    # =========================================================================

    async def complete(
        self,
        request: Request,
        response: Response,
        params: Mapping[str, str],
    ) -> IdentityProfile:
        """
        Validate the provider's callback and return the user's profile.

        Args:
            request: Incoming callback request
            response: Outgoing response (cookie-based nonce storage)
            params: Query (GET) or form (POST) parameters of the callback

        Returns:
            Profile built from the verified ID token

        Raises:
            ProtocolValidationFailure: On provider error, unknown state,
                                       or an invalid ID token
            MissingSubjectIdentifier: If the ID token has no subject id
            ProviderUnavailable: If the provider cannot be reached
        """
        error = params.get("error")
        if error:
            description = params.get("error_description") or error
            raise ProtocolValidationFailure(f"Identity provider returned an error: {description}")

        state = params.get("state")
        if not state:
            raise ProtocolValidationFailure("Missing state parameter")

        nonce = await self.nonce_store.consume(request, response, state)
        if nonce is None:
            raise ProtocolValidationFailure("Unknown, expired or already used state")

        response_types = self.settings.response_types
        claims: Optional[Dict[str, Any]] = None

        if "id_token" in response_types:
            id_token = params.get("id_token")
            if not id_token:
                raise ProtocolValidationFailure("Missing id_token in provider response")
            claims = await self.verify_id_token(id_token, nonce)

        if "code" in response_types:
            code = params.get("code")
            if not code:
                raise ProtocolValidationFailure("Missing code in provider response")
            tokens = await self.redeem_code(code)
            redeemed_id_token = tokens.get("id_token")

            if claims is None:
                if not redeemed_id_token:
                    raise ProtocolValidationFailure("Token response missing id_token")
                claims = await self.verify_id_token(redeemed_id_token, nonce)
            elif redeemed_id_token:
                redeemed = await self.verify_id_token(redeemed_id_token, None)
                if redeemed.get("sub") != claims.get("sub"):
                    raise ProtocolValidationFailure("Subject mismatch between front-channel and redeemed ID tokens")

        return build_identity_profile(claims, self.settings.SUBJECT_CLAIM)

    async def verify_id_token(self, id_token: str, expected_nonce: Optional[str]) -> Dict[str, Any]:
        """
        Verify an ID token against the provider's keys and configuration.

        Args:
            id_token: Encoded ID token
            expected_nonce: Nonce stored at login, or None to skip the check
                            (ID tokens redeemed from the token endpoint)
        """
        kid = get_token_kid(id_token)

        jwks = await self.get_jwks()
        signing_key = get_signing_key(kid, jwks)
        if not signing_key:
            # Try refreshing JWKS in case keys were rotated
            jwks = await self.get_jwks(force_refresh=True)
            signing_key = get_signing_key(kid, jwks)

            if not signing_key:
                raise ProtocolValidationFailure("Unable to find matching signing key in JWKS")

        claims = decode_id_token(
            id_token,
            signing_key,
            client_id=self.settings.CLIENT_ID,
            issuers=await self._accepted_issuers(),
            leeway=self.settings.CLOCK_SKEW,
        )

        if expected_nonce is not None and not validate_nonce(claims, expected_nonce):
            raise ProtocolValidationFailure("Nonce mismatch")

        return claims

    async def redeem_code(self, code: str) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Raises:
            ProviderUnavailable: If the token endpoint cannot be reached
            ProtocolValidationFailure: If the provider rejects the code
        """
        metadata = await self.get_metadata()

        payload = {
            "client_id": self.settings.CLIENT_ID,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.REDIRECT_URL,
            "scope": " ".join(self.settings.scope_list),
        }
        if self.settings.CLIENT_SECRET:
            payload["client_secret"] = self.settings.CLIENT_SECRET
        if self.settings.RESOURCE_URL:
            payload["resource"] = self.settings.RESOURCE_URL

        try:
            response = await self.http_client.post(
                metadata.token_endpoint,
                data=payload,
                headers={"Accept": "application/json"},
                timeout=self.settings.HTTP_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Token redemption failed: {e}") from e

        try:
            token_data = response.json()
        except ValueError:
            token_data = {}
        if not isinstance(token_data, dict):
            token_data = {}

        if not response.is_success:
            error_msg = token_data.get("error_description") or token_data.get("error") or response.status_code
            raise ProtocolValidationFailure(f"Token redemption failed: {error_msg}")

        return token_data
