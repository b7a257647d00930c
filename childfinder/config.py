"""
Configuration module for the Child Finder front end.

This module uses Pydantic Settings to load and validate environment variables
for the OpenID Connect handshake, nonce storage, session persistence and the
external profile and token services.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SUPPORTED_RESPONSE_TYPES = ("code", "id_token", "code id_token", "id_token code")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Settings are read once at startup and treated as read-only afterwards.
    """

    # =========================================================================
    # Identity Provider (OIDC)
    # =========================================================================

    IDENTITY_METADATA: str = Field(
        ...,
        description="OpenID Connect discovery document URL "
                    "(e.g., https://login.microsoftonline.com/<tenant>/v2.0/.well-known/openid-configuration)",
        min_length=1,
    )

    CLIENT_ID: str = Field(
        ...,
        description="Application (client) ID registered with the identity provider",
        min_length=1,
    )

    CLIENT_SECRET: Optional[str] = Field(
        None,
        description="Client secret used when redeeming authorization codes",
    )

    REDIRECT_URL: str = Field(
        ...,
        description="Callback URL registered with the identity provider (e.g., https://app.example.com/auth/openid/return)",
        min_length=1,
    )

    ALLOW_HTTP_FOR_REDIRECT_URL: bool = Field(
        default=False,
        description="Allow a plain http REDIRECT_URL (development only)",
    )

    RESPONSE_TYPE: str = Field(
        default="code id_token",
        description="OIDC response type: 'code', 'id_token' or 'code id_token'",
    )

    RESPONSE_MODE: Literal["form_post", "query"] = Field(
        default="form_post",
        description="How the provider returns the response: 'form_post' or 'query'",
    )

    VALIDATE_ISSUER: bool = Field(
        default=True,
        description="Reject ID tokens whose issuer is not accepted",
    )

    ISSUER: Optional[str] = Field(
        None,
        description="Comma-separated accepted issuers (defaults to the discovery document issuer)",
    )

    SCOPE: str = Field(
        default="openid profile email",
        description="Requested scopes, space or comma separated ('openid' is always requested)",
    )

    SUBJECT_CLAIM: str = Field(
        default="oid",
        description="ID token claim holding the stable subject identifier",
        min_length=1,
    )

    RESOURCE_URL: Optional[str] = Field(
        None,
        description="Optional resource to request an access token for",
    )

    CLOCK_SKEW: int = Field(
        default=300,
        description="Clock skew tolerance in seconds for ID token time claims",
        ge=0,
        le=3600,
    )

    # =========================================================================
    # Nonce Storage
    # =========================================================================

    NONCE_LIFETIME: int = Field(
        default=3600,
        description="Seconds a login request may stay outstanding",
        ge=1,
    )

    NONCE_MAX_AMOUNT: int = Field(
        default=10,
        description="Maximum outstanding login requests per client",
        ge=1,
        le=50,
    )

    USE_COOKIE_INSTEAD_OF_SESSION: bool = Field(
        default=False,
        description="Store state/nonce in encrypted cookies instead of the session",
    )

    COOKIE_ENCRYPTION_KEYS: Optional[str] = Field(
        None,
        description="Comma-separated 32-character keys for nonce cookie encryption (first key encrypts)",
    )

    COOKIE_SECURE: bool = Field(
        default=True,
        description="Mark session and nonce cookies Secure",
    )

    # =========================================================================
    # Session Store
    # =========================================================================

    SESSION_STORE: Literal["transient", "durable"] = Field(
        default="transient",
        description="Session backend: 'transient' (in-process) or 'durable' (Redis)",
    )

    DATABASE_URI: str = Field(
        default="redis://localhost:6379/0",
        description="Durable session store location",
    )

    SESSION_MAX_AGE: int = Field(
        default=86400,
        description="Durable session lifetime and cookie max-age in seconds",
        ge=60,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="childfinder.sid",
        description="Name of the session cookie",
        min_length=1,
    )

    DESTROY_SESSION_URL: str = Field(
        default="/",
        description="Where to send the browser after logout",
    )

    FAILURE_REDIRECT_URL: str = Field(
        default="/",
        description="Where to send the browser when the handshake fails",
    )

    # =========================================================================
    # External Services
    # =========================================================================

    TOKEN_SERVICE_URL: str = Field(
        ...,
        description="Token service base URL (verifies access tokens, sends notifications)",
        min_length=1,
    )

    PROFILE_SERVICE_URL: str = Field(
        ...,
        description="Profile/document service base URL",
        min_length=1,
    )

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for outbound HTTP calls",
        gt=0,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the provider signing keys in seconds",
        ge=0,
        le=86400,
    )

    METADATA_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the discovery document in seconds",
        ge=0,
        le=86400,
    )

    # =========================================================================
    # Server
    # =========================================================================

    HOST: str = Field(default="0.0.0.0", description="Host to bind the server")

    PORT: int = Field(default=3000, description="Port to bind the server", ge=1, le=65535)

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def response_types(self) -> List[str]:
        """RESPONSE_TYPE split into its parts (e.g. ['code', 'id_token'])."""
        return self.RESPONSE_TYPE.split()

    @property
    def scope_list(self) -> List[str]:
        """
        Requested scopes with 'openid' first and duplicates removed.
        """
        scopes = ["openid"]
        for scope in self.SCOPE.replace(",", " ").split():
            if scope not in scopes:
                scopes.append(scope)
        return scopes

    @property
    def issuer_list(self) -> List[str]:
        if not self.ISSUER:
            return []
        return [issuer.strip() for issuer in self.ISSUER.split(",") if issuer.strip()]

    @property
    def cookie_encryption_keys(self) -> List[bytes]:
        if not self.COOKIE_ENCRYPTION_KEYS:
            return []
        return [
            key.strip().encode("utf-8")
            for key in self.COOKIE_ENCRYPTION_KEYS.split(",")
            if key.strip()
        ]

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def cookie_samesite(self) -> str:
        # SameSite=None requires Secure
        return "none" if self.COOKIE_SECURE else "lax"

    @property
    def durable_sessions(self) -> bool:
        return self.SESSION_STORE == "durable"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("RESPONSE_TYPE")
    @classmethod
    def validate_response_type(cls, v: str) -> str:
        """
        Validate the OIDC response type.

        Raises:
            ValueError: If the response type is not supported
        """
        normalized = " ".join(v.split())
        if normalized not in SUPPORTED_RESPONSE_TYPES:
            raise ValueError(
                f"RESPONSE_TYPE must be one of {list(SUPPORTED_RESPONSE_TYPES)}, got: {v}"
            )
        return normalized

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return level

    @model_validator(mode="after")
    def validate_handshake_settings(self) -> "Settings":
        """
        Cross-field checks for the handshake configuration.

        Raises:
            ValueError: On an unusable combination of settings
        """
        if "id_token" in self.response_types and self.RESPONSE_MODE != "form_post":
            raise ValueError(
                "RESPONSE_MODE must be 'form_post' when RESPONSE_TYPE contains 'id_token'"
            )

        if not self.REDIRECT_URL.startswith("https://"):
            if not (self.ALLOW_HTTP_FOR_REDIRECT_URL and self.REDIRECT_URL.startswith("http://")):
                raise ValueError(
                    f"Invalid REDIRECT_URL: {self.REDIRECT_URL}. "
                    "Expected an https URL (set ALLOW_HTTP_FOR_REDIRECT_URL for http)"
                )

        if self.USE_COOKIE_INSTEAD_OF_SESSION:
            keys = self.cookie_encryption_keys
            if not keys:
                raise ValueError(
                    "COOKIE_ENCRYPTION_KEYS is required when USE_COOKIE_INSTEAD_OF_SESSION is set"
                )
            for key in keys:
                if len(key) != 32:
                    raise ValueError("Each COOKIE_ENCRYPTION_KEYS entry must be 32 characters")

        return self


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Cached so that the settings are loaded only once during the application
    lifecycle.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Inspect settings and return a status report with warnings.

    Called during application startup; warnings are logged, never fatal.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> for warning in status["warnings"]:
        ...     print(warning)
    """
    warnings = []

    if not settings.durable_sessions:
        warnings.append("Transient session store selected; sessions are lost on restart")

    if "code" in settings.response_types and not settings.CLIENT_SECRET:
        warnings.append("CLIENT_SECRET is not set but RESPONSE_TYPE redeems an authorization code")

    if not settings.VALIDATE_ISSUER:
        warnings.append("Issuer validation is disabled")

    if settings.REDIRECT_URL.startswith("http://"):
        warnings.append("REDIRECT_URL uses plain http")

    if not settings.COOKIE_SECURE:
        warnings.append("Cookies are not marked Secure")

    return {
        "warnings": warnings,
        "session_store": settings.SESSION_STORE,
        "nonce_storage": "cookie" if settings.USE_COOKIE_INSTEAD_OF_SESSION else "session",
    }
