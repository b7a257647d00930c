"""
Data Models Module

Pydantic models shared across the service:
- Identity models (profile asserted by the provider, registered user record)
- System models (health, error envelopes)
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Identity Models
# ============================================================================

class IdentityProfile(BaseModel):
    """Profile extracted from a verified ID token."""
    subject_id: str = Field(..., description="Stable subject identifier asserted by the provider")
    display_name: Optional[str] = Field(None, description="User display name")
    email: Optional[str] = Field(None, description="User email address, if asserted")
    claims: Dict[str, Any] = Field(default_factory=dict, description="All verified ID token claims")


class UserRecord(BaseModel):
    """User registered in the directory on first successful login."""
    subject_id: str = Field(..., description="Unique subject identifier")
    display_name: Optional[str] = Field(None, description="User display name")
    email: Optional[str] = Field(None, description="User email address")
    claims: Dict[str, Any] = Field(default_factory=dict, description="Claims captured at registration")
    registered_at: datetime = Field(default_factory=_utcnow, description="Registration timestamp")

    @classmethod
    def from_profile(cls, profile: IdentityProfile) -> "UserRecord":
        return cls(
            subject_id=profile.subject_id,
            display_name=profile.display_name,
            email=profile.email,
            claims=dict(profile.claims),
        )


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    session_store: str = Field(..., description="Selected session backend")


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
