"""
ID token utilities.

This module handles:
- Selecting the signing key for an ID token from a JWKS document
- Verifying ID token signature and standard claims
- Extracting profile information from verified claims
"""

from typing import Any, Dict, List, Optional

from jose import jwk, jwt, JWTError

from ..errors import MissingSubjectIdentifier, ProtocolValidationFailure
from ..models import IdentityProfile


# =============================================================================
# Signature Verification
# =============================================================================

def get_token_kid(token: str) -> Optional[str]:
    """
    Read the key id from an unverified token header.

    Raises:
        ProtocolValidationFailure: If the token header is malformed
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise ProtocolValidationFailure(f"Failed to decode token header: {e}") from e
    return unverified_header.get("kid")


def get_signing_key(kid: Optional[str], jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Find the key in a JWKS document that matches a token's kid.

    A key set with a single key matches a token without kid.

    Returns:
        Matching key from JWKS, or None if not found
    """
    keys = jwks.get("keys", [])
    if kid is None:
        return keys[0] if len(keys) == 1 else None

    for key in keys:
        if key.get("kid") == kid:
            return key

    return None


def decode_id_token(
    id_token: str,
    signing_key: Dict[str, Any],
    *,
    client_id: str,
    issuers: Optional[List[str]] = None,
    leeway: int = 0,
) -> Dict[str, Any]:
    """
    Verify and decode an ID token.

    Validates the signature, audience, expiry, not-before and issued-at claims
    (with ``leeway`` seconds of clock skew) and, when ``issuers`` is given,
    the issuer.

    Raises:
        ProtocolValidationFailure: If the token is invalid or expired
    """
    algorithm = signing_key.get("alg", "RS256")

    try:
        public_key = jwk.construct(signing_key, algorithm=algorithm)
    except JWTError as e:
        raise ProtocolValidationFailure(f"Failed to construct public key from JWK: {e}") from e

    try:
        claims = jwt.decode(
            id_token,
            public_key.to_pem().decode("utf-8"),
            algorithms=[algorithm],
            audience=client_id,
            issuer=issuers or None,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_iat": True,
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iss": bool(issuers),
                "verify_sub": True,
                "verify_jti": False,
                "verify_at_hash": False,
                "leeway": leeway,
            }
        )
    except jwt.ExpiredSignatureError as e:
        raise ProtocolValidationFailure("ID token has expired") from e
    except jwt.JWTClaimsError as e:
        raise ProtocolValidationFailure(f"Invalid token claims: {e}") from e
    except JWTError as e:
        raise ProtocolValidationFailure(f"Token verification failed: {e}") from e

    return claims


def validate_nonce(claims: Dict[str, Any], expected_nonce: Optional[str]) -> bool:
    """
    Check the nonce claim against the nonce stored at login.

    Both must be present and equal.
    """
    token_nonce = claims.get("nonce")
    if not token_nonce or not expected_nonce:
        return False
    return token_nonce == expected_nonce


# =============================================================================
# Profile Extraction
# =============================================================================

def extract_email_from_claims(claims: Dict[str, Any]) -> Optional[str]:
    """
    Extract email address from ID token claims.

    Azure AD may use different claim names depending on configuration:
    - preferred_username: Usually the UPN (user@domain.com)
    - upn: User Principal Name
    - email: Email address
    - unique_name: Alternative identifier
    """
    for claim_name in ["email", "preferred_username", "upn", "unique_name"]:
        email = claims.get(claim_name)
        if isinstance(email, str) and "@" in email:
            return email.lower().strip()

    return None


def get_user_display_name(claims: Dict[str, Any]) -> Optional[str]:
    """Display name from claims, falling back to the email local part."""
    name = claims.get("name") or claims.get("given_name")
    if name:
        return name

    email = extract_email_from_claims(claims)
    if email:
        return email.split("@")[0].title()

    return None


def build_identity_profile(claims: Dict[str, Any], subject_claim: str) -> IdentityProfile:
    """
    Build the provider profile from verified claims.

    Raises:
        MissingSubjectIdentifier: If the subject claim is absent or empty
    """
    subject_id = claims.get(subject_claim)
    if not isinstance(subject_id, str) or not subject_id.strip():
        raise MissingSubjectIdentifier(f"No {subject_claim} found")

    return IdentityProfile(
        subject_id=subject_id,
        display_name=get_user_display_name(claims),
        email=extract_email_from_claims(claims),
        claims=claims,
    )
