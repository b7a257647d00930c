"""
Test support for the Child Finder front end.

- RSA test keys and a JWKS document for them
- ID token factory (PyJWT, signed with the test private key)
- FakeUpstream: identity provider, token service and profile service served
  through httpx.MockTransport
- Settings / app builders and login helpers
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

import httpx
import jwt
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from childfinder.config import Settings
from childfinder.main import create_app


ISSUER = "https://idp.test/tenant/v2.0"
DISCOVERY_URL = f"{ISSUER}/.well-known/openid-configuration"
AUTHORIZATION_URL = "https://idp.test/tenant/oauth2/v2.0/authorize"
TOKEN_URL = "https://idp.test/tenant/oauth2/v2.0/token"
JWKS_URL = "https://idp.test/tenant/discovery/v2.0/keys"

TOKEN_SERVICE_URL = "http://tokens.test"
PROFILE_SERVICE_URL = "http://profiles.test"

CLIENT_ID = "test-client-id"
CLIENT_SECRET = "test-client-secret"
REDIRECT_URL = "https://app.test/auth/openid/return"
FAILURE_URL = "/login-failed"
LOGOUT_URL = "/goodbye"
COOKIE_NAME = "childfinder.sid"


# Test RSA key pair generation for mocking JWKS
def generate_test_keys():
    """Generate RSA key pair for testing"""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
        backend=default_backend()
    )
    public_key = private_key.public_key()

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )

    return private_pem.decode(), public_key


# Generate test keys once for reuse
TEST_PRIVATE_KEY, TEST_PUBLIC_KEY = generate_test_keys()
TEST_KID = "test-key-id-2024"


def create_jwks(kid: str = TEST_KID) -> Dict:
    """JWKS document holding the test public key."""
    key = RSAAlgorithm.to_jwk(TEST_PUBLIC_KEY, as_dict=True)
    key["kid"] = kid
    key["use"] = "sig"
    key["alg"] = "RS256"
    return {"keys": [key]}


def create_id_token(
    nonce: Optional[str] = None,
    kid: str = TEST_KID,
    exp_delta_minutes: int = 60,
    **claims,
) -> str:
    """
    Create an ID token signed with the test private key.

    Args:
        nonce: Nonce claim (omitted when None)
        kid: Key ID for JWKS matching
        exp_delta_minutes: Token expiry in minutes
        claims: Claim overrides; a None value removes the claim

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)
    payload = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "sub": "pairwise-sub-abc123",
        "oid": "abc123",
        "name": "Test User",
        "email": "test.user@example.com",
        "iat": now,
        "exp": now + timedelta(minutes=exp_delta_minutes),
    }
    if nonce is not None:
        payload["nonce"] = nonce
    payload.update(claims)
    payload = {name: value for name, value in payload.items() if value is not None}

    return jwt.encode(payload, TEST_PRIVATE_KEY, algorithm="RS256", headers={"kid": kid})


# ============================================================================
# Fake Upstream Services
# ============================================================================

Handler = Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """
    Request router for httpx.MockTransport.

    Serves the identity provider discovery document and JWKS by default;
    tests register token service, profile service and token endpoint routes.
    Unrouted requests get a 404.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.calls: List[httpx.Request] = []

        self.json("GET", DISCOVERY_URL, {
            "issuer": ISSUER,
            "authorization_endpoint": AUTHORIZATION_URL,
            "token_endpoint": TOKEN_URL,
            "jwks_uri": JWKS_URL,
        })
        self.json("GET", JWKS_URL, create_jwks())

    def route(self, method: str, url: str, handler: Handler) -> None:
        self.routes[(method, url)] = handler

    def json(self, method: str, url: str, body, status_code: int = 200) -> None:
        self.route(method, url, lambda request: httpx.Response(status_code, json=body))

    def fail(self, method: str, url: str, error=httpx.ConnectError) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise error("upstream unreachable", request=request)
        self.route(method, url, handler)

    def calls_to(self, url: str) -> List[httpx.Request]:
        return [request for request in self.calls if str(request.url).split("?")[0] == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.routes.get((request.method, str(request.url).split("?")[0]))
        if handler is None:
            return httpx.Response(404, json={"error": "not_found"})
        return handler(request)


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Builders
# ============================================================================

def build_settings(**overrides) -> Settings:
    """Settings for tests; cookies are not Secure so TestClient sends them back."""
    values = dict(
        IDENTITY_METADATA=DISCOVERY_URL,
        CLIENT_ID=CLIENT_ID,
        CLIENT_SECRET=CLIENT_SECRET,
        REDIRECT_URL=REDIRECT_URL,
        RESPONSE_TYPE="id_token",
        TOKEN_SERVICE_URL=TOKEN_SERVICE_URL,
        PROFILE_SERVICE_URL=PROFILE_SERVICE_URL,
        FAILURE_REDIRECT_URL=FAILURE_URL,
        DESTROY_SESSION_URL=LOGOUT_URL,
        COOKIE_SECURE=False,
    )
    values.update(overrides)
    return Settings(**values)


def build_app(settings: Settings, upstream: FakeUpstream):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return create_app(settings, http_client=http_client)


def form_fields(request: httpx.Request) -> Dict[str, str]:
    """Decode a form-encoded request body into a flat dict."""
    return {name: values[0] for name, values in parse_qs(request.content.decode()).items()}


# ============================================================================
# Login Helpers
# ============================================================================

def start_login(client) -> Tuple[str, str]:
    """
    Call /login and return the (state, nonce) sent to the provider.
    """
    response = client.get("/login")
    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(AUTHORIZATION_URL)

    query = parse_qs(urlsplit(location).query)
    return query["state"][0], query["nonce"][0]


def sign_in(client, **claims) -> httpx.Response:
    """Run a full id_token form_post handshake for the given claims."""
    state, nonce = start_login(client)
    return client.post(
        "/auth/openid/return",
        data={"state": state, "id_token": create_id_token(nonce=nonce, **claims)},
    )
