"""
Authentication Package

This package handles authentication and authorization for the front end
using an OpenID Connect identity provider.

Key responsibilities:
- OIDC login initiation and callback handling (/login, /auth/openid/return)
- ID token validation using the provider's JWKS
- State/nonce bookkeeping in the session or in encrypted cookies
- Access control over session and bearer-token credentials
- Logout

Modules:
- routes: Public authentication endpoints
- provider: Identity provider client (initiate / complete)
- nonce: Outstanding login request storage
- utils: ID token verification and claim helpers
- token: Token service client (bearer token verification)
- dependencies: ensure_authenticated / ensure_authenticated_or_token

The authentication flow:
1. Browser hits /login and is redirected to the identity provider
2. User authenticates with the provider
3. Provider returns to /auth/openid/return (GET or form POST)
4. The ID token is verified and the user is found or auto-registered
5. The session is bound to the user's subject id
"""

from .dependencies import ensure_authenticated, ensure_authenticated_or_token, resolve_user
from .provider import IdentityProviderClient
from .routes import auth_router
from .token import TokenServiceClient

__all__ = [
    "auth_router",
    "IdentityProviderClient",
    "TokenServiceClient",
    "ensure_authenticated",
    "ensure_authenticated_or_token",
    "resolve_user",
]
