"""
Error taxonomy for authentication, directory and session failures.

Handshake errors derive from AuthenticationError and always end in a redirect
to the configured failure location. Storage errors propagate to the caller.
"""


class AuthenticationError(Exception):
    """Base exception for identity provider handshake failures"""
    pass


class ProtocolValidationFailure(AuthenticationError):
    """Signature, issuer, audience, state or nonce mismatch during the handshake"""
    pass


class MissingSubjectIdentifier(ProtocolValidationFailure):
    """The provider profile carries no usable subject identifier"""
    pass


class ProviderUnavailable(AuthenticationError):
    """The identity provider could not be reached or answered with an error"""
    pass


class TokenVerificationFailure(Exception):
    """The token service rejected a bearer token or could not be consulted"""
    pass


class AuthenticationRequired(Exception):
    """The request carries neither a valid session nor a valid token"""
    pass


class DirectoryError(Exception):
    """Storage-layer failure in the user directory"""
    pass


class SessionStoreUnavailable(Exception):
    """The durable session backend could not be reached"""
    pass
