"""Typed exceptions for authentication failures."""


class AuthError(Exception):
    """Base class for authentication errors."""


class InvalidTokenError(AuthError):
    """
    Bearer token missing, malformed, expired or rejected by the identity provider.
    """


class IdentityProviderError(AuthError):
    """
    Identity provider unreachable or misbehaving.

    Not the caller's fault; the request may be retried.
    """
