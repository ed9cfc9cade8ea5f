"""Authentication modules."""

from auth.exceptions import AuthError, InvalidTokenError, IdentityProviderError
from auth.identity import VerifiedIdentity, IdentityVerifier, HttpIdentityVerifier
from auth.security_middleware import AuthMiddleware
