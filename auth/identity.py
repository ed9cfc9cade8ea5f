"""
Identity-provider integration.

The billing core never handles credentials. An external identity provider
issues bearer tokens; a verifier turns a token into the provider's subject
id and email, which the auth middleware maps to an internal user.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Protocol

import requests

from auth.exceptions import IdentityProviderError, InvalidTokenError
from clients.valkey_client import ValkeyClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedIdentity:
    """Identity as asserted by the provider."""

    user_id: str
    email: str


class IdentityVerifier(Protocol):
    def verify(self, token: str) -> VerifiedIdentity:
        """
        Resolve a bearer token.

        Raises:
            InvalidTokenError: token rejected
            IdentityProviderError: provider unavailable
        """
        ...


class HttpIdentityVerifier:
    """
    Verifies tokens against the provider's userinfo endpoint.

    Successful lookups can be cached in Valkey, keyed by a hash of the token
    so raw tokens never reach the cache.
    """

    CACHE_KEY_PREFIX = "identity:"

    def __init__(
        self,
        userinfo_url: str,
        valkey: ValkeyClient | None = None,
        cache_ttl_seconds: int = 300,
        timeout: int = 10,
    ):
        if not userinfo_url:
            raise ValueError("userinfo_url is required")
        self.userinfo_url = userinfo_url
        self.valkey = valkey
        self.cache_ttl_seconds = cache_ttl_seconds
        self.timeout = timeout

    def _cache_key(self, token: str) -> str:
        return self.CACHE_KEY_PREFIX + hashlib.sha256(token.encode("utf-8")).hexdigest()

    def verify(self, token: str) -> VerifiedIdentity:
        if not token:
            raise InvalidTokenError("Missing bearer token")

        if self.valkey is not None:
            cached = self.valkey.get(self._cache_key(token))
            if cached:
                data = json.loads(cached)
                return VerifiedIdentity(user_id=data["user_id"], email=data["email"])

        try:
            response = requests.get(
                self.userinfo_url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Identity provider unreachable: {e}")
            raise IdentityProviderError(f"Identity provider unreachable: {e}")

        if response.status_code in (401, 403):
            raise InvalidTokenError("Token rejected by identity provider")
        if response.status_code != 200:
            logger.error(f"Identity provider returned {response.status_code}")
            raise IdentityProviderError(f"Identity provider returned {response.status_code}")

        try:
            claims = response.json()
        except ValueError:
            raise IdentityProviderError("Identity provider returned invalid JSON")

        subject = claims.get("sub") or claims.get("id")
        email = claims.get("email")
        if not subject or not email:
            raise InvalidTokenError("Identity provider did not return a subject and email")

        identity = VerifiedIdentity(user_id=str(subject), email=email)

        if self.valkey is not None:
            self.valkey.set(
                self._cache_key(token),
                json.dumps({"user_id": identity.user_id, "email": identity.email}),
                self.cache_ttl_seconds,
            )

        return identity
