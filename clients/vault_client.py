"""
HashiCorp Vault client for billing secret management.

Uses AppRole authentication. Fails fast on missing configuration.
All paths scoped to 'billing/' prefix - no escape to other secrets.
"""

import os
import logging
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

# Project scope - all secrets under this path
_SECRET_PREFIX = "billing"

# Singleton instance and cache
_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, str] = {}


def _ensure_vault_client() -> "VaultClient":
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


class VaultError(Exception):
    """Vault operation failed. Fatal - application cannot function without secrets."""


class VaultClient:
    """Vault client with AppRole auth, env-based config, and fail-fast behavior."""

    def __init__(
        self,
        vault_addr: str | None = None,
        vault_namespace: str | None = None,
    ):
        """Initialize with environment variables. Fails fast on missing config."""
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        self.vault_role_id = os.getenv("VAULT_ROLE_ID")
        self.vault_secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")

        if not self.vault_role_id or not self.vault_secret_id:
            raise ValueError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required"
            )

        client_kwargs = {"url": self.vault_addr}
        if self.vault_namespace:
            client_kwargs["namespace"] = self.vault_namespace

        self.client = hvac.Client(**client_kwargs)
        self._authenticate_approle()

        if not self.client.is_authenticated():
            raise VaultError("Vault authentication failed")

        logger.info(f"Vault client initialized: {self.vault_addr}")

    def _authenticate_approle(self) -> None:
        """Authenticate using AppRole credentials."""
        try:
            auth_response = self.client.auth.approle.login(
                role_id=self.vault_role_id,
                secret_id=self.vault_secret_id,
            )
            self.client.token = auth_response["auth"]["client_token"]
            logger.info("AppRole authentication successful")
        except (Unauthorized, Forbidden) as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise VaultError(f"AppRole authentication failed: {e}")

    def get_secret(self, path: str, field: str) -> str:
        """
        Retrieve single field from KV v2 secret.

        Path is automatically scoped to the 'billing/' prefix.
        Caller passes 'database', we access 'billing/database'.

        Raises:
            VaultError: Path not accessible or doesn't exist.
            KeyError: Field not found in secret.
        """
        full_path = f"{_SECRET_PREFIX}/{path}"

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath:
            logger.error(f"Secret path not found: {full_path}")
            raise VaultError(f"Secret path '{full_path}' not found in Vault")
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise VaultError(f"Access denied to secret '{full_path}': {e}")

        secret_data = response["data"]["data"]
        if field not in secret_data:
            available = list(secret_data.keys())
            raise KeyError(
                f"Field '{field}' not found in secret '{full_path}'. "
                f"Available: {', '.join(available)}"
            )

        return secret_data[field]


def _cached_secret(path: str, field: str) -> str:
    cache_key = f"{_SECRET_PREFIX}/{path}/{field}"
    if cache_key not in _secret_cache:
        _secret_cache[cache_key] = _ensure_vault_client().get_secret(path, field)
    return _secret_cache[cache_key]


def _cached_fields(path: str, fields: list[str]) -> Dict[str, str]:
    return {field: _cached_secret(path, field) for field in fields}


def get_database_url() -> str:
    """Get PostgreSQL connection URL (application role, RLS enforced)."""
    return _cached_secret("database", "url")


def get_admin_database_url() -> str:
    """Get PostgreSQL connection URL for cross-tenant jobs (BYPASSRLS role)."""
    return _cached_secret("database", "admin_url")


def get_valkey_url() -> str:
    """Get Valkey (Redis) connection URL."""
    return _cached_secret("valkey", "url")


def get_email_config() -> Dict[str, str]:
    """Email gateway configuration: gateway_url, api_key, hmac_secret."""
    return _cached_fields("email", ["gateway_url", "api_key", "hmac_secret"])


def get_identity_config() -> Dict[str, str]:
    """Identity provider configuration: userinfo_url."""
    return _cached_fields("identity", ["userinfo_url"])


def get_payment_network_config() -> Dict[str, str]:
    """Payment-request network configuration: base_url, api_key."""
    return _cached_fields("payment_network", ["base_url", "api_key"])
