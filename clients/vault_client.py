"""
Secrets from HashiCorp Vault (KV v2, AppRole login).

Every read is scoped under ``finance_tracker/``. Missing configuration or
secrets are fatal: the service can't run without its database, Valkey and
email gateway credentials.
"""

import os
import logging
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "finance_tracker"

# Process-wide client and secret cache
_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, str] = {}


class VaultError(Exception):
    """Vault refused or couldn't serve a request."""


class VaultClient:
    """hvac client logged in with the AppRole from the environment.

    Environment: VAULT_ADDR, VAULT_ROLE_ID, VAULT_SECRET_ID and optional
    VAULT_NAMESPACE.
    """

    def __init__(self, vault_addr: str | None = None, vault_namespace: str | None = None):
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not role_id or not secret_id:
            raise ValueError("VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required")

        options = {"url": self.vault_addr}
        if self.vault_namespace:
            options["namespace"] = self.vault_namespace
        self.client = hvac.Client(**options)
        self._login(role_id, secret_id)

        if not self.client.is_authenticated():
            raise VaultError("Vault authentication failed")
        logger.info(f"Vault client ready: {self.vault_addr}")

    def _login(self, role_id: str, secret_id: str) -> None:
        try:
            response = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
        except (Unauthorized, Forbidden, InvalidPath) as e:
            logger.error(f"AppRole login rejected: {e}")
            raise VaultError(f"AppRole authentication failed: {e}")
        self.client.token = response["auth"]["client_token"]

    def get_secret(self, path: str, field: str) -> str:
        """
        Read one field of ``finance_tracker/<path>``.

        Raises:
            VaultError: Path missing or not readable.
            KeyError: Secret has no such field.
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
            logger.error(f"Access denied to {full_path}: {e}")
            raise VaultError(f"Access denied to secret '{full_path}': {e}")

        data = response["data"]["data"]
        if field not in data:
            raise KeyError(f"Field '{field}' not found in secret '{full_path}'. Available: {', '.join(data)}")
        return data[field]


def _client() -> VaultClient:
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


def _cached_secret(path: str, field: str) -> str:
    key = f"{path}/{field}"
    if key not in _secret_cache:
        _secret_cache[key] = _client().get_secret(path, field)
    return _secret_cache[key]


def get_database_url() -> str:
    return _cached_secret("database", "url")


def get_valkey_url() -> str:
    return _cached_secret("valkey", "url")


def get_email_config() -> Dict[str, str]:
    """Keyword arguments for EmailGatewayClient: gateway_url, api_key, hmac_secret."""
    return {field: _cached_secret("email", field) for field in ("gateway_url", "api_key", "hmac_secret")}
