"""Clients for the services the auth workflow depends on."""

from clients.email_client import EmailGatewayClient, EmailGatewayError
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_database_url,
    get_email_config,
    get_valkey_url,
)
