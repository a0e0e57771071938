"""Application factory: wires the auth workflow to its infrastructure."""

import logging
from pathlib import Path

from fastapi import FastAPI

from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.api import create_auth_router
from auth.config import AuthConfig
from auth.devices import DeviceWorkflows
from auth.directory import PostgresUserDirectory
from auth.gateway import MagicLinkGateway
from auth.notifications import AccountNotifier
from auth.pending_store import ValkeyPendingSignInStore
from auth.security_logger import SecurityLogger
from auth.session import SessionManager
from auth.workflow import AuthWorkflow
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import get_database_url, get_email_config, get_valkey_url

logger = logging.getLogger(__name__)


def build_workflow(
    config: AuthConfig,
    postgres: PostgresClient,
    valkey: ValkeyClient,
    email_client: EmailGatewayClient,
    device_id: str | None = None,
) -> AuthWorkflow:
    """Assemble a workflow and its collaborators.

    With device_id the pending sign-in slot is private to that device and
    lapses with the link records.
    """
    gateway = MagicLinkGateway(
        config=config,
        valkey=valkey,
        session_manager=SessionManager(valkey, config),
        email_client=email_client,
        security_logger=SecurityLogger(postgres),
    )
    if device_id is None:
        pending_store = ValkeyPendingSignInStore(valkey, config.pending_sign_in_key)
    else:
        pending_store = ValkeyPendingSignInStore(
            valkey,
            f"{config.pending_sign_in_key}:{device_id}",
            expire_seconds=config.link_retention_hours * 3600,
        )
    return AuthWorkflow(
        config=config,
        gateway=gateway,
        directory=PostgresUserDirectory(postgres),
        pending_store=pending_store,
        notifier=AccountNotifier(email_client, config.app_name),
    )


def run_maintenance(config: AuthConfig, postgres: PostgresClient, archive_path: Path) -> dict:
    """Purge long-deleted accounts and archive old security events.

    Returns:
        Counts of purged users and archived events.
    """
    purged = PostgresUserDirectory(postgres).purge_deleted(config.deleted_retention_days)
    archived = SecurityLogger(postgres).rotate_logs(config.security_log_retention_days, archive_path)
    logger.info(f"Maintenance: purged {purged} users, archived {archived} security events")
    return {"purged_users": purged, "archived_events": archived}


def create_app(config: AuthConfig | None = None) -> FastAPI:
    """Create the FastAPI app with secrets from Vault."""
    config = config or AuthConfig()
    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())
    email_client = EmailGatewayClient(**get_email_config())

    devices = DeviceWorkflows(
        lambda device_id: build_workflow(config, postgres, valkey, email_client, device_id),
        max_devices=config.max_active_devices,
    )
    notifier = AccountNotifier(email_client, config.app_name)

    app = FastAPI(title=config.app_name)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)
    app.include_router(create_auth_router(devices, config, notifier), prefix="/auth")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    logger.info(f"{config.app_name} auth service ready")
    return app
