"""Authentication and account provisioning."""

from auth.exceptions import (
    AuthError,
    DeliveryError,
    InvalidLinkError,
    MalformedLinkError,
    ExpiredLinkError,
    AlreadyExistsError,
    NotFoundError,
    NetworkError,
    InvalidEmailError,
    NotAuthenticatedError,
    DomainNotAllowedError,
    SessionExpiredError,
)
from auth.types import (
    Session,
    UserRecord,
    PendingSignIn,
    SignInLinkRecord,
    AuthState,
)
from auth.config import AuthConfig
from auth.messages import user_message
from auth.pending_store import PendingSignInStore, ValkeyPendingSignInStore
from auth.directory import UserDirectory, PostgresUserDirectory
from auth.session import SessionManager
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.gateway import CredentialGateway, MagicLinkGateway
from auth.notifications import AccountNotifier
from auth.workflow import AuthWorkflow
from auth.devices import DeviceWorkflows
from auth.api import create_auth_router
