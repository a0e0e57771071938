"""Credential gateway: the identity provider behind the auth workflow.

The gateway issues and verifies sign-in links, owns the current session
and announces every session change on its event bus. New subscribers are
told about the current session straight away, so a listener attached at
start-up learns whether someone is already signed in.
"""

import logging
import re
import secrets
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import timedelta
from typing import Callable
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit
from uuid import UUID, uuid4

import redis
from pydantic import EmailStr, TypeAdapter, ValidationError

from clients.email_client import EmailGatewayClient, EmailGatewayError
from clients.valkey_client import ValkeyClient
from core.event_bus import EventBus
from core.events import SessionChanged
from auth.config import AuthConfig
from auth.exceptions import (
    DeliveryError,
    DomainNotAllowedError,
    ExpiredLinkError,
    InvalidEmailError,
    InvalidLinkError,
    NetworkError,
    SessionExpiredError,
)
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.session import SessionManager
from auth.types import Session, SignInLinkRecord, SignInLinkRequest
from utils.timezone import is_past, now_utc

logger = logging.getLogger(__name__)

SIGN_IN_MODE = "signIn"
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{32,128}$")
_EMAIL = TypeAdapter(EmailStr)


class CredentialGateway(ABC):
    """Identity provider contract consumed by AuthWorkflow."""

    def __init__(self, event_bus: EventBus | None = None):
        self._event_bus = event_bus or EventBus()

    @abstractmethod
    def issue_sign_in_link(self, email: str, continue_url: str) -> None:
        """Send a sign-in link bound to continue_url. Raises DeliveryError."""

    @abstractmethod
    def is_valid_link_token(self, link: str) -> bool:
        """Whether link has the shape of a sign-in link. No lookup, no side effects."""

    @abstractmethod
    def consume_link_token(self, email: str, link: str) -> Session:
        """Exchange a link for a session. Raises InvalidLinkError or ExpiredLinkError."""

    @abstractmethod
    def sign_in_directly(self, email: str) -> Session:
        """Create a session without a link (direct mode)."""

    @abstractmethod
    def current_session(self) -> Session | None:
        """Session currently signed in, if any."""

    @abstractmethod
    def resume_session(self, token: str | None) -> Session | None:
        """Make the session behind token current; None signs out locally.

        Raises SessionExpiredError (after signing out locally) for a dead token.
        """

    @abstractmethod
    def destroy_session(self) -> None:
        """Sign out. Raises NetworkError if the provider can't be reached."""

    def subscribe_session_changes(
        self, callback: Callable[[Session | None], None]
    ) -> Callable[[], None]:
        """Call callback with the current session now and on every change.

        Returns:
            A function that stops the notifications.
        """
        unsubscribe = self._event_bus.subscribe(
            SessionChanged.__name__, lambda event: callback(event.session)
        )
        callback(self.current_session())
        return unsubscribe

    def _announce(self, session: Session | None) -> None:
        self._event_bus.publish(SessionChanged.create(session))


class MagicLinkGateway(CredentialGateway):
    """Passwordless sign-in links delivered by email, sessions in Valkey.

    Keys:
        signin_link:<token>  SignInLinkRecord JSON, kept link_retention_hours
        identity:<email>     stable identity id for the email address
    """

    LINK_KEY_PREFIX = "signin_link:"
    IDENTITY_KEY_PREFIX = "identity:"

    def __init__(
        self,
        config: AuthConfig,
        valkey: ValkeyClient,
        session_manager: SessionManager,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
        event_bus: EventBus | None = None,
    ):
        super().__init__(event_bus)
        self._config = config
        self._valkey = valkey
        self._session_manager = session_manager
        self._email_client = email_client
        self._security_logger = security_logger
        self._current: Session | None = None

    @contextmanager
    def _translate_errors(self):
        """Surface Valkey connectivity failures as NetworkError."""
        try:
            yield
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.error(f"Session store unreachable: {e}")
            raise NetworkError(f"Session store unreachable: {e}")

    def _link_key(self, token: str) -> str:
        return f"{self.LINK_KEY_PREFIX}{token}"

    def _identity_key(self, email: str) -> str:
        return f"{self.IDENTITY_KEY_PREFIX}{email.lower()}"

    @staticmethod
    def _extract_token(link: str) -> str | None:
        query = parse_qs(urlsplit(link).query)
        if query.get("mode", [None])[0] != SIGN_IN_MODE:
            return None
        token = query.get("token", [None])[0]
        if token is None or not _TOKEN_PATTERN.match(token):
            return None
        return token

    @staticmethod
    def build_link(continue_url: str, token: str) -> str:
        """continue_url with the sign-in parameters merged into its query."""
        parts = urlsplit(continue_url)
        query = parse_qs(parts.query)
        query["mode"] = [SIGN_IN_MODE]
        query["token"] = [token]
        return urlunsplit(parts._replace(query=urlencode(query, doseq=True)))

    def issue_sign_in_link(self, email: str, continue_url: str) -> None:
        """Generate, store and email a sign-in link.

        Raises:
            InvalidEmailError: If email is not a valid address.
            DeliveryError: If the email gateway rejects or can't be reached.
            NetworkError: If the link can't be stored.
        """
        try:
            request = SignInLinkRequest(email=email, continue_url=continue_url)
        except ValidationError:
            raise InvalidEmailError(f"Invalid email address: {email}")

        now = now_utc()
        record = SignInLinkRecord(
            token=secrets.token_urlsafe(32),
            email=request.email,
            continue_url=request.continue_url,
            created_at=now,
            expires_at=now + timedelta(minutes=self._config.link_expiry_minutes),
            used=False,
        )

        with self._translate_errors():
            self._valkey.set_json(
                self._link_key(record.token),
                record.model_dump(mode="json"),
                expire_seconds=self._config.link_retention_hours * 3600,
            )

        self._security_logger.log(SecurityEvent.SIGN_IN_LINK_REQUESTED, email=record.email)

        try:
            self._email_client.send_sign_in_link(
                email=record.email,
                link=self.build_link(record.continue_url, record.token),
                app_name=self._config.app_name,
            )
        except EmailGatewayError as e:
            self._security_logger.log(
                SecurityEvent.SIGN_IN_LINK_FAILED,
                email=record.email,
                details={"reason": "delivery_failed"},
            )
            raise DeliveryError(f"Could not send sign-in link: {e}")

        self._security_logger.log(SecurityEvent.SIGN_IN_LINK_SENT, email=record.email)

    def is_valid_link_token(self, link: str) -> bool:
        return self._extract_token(link) is not None

    def consume_link_token(self, email: str, link: str) -> Session:
        """Verify the link for email, mark it used and sign the identity in.

        Raises:
            InvalidLinkError: Unknown, already used, or issued for another email.
            ExpiredLinkError: Past its expiry.
        """
        token = self._extract_token(link)
        if token is None:
            raise InvalidLinkError("Not a sign-in link")

        with self._translate_errors():
            data = self._valkey.get_json(self._link_key(token))

        if data is None:
            self._security_logger.log(
                SecurityEvent.SIGN_IN_LINK_FAILED,
                email=email,
                details={"reason": "token_not_found"},
            )
            raise InvalidLinkError("Invalid or expired sign-in link")

        record = SignInLinkRecord.model_validate(data)

        if record.used:
            self._security_logger.log(SecurityEvent.SIGN_IN_LINK_ALREADY_USED, email=record.email)
            raise InvalidLinkError("Sign-in link has already been used")

        if is_past(record.expires_at):
            self._security_logger.log(SecurityEvent.SIGN_IN_LINK_EXPIRED, email=record.email)
            raise ExpiredLinkError("Sign-in link has expired")

        if record.email.lower() != email.strip().lower():
            self._security_logger.log(
                SecurityEvent.SIGN_IN_LINK_FAILED,
                email=email,
                details={"reason": "email_mismatch"},
            )
            raise InvalidLinkError("Sign-in link was issued for a different email")

        with self._translate_errors():
            used = record.model_copy(update={"used": True})
            self._valkey.set_json(
                self._link_key(token),
                used.model_dump(mode="json"),
                expire_seconds=self._config.link_retention_hours * 3600,
            )

        self._security_logger.log(SecurityEvent.SIGN_IN_LINK_VERIFIED, email=record.email)
        return self._start_session(record.email)

    def sign_in_directly(self, email: str) -> Session:
        """Sign email in without a link.

        Raises:
            InvalidEmailError: If email is not a valid address.
            DomainNotAllowedError: If allowed_email_domains excludes its domain.
        """
        try:
            email = _EMAIL.validate_python(email)
        except ValidationError:
            raise InvalidEmailError(f"Invalid email address: {email}")

        allowed = [domain.lower() for domain in self._config.allowed_email_domains]
        domain = email.rsplit("@", 1)[-1].lower()
        if allowed and domain not in allowed:
            self._security_logger.log(SecurityEvent.DIRECT_SIGN_IN_REJECTED, email=email)
            raise DomainNotAllowedError(
                f"Email domain not allowed. Allowed domains: {', '.join(allowed)}"
            )

        self._security_logger.log(SecurityEvent.DIRECT_SIGN_IN, email=email)
        return self._start_session(email)

    def _identity_for(self, email: str) -> UUID:
        """Stable identity id for email, allocated on first sign-in."""
        key = self._identity_key(email)
        with self._translate_errors():
            self._valkey.set_if_absent(key, str(uuid4()))
            return UUID(self._valkey.get(key))

    def _start_session(self, email: str) -> Session:
        user_id = self._identity_for(email)
        with self._translate_errors():
            session = self._session_manager.create_session(user_id, email)
        self._security_logger.log(SecurityEvent.SESSION_CREATED, email=email, user_id=user_id)
        self._current = session
        self._announce(session)
        return session

    def restore_session(self, token: str) -> Session:
        """Resume a stored session token, e.g. when the app is reopened.

        Raises:
            SessionExpiredError: If the token is unknown or expired.
        """
        with self._translate_errors():
            session = self._session_manager.validate_session(token)
        self._security_logger.log(
            SecurityEvent.SESSION_RESTORED, email=session.email, user_id=session.user_id
        )
        self._current = session
        self._announce(session)
        return session

    def resume_session(self, token: str | None) -> Session | None:
        """Follow the token a client presents on each request.

        The current token is only re-validated (and extended); a different
        live token is restored. No token, or a dead one, drops the current
        session locally without revoking it.

        Raises:
            SessionExpiredError: If token is unknown or expired.
            NetworkError: If the session store can't be reached.
        """
        if token is None:
            self._forget()
            return None

        current = self._current
        if current is None or current.token != token:
            try:
                return self.restore_session(token)
            except SessionExpiredError:
                self._forget()
                raise

        try:
            with self._translate_errors():
                self._current = self._session_manager.validate_session(token)
        except SessionExpiredError:
            self._forget()
            raise
        return self._current

    def _forget(self) -> None:
        if self._current is not None:
            self._current = None
            self._announce(None)

    def current_session(self) -> Session | None:
        return self._current

    def destroy_session(self) -> None:
        """Revoke the current session.

        The local session is dropped and announced even when revocation fails.
        """
        session = self._current
        if session is None:
            return
        try:
            with self._translate_errors():
                self._session_manager.revoke_session(session.token)
        finally:
            self._current = None
            self._announce(None)
        self._security_logger.log(
            SecurityEvent.SESSION_REVOKED, email=session.email, user_id=session.user_id
        )
