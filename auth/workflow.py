"""Auth workflow - orchestrates sign-in, registration and account lifecycle.

Translates identity-provider events and explicit user actions into user
record transitions while keeping an observable AuthState.

Every public operation:
- runs alone (one lock per workflow instance),
- publishes a loading state on entry and exactly one state on exit,
- catches every error at its boundary, stores a user-facing message in
  state.error and reports failure through its return value.
"""

import logging
import threading
from typing import Callable

from core.event_bus import EventBus
from core.events import AuthStateChanged
from auth.config import AuthConfig
from auth.directory import UserDirectory
from auth.exceptions import (
    AlreadyExistsError,
    MalformedLinkError,
    NetworkError,
    NotAuthenticatedError,
    SessionExpiredError,
)
from auth.gateway import CredentialGateway
from auth.messages import INVALID_SIGN_IN_LINK, user_message
from auth.notifications import AccountNotifier
from auth.pending_store import PendingSignInStore
from auth.types import AuthState, Session, UserRecord

logger = logging.getLogger(__name__)


class AuthWorkflow:
    """Single authority over the signed-in user.

    State machine:
        Unknown -> SignedOut -> LinkPending(email) -> SignedIn(user)
        SignedOut | LinkPending -> register -> SignedIn(user)
        SignedIn -> delete_account -> SignedOut (provider session stays live)
        SignedIn -> sign_out -> SignedOut
    """

    def __init__(
        self,
        config: AuthConfig,
        gateway: CredentialGateway,
        directory: UserDirectory,
        pending_store: PendingSignInStore,
        event_bus: EventBus | None = None,
        notifier: AccountNotifier | None = None,
    ):
        self._config = config
        self._gateway = gateway
        self._directory = directory
        self._pending_store = pending_store
        self._event_bus = event_bus or EventBus()
        self._notifier = notifier
        self._lock = threading.RLock()
        self._in_operation = False
        self._state = AuthState()
        self._unsubscribe_sessions = gateway.subscribe_session_changes(self._on_session_changed)

    # -------------------------------------------------------------------------
    # Observable state
    # -------------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def current_user(self) -> UserRecord | None:
        return self._state.current_user

    @property
    def is_loading(self) -> bool:
        return self._state.loading

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    @property
    def error(self) -> str | None:
        return self._state.error

    @property
    def pending_email(self) -> str | None:
        return self._state.pending_email

    @property
    def session(self) -> Session | None:
        """Provider session this workflow is signed in with."""
        return self._gateway.current_session()

    def subscribe(self, callback: Callable[[AuthStateChanged], None]) -> Callable[[], None]:
        """Observe every committed state. Returns an unsubscribe function."""
        return self._event_bus.subscribe(AuthStateChanged.__name__, callback)

    def close(self) -> None:
        """Stop listening to the gateway."""
        self._unsubscribe_sessions()

    def _set(self, **changes) -> None:
        """Swap in a new snapshot without notifying."""
        self._state = self._state.model_copy(update=changes)

    def _commit(self, **changes) -> None:
        """Swap in a new snapshot and notify observers."""
        self._set(**changes)
        self._event_bus.publish(AuthStateChanged.create(self._state))

    # -------------------------------------------------------------------------
    # Session listener
    # -------------------------------------------------------------------------

    def _on_session_changed(self, session: Session | None) -> None:
        with self._lock:
            # An operation in flight resolves the current user itself
            if self._in_operation:
                return

            if session is None:
                self._commit(current_user=None, loading=False)
                return

            self._commit(loading=True)
            try:
                self._load_current_user(session)
                self._set(error=None)
            except Exception as e:
                logger.error(f"Error loading current user: {e}")
                self._set(error=user_message(e))
            finally:
                self._commit(loading=False)

    def _load_current_user(self, session: Session | None = None) -> None:
        """Refresh current_user from the directory. Deleted records count as absent."""
        session = session or self._gateway.current_session()
        record = self._directory.find_by_session(session) if session else None
        if record is not None and record.deleted:
            record = None
        self._set(current_user=record)

    def resume_session(self, token: str | None) -> None:
        """Align the provider session with the token a client presented.

        No token, or one the provider no longer honours, leaves this
        workflow signed out. A new live token signs it in and the session
        listener loads the user.
        """
        with self._lock:
            try:
                self._gateway.resume_session(token)
            except SessionExpiredError:
                logger.info("Presented session is no longer valid")
            except NetworkError as e:
                logger.error(f"Could not resume session: {e}")
                self._commit(error=user_message(e))

    def _created(self, record: UserRecord) -> None:
        if self._notifier is not None:
            self._notifier.welcome(record)

    def _require_session(self) -> Session:
        session = self._gateway.current_session()
        if session is None:
            raise NotAuthenticatedError("No authenticated user found")
        return session

    # -------------------------------------------------------------------------
    # Operation runner
    # -------------------------------------------------------------------------

    def _run(self, action: str, operation: Callable[[], None], clear_error: bool = True) -> bool:
        """Run operation alone; map any failure into state.error.

        Returns:
            True if operation completed, False if it raised.
        """
        with self._lock:
            self._in_operation = True
            if clear_error:
                self._commit(loading=True, error=None)
            else:
                self._commit(loading=True)
            try:
                operation()
                return True
            except Exception as e:
                logger.warning(f"{action} failed: {e}")
                self._set(error=user_message(e))
                return False
            finally:
                self._in_operation = False
                self._commit(loading=False)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def request_sign_in(self, email: str, continue_url: str, name: str | None = None) -> bool:
        """Send a sign-in link, or sign in directly when link auth is off.

        On success in link mode the pending slot holds {email, name} and
        state.pending_email is email. On failure the pending slot is untouched.
        """

        def operation():
            if self._config.use_email_link_auth:
                self._gateway.issue_sign_in_link(email, continue_url)
                self._pending_store.put(email, name or None)
                self._set(pending_email=email)
                logger.info(f"Sign-in link requested for {email}")
                return

            session = self._gateway.sign_in_directly(email)
            existing = self._directory.find_by_session(session)
            if existing is not None:
                self._directory.touch_last_login(existing.id)
            elif name:
                self._created(self._directory.create(session.user_id, email, name))
            self._load_current_user(session)

        return self._run("request_sign_in", operation)

    def confirm_sign_in(self, email: str, link: str) -> bool:
        """Complete sign-in with the link from the email.

        First confirmation creates the user record, named from the pending
        slot or the email's local part. Later confirmations only bump
        last login, including for soft-deleted records (which stay deleted).
        """

        def operation():
            if not self._gateway.is_valid_link_token(link):
                raise MalformedLinkError(INVALID_SIGN_IN_LINK)

            session = self._gateway.consume_link_token(email, link)

            existing = self._directory.find_by_session(session)
            if existing is None:
                pending = self._pending_store.get()
                name = pending.name if pending is not None and pending.name else email.split("@")[0]
                logger.info(f"New user {session.user_id}, creating profile as {name!r}")
                record = self._directory.create(session.user_id, email, name)
                self._pending_store.clear_name()
                self._created(record)
            else:
                self._directory.touch_last_login(existing.id)

            self._load_current_user(session)
            self._set(pending_email=None)

        return self._run("confirm_sign_in", operation)

    def register(self, email: str, name: str) -> bool:
        """Register email outside the link flow.

        A live record for email fails with AlreadyExistsError and is left
        untouched. A soft-deleted one is restored under the new name,
        keeping its id and creation time.
        """

        def operation():
            existing = self._directory.find_by_email(email, include_deleted=True)
            if existing is not None and not existing.deleted:
                raise AlreadyExistsError("User with this email already exists")

            if not self._config.use_email_link_auth:
                self._gateway.sign_in_directly(email)

            if existing is not None:
                self._directory.restore(existing.id)
                self._directory.update(existing.id, {"name": name})
                logger.info(f"Restored account {existing.id} for {email}")
            else:
                session = self._require_session()
                self._created(self._directory.create(session.user_id, email, name))

            self._load_current_user()

        return self._run("register", operation)

    def update_profile(self, name: str) -> bool:
        """Rename the signed-in user."""

        def operation():
            session = self._require_session()
            self._directory.update(session.user_id, {"name": name})
            self._load_current_user(session)

        return self._run("update_profile", operation)

    def delete_account(self) -> bool:
        """Soft-delete the signed-in user's record.

        The provider session is left alive; sign_out is a separate step.
        """

        def operation():
            session = self._require_session()
            user = self._state.current_user
            self._directory.soft_delete(session.user_id)
            self._set(current_user=None)
            if user is not None and self._notifier is not None:
                self._notifier.account_deleted(user)
            logger.info(f"Account {session.user_id} soft-deleted")

        return self._run("delete_account", operation)

    def sign_out(self) -> None:
        """Sign out. Local state is cleared even if the provider call fails."""

        def operation():
            try:
                self._gateway.destroy_session()
            finally:
                self._set(current_user=None, pending_email=None, error=None)

        self._run("sign_out", operation, clear_error=False)

    def clear_error(self) -> None:
        with self._lock:
            self._commit(error=None)

    def set_pending_email(self, email: str) -> None:
        """Record the email to confirm a link with (typed in on another device)."""
        with self._lock:
            self._commit(pending_email=email)
