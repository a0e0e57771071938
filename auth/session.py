"""Provider sessions kept in Valkey.

A session is a random bearer token mapped to the identity it signed in.
The Valkey TTL mirrors the expiry, and every successful validation slides
both forward.
"""

import secrets
from datetime import timedelta
from uuid import UUID

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.types import Session
from auth.exceptions import SessionExpiredError
from utils.timezone import is_past, now_utc, parse_iso

_TIMESTAMPS = ("created_at", "expires_at", "last_activity_at")


class SessionManager:
    """Create, validate (and extend) and revoke session tokens."""

    KEY_PREFIX = "session:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config

    @property
    def _lifetime(self) -> timedelta:
        return timedelta(hours=self._config.session_expiry_hours)

    def _key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token}"

    def _save(self, session: Session) -> None:
        payload = {"user_id": str(session.user_id), "email": session.email}
        payload.update({name: getattr(session, name).isoformat() for name in _TIMESTAMPS})
        self._valkey.set_json(
            self._key(session.token),
            payload,
            expire_seconds=int(self._lifetime.total_seconds()),
        )

    def _load(self, token: str) -> Session | None:
        data = self._valkey.get_json(self._key(token))
        if data is None:
            return None
        return Session(
            token=token,
            user_id=UUID(data["user_id"]),
            email=data["email"],
            **{name: parse_iso(data[name]) for name in _TIMESTAMPS},
        )

    def create_session(self, user_id: UUID, email: str) -> Session:
        """Start a session for the identity ``user_id`` signed in as ``email``."""
        started = now_utc()
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            email=email,
            created_at=started,
            expires_at=started + self._lifetime,
            last_activity_at=started,
        )
        self._save(session)
        return session

    def validate_session(self, token: str) -> Session:
        """Return the session for token with its expiry pushed forward.

        Raises:
            SessionExpiredError: Unknown token, or one past its expiry.
        """
        session = self._load(token)
        if session is None:
            raise SessionExpiredError("Session not found or expired")

        # Normally Valkey's TTL has already dropped it
        if is_past(session.expires_at):
            self._valkey.delete(self._key(token))
            raise SessionExpiredError("Session expired")

        touched = now_utc()
        extended = session.model_copy(
            update={"expires_at": touched + self._lifetime, "last_activity_at": touched}
        )
        self._save(extended)
        return extended

    def revoke_session(self, token: str) -> None:
        """Forget token. Unknown tokens are ignored."""
        self._valkey.delete(self._key(token))
