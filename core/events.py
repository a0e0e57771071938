"""
Domain events for authentication.

Immutable event objects describing something that already happened.
Publishers don't know who is listening: the credential gateway announces
session changes, the auth workflow announces state changes, and observers
(UI adapters, the workflow itself) subscribe by event class name.

Events carry the full payload so subscribers never have to re-fetch it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from utils.timezone import now_utc

if TYPE_CHECKING:
    from auth.types import AuthState, Session


@dataclass(frozen=True, kw_only=True)
class AuthEvent:
    """Base class for all auth domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class SessionChanged(AuthEvent):
    """The identity provider's current session changed (None = signed out)."""
    session: "Session | None" = None

    @classmethod
    def create(cls, session: "Session | None") -> "SessionChanged":
        return cls(session=session)


@dataclass(frozen=True)
class AuthStateChanged(AuthEvent):
    """The workflow committed a new AuthState snapshot."""
    state: "AuthState | None" = None

    @classmethod
    def create(cls, state: "AuthState") -> "AuthStateChanged":
        return cls(state=state)
