"""Pending sign-in slot.

Bridges "link requested" and "link confirmed": the email (and the name
typed at request time) must survive until the user comes back through the
link. A store holds exactly one slot; a new put replaces whatever was
there. The HTTP service gives every device its own store.
"""

import logging
from abc import ABC, abstractmethod

from clients.valkey_client import ValkeyClient
from auth.types import PendingSignIn

logger = logging.getLogger(__name__)


class PendingSignInStore(ABC):
    """Single-slot, last-write-wins store for an in-flight sign-in."""

    @abstractmethod
    def put(self, email: str, name: str | None = None) -> None:
        """Replace the slot with this email and optional name."""

    @abstractmethod
    def get(self) -> PendingSignIn | None:
        """Current slot contents, or None when empty."""

    @abstractmethod
    def clear_name(self) -> None:
        """Drop the stored name, keep the email."""

    @abstractmethod
    def clear(self) -> None:
        """Empty the slot."""


class ValkeyPendingSignInStore(PendingSignInStore):
    """Pending slot kept as one JSON document under a fixed Valkey key.

    With expire_seconds the slot lapses on its own if the link is never used.
    """

    def __init__(self, valkey: ValkeyClient, key: str = "pending_sign_in", expire_seconds: int | None = None):
        self._valkey = valkey
        self._key = key
        self._expire_seconds = expire_seconds

    def put(self, email: str, name: str | None = None) -> None:
        pending = PendingSignIn(email=email, name=name or None)
        self._valkey.set_json(self._key, pending.model_dump(), self._expire_seconds)
        logger.debug(f"Pending sign-in stored for {email}")

    def get(self) -> PendingSignIn | None:
        data = self._valkey.get_json(self._key)
        if data is None:
            return None
        return PendingSignIn.model_validate(data)

    def clear_name(self) -> None:
        pending = self.get()
        if pending is None or pending.name is None:
            return
        self._valkey.set_json(self._key, {"email": pending.email, "name": None}, self._expire_seconds)

    def clear(self) -> None:
        self._valkey.delete(self._key)
