"""
Valkey (Redis-compatible) key/value access.

Holds sessions, sign-in link records, identity ids and the pending sign-in
slot. The connection is checked at construction and failures are raised
as redis exceptions, never papered over with defaults.
"""

import json
import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    String and JSON values over redis-py.

    Usage:
        valkey = ValkeyClient("redis://localhost:6379/0")
        valkey.set_json("signin_link:abc", {"email": "a@b.c"}, expire_seconds=3600)
        valkey.get_json("signin_link:abc")  # None once the key is gone
    """

    def __init__(self, url: str):
        """
        Connect and ping.

        Raises:
            redis.ConnectionError: If Valkey can't be reached
        """
        self._client = redis.from_url(url, decode_responses=True)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        """Store value; with expire_seconds the key expires after that many seconds."""
        self._client.set(key, value, ex=expire_seconds)

    def set_if_absent(self, key: str, value: str) -> bool:
        """SET NX. True when this call created the key."""
        return bool(self._client.set(key, value, nx=True))

    def delete(self, key: str) -> bool:
        """True if the key existed."""
        return self._client.delete(key) > 0

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        self.set(key, json.dumps(value), expire_seconds)

    def get_json(self, key: str) -> dict | list | None:
        """
        Decoded JSON value, or None if the key is missing.

        Raises:
            ValueError: If the stored value isn't JSON
        """
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def close(self) -> None:
        self._client.close()
        logger.info("ValkeyClient closed")
