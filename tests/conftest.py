"""Shared test fixtures for the auth test suite.

The suite runs without infrastructure: Valkey is replaced by an in-memory
ValkeyClient subclass, the user directory by an in-memory implementation,
and the email gateway and security log by mocks.
"""

from pathlib import Path
from typing import Any
from unittest.mock import Mock
from uuid import UUID

import pytest
import redis
from dotenv import load_dotenv

# Load .env (if present) before anything reads env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from auth.config import AuthConfig
from auth.directory import UserDirectory
from auth.exceptions import AlreadyExistsError, NotFoundError
from auth.gateway import MagicLinkGateway
from auth.pending_store import ValkeyPendingSignInStore
from auth.security_logger import SecurityLogger
from auth.session import SessionManager
from auth.types import Session, UserRecord
from auth.workflow import AuthWorkflow
from clients.email_client import EmailGatewayClient
from clients.valkey_client import ValkeyClient
from utils.timezone import now_utc


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

TEST_EMAIL = "artist@example.com"
TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")


# =============================================================================
# IN-MEMORY COLLABORATORS
# =============================================================================


class FakeValkey(ValkeyClient):
    """Dict-backed ValkeyClient. TTLs are recorded, never enforced.

    Set ``unreachable = True`` to make every call raise redis.ConnectionError.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.unreachable = False

    def _check(self) -> None:
        if self.unreachable:
            raise redis.ConnectionError("Connection refused")

    def ping(self) -> bool:
        self._check()
        return True

    def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        self._check()
        self.data[key] = value
        if expire_seconds is not None:
            self.ttls[key] = expire_seconds
        else:
            self.ttls.pop(key, None)

    def set_if_absent(self, key: str, value: str) -> bool:
        self._check()
        if key in self.data:
            return False
        self.data[key] = value
        return True

    def delete(self, key: str) -> bool:
        self._check()
        self.ttls.pop(key, None)
        return self.data.pop(key, None) is not None

    def close(self) -> None:
        pass


class InMemoryUserDirectory(UserDirectory):
    """UserDirectory over a dict keyed by user id."""

    def __init__(self):
        self.records: dict[UUID, UserRecord] = {}
        self.calls: list[str] = []

    def _get(self, user_id: UUID) -> UserRecord:
        if user_id not in self.records:
            raise NotFoundError(f"User {user_id} not found")
        return self.records[user_id]

    def _save(self, record: UserRecord) -> None:
        self.records[record.id] = record

    def find_by_session(self, session: Session) -> UserRecord | None:
        self.calls.append("find_by_session")
        return self.records.get(session.user_id)

    def find_by_email(self, email: str, include_deleted: bool = False) -> UserRecord | None:
        self.calls.append("find_by_email")
        for record in self.records.values():
            if record.email.lower() == email.lower() and (include_deleted or not record.deleted):
                return record
        return None

    def create(self, user_id: UUID, email: str, name: str) -> UserRecord:
        self.calls.append("create")
        if user_id in self.records or self.find_by_email(email, include_deleted=True):
            raise AlreadyExistsError(f"User already exists for {email}")
        now = now_utc()
        record = UserRecord(
            id=user_id,
            email=email.lower(),
            name=name,
            created_at=now,
            last_login_at=now,
            login_count=1,
        )
        self._save(record)
        return record

    def update(self, user_id: UUID, fields: dict[str, Any]) -> None:
        self.calls.append("update")
        self._check_fields(fields)
        self._save(self._get(user_id).model_copy(update=fields))

    def soft_delete(self, user_id: UUID) -> None:
        self.calls.append("soft_delete")
        self._save(self._get(user_id).model_copy(update={"deleted": True, "deleted_at": now_utc()}))

    def restore(self, user_id: UUID) -> None:
        self.calls.append("restore")
        self._save(self._get(user_id).model_copy(update={"deleted": False, "deleted_at": None}))

    def touch_last_login(self, user_id: UUID) -> None:
        self.calls.append("touch_last_login")
        record = self._get(user_id)
        self._save(
            record.model_copy(
                update={"last_login_at": now_utc(), "login_count": record.login_count + 1}
            )
        )

    def add(self, email: str, name: str, user_id: UUID | None = None, deleted: bool = False) -> UserRecord:
        """Seed a record directly (test setup)."""
        created = now_utc()
        record = UserRecord(
            id=user_id or TEST_USER_ID,
            email=email,
            name=name,
            created_at=created,
            last_login_at=created,
            login_count=1,
            deleted=deleted,
            deleted_at=created if deleted else None,
        )
        self._save(record)
        return record


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def test_user_id():
    return TEST_USER_ID


@pytest.fixture
def test_email():
    return TEST_EMAIL


@pytest.fixture
def config():
    """Link-mode config pointing links at a test host."""
    return AuthConfig(app_base_url="https://finance.example.com")


@pytest.fixture
def valkey():
    return FakeValkey()


@pytest.fixture
def mock_email_client():
    """Mock email client - no actual emails sent in tests."""
    mock = Mock(spec=EmailGatewayClient)
    mock.send_sign_in_link.return_value = None
    return mock


@pytest.fixture
def mock_security_logger():
    return Mock(spec=SecurityLogger)


@pytest.fixture
def session_manager(valkey, config):
    return SessionManager(valkey, config)


@pytest.fixture
def gateway(config, valkey, session_manager, mock_email_client, mock_security_logger):
    return MagicLinkGateway(
        config=config,
        valkey=valkey,
        session_manager=session_manager,
        email_client=mock_email_client,
        security_logger=mock_security_logger,
    )


@pytest.fixture
def directory():
    return InMemoryUserDirectory()


@pytest.fixture
def pending_store(valkey, config):
    return ValkeyPendingSignInStore(valkey, config.pending_sign_in_key)


@pytest.fixture
def workflow(config, gateway, directory, pending_store):
    return AuthWorkflow(
        config=config,
        gateway=gateway,
        directory=directory,
        pending_store=pending_store,
    )


@pytest.fixture
def last_link(mock_email_client):
    """Returns the most recently emailed sign-in link."""

    def _last_link() -> str:
        return mock_email_client.send_sign_in_link.call_args.kwargs["link"]

    return _last_link
