"""User directory: the remote store of application user records.

PostgreSQL implementation uses the non-RLS ``users`` table:

    id uuid primary key, email text unique (lowercased), name text,
    created_at timestamptz, last_login_at timestamptz, login_count int,
    deleted boolean, deleted_at timestamptz null

Soft-deleted rows stay in the table until ``purge_deleted`` removes them.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any
from uuid import UUID

import psycopg2
import psycopg2.errors

from clients.postgres_client import PostgresClient
from auth.exceptions import AlreadyExistsError, NetworkError, NotFoundError
from auth.types import Session, UserRecord
from utils.timezone import days_ago, now_utc

logger = logging.getLogger(__name__)

_USER_COLUMNS = "id, email, name, created_at, last_login_at, login_count, deleted, deleted_at"


class UserDirectory(ABC):
    """Fetch, create and change user records.

    Operations addressing an id raise NotFoundError when it doesn't exist.
    """

    UPDATABLE_FIELDS = frozenset({"name"})

    @abstractmethod
    def find_by_session(self, session: Session) -> UserRecord | None:
        """Record whose id is the session's identity id, deleted or not."""

    @abstractmethod
    def find_by_email(self, email: str, include_deleted: bool = False) -> UserRecord | None:
        """Record for email (case-insensitive). Deleted records only when asked."""

    @abstractmethod
    def create(self, user_id: UUID, email: str, name: str) -> UserRecord:
        """Create a record. Raises AlreadyExistsError if the id or email is taken."""

    @abstractmethod
    def update(self, user_id: UUID, fields: dict[str, Any]) -> None:
        """Apply profile changes. Only UPDATABLE_FIELDS are accepted."""

    @abstractmethod
    def soft_delete(self, user_id: UUID) -> None:
        """Set the deleted flag and deletion timestamp."""

    @abstractmethod
    def restore(self, user_id: UUID) -> None:
        """Clear the deleted flag and deletion timestamp."""

    @abstractmethod
    def touch_last_login(self, user_id: UUID) -> None:
        """Bump last_login_at to now and count the login."""

    def _check_fields(self, fields: dict[str, Any]) -> None:
        unknown = set(fields) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")


def _row_to_user(row: dict) -> UserRecord:
    return UserRecord(
        id=UUID(row["id"]) if isinstance(row["id"], str) else row["id"],
        email=row["email"],
        name=row["name"],
        created_at=row["created_at"],
        last_login_at=row["last_login_at"],
        login_count=row["login_count"],
        deleted=row["deleted"],
        deleted_at=row["deleted_at"],
    )


class PostgresUserDirectory(UserDirectory):
    """User records in PostgreSQL."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    @contextmanager
    def _translate_errors(self):
        """Surface driver connectivity failures as NetworkError."""
        try:
            yield
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            logger.error(f"User directory unreachable: {e}")
            raise NetworkError(f"User directory unreachable: {e}")

    def _single(self, query: str, params: tuple) -> UserRecord | None:
        with self._translate_errors():
            row = self._db.execute_single(query, params)
        return _row_to_user(row) if row else None

    def _modify(self, query: str, params: tuple, user_id: UUID) -> None:
        with self._translate_errors():
            rows = self._db.execute_returning(query, params)
        if not rows:
            raise NotFoundError(f"User {user_id} not found")

    def find_by_session(self, session: Session) -> UserRecord | None:
        return self._single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (str(session.user_id),),
        )

    def find_by_email(self, email: str, include_deleted: bool = False) -> UserRecord | None:
        return self._single(
            f"""SELECT {_USER_COLUMNS} FROM users
                WHERE email = lower(%s) AND (%s OR NOT deleted)""",
            (email, include_deleted),
        )

    def create(self, user_id: UUID, email: str, name: str) -> UserRecord:
        now = now_utc()
        try:
            with self._translate_errors():
                rows = self._db.execute_returning(
                    f"""INSERT INTO users (id, email, name, created_at, last_login_at, login_count, deleted)
                        VALUES (%s, lower(%s), %s, %s, %s, 1, false)
                        RETURNING {_USER_COLUMNS}""",
                    (str(user_id), email, name, now, now),
                )
        except psycopg2.errors.UniqueViolation:
            raise AlreadyExistsError(f"User already exists for {email}")
        logger.info(f"Created user {user_id} for {email}")
        return _row_to_user(rows[0])

    def update(self, user_id: UUID, fields: dict[str, Any]) -> None:
        self._check_fields(fields)
        if not fields:
            return
        assignments = ", ".join(f"{column} = %s" for column in fields)
        self._modify(
            f"UPDATE users SET {assignments} WHERE id = %s RETURNING id",
            (*fields.values(), str(user_id)),
            user_id,
        )

    def soft_delete(self, user_id: UUID) -> None:
        self._modify(
            "UPDATE users SET deleted = true, deleted_at = %s WHERE id = %s RETURNING id",
            (now_utc(), str(user_id)),
            user_id,
        )
        logger.info(f"Soft-deleted user {user_id}")

    def restore(self, user_id: UUID) -> None:
        self._modify(
            "UPDATE users SET deleted = false, deleted_at = NULL WHERE id = %s RETURNING id",
            (str(user_id),),
            user_id,
        )
        logger.info(f"Restored user {user_id}")

    def touch_last_login(self, user_id: UUID) -> None:
        self._modify(
            """UPDATE users SET last_login_at = %s, login_count = login_count + 1
               WHERE id = %s RETURNING id""",
            (now_utc(), str(user_id)),
            user_id,
        )

    def purge_deleted(self, older_than_days: int) -> int:
        """Permanently delete records soft-deleted before the retention cutoff.

        Returns:
            Number of records removed.
        """
        cutoff = days_ago(older_than_days)
        with self._translate_errors():
            rows = self._db.execute_returning(
                "DELETE FROM users WHERE deleted AND deleted_at < %s RETURNING id",
                (cutoff,),
            )
        if rows:
            logger.info(f"Purged {len(rows)} soft-deleted users")
        return len(rows)
