"""Audit trail of sign-in activity.

Events are appended to the ``security_events`` table and echoed to the
application log. Old rows can be moved out to a JSON-lines archive.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import days_ago, now_utc

logger = logging.getLogger(__name__)

_EVENT_COLUMNS = "id, event_type, email, user_id, details, created_at"


class SecurityEvent(Enum):
    """What happened, as stored in ``security_events.event_type``."""

    SIGN_IN_LINK_REQUESTED = "sign_in_link_requested"
    SIGN_IN_LINK_SENT = "sign_in_link_sent"
    SIGN_IN_LINK_FAILED = "sign_in_link_failed"
    SIGN_IN_LINK_VERIFIED = "sign_in_link_verified"
    SIGN_IN_LINK_EXPIRED = "sign_in_link_expired"
    SIGN_IN_LINK_ALREADY_USED = "sign_in_link_already_used"
    DIRECT_SIGN_IN = "direct_sign_in"
    DIRECT_SIGN_IN_REJECTED = "direct_sign_in_rejected"
    SESSION_CREATED = "session_created"
    SESSION_RESTORED = "session_restored"
    SESSION_REVOKED = "session_revoked"


def _archive_line(row: dict) -> str:
    return json.dumps(
        {
            "id": str(row["id"]),
            "event_type": row["event_type"],
            "email": row["email"],
            "user_id": str(row["user_id"]) if row["user_id"] else None,
            "details": row["details"],
            "created_at": row["created_at"].isoformat(),
        }
    )


class SecurityLogger:
    """Append-only writer (and reader) for security events."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self._db.execute_returning(
            """INSERT INTO security_events (event_type, email, user_id, details, created_at)
               VALUES (%s, %s, %s, %s, %s)
               RETURNING id""",
            (
                event.value,
                email,
                str(user_id) if user_id else None,
                Json(details) if details else None,
                now_utc(),
            ),
        )
        logger.info(f"Security event {event.value} email={email} user_id={user_id}")

    def get_recent_events(
        self,
        email: str | None = None,
        event_type: SecurityEvent | None = None,
        limit: int = 100,
    ) -> list[dict]:
        """Newest events first, optionally narrowed to one email and/or type."""
        filters: list[tuple[str, Any]] = []
        if email:
            filters.append(("email = %s", email))
        if event_type:
            filters.append(("event_type = %s", event_type.value))

        where = " AND ".join(clause for clause, _ in filters) or "1=1"
        params = tuple(value for _, value in filters) + (limit,)

        return self._db.execute(
            f"""SELECT {_EVENT_COLUMNS} FROM security_events
                WHERE {where}
                ORDER BY created_at DESC
                LIMIT %s""",
            params,
        )

    def rotate_logs(self, older_than_days: int, output_path: Path) -> int:
        """Append events older than the cutoff to output_path, then delete them.

        Only the rows actually written to the archive are deleted.

        Returns:
            Number of events moved.
        """
        rows = self._db.execute(
            f"""SELECT {_EVENT_COLUMNS} FROM security_events
                WHERE created_at < %s
                ORDER BY created_at ASC""",
            (days_ago(older_than_days),),
        )
        if not rows:
            return 0

        with open(output_path, "a") as archive:
            archive.writelines(_archive_line(row) + "\n" for row in rows)

        self._db.execute_returning(
            "DELETE FROM security_events WHERE id = ANY(%s) RETURNING id",
            ([row["id"] for row in rows],),
        )
        logger.info(f"Archived {len(rows)} security events to {output_path}")
        return len(rows)
