"""
PostgreSQL access for user records and security events.

psycopg2 ThreadedConnectionPool, one pool per database URL shared by every
PostgresClient on that URL. Rows come back as plain dicts and UUID
parameters are sent as strings.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

logger = logging.getLogger(__name__)

Params = Tuple | Dict | None


def _to_db_value(value: Any) -> Any:
    """UUIDs to strings, recursing into lists, tuples and dicts."""
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (list, tuple)):
        return type(value)(_to_db_value(item) for item in value)
    if isinstance(value, dict):
        return {key: _to_db_value(item) for key, item in value.items()}
    return value


class PostgresClient:
    """
    Query helpers over a shared connection pool.

    Usage:
        db = PostgresClient(database_url)
        row = db.execute_single("SELECT * FROM users WHERE id = %s", (user_id,))
        rows = db.execute_returning("UPDATE users SET ... RETURNING id", params)
    """

    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, min_connections: int = 1, max_connections: int = 10):
        self._database_url = database_url
        self._min_connections = min_connections
        self._max_connections = max_connections
        self._pool()

    def _pool(self) -> psycopg2.pool.ThreadedConnectionPool:
        """Pool for this URL, created on first use."""
        with self._pools_lock:
            pool = self._connection_pools.get(self._database_url)
            if pool is None:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._min_connections,
                    maxconn=self._max_connections,
                    dsn=self._database_url,
                    connect_timeout=30,
                )
                self._connection_pools[self._database_url] = pool
                logger.info(f"Connection pool created (max {self._max_connections})")
            return pool

    @contextmanager
    def get_connection(self):
        """Borrow a pooled connection. Rolled back on error, always returned."""
        pool = self._pool()
        conn = pool.getconn()
        if conn is None:
            raise RuntimeError("Connection pool returned no connection")
        try:
            yield conn
        except Exception:
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    def _run(self, query: str, params: Params, always_fetch: bool) -> List[Dict[str, Any]]:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, _to_db_value(params))
                rows = [dict(row) for row in cur.fetchall()] if always_fetch or cur.description else []
                conn.commit()
                return rows

    def execute(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Run a query and return its rows ([] for statements without results)."""
        return self._run(query, params, always_fetch=False)

    def execute_single(self, query: str, params: Params = None) -> Dict[str, Any] | None:
        """First row of the result, or None."""
        rows = self.execute(query, params)
        return rows[0] if rows else None

    def execute_returning(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Run an INSERT/UPDATE/DELETE ... RETURNING and return the returned rows."""
        return self._run(query, params, always_fetch=True)

    def close(self) -> None:
        """Close this URL's pool."""
        with self._pools_lock:
            pool = self._connection_pools.pop(self._database_url, None)
            if pool is not None:
                pool.closeall()

    @classmethod
    def close_all_pools(cls) -> None:
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
