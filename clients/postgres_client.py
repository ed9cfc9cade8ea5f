"""
PostgreSQL client with connection pooling and RLS organization isolation.

Uses psycopg2 with ThreadedConnectionPool. Tenant isolation is enforced via
PostgreSQL Row Level Security - the organization ID is read from the request
contextvar and set as app.current_organization_id on each connection.

No organization context = see nothing (RLS blocks all rows). Cross-tenant
jobs such as the recurrence scheduler connect with an admin URL (BYPASSRLS)
and enter organization_context() per tenant before mutating.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.errors
import psycopg2.extras
import psycopg2.pool

from utils.request_context import _current_organization_id

logger = logging.getLogger(__name__)

# Global JSONB registration flag
_jsonb_registered = False


def _convert_params(params: Tuple | Dict | None) -> Tuple | Dict | None:
    """Convert UUID objects to strings and dict payloads to JSONB."""
    if params is None:
        return None

    def convert(value: Any) -> Any:
        if isinstance(value, UUID):
            return str(value)
        if isinstance(value, dict):
            return psycopg2.extras.Json(value)
        if isinstance(value, list):
            return [convert(v) for v in value]
        return value

    if isinstance(params, dict):
        return {k: convert(v) for k, v in params.items()}
    return tuple(convert(v) for v in params)


def is_unique_violation(exc: Exception, constraint: str | None = None) -> bool:
    """True if exc is a unique-constraint violation (optionally on a named constraint)."""
    if not isinstance(exc, psycopg2.errors.UniqueViolation):
        return False
    if constraint is None:
        return True
    diag = getattr(exc, "diag", None)
    return diag is not None and diag.constraint_name == constraint


class Transaction:
    """
    Cursor-backed executor for statements that must commit together.

    Exposes the same execute helpers as PostgresClient so services can hand
    either one to code that only needs to run SQL.
    """

    def __init__(self, cursor):
        self._cursor = cursor

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        self._cursor.execute(query, _convert_params(params))
        if self._cursor.description:
            return [dict(row) for row in self._cursor.fetchall()]
        return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        return self.execute(query, params)


class PostgresClient:
    """
    PostgreSQL client with automatic RLS context from contextvar.

    Usage:
        db = PostgresClient(database_url)

        with organization_context(org_id):
            invoices = db.execute("SELECT * FROM invoices")  # Org's rows only

        # Several statements committed atomically
        with db.transaction() as tx:
            tx.execute_returning("UPDATE invoices ... RETURNING *", params)
            tx.execute_returning("INSERT INTO payments ... RETURNING *", params)
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str):
        self._database_url = database_url
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=2,
                    maxconn=20,
                    dsn=self._database_url,
                    connect_timeout=30,
                )

                global _jsonb_registered
                if not _jsonb_registered:
                    psycopg2.extras.register_default_jsonb(globally=True)
                    _jsonb_registered = True

                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Get connection with RLS context from contextvar."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise RuntimeError("Could not get connection from pool")

            organization_id = _current_organization_id.get()

            with conn.cursor() as cur:
                if organization_id is not None:
                    cur.execute("SET app.current_organization_id = %s", (str(organization_id),))
                else:
                    # Policies read an empty setting as NULL, which matches no rows
                    cur.execute("SET app.current_organization_id = ''")

            yield conn

        finally:
            if conn:
                pool.putconn(conn)

    @contextmanager
    def transaction(self):
        """
        Run several statements in one transaction.

        Commits when the block exits normally, rolls back and re-raises on any
        exception.
        """
        with self.get_connection() as conn:
            try:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    yield Transaction(cur)
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self.transaction() as tx:
            return tx.execute(query, params)

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        row = self.execute_single(query, params)
        return next(iter(row.values())) if row else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE with RETURNING, return results."""
        return self.execute(query, params)

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
