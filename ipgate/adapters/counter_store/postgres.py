"""Postgres-backed access counter store.

Access records live in a single append-only table::

    access(ip TEXT, access_time TIMESTAMPTZ)

The deployment is expected to provision and index it on ``(ip, access_time)``;
``init_schema()`` does so for environments that let the gate own its table.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, TypeVar

import psycopg

from ipgate.adapters.counter_store.base import AbstractCounterStore, WindowCount
from ipgate.adapters.counter_store.connection import ConnectionManager
from ipgate.core.errors import StoreAppError

logger = logging.getLogger(__name__)

T = TypeVar("T")

COUNT_SQL = """
    SELECT count(*), min(access.access_time)
    FROM access
    WHERE access.ip = %s AND access.access_time > %s
"""

INSERT_SQL = "INSERT INTO access (ip, access_time) VALUES (%s, %s)"

LOCK_SQL = "SELECT pg_advisory_xact_lock(hashtext(%s))"

SCHEMA_SQL = (
    """
    CREATE TABLE IF NOT EXISTS access (
        ip TEXT NOT NULL,
        access_time TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS access_ip_access_time_idx ON access (ip, access_time)",
)


def _window_from_row(row: tuple[Any, ...] | None) -> WindowCount:
    if row is None:
        return WindowCount(count=0, reference_time=None)
    count, reference_time = row
    return WindowCount(count=int(count or 0), reference_time=reference_time)


class PostgresCounterStore(AbstractCounterStore):
    """Counter store over one shared psycopg connection.

    The connection is opened lazily by a ``ConnectionManager`` on first use
    and reopened after connectivity failures. Statements are serialized on a
    lock so concurrent evaluations never interleave on the handle.
    """

    def __init__(
        self,
        uri: str | None,
        *,
        retry: int = 1,
        retry_interval: float = 1.0,
        backoff_unit: float = 1.0,
        connect_timeout: int = 10,
    ) -> None:
        self._connect_timeout = connect_timeout
        self._lock = threading.Lock()
        self.connections: ConnectionManager[psycopg.Connection] = ConnectionManager(
            target=uri,
            opener=self._open,
            probe=self._probe,
            closer=self._close_handle,
            retry=retry,
            retry_interval=retry_interval,
            backoff_unit=backoff_unit,
        )

    def _open(self, uri: str) -> psycopg.Connection:
        return psycopg.connect(uri, autocommit=True, connect_timeout=self._connect_timeout)

    @staticmethod
    def _probe(handle: psycopg.Connection) -> None:
        handle.execute("SELECT 1")

    @staticmethod
    def _close_handle(handle: psycopg.Connection) -> None:
        handle.close()

    def _run(self, operation: str, fn: Callable[[psycopg.Connection], T]) -> T:
        handle = self.connections.ensure_connected()
        with self._lock:
            try:
                return fn(handle)
            except psycopg.OperationalError as exc:
                self.connections.invalidate(handle)
                raise self._store_error(operation, exc) from exc
            except psycopg.Error as exc:
                raise self._store_error(operation, exc) from exc

    @staticmethod
    def _store_error(operation: str, exc: Exception) -> StoreAppError:
        logger.error(
            "store.query_failed",
            extra={
                "operation": operation,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        return StoreAppError(
            code="store_query_failed",
            message=f"datastore {operation} failed: {exc}",
            details={"backend": "postgres", "operation": operation},
        )

    def now(self) -> datetime:
        row = self._run("now", lambda conn: conn.execute("SELECT now()").fetchone())
        return row[0]

    def count_since(self, identity: str, window_start: datetime) -> WindowCount:
        row = self._run(
            "count",
            lambda conn: conn.execute(COUNT_SQL, (identity, window_start)).fetchone(),
        )
        return _window_from_row(row)

    def append(self, identity: str, timestamp: datetime) -> None:
        self._run("append", lambda conn: conn.execute(INSERT_SQL, (identity, timestamp)))

    def count_and_append(
        self,
        identity: str,
        timestamp: datetime,
        window_start: datetime,
        limit: int,
    ) -> WindowCount:
        def _locked(conn: psycopg.Connection) -> WindowCount:
            with conn.transaction():
                conn.execute(LOCK_SQL, (identity,))
                window = _window_from_row(
                    conn.execute(COUNT_SQL, (identity, window_start)).fetchone()
                )
                if window.count < limit:
                    conn.execute(INSERT_SQL, (identity, timestamp))
            return window

        return self._run("count_and_append", _locked)

    def init_schema(self) -> None:
        def _create(conn: psycopg.Connection) -> None:
            for statement in SCHEMA_SQL:
                conn.execute(statement)

        self._run("init_schema", _create)
        logger.info("store.schema_ready")

    def close(self) -> None:
        self.connections.shutdown()
