"""
Database Connections

Connection handling shared by every store component.

Supports both:
- PostgreSQL (production): Set DATABASE_URL environment variable
- Local SQLite (development): Uses CRAWLER_DB_PATH or an explicit path
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from wikicrawl.core.errors import DuplicateKeyError
from wikicrawl.core.config import Environment, settings

logger = logging.getLogger(__name__)

_SQLITE_TRANSIENT_MESSAGES = (
    "database is locked",
    "database table is locked",
    "database is busy",
)


def is_postgres_mode() -> bool:
    """True when DATABASE_URL selects the PostgreSQL backend."""
    return os.getenv("DATABASE_URL") is not None


def sql_placeholder() -> str:
    """Bind parameter marker of the active driver."""
    if is_postgres_mode():
        return "%s"
    return "?"


def sql_placeholders(count: int) -> str:
    """`count` bind markers joined by commas, for IN (...) lists."""
    if count < 1:
        raise ValueError(f"need at least one placeholder, got {count}")
    return ",".join(sql_placeholder() for _ in range(count))


def get_connection(db_path: str | None = None) -> Any:
    """
    Open a connection to the crawl database.

    PostgreSQL is used whenever DATABASE_URL is set and `db_path` is then
    ignored. Otherwise a SQLite file is opened with foreign keys enforced
    and a busy timeout, so concurrent writers wait instead of failing.

    Raises:
        RuntimeError: running in production without DATABASE_URL
    """
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        import psycopg2

        return psycopg2.connect(database_url)

    if settings.ENVIRONMENT == Environment.PRODUCTION:
        raise RuntimeError("Production requires PostgreSQL: set DATABASE_URL.")

    con = sqlite3.connect(db_path or settings.DB_PATH, timeout=settings.SQLITE_BUSY_TIMEOUT)
    con.execute("PRAGMA foreign_keys = ON")
    return con


def integrity_errors() -> tuple[type[Exception], ...]:
    """Exception types raised on unique / foreign key violations."""
    if is_postgres_mode():
        import psycopg2

        return (psycopg2.IntegrityError,)
    return (sqlite3.IntegrityError,)


def is_transient_error(exc: BaseException) -> bool:
    """
    True for storage failures worth retrying: lock contention, busy
    databases, serialization failures, deadlocks and dropped connections.
    """
    if isinstance(exc, sqlite3.OperationalError):
        message = str(exc).lower()
        return any(m in message for m in _SQLITE_TRANSIENT_MESSAGES)

    if is_postgres_mode():
        import psycopg2

        # Covers lock timeouts, serialization failures, deadlocks and
        # lost connections (all OperationalError subclasses in psycopg2)
        return isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError))

    return False


store_retry = retry(
    retry=retry_if_exception(is_transient_error),
    stop=stop_after_attempt(settings.STORE_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=settings.STORE_RETRY_MAX_WAIT),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
"""Retry a store operation on transient storage errors with bounded backoff."""


@contextmanager
def write_transaction(con: Any) -> Iterator[Any]:
    """
    Run a block inside one write transaction and yield a cursor.

    SQLite takes the write lock up front (BEGIN IMMEDIATE) so that
    select-then-update sequences cannot interleave with other writers.
    PostgreSQL relies on row locks taken by the statements themselves.
    """
    if is_postgres_mode():
        cur = con.cursor()
        try:
            yield cur
            con.commit()
        except BaseException:
            con.rollback()
            raise
        finally:
            cur.close()
        return

    con.isolation_level = None
    cur = con.cursor()
    cur.execute("BEGIN IMMEDIATE")
    try:
        yield cur
        cur.execute("COMMIT")
    except BaseException:
        if con.in_transaction:
            cur.execute("ROLLBACK")
        raise
    finally:
        cur.close()


# Advisory lock key serializing schema creation on PostgreSQL
SCHEMA_LOCK_ID = 731904416


def execute_schema(con: Any, sqlite_schema: str, pg_schema: str) -> None:
    """Create tables and indexes for the active backend, then commit."""
    if not is_postgres_mode():
        con.execute("PRAGMA journal_mode=WAL")
        con.executescript(sqlite_schema)
        return

    statements = [s.strip() for s in pg_schema.split(";") if s.strip()]
    cur = con.cursor()
    try:
        # Held until commit/rollback: concurrent CREATE ... IF NOT EXISTS
        # from workers starting together would otherwise race on the catalog
        cur.execute("SELECT pg_advisory_xact_lock(%s)", (SCHEMA_LOCK_ID,))
        for statement in statements:
            cur.execute(statement)
        con.commit()
    except Exception:
        con.rollback()
        raise
    finally:
        cur.close()


def execute_insert(cur: Any, sql: str, params: tuple) -> None:
    """Execute an INSERT, raising DuplicateKeyError on a constraint violation."""
    try:
        cur.execute(sql, params)
    except integrity_errors() as e:
        raise DuplicateKeyError(str(e)) from e
