# Overview: Transaction helpers shared by every mutating service operation.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_immediate() covers it.
    populate_existing() refreshes objects already in the identity map.
    """
    return query.with_for_update().populate_existing()


def begin_immediate(session) -> None:
    """
    Take the SQLite write lock up front so read-modify-write units serialize.

    Must be the first statement of the unit of work. No-op on other dialects,
    which rely on lock_for_update().
    """
    if session.get_bind().dialect.name != "sqlite":
        return
    raw = session.connection().connection.driver_connection
    # pysqlite opens its own transaction before the first DML of a unit
    if not raw.in_transaction:
        session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates, so no partial write survives a failed unit.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            session.rollback()
            raise
    if last_exc:
        raise last_exc
