# Overview: Transaction helpers shared by every ledger-mutating service.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Balances are never read-then-written; the lock only keeps the loaded
    snapshot consistent for precondition checks.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute one unit of work as an all-or-nothing transaction.

    func must commit on success. Any exception rolls back the whole session
    so no partial write survives. OperationalError (locks, deadlocks) and
    StaleDataError (optimistic version conflicts) are retried with backoff;
    everything else propagates to the caller unchanged.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


def begin_immediate():
    """
    Take the SQLite write lock at the start of a unit of work.

    WHY: pysqlite opens transactions lazily, so two writers can both read
    and then collide on the upgrade to a write lock. BEGIN IMMEDIATE makes
    the second writer wait on busy_timeout instead. No-op on other dialects
    (they rely on the conditional UPDATEs and row locks) and when the
    connection is already inside a transaction.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.driver_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))
