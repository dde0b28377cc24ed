# Overview: Transaction scope, row locking and retry helpers shared by every mutating service.

"""
Every multi-step mutation in the billing engine runs through run_in_transaction().

SQLite:
    SELECT ... FOR UPDATE is ignored, so the scope opens with BEGIN IMMEDIATE.
    That takes the database write lock up front: the stock check and the
    decrement (or the bill read and the settlement write) cannot interleave
    with another writer.

Other dialects:
    lock_for_update() issues SELECT ... FOR UPDATE on the rows a service reads
    before it writes them.

Nesting:
    A service called from inside another service's scope joins the outer
    transaction; only the outermost scope commits, rolls back or retries.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StorageFailure
from ..extensions import db


logger = logging.getLogger(__name__)

_DEPTH_KEY = "cafepos_txn_depth"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the BEGIN IMMEDIATE issued by
    transaction_scope() covers it there.
    """
    return query.with_for_update()


def _scope_depth() -> int:
    return db.session.info.get(_DEPTH_KEY, 0)


def _begin_immediate_if_sqlite() -> None:
    if db.session.get_bind().dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


@contextmanager
def transaction_scope():
    """
    Commit on success, roll back on any exception.

    Nested scopes are transparent: they neither commit nor roll back.
    """
    depth = _scope_depth()
    if depth:
        db.session.info[_DEPTH_KEY] = depth + 1
        try:
            yield db.session
        finally:
            db.session.info[_DEPTH_KEY] = depth
        return

    db.session.info[_DEPTH_KEY] = 1
    try:
        _begin_immediate_if_sqlite()
        yield db.session
        db.session.commit()
    except BaseException:
        db.session.rollback()
        raise
    finally:
        db.session.info[_DEPTH_KEY] = 0


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locked database, deadlocks) and
    StaleDataError (optimistic version conflicts on products). When the
    attempts run out the failure surfaces as StorageFailure, which callers
    may safely retry as a whole.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.warning("Transaction failed after %s attempt(s): %s", attempts, exc)
                raise StorageFailure(
                    "Storage is busy, retry the operation",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))


def run_in_transaction(func, *, attempts: int | None = None):
    """
    Run func inside transaction_scope(), retrying transient storage failures.

    Inside an already open scope func simply joins it.
    """
    if _scope_depth():
        return func()

    def _op():
        with transaction_scope():
            return func()

    return run_with_retry(_op, attempts=attempts)
