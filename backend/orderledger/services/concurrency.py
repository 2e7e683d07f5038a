# Overview: Transaction boundary helpers: row locks and whole-operation retry.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical read-modify-write sequences.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id
    columns on orders and variants catch the lost update instead, and the
    operation is retried from a fresh read.
    """
    return query.with_for_update()


def get_locked(model, row_id):
    """Fetch one row by primary key with a row lock, or None."""
    query = db.session.query(model).filter_by(id=row_id).populate_existing()
    return lock_for_update(query).first()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a whole DB operation, retrying on concurrency failures.

    Retries on OperationalError (deadlocks, lock timeouts, SQLite "database
    is locked") and StaleDataError (optimistic version conflict). Each retry
    starts from a rolled-back session, so `func` re-reads everything and
    re-checks its preconditions; a half-applied sequence is never resumed.
    Domain errors raised by `func` roll back and propagate immediately.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.info(
                "Retrying after concurrency conflict (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
