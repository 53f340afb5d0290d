# Overview: Transaction, locking and retry helpers shared by the write workflows.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for guarded read-then-write workflows.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (writers are serialized by the
    database lock instead), other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Business errors propagate untouched.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency failure (attempt %d of %d)", attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))


def atomic(func):
    """
    Run func inside the current session transaction and commit once.

    Any exception rolls back every row written by func before re-raising, so
    a failure partway through a multi-row workflow leaves nothing behind.
    """
    def _op():
        try:
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise
    return run_with_retry(_op)
