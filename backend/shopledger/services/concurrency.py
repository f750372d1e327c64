# Overview: Transaction boundary helpers shared by every mutating ledger operation.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id
    columns turn a lost update into StaleDataError at flush time.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute one ledger operation as an all-or-nothing unit.

    Any exception rolls the session back before it propagates, so a failed
    post/cancel/approve never leaves half-applied stock or balances behind.
    OperationalError (locks, deadlocks) and StaleDataError (optimistic
    version conflicts) are retried; the retry re-reads fresh rows and
    re-runs every availability check.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
