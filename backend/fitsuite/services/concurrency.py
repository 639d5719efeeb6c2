# Overview: Service-layer helpers for transactional units; locking and retry on conflicts.

from __future__ import annotations

import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


DEFAULT_RETRY_ON = (OperationalError, StaleDataError)

# Units that claim a unique key (idempotency markers, history entries) also
# retry on IntegrityError: the re-run observes the committed claim and no-ops.
CLAIM_RETRY_ON = (OperationalError, StaleDataError, IntegrityError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=DEFAULT_RETRY_ON):
    """
    Execute a DB operation with retry on concurrency-related failures.

    `func` must be a complete unit: it reads current state, stages every
    write and commits. On a retryable failure the session is rolled back
    and the unit runs again from scratch, so nothing is half-applied.
    Non-retryable exceptions roll back and propagate.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
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
