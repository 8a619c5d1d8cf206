# Overview: Per-batch serialization helpers (row locks, optimistic-lock retries).

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import HerbBatch


logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    HerbBatch.version_id still catches lost updates there.
    """
    return query.with_for_update()


def load_batch_for_update(batch_id: str) -> HerbBatch | None:
    """Fetch a batch row with a write lock; the unit of consistency is one batch."""
    query = db.session.query(HerbBatch).filter(HerbBatch.batch_id == batch_id)
    return lock_for_update(query).first()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (another writer bumped HerbBatch.version_id first). func must re-read
    everything it mutates, since the session is rolled back between attempts.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("concurrent write conflict (%s), retry %s/%s", type(exc).__name__, attempt + 1, attempts - 1)
            time.sleep(backoff_base * (2 ** attempt))
