# Overview: Serialization points for writes; row locks, per-product locks and retry.

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager

from flask import current_app, has_app_context
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StorageError
from ..extensions import db

logger = logging.getLogger(__name__)


class ProductLockRegistry:
    """
    One re-entrant lock per product id.

    Two writers against the same product are serialized in-process, so a
    stock-sufficiency check and the append that depends on it can never
    interleave with another writer for that product. Writers on different
    products proceed independently.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, threading.RLock] = {}

    def get(self, product_id: int) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[product_id] = lock
            return lock


product_locks = ProductLockRegistry()


@contextmanager
def product_lock(product_id: int):
    lock = product_locks.get(product_id)
    with lock:
        yield


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the session's write transaction eagerly.

    On SQLite this issues BEGIN IMMEDIATE so the reserved lock is taken
    before any balance is read; a concurrent writer then blocks (or fails
    with "database is locked", which run_with_retry handles) instead of
    both passing the same stock check. No-op on other dialects and when the
    connection is already inside a transaction.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.driver_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def _default_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("DB_RETRY_ATTEMPTS", 3))
    return 3


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates unchanged. When the retry budget is exhausted the
    failure surfaces as StorageError (retryable by the caller).
    """
    attempts = attempts or _default_attempts()
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("storage operation failed after %d attempts: %s", attempts, exc)
                raise StorageError(
                    "Storage temporarily unavailable",
                    details={"attempts": attempts, "reason": str(exc.__class__.__name__)},
                ) from exc
            logger.warning("retrying storage operation (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
