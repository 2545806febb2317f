# Overview: Locking and retry helpers shared by every stock writer.

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StorageFailureError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The in-process key locks below cover SQLite; the StockRecord version
    counter catches writers in other processes.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). `func` must be safe to re-run from the
    top: it re-reads everything it writes.
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
    if last_exc:
        raise last_exc


class KeyedLockRegistry:
    """
    One re-entrant lock per stock key, i.e. (location_id, product_id).

    `hold()` acquires several keys in sorted order, so two transfers running
    in opposite directions between the same locations cannot deadlock.
    Locks are re-entrant so a transfer holding both of its keys can call
    adjust_stock, which takes its own key again.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.RLock] = {}

    def _lock_for(self, key: tuple[str, str]) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: tuple[str, str]):
        acquired = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


stock_locks = KeyedLockRegistry()


def stock_key(product_id: str, location_id: str) -> tuple[str, str]:
    """Canonical lock key: location first, then product."""
    return (location_id, product_id)


def run_storage_write(func, *, description: str):
    """
    run_with_retry for stock writes, with storage errors surfaced as
    StorageFailureError.

    Driver details only go to the log, under the incident reference that is
    handed back to the caller.
    """
    try:
        return run_with_retry(func, attempts=current_app.config.get("STOCK_RETRY_ATTEMPTS", 3))
    except SQLAlchemyError as exc:
        db.session.rollback()
        failure = StorageFailureError()
        logger.error("Storage failure during %s [incident %s]", description, failure.incident_ref, exc_info=exc)
        raise failure from exc
