# Overview: Locking and retry helpers shared by the allocation and batch services.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


_variant_locks: dict[str, threading.Lock] = {}
_variant_locks_guard = threading.Lock()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _lock_for_variant(variant_id: str) -> threading.Lock:
    with _variant_locks_guard:
        lock = _variant_locks.get(variant_id)
        if lock is None:
            lock = threading.Lock()
            _variant_locks[variant_id] = lock
        return lock


@contextmanager
def variant_allocation_lock(variant_id: str):
    """
    Serialize allocation passes for one variant within this process.

    Row locks on the variant's batches (lock_for_update) cover other processes on
    databases that honor them; this lock covers SQLite and same-process threads.
    Hold it for the whole read-batches / read-allocations / write-allocation sequence.
    """
    lock = _lock_for_variant(variant_id)
    with lock:
        yield


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
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
