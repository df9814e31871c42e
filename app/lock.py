from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from app.errors import StoreBusy


DEFAULT_LOCK_TIMEOUT_S = 5.0


def new_store_lock() -> threading.RLock:
    # Re-entrant: a cancel callback can fire while the store already holds the lock.
    return threading.RLock()


@contextmanager
def store_lock(lock: threading.RLock, *, timeout_s: float | None = DEFAULT_LOCK_TIMEOUT_S) -> Iterator[None]:
    """Hold the store lock, waiting at most `timeout_s` for it.

    Raises StoreBusy instead of queueing forever behind a stuck holder.
    `timeout_s=None` waits without a bound.
    """

    acquired = lock.acquire() if timeout_s is None else lock.acquire(timeout=timeout_s)
    if not acquired:
        raise StoreBusy()
    try:
        yield
    finally:
        lock.release()
