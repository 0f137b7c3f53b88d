"""Per-position serialisation for assignment ledger writes.

Provides a blocking lock keyed by position ID, independent of the
application's db.session transactions, so the lock survives the commits
made inside the critical section.

- PostgreSQL: session-scoped advisory lock on a dedicated connection, so
  every process sharing the database is serialised.
- Other dialects: process-local keyed lock, kept only while some thread
  holds or waits for it.

Acquisition is reentrant per thread: a thread that already holds a
position's lock passes straight through. The swap coordinator relies on this
to hold both positions' locks while calling ledger operations that lock the
same positions again.
"""

import logging
import threading
from contextlib import ExitStack, contextmanager
from enum import IntEnum
from typing import Iterable

from sqlalchemy import text

logger = logging.getLogger(__name__)

# Thread-local storage for reentrancy detection
_thread_local = threading.local()

# Process-local locks used when advisory locks are unavailable.
# lock_key -> [lock, threads holding or waiting]; dropped when unused.
_local_locks: dict[tuple[int, int], list] = {}
_local_locks_guard = threading.Lock()


class LockNamespace(IntEnum):
    """Advisory lock namespace identifiers.

    PostgreSQL advisory locks take two int4 keys. The first key is the
    namespace, the second is the entity ID.
    """
    POSITION = 11


class PositionLockError(Exception):
    """Raised when a position lock cannot be acquired in time."""
    pass


def _get_held_locks() -> set:
    """Get the set of currently held lock keys for this thread."""
    if not hasattr(_thread_local, "held_locks"):
        _thread_local.held_locks = set()
    return _thread_local.held_locks


def _checkout_local_lock(lock_key: tuple[int, int]) -> threading.Lock:
    with _local_locks_guard:
        entry = _local_locks.get(lock_key)
        if entry is None:
            entry = _local_locks[lock_key] = [threading.Lock(), 0]
        entry[1] += 1
        return entry[0]


def _return_local_lock(lock_key: tuple[int, int]) -> None:
    with _local_locks_guard:
        entry = _local_locks[lock_key]
        entry[1] -= 1
        if entry[1] == 0:
            del _local_locks[lock_key]


@contextmanager
def _advisory(lock_key: tuple[int, int], timeout: float):
    from ..database import db

    conn = db.engine.connect()
    try:
        # SET does not support bound parameters; timeout_ms is always an int
        timeout_ms = int(timeout * 1000)
        if timeout_ms < 0:
            raise ValueError(f"Invalid lock timeout: {timeout_ms}")
        conn.execute(text(f"SET lock_timeout = '{timeout_ms}ms'"))

        try:
            conn.execute(
                text("SELECT pg_advisory_lock(:ns, :id)"),
                {"ns": lock_key[0], "id": lock_key[1]},
            )
        except Exception as e:
            # lock_timeout can fire after the lock is granted (PostgreSQL Bug #17686)
            try:
                conn.execute(
                    text("SELECT pg_advisory_unlock(:ns, :id)"),
                    {"ns": lock_key[0], "id": lock_key[1]},
                )
            except Exception:
                pass  # Best effort cleanup
            raise PositionLockError(
                f"Failed to acquire position lock {lock_key[1]} within {timeout}s: {e}"
            ) from e

        try:
            yield
        finally:
            try:
                conn.execute(
                    text("SELECT pg_advisory_unlock(:ns, :id)"),
                    {"ns": lock_key[0], "id": lock_key[1]},
                )
            except Exception as e:
                logger.warning(
                    f"Position lock unlock failed (non-fatal): position_id={lock_key[1]}: {e}"
                )
    finally:
        conn.close()


@contextmanager
def _local(lock_key: tuple[int, int], timeout: float):
    lock = _checkout_local_lock(lock_key)
    try:
        if not lock.acquire(timeout=timeout):
            raise PositionLockError(
                f"Failed to acquire position lock {lock_key[1]} within {timeout}s"
            )
        try:
            yield
        finally:
            lock.release()
    finally:
        _return_local_lock(lock_key)


@contextmanager
def position_lock(position_id: int, timeout: float = 15.0):
    """Hold the write lock for one position.

    Args:
        position_id: Position whose assignment ledger is being mutated
        timeout: Maximum seconds to wait for the lock

    Raises:
        PositionLockError: If the lock cannot be acquired within timeout.
    """
    from ..database import is_postgres

    lock_key = (int(LockNamespace.POSITION), int(position_id))
    held = _get_held_locks()
    if lock_key in held:
        yield
        return

    backend = _advisory if is_postgres() else _local
    with backend(lock_key, timeout):
        held.add(lock_key)
        try:
            yield
        finally:
            held.discard(lock_key)


@contextmanager
def position_locks(position_ids: Iterable[int], timeout: float = 15.0):
    """Hold the write locks for several positions.

    Locks are taken in ascending ID order so that two callers locking the
    same pair cannot deadlock.
    """
    with ExitStack() as stack:
        for position_id in sorted(set(position_ids)):
            stack.enter_context(position_lock(position_id, timeout=timeout))
        yield


def holds_position_lock(position_id: int) -> bool:
    """True when the calling thread currently holds the position's lock."""
    return (int(LockNamespace.POSITION), int(position_id)) in _get_held_locks()
