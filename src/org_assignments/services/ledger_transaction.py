"""Retrying transaction runner for ledger and hierarchy writes."""

import logging
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError

from ..database import db
from ..errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TransactionMetrics:
    """Counters for monitoring write contention."""

    committed: int = 0
    retries: int = 0
    conflicts: int = 0
    last_conflict: str | None = None
    _lock: Lock = field(default_factory=Lock)

    def record_commit(self, retries: int) -> None:
        with self._lock:
            self.committed += 1
            self.retries += retries

    def record_conflict(self, description: str) -> None:
        with self._lock:
            self.conflicts += 1
            self.last_conflict = description

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "committed": self.committed,
                "retries": self.retries,
                "conflicts": self.conflicts,
                "last_conflict": self.last_conflict,
            }


class TransactionRunner:
    """
    Runs a unit of work in db.session and commits it, retrying on lost races.

    The work callable must re-read whatever state it depends on, because a
    retry starts from a rolled-back session. IntegrityError (a unique index
    rejected the write) and OperationalError (serialisation failure, lock
    timeout, SQLite busy) are retried with exponential backoff. Once retries
    are exhausted the loser gets ConflictError. Any other exception rolls
    back and propagates unchanged.
    """

    def __init__(self, max_retries: int = 5, retry_delay_ms: int = 50) -> None:
        self._max_retries = max(1, max_retries)
        self._retry_delay_ms = retry_delay_ms
        self._metrics = TransactionMetrics()

    @property
    def metrics(self) -> TransactionMetrics:
        return self._metrics

    def run(self, work: Callable[[], T], description: str) -> T:
        last_error = None

        for attempt in range(self._max_retries):
            try:
                result = work()
                db.session.commit()
                self._metrics.record_commit(attempt)
                return result

            except (IntegrityError, OperationalError) as e:
                db.session.rollback()
                last_error = e
                logger.warning(
                    f"{description}: lost race on attempt "
                    f"{attempt + 1}/{self._max_retries}: {type(e).__name__}: {e.orig}"
                )
                if attempt < self._max_retries - 1:
                    # Exponential backoff
                    delay = (self._retry_delay_ms / 1000.0) * (2**attempt)
                    time.sleep(delay)

            except Exception:
                db.session.rollback()
                raise

        self._metrics.record_conflict(description)
        logger.error(f"{description}: giving up after {self._max_retries} attempts")
        raise ConflictError(
            f"{description}: concurrent modification, retry later"
        ) from last_error
