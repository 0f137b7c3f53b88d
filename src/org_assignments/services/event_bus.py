"""In-process event channel for ledger mutations.

Ledgers publish typed events after their transaction commits. Subscribers
(cache invalidation, work-item refresh, notifications) run synchronously in
registration order on the publishing thread. A failing subscriber is logged
and skipped; it never fails the ledger call that published the event.
"""

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssignmentChanged:
    """An assignment for a position was created, ended or cancelled."""

    company_id: int
    position_id: int
    assignment_id: int
    change: str  # "assigned" | "ended" | "cancelled"
    old_user_id: str | None = None
    new_user_id: str | None = None
    actor: str | None = None
    swap_id: int | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = "assignment_changed"
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


@dataclass(frozen=True)
class DelegationChanged:
    """A delegation on a position changed status."""

    company_id: int
    position_id: int
    delegation_id: int
    change: str  # "created" | "activated" | "rejected" | "revoked" | "expired"
    status: str
    delegator_user_id: str
    delegate_user_id: str
    actor: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = "delegation_changed"
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


OrgEvent = AssignmentChanged | DelegationChanged
Handler = Callable[[OrgEvent], None]


class EventBus:
    """Thread-safe subscriber registry with synchronous, ordered dispatch."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[type, Handler, str]] = []
        self._lock = threading.Lock()
        self._published = 0
        self._handler_errors = 0

    def subscribe(self, event_type: type, handler: Handler, name: str | None = None) -> None:
        """Register handler for events of event_type (or any event when event_type is object)."""
        label = name or getattr(handler, "__qualname__", repr(handler))
        with self._lock:
            self._subscribers.append((event_type, handler, label))
        logger.debug(f"EventBus subscriber registered: {label} for {event_type.__name__}")

    def unsubscribe(self, handler: Handler) -> None:
        with self._lock:
            self._subscribers = [s for s in self._subscribers if s[1] != handler]

    def publish(self, event: OrgEvent) -> int:
        """Deliver event to every matching subscriber.

        Returns:
            Number of subscribers that handled the event without raising.
        """
        with self._lock:
            subscribers = list(self._subscribers)
            self._published += 1

        delivered = 0
        for event_type, handler, label in subscribers:
            if not isinstance(event, event_type):
                continue
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                with self._lock:
                    self._handler_errors += 1
                logger.error(
                    f"EventBus subscriber {label} failed on {type(event).__name__} "
                    f"(position={event.position_id}): {e}",
                    exc_info=True,
                )
        return delivered

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "subscribers": len(self._subscribers),
                "published": self._published,
                "handler_errors": self._handler_errors,
            }
