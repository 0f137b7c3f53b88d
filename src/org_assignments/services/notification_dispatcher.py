"""Fire-and-forget delivery of org change notifications."""

import logging
import threading
from queue import Empty, Full, Queue
from typing import Any, Callable, Optional

from .event_bus import AssignmentChanged, DelegationChanged

logger = logging.getLogger(__name__)

Sink = Callable[[dict[str, Any]], None]


def log_sink(notification: dict[str, Any]) -> None:
    """Default sink: write the notification to the application log."""
    logger.info(f"Notification: {notification.get('type')} {notification}")


class NotificationDispatcher:
    """Bounded queue drained by a daemon thread into registered sinks.

    Publishers never block: when the queue is full the notification is
    dropped and counted. Sink failures are logged and counted; they never
    reach the publisher.
    """

    def __init__(self, enabled: bool = True, queue_size: int = 1000) -> None:
        self.enabled = enabled
        self._queue: Queue = Queue(maxsize=queue_size)
        self._sinks: list[Sink] = []
        self._lock = threading.Lock()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()
        self._delivered = 0
        self._dropped = 0
        self._failed = 0

    def add_sink(self, sink: Sink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def start(self) -> None:
        """Start the delivery thread."""
        if self._running:
            return
        self._running = True
        self._shutdown_event.clear()
        self._thread = threading.Thread(
            target=self._delivery_loop, daemon=True, name="org-notifications",
        )
        self._thread.start()
        logger.info("NotificationDispatcher started")

    def stop(self) -> None:
        """Stop the delivery thread; undelivered notifications stay queued."""
        if not self._running:
            return
        self._running = False
        self._shutdown_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
        logger.info("NotificationDispatcher stopped")

    def notify(self, notification: dict[str, Any]) -> bool:
        """Queue a notification. Returns False if disabled or dropped."""
        if not self.enabled:
            return False
        try:
            self._queue.put_nowait(notification)
            return True
        except Full:
            with self._lock:
                self._dropped += 1
            logger.warning(f"Notification queue full, dropping {notification.get('type')}")
            return False

    def on_event(self, event: AssignmentChanged | DelegationChanged) -> None:
        """Event bus subscriber."""
        self.notify(event.to_dict())

    def drain(self) -> int:
        """Deliver everything currently queued on the calling thread."""
        count = 0
        while True:
            try:
                notification = self._queue.get_nowait()
            except Empty:
                return count
            self._deliver(notification)
            count += 1

    def _delivery_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                notification = self._queue.get(timeout=0.5)
            except Empty:
                continue
            self._deliver(notification)

    def _deliver(self, notification: dict[str, Any]) -> None:
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink(notification)
                with self._lock:
                    self._delivered += 1
            except Exception as e:
                with self._lock:
                    self._failed += 1
                logger.error(f"Notification sink failed for {notification.get('type')}: {e}")

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "enabled": self.enabled,
                "running": self._running,
                "queued": self._queue.qsize(),
                "delivered": self._delivered,
                "dropped": self._dropped,
                "failed": self._failed,
                "sinks": len(self._sinks),
            }
