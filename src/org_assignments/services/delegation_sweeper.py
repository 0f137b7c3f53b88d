"""Delegation sweeper for time-driven delegation changes.

Delegation windows open and close on the clock, not on a write, so no
ledger event fires when they do. The sweeper periodically:

1. Expires active delegations whose window has closed. Expiry publishes a
   DelegationChanged event, and the reassigner's subscriber re-resolves the
   delegator position's open work items.
2. Re-resolves the open work items of every position whose delegation
   window opened since the previous pass.

The first pass treats every currently open window as newly opened, which
catches up on anything that changed while the service was down.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime

from flask import Flask

from ..config import get_value
from ..database import db
from ..models.types import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Defaults (overridden by config.yaml -> delegations section)
DEFAULT_INTERVAL_SECONDS = 30


@dataclass
class SweepResult:
    """Result of a single sweeper pass."""

    expired: list[int] = field(default_factory=list)
    opened: list[int] = field(default_factory=list)
    positions_refreshed: int = 0
    items_updated: int = 0
    errors: list[str] = field(default_factory=list)


class DelegationSweeper:
    """Background service that applies delegation windows as they open and close."""

    def __init__(self, app: Flask, service, config: dict) -> None:
        self._app = app
        self._service = service
        self._enabled = get_value(config, "delegations", "sweep_enabled", default=True)
        self._interval = get_value(
            config, "delegations", "sweep_interval_seconds", default=DEFAULT_INTERVAL_SECONDS
        )
        self._last_sweep_at: datetime | None = None
        self._passes = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stats(self) -> dict:
        return {
            "enabled": self._enabled,
            "running": self.is_running,
            "interval_seconds": self._interval,
            "passes": self._passes,
            "last_sweep_at": self._last_sweep_at.isoformat() if self._last_sweep_at else None,
        }

    def start(self) -> None:
        """Start the sweeper background thread."""
        if not self._enabled:
            logger.info("Delegation sweeper disabled by config")
            return

        if self.is_running:
            logger.warning("Delegation sweeper already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sweep_loop, daemon=True, name="DelegationSweeper"
        )
        self._thread.start()
        logger.info(f"Delegation sweeper started (interval={self._interval}s)")

    def stop(self) -> None:
        """Stop the sweeper gracefully."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
            self._thread = None
            logger.info("Delegation sweeper stopped")

    def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                with self._app.app_context():
                    result = self.sweep_once()
                if result.expired or result.opened:
                    logger.info(
                        f"Delegation sweep: expired={result.expired}, opened={result.opened}, "
                        f"positions_refreshed={result.positions_refreshed}, "
                        f"items_updated={result.items_updated}, errors={len(result.errors)}"
                    )
            except Exception:
                logger.exception("Delegation sweep failed")

            self._stop_event.wait(timeout=self._interval)

    def sweep_once(self, now: datetime | None = None) -> SweepResult:
        """Run one pass. Requires an application context."""
        now = ensure_utc(now) if now else utcnow()
        result = SweepResult()

        result.expired = [d.id for d in self._service.delegations.expire_due(now)]

        opened = self._service.delegations.list_opened_since(self._last_sweep_at, now)
        result.opened = [d.id for d in opened]

        refreshed: set[int] = set()
        for delegation in opened:
            position_id = delegation.delegator_position_id
            if position_id in refreshed:
                continue
            refreshed.add(position_id)
            self._service.engine.invalidate(position_id)
            try:
                outcome = self._service.reassigner.reassign(
                    position_id, delegation.delegator_user_id, delegation.delegator_user_id
                )
            except Exception as e:
                db.session.rollback()
                result.errors.append(f"position {position_id}: {e}")
                logger.warning(f"Delegation sweep could not refresh position {position_id}: {e}")
                continue
            result.items_updated += outcome.updated
            result.errors.extend(outcome.errors)

        result.positions_refreshed = len(refreshed)
        self._last_sweep_at = now
        self._passes += 1
        return result
