"""Effective-assignee resolution: assignment ledger plus delegation overlay."""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Iterable

from flask import current_app

from ..models.types import ensure_utc, utcnow
from .assignment_ledger import AssignmentLedger
from .delegation_ledger import DelegationLedger
from .performance_monitor import PerformanceMonitor
from .resolution_cache import ResolutionCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DelegationHop:
    delegation_id: int
    from_user_id: str
    to_user_id: str
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "delegation_id": self.delegation_id,
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class EffectiveAssignment:
    """Who should act for a position at an instant."""

    position_id: int | None
    user_id: str | None
    is_delegated: bool
    delegation_id: int | None
    source_assignment_id: int | None
    resolved_at: datetime
    resolution_time_ms: float
    used_cache: bool = False
    occupant_user_id: str | None = None
    delegation_chain: tuple[DelegationHop, ...] = ()
    # True when user_id is the caller's fallback (no position, vacant, or lookup failed)
    fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "position_id": self.position_id,
            "user_id": self.user_id,
            "is_delegated": self.is_delegated,
            "delegation_id": self.delegation_id,
            "source_assignment_id": self.source_assignment_id,
            "occupant_user_id": self.occupant_user_id,
            "delegation_chain": [hop.to_dict() for hop in self.delegation_chain],
            "resolved_at": self.resolved_at.isoformat(),
            "resolution_time_ms": round(self.resolution_time_ms, 3),
            "used_cache": self.used_cache,
            "fallback": self.fallback,
        }


@dataclass
class WorkItemAssignmentContext:
    """Resolution outcome for one work item."""

    item_type: str
    item_id: Any
    original_position_id: int | None
    original_user_id: str | None
    effective_position_id: int | None
    effective_user_id: str | None
    effective_assignment_id: int | None
    resolved_at: datetime
    resolution_time_ms: float
    used_cache: bool = False
    occupant_user_id: str | None = None
    delegation_chain: list[DelegationHop] = field(default_factory=list)
    timed_out: bool = False

    @property
    def is_delegated(self) -> bool:
        return bool(self.delegation_chain)

    def to_dict(self) -> dict:
        return {
            "item_type": self.item_type,
            "item_id": self.item_id,
            "original_position_id": self.original_position_id,
            "original_user_id": self.original_user_id,
            "effective_position_id": self.effective_position_id,
            "effective_user_id": self.effective_user_id,
            "effective_assignment_id": self.effective_assignment_id,
            "occupant_user_id": self.occupant_user_id,
            "is_delegated": self.is_delegated,
            "delegation_chain": [hop.to_dict() for hop in self.delegation_chain],
            "resolved_at": self.resolved_at.isoformat(),
            "resolution_time_ms": round(self.resolution_time_ms, 3),
            "used_cache": self.used_cache,
            "timed_out": self.timed_out,
        }


@dataclass(frozen=True)
class _Resolved:
    """Caller-independent part of a resolution; this is what gets cached."""

    occupant_user_id: str | None
    source_assignment_id: int | None
    delegation: DelegationHop | None
    valid_until: datetime | None


class ResolutionEngine:
    """
    Maps (position, instant) to an EffectiveAssignment.

    resolve() never raises: a failed assignment lookup yields the caller's
    fallback user, and a failed delegation lookup yields the un-delegated
    occupant. Only resolutions for "now" use the cache, and only answers
    computed without error are cached.
    """

    def __init__(
        self,
        assignments: AssignmentLedger,
        delegations: DelegationLedger,
        cache: ResolutionCache | None = None,
        monitor: PerformanceMonitor | None = None,
        max_workers: int = 8,
        default_deadline: float | None = None,
    ):
        self._assignments = assignments
        self._delegations = delegations
        self._cache = cache
        self._monitor = monitor
        self._max_workers = max(1, max_workers)
        self._default_deadline = default_deadline
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = Lock()

    @property
    def cache(self) -> ResolutionCache | None:
        return self._cache

    @property
    def monitor(self) -> PerformanceMonitor | None:
        return self._monitor

    # --- Single position ---

    def resolve(
        self,
        position_id: int | None,
        at: datetime | None = None,
        fallback_user_id: str | None = None,
    ) -> EffectiveAssignment:
        started = time.perf_counter()
        now = utcnow()
        use_cache = at is None and self._cache is not None
        at = ensure_utc(at) if at else now

        if position_id is None:
            # No position, no delegation: carry the caller's user through
            return self._finish(
                started, now, None, _Resolved(None, None, None, None), fallback_user_id, False
            )

        generation = None
        if use_cache:
            entry = self._cache.get(position_id, at)
            if entry is not None:
                return self._finish(started, now, position_id, entry.value, fallback_user_id, True)
            generation = self._cache.generation(position_id)

        resolved, complete = self._compute(position_id, at)
        if use_cache and complete:
            self._cache.put(position_id, resolved, resolved.valid_until, generation=generation)

        return self._finish(started, now, position_id, resolved, fallback_user_id, False)

    def _compute(self, position_id: int, at: datetime) -> tuple[_Resolved, bool]:
        """Returns (resolution, complete). complete is False when a lookup failed."""
        try:
            assignment = self._assignments.get_current_assignment(position_id)
        except Exception as e:
            logger.warning(f"Assignment lookup failed for position {position_id}, using fallback: {e}")
            return _Resolved(None, None, None, None), False

        if assignment is None:
            return _Resolved(None, None, None, None), True

        occupant = assignment.user_id
        try:
            delegation = self._delegations.get_active_delegation(
                position_id, at, delegator_user_id=occupant
            )
            next_start = self._delegations.get_next_delegation_start(
                position_id, at, delegator_user_id=occupant
            )
        except Exception as e:
            logger.warning(
                f"Delegation lookup failed for position {position_id}, "
                f"using occupant {occupant}: {e}"
            )
            return _Resolved(occupant, assignment.id, None, None), False

        hop = None
        boundaries = [next_start]
        if assignment.end_at is not None and assignment.end_at > at:
            boundaries.append(assignment.end_at)
        if delegation is not None:
            # Single hop: the delegate's own delegations are not followed
            hop = DelegationHop(
                delegation_id=delegation.id,
                from_user_id=occupant,
                to_user_id=delegation.delegate_user_id,
                reason=delegation.reason,
            )
            boundaries.append(delegation.end_at)

        valid_until = min((b for b in boundaries if b is not None), default=None)
        return _Resolved(occupant, assignment.id, hop, valid_until), True

    def _finish(
        self,
        started: float,
        now: datetime,
        position_id: int | None,
        resolved: _Resolved,
        fallback_user_id: str | None,
        used_cache: bool,
    ) -> EffectiveAssignment:
        if resolved.occupant_user_id is None:
            user_id = fallback_user_id
            fallback = True
        elif resolved.delegation is not None:
            user_id = resolved.delegation.to_user_id
            fallback = False
        else:
            user_id = resolved.occupant_user_id
            fallback = False

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        if self._monitor is not None:
            self._monitor.record(elapsed_ms, used_cache=used_cache)

        return EffectiveAssignment(
            position_id=position_id,
            user_id=user_id,
            is_delegated=resolved.delegation is not None,
            delegation_id=resolved.delegation.delegation_id if resolved.delegation else None,
            source_assignment_id=resolved.source_assignment_id,
            resolved_at=now,
            resolution_time_ms=elapsed_ms,
            used_cache=used_cache,
            occupant_user_id=resolved.occupant_user_id,
            delegation_chain=(resolved.delegation,) if resolved.delegation else (),
            fallback=fallback,
        )

    # --- Work items ---

    def resolve_work_item(
        self,
        item_type: str,
        item_id: Any,
        position_id: int | None,
        user_id: str | None,
        deadline: float | None = None,
    ) -> WorkItemAssignmentContext:
        """Resolve the effective assignee for one work item.

        With a deadline (seconds), the resolution runs on the worker pool and
        a timeout yields the original assignee instead of blocking.
        """
        deadline = deadline if deadline is not None else self._default_deadline
        if deadline is None:
            return self._context_for(item_type, item_id, position_id, user_id)

        started = time.perf_counter()
        future = self._submit(item_type, item_id, position_id, user_id)
        try:
            return future.result(timeout=deadline)
        except FutureTimeoutError:
            return self._timed_out(item_type, item_id, position_id, user_id, started, deadline)

    def resolve_many(
        self,
        items: Iterable[dict],
        deadline: float | None = None,
    ) -> list[WorkItemAssignmentContext]:
        """Resolve a batch with bounded parallelism, preserving input order.

        Each item is a dict with item_type, item_id, position_id and user_id.
        The deadline bounds the whole batch; items not done by then fall back
        to their original assignee.
        """
        items = list(items)
        if not items:
            return []

        deadline = deadline if deadline is not None else self._default_deadline
        started = time.perf_counter()
        futures: list[Future] = [
            self._submit(
                item.get("item_type", "task"),
                item.get("item_id"),
                item.get("position_id"),
                item.get("user_id"),
            )
            for item in items
        ]

        results = []
        for item, future in zip(items, futures):
            remaining = None
            if deadline is not None:
                remaining = max(0.0, deadline - (time.perf_counter() - started))
            try:
                results.append(future.result(timeout=remaining))
            except FutureTimeoutError:
                results.append(
                    self._timed_out(
                        item.get("item_type", "task"),
                        item.get("item_id"),
                        item.get("position_id"),
                        item.get("user_id"),
                        started,
                        deadline,
                    )
                )

        total_ms = (time.perf_counter() - started) * 1000.0
        logger.info(
            f"Batch resolution: {len(items)} items in {total_ms:.1f}ms "
            f"(avg {total_ms / len(items):.2f}ms/item, "
            f"{sum(1 for r in results if r.used_cache)} cached, "
            f"{sum(1 for r in results if r.timed_out)} timed out)"
        )
        return results

    def _context_for(
        self, item_type: str, item_id: Any, position_id: int | None, user_id: str | None
    ) -> WorkItemAssignmentContext:
        effective = self.resolve(position_id, fallback_user_id=user_id)
        return WorkItemAssignmentContext(
            item_type=item_type,
            item_id=item_id,
            original_position_id=position_id,
            original_user_id=user_id,
            effective_position_id=position_id,
            effective_user_id=effective.user_id,
            effective_assignment_id=effective.source_assignment_id,
            resolved_at=effective.resolved_at,
            resolution_time_ms=effective.resolution_time_ms,
            used_cache=effective.used_cache,
            occupant_user_id=effective.occupant_user_id,
            delegation_chain=list(effective.delegation_chain),
        )

    def _timed_out(
        self,
        item_type: str,
        item_id: Any,
        position_id: int | None,
        user_id: str | None,
        started: float,
        deadline: float,
    ) -> WorkItemAssignmentContext:
        logger.warning(
            f"Resolution for {item_type} {item_id} (position {position_id}) exceeded "
            f"{deadline}s deadline, keeping original assignee {user_id}"
        )
        return WorkItemAssignmentContext(
            item_type=item_type,
            item_id=item_id,
            original_position_id=position_id,
            original_user_id=user_id,
            effective_position_id=position_id,
            effective_user_id=user_id,
            effective_assignment_id=None,
            resolved_at=utcnow(),
            resolution_time_ms=(time.perf_counter() - started) * 1000.0,
            timed_out=True,
        )

    def _submit(
        self, item_type: str, item_id: Any, position_id: int | None, user_id: str | None
    ) -> Future:
        app = current_app._get_current_object()

        def run():
            with app.app_context():
                return self._context_for(item_type, item_id, position_id, user_id)

        return self._get_executor().submit(run)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="resolver"
                )
            return self._executor

    def shutdown(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None

    def invalidate(self, position_id: int) -> None:
        if self._cache is not None:
            self._cache.invalidate(position_id)

