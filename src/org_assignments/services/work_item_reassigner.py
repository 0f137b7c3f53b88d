"""Moves open work items to a position's new effective assignee."""

import logging
import time
from dataclasses import dataclass, field

from ..database import db
from ..models.work_item import WorkItemType
from .event_bus import AssignmentChanged, DelegationChanged
from .resolution_engine import ResolutionEngine, WorkItemAssignmentContext
from .work_item_store import WorkItemStore

logger = logging.getLogger(__name__)

APPROVAL_LIKE = frozenset(
    {WorkItemType.APPROVAL, WorkItemType.QUALITY_CHECK, WorkItemType.SAFETY_INSPECTION}
)

# Delegation changes that alter who should act on a position
REFRESH_ON_DELEGATION = frozenset({"activated", "revoked", "expired"})


@dataclass
class ReassignmentResult:
    """Outcome of reassigning one position's open work items."""

    position_id: int
    updated: int = 0
    errors: list[str] = field(default_factory=list)
    tasks_reassigned: int = 0
    projects_updated: int = 0
    approvals_transferred: int = 0
    duration_ms: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors

    def count(self, item_type: WorkItemType) -> None:
        self.updated += 1
        if item_type == WorkItemType.TASK:
            self.tasks_reassigned += 1
        elif item_type == WorkItemType.PROJECT:
            self.projects_updated += 1
        elif item_type in APPROVAL_LIKE:
            self.approvals_transferred += 1

    def to_dict(self) -> dict:
        return {
            "position_id": self.position_id,
            "updated": self.updated,
            "errors": list(self.errors),
            "tasks_reassigned": self.tasks_reassigned,
            "projects_updated": self.projects_updated,
            "approvals_transferred": self.approvals_transferred,
            "duration_ms": round(self.duration_ms, 3),
            "timed_out": self.timed_out,
        }


class WorkItemReassigner:
    """
    Best-effort bulk update of a position's open work items.

    Each item is updated and committed on its own; a failing item is rolled
    back, recorded in the result's errors and skipped. Items still pending
    when the deadline passes keep their current assignee and are reported as
    errors so an operator can pick them up.
    """

    def __init__(
        self,
        engine: ResolutionEngine,
        store: WorkItemStore | None = None,
        sla_seconds: float = 60.0,
        deadline_seconds: float | None = None,
        auto_on_assignment_change: bool = True,
        auto_on_delegation_change: bool = True,
    ):
        self._engine = engine
        self._store = store or WorkItemStore()
        self._sla_seconds = sla_seconds
        self._deadline_seconds = deadline_seconds
        self._auto_on_assignment_change = auto_on_assignment_change
        self._auto_on_delegation_change = auto_on_delegation_change

    @property
    def store(self) -> WorkItemStore:
        return self._store

    def reassign(
        self,
        position_id: int,
        old_user_id: str | None,
        new_user_id: str | None,
        deadline: float | None = None,
    ) -> ReassignmentResult:
        """Point every open item of the position at its current effective assignee.

        new_user_id is the fallback when the position turns out to be vacant.
        """
        deadline = deadline if deadline is not None else self._deadline_seconds
        started = time.perf_counter()
        result = ReassignmentResult(position_id=position_id)

        effective = self._engine.resolve(position_id, fallback_user_id=new_user_id)
        context_template = dict(
            original_position_id=position_id,
            original_user_id=old_user_id,
            effective_position_id=position_id,
            effective_user_id=effective.user_id,
            effective_assignment_id=effective.source_assignment_id,
            resolved_at=effective.resolved_at,
            resolution_time_ms=effective.resolution_time_ms,
            used_cache=effective.used_cache,
            occupant_user_id=effective.occupant_user_id,
            delegation_chain=list(effective.delegation_chain),
        )

        try:
            pending = self._store.find_open_ids(position_id)
        except Exception as e:
            db.session.rollback()
            result.errors.append(f"position {position_id}: could not list open work items: {e}")
            logger.error(f"Reassignment for position {position_id} aborted: {e}")
            return result

        for index, (item_id, item_type) in enumerate(pending):
            if deadline is not None and time.perf_counter() - started > deadline:
                result.timed_out = True
                for skipped_id, skipped_type in pending[index:]:
                    result.errors.append(
                        f"{skipped_type.value} {skipped_id}: not reassigned, "
                        f"deadline of {deadline}s exceeded"
                    )
                break

            context = WorkItemAssignmentContext(
                item_type=item_type.value, item_id=item_id, **context_template
            )
            try:
                self._store.update_assignee(item_id, context, reassigned_from_user_id=old_user_id)
                db.session.commit()
                result.count(item_type)
            except Exception as e:
                db.session.rollback()
                result.errors.append(f"{item_type.value} {item_id}: {e}")
                logger.warning(
                    f"Failed to reassign {item_type.value} {item_id} on position "
                    f"{position_id}: {e}"
                )

        result.duration_ms = (time.perf_counter() - started) * 1000.0
        if result.duration_ms > self._sla_seconds * 1000.0:
            logger.warning(
                f"SLA violation: reassignment of position {position_id} took "
                f"{result.duration_ms:.0f}ms for {len(pending)} items"
            )
        logger.info(
            f"Reassigned position {position_id} {old_user_id} -> {effective.user_id}: "
            f"{result.updated}/{len(pending)} items, {len(result.errors)} errors"
        )
        return result

    # --- Event subscribers ---

    def on_assignment_changed(self, event: AssignmentChanged) -> None:
        # The swap coordinator drives its own reassignment
        if event.swap_id is not None or not self._auto_on_assignment_change:
            return
        if event.change != "assigned":
            return
        self.reassign(event.position_id, event.old_user_id, event.new_user_id)

    def on_delegation_changed(self, event: DelegationChanged) -> None:
        if not self._auto_on_delegation_change:
            return
        if event.change in REFRESH_ON_DELEGATION or (
            event.change == "created" and event.status == "active"
        ):
            self.refresh_for_delegation(event)

    def refresh_for_delegation(self, event: DelegationChanged) -> ReassignmentResult:
        """Re-resolve the delegator position's open items after a delegation change."""
        if event.status == "active":
            old_user_id, new_user_id = event.delegator_user_id, event.delegator_user_id
        else:
            old_user_id, new_user_id = event.delegate_user_id, event.delegator_user_id
        return self.reassign(event.position_id, old_user_id, new_user_id)
