"""Two-position occupant swap with work-item migration."""

import logging
from dataclasses import dataclass
from datetime import datetime

from ..database import db
from ..errors import NotFoundError, ValidationError
from ..models.assignment import AssignmentType
from ..models.audit import AuditAction
from ..models.swap import OccupantSwapRequest, SwapStatus
from ..models.types import ensure_utc, utcnow
from .assignment_ledger import AssignmentConfig, AssignmentLedger
from .audit_log import AuditLog
from .ledger_transaction import TransactionRunner
from .notification_dispatcher import NotificationDispatcher
from .org_hierarchy import OrgHierarchyStore
from .position_lock import position_locks
from .work_item_reassigner import ReassignmentResult, WorkItemReassigner

logger = logging.getLogger(__name__)


class InvalidSwapTransitionError(Exception):
    """Raised when a swap status change violates the state machine rules."""

    def __init__(self, result: "SwapTransitionResult"):
        self.result = result
        super().__init__(result.reason)


@dataclass
class SwapTransitionResult:
    """Result of a swap status transition check."""

    valid: bool
    from_status: SwapStatus
    to_status: SwapStatus
    reason: str


# Valid transitions: {from_status: allowed to_statuses}
VALID_TRANSITIONS: dict[SwapStatus, frozenset[SwapStatus]] = {
    SwapStatus.PENDING: frozenset({SwapStatus.VALIDATING}),
    SwapStatus.VALIDATING: frozenset({SwapStatus.ENDED_OLD_ASSIGNMENTS, SwapStatus.FAILED}),
    SwapStatus.ENDED_OLD_ASSIGNMENTS: frozenset({SwapStatus.CREATED_NEW_ASSIGNMENTS}),
    SwapStatus.CREATED_NEW_ASSIGNMENTS: frozenset({SwapStatus.REASSIGNING_WORK_ITEMS}),
    SwapStatus.REASSIGNING_WORK_ITEMS: frozenset(
        {SwapStatus.COMPLETED, SwapStatus.PARTIAL_FAILURE}
    ),
}


def validate_swap_transition(from_status: SwapStatus, to_status: SwapStatus) -> SwapTransitionResult:
    """Pure check of a proposed swap status change."""
    if to_status in VALID_TRANSITIONS.get(from_status, frozenset()):
        return SwapTransitionResult(True, from_status, to_status, "Valid transition")
    return SwapTransitionResult(
        False,
        from_status,
        to_status,
        f"Invalid transition: {from_status.value} -> {to_status.value}",
    )


def is_terminal_status(status: SwapStatus) -> bool:
    return status not in VALID_TRANSITIONS


class OccupantSwapCoordinator:
    """
    Exchanges the occupants of two positions and migrates their open work.

    Validation happens with both position locks held. Until then nothing has
    been mutated and a failure leaves the request in FAILED. Once the first
    assignment has been ended the swap always runs to COMPLETED or
    PARTIAL_FAILURE: later errors are collected into the request's error list
    and never roll back the assignment changes.

    Not idempotent: swapping the same pair twice restores the original
    occupants.
    """

    def __init__(
        self,
        hierarchy: OrgHierarchyStore,
        assignments: AssignmentLedger,
        reassigner: WorkItemReassigner,
        audit_log: AuditLog,
        runner: TransactionRunner | None = None,
        notifier: NotificationDispatcher | None = None,
        lock_timeout: float = 15.0,
        reassignment_deadline: float | None = None,
    ):
        self._hierarchy = hierarchy
        self._assignments = assignments
        self._reassigner = reassigner
        self._audit = audit_log
        self._runner = runner or TransactionRunner()
        self._notifier = notifier
        self._lock_timeout = lock_timeout
        self._reassignment_deadline = reassignment_deadline

    def get_swap(self, company_id: int, swap_id: int) -> OccupantSwapRequest:
        swap = db.session.get(OccupantSwapRequest, swap_id)
        if swap is None or swap.company_id != company_id:
            raise NotFoundError("swap", swap_id)
        return swap

    def swap(
        self,
        company_id: int,
        position_a_id: int,
        position_b_id: int,
        reason: str | None = None,
        notes: str | None = None,
        effective_date: datetime | None = None,
        requested_by: str | None = None,
    ) -> OccupantSwapRequest:
        """Swap the occupants of two positions.

        Raises:
            NotFoundError: either position is absent (no request is recorded)
            ValidationError: same position twice, or either position vacant
                (the request is recorded as FAILED)
        """
        self._hierarchy.get_position(company_id, position_a_id)
        self._hierarchy.get_position(company_id, position_b_id)
        effective_date = ensure_utc(effective_date) if effective_date else utcnow()

        swap_id = self._initiate(
            company_id, position_a_id, position_b_id, reason, notes, effective_date, requested_by
        )
        errors: list[str] = []

        with position_locks([position_a_id, position_b_id], timeout=self._lock_timeout):
            self._advance(company_id, swap_id, SwapStatus.VALIDATING)
            current_a, current_b = self._validate(company_id, swap_id, position_a_id, position_b_id)

            # Capture occupants before any mutation
            user_a, user_b = current_a.user_id, current_b.user_id
            old_a_id, old_b_id = current_a.id, current_b.id
            logger.info(
                f"Swap {swap_id}: position {position_a_id} ({user_a}) <-> "
                f"position {position_b_id} ({user_b}), effective {effective_date.isoformat()}"
            )

            # Committed from here on: failures degrade to partial_failure
            for assignment_id in (old_a_id, old_b_id):
                try:
                    self._assignments.end(
                        company_id,
                        assignment_id,
                        end_at=effective_date,
                        actor=requested_by,
                        reason=reason,
                        swap_id=swap_id,
                    )
                except Exception as e:
                    db.session.rollback()
                    errors.append(f"end assignment {assignment_id}: {e}")
                    logger.error(f"Swap {swap_id}: failed to end assignment {assignment_id}: {e}")
            self._advance(
                company_id,
                swap_id,
                SwapStatus.ENDED_OLD_ASSIGNMENTS,
                action=AuditAction.SWAP_ASSIGNMENTS_ENDED,
                actor=requested_by,
                fields={
                    "user_a_id": user_a,
                    "user_b_id": user_b,
                    "old_assignment_a_id": old_a_id,
                    "old_assignment_b_id": old_b_id,
                },
                strict=False,
                errors=errors,
            )

            new_ids = {}
            for position_id, user_id, previous_id, key in (
                (position_a_id, user_b, old_a_id, "new_assignment_a_id"),
                (position_b_id, user_a, old_b_id, "new_assignment_b_id"),
            ):
                try:
                    created = self._assignments.assign(
                        company_id,
                        position_id,
                        user_id,
                        AssignmentConfig(
                            assignment_type=AssignmentType.PERMANENT,
                            start_at=effective_date,
                            reason=reason,
                            notes=notes,
                            previous_assignment_id=previous_id,
                        ),
                        actor=requested_by,
                        swap_id=swap_id,
                    )
                    new_ids[key] = created.id
                except Exception as e:
                    db.session.rollback()
                    errors.append(f"assign {user_id} to position {position_id}: {e}")
                    logger.error(
                        f"Swap {swap_id}: failed to assign {user_id} to position {position_id}: {e}"
                    )
            self._advance(
                company_id,
                swap_id,
                SwapStatus.CREATED_NEW_ASSIGNMENTS,
                action=AuditAction.SWAP_ASSIGNMENTS_CREATED,
                actor=requested_by,
                fields=new_ids,
                strict=False,
                errors=errors,
            )

        self._advance(company_id, swap_id, SwapStatus.REASSIGNING_WORK_ITEMS, strict=False, errors=errors)
        results = [
            self._reassign(swap_id, position_a_id, user_a, user_b),
            self._reassign(swap_id, position_b_id, user_b, user_a),
        ]

        totals = {
            "tasks_reassigned": sum(r.tasks_reassigned for r in results),
            "projects_updated": sum(r.projects_updated for r in results),
            "approvals_transferred": sum(r.approvals_transferred for r in results),
        }
        for r in results:
            errors.extend(r.errors)

        final = SwapStatus.PARTIAL_FAILURE if errors else SwapStatus.COMPLETED
        self._advance(
            company_id,
            swap_id,
            final,
            action=AuditAction.SWAP_REASSIGNMENT_SUMMARY,
            actor=requested_by,
            fields={**totals, "errors": list(errors), "completed_at": utcnow()},
            strict=False,
            errors=errors,
            related={"per_position": [r.to_dict() for r in results]},
        )

        logger.info(
            f"Swap {swap_id} {final.value}: tasks={totals['tasks_reassigned']} "
            f"projects={totals['projects_updated']} approvals={totals['approvals_transferred']} "
            f"errors={len(errors)}"
        )
        swap = self.get_swap(company_id, swap_id)
        if self._notifier is not None:
            self._notifier.notify({"type": "swap_finished", **swap.to_dict()})
        return swap

    def _initiate(
        self,
        company_id: int,
        position_a_id: int,
        position_b_id: int,
        reason: str | None,
        notes: str | None,
        effective_date: datetime,
        requested_by: str | None,
    ) -> int:
        def work():
            swap = OccupantSwapRequest(
                company_id=company_id,
                position_a_id=position_a_id,
                position_b_id=position_b_id,
                reason=reason,
                notes=notes,
                effective_date=effective_date,
                requested_by=requested_by,
                status=SwapStatus.PENDING,
                started_at=utcnow(),
            )
            db.session.add(swap)
            db.session.flush()
            self._audit.record(
                company_id,
                AuditAction.SWAP_INITIATED,
                "swap",
                swap.id,
                actor=requested_by,
                reason=reason,
                after=swap.to_dict(),
            )
            return swap.id

        return self._runner.run(work, f"initiate swap {position_a_id}<->{position_b_id}")

    def _validate(self, company_id: int, swap_id: int, position_a_id: int, position_b_id: int):
        problem = None
        current_a = current_b = None
        if position_a_id == position_b_id:
            problem = "Cannot swap a position with itself"
        else:
            current_a = self._assignments.get_current_assignment(position_a_id)
            current_b = self._assignments.get_current_assignment(position_b_id)
            vacant = [
                pid for pid, current in ((position_a_id, current_a), (position_b_id, current_b))
                if current is None
            ]
            if vacant:
                problem = f"Position(s) {vacant} have no active assignment"

        if problem is not None:
            self._advance(
                company_id,
                swap_id,
                SwapStatus.FAILED,
                action=AuditAction.SWAP_FAILED,
                fields={"errors": [problem], "completed_at": utcnow()},
                reason=problem,
            )
            logger.warning(f"Swap {swap_id} rejected: {problem}")
            raise ValidationError(problem)

        return current_a, current_b

    def _reassign(
        self, swap_id: int, position_id: int, old_user_id: str, new_user_id: str
    ) -> ReassignmentResult:
        try:
            return self._reassigner.reassign(
                position_id, old_user_id, new_user_id, deadline=self._reassignment_deadline
            )
        except Exception as e:
            db.session.rollback()
            logger.error(f"Swap {swap_id}: reassignment for position {position_id} failed: {e}")
            return ReassignmentResult(
                position_id=position_id,
                errors=[f"position {position_id}: reassignment failed: {e}"],
            )

    def _advance(
        self,
        company_id: int,
        swap_id: int,
        to_status: SwapStatus,
        action: str | None = None,
        actor: str | None = None,
        fields: dict | None = None,
        reason: str | None = None,
        related: dict | None = None,
        strict: bool = True,
        errors: list[str] | None = None,
    ) -> None:
        """Persist a status transition (plus fields and an optional audit entry).

        With strict=False a failure is logged and appended to errors instead
        of raised.
        """

        def work():
            swap = db.session.get(OccupantSwapRequest, swap_id, populate_existing=True)
            check = validate_swap_transition(swap.status, to_status)
            if not check.valid:
                raise InvalidSwapTransitionError(check)
            before_status = swap.status.value
            swap.status = to_status
            for key, value in (fields or {}).items():
                setattr(swap, key, value)
            db.session.flush()
            if action is not None:
                self._audit.record(
                    company_id,
                    action,
                    "swap",
                    swap_id,
                    actor=actor,
                    reason=reason,
                    before={"status": before_status},
                    after=swap.to_dict(),
                    related=related,
                )

        try:
            self._runner.run(work, f"swap {swap_id} -> {to_status.value}")
        except Exception as e:
            if strict:
                raise
            logger.error(f"Swap {swap_id}: could not record {to_status.value}: {e}")
            if errors is not None:
                errors.append(f"swap {swap_id}: could not record {to_status.value}: {e}")
