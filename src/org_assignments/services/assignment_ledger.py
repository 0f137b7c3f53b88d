"""Assignment ledger: who occupies which position, and since when."""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import or_, select

from ..database import db
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..models.assignment import AssignmentStatus, AssignmentType, PositionAssignment
from ..models.audit import AuditAction
from ..models.types import ensure_utc, utcnow
from .audit_log import AuditLog
from .event_bus import AssignmentChanged, EventBus
from .ledger_transaction import TransactionRunner
from .org_hierarchy import OrgHierarchyStore
from .position_lock import position_lock

logger = logging.getLogger(__name__)


@dataclass
class AssignmentConfig:
    """Caller-supplied terms for a new assignment."""

    assignment_type: AssignmentType = AssignmentType.PERMANENT
    start_at: datetime | None = None
    end_at: datetime | None = None
    reason: str | None = None
    notes: str | None = None
    # Linked when the position has no active assignment to supersede
    previous_assignment_id: int | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "AssignmentConfig":
        data = data or {}
        raw_type = data.get("assignment_type") or AssignmentType.PERMANENT.value
        try:
            assignment_type = AssignmentType(raw_type)
        except ValueError:
            raise ValidationError(f"Unknown assignment type {raw_type!r}")
        return cls(
            assignment_type=assignment_type,
            start_at=data.get("start_at"),
            end_at=data.get("end_at"),
            reason=data.get("reason"),
            notes=data.get("notes"),
        )


@dataclass
class PositionHistoryView:
    """A position's assignment history, optionally with the occupant at a given instant."""

    position_id: int
    position_title: str
    department_name: str | None
    assignments: list[PositionAssignment] = field(default_factory=list)
    current: PositionAssignment | None = None
    at: datetime | None = None
    occupant_at: PositionAssignment | None = None

    def to_dict(self) -> dict:
        return {
            "position_id": self.position_id,
            "position_title": self.position_title,
            "department_name": self.department_name,
            "current": self.current.to_dict() if self.current else None,
            "assignments": [a.to_dict() for a in self.assignments],
            "at": self.at.isoformat() if self.at else None,
            "occupant_at": self.occupant_at.to_dict() if self.occupant_at else None,
        }


class AssignmentLedger:
    """
    Exclusive owner of the PositionAssignment lifecycle.

    Every write for a position runs under that position's lock and inside a
    retried transaction, and the partial unique index on active rows rejects
    anything that slips through. Events are published only after commit.
    """

    def __init__(
        self,
        hierarchy: OrgHierarchyStore,
        audit_log: AuditLog,
        event_bus: EventBus | None = None,
        runner: TransactionRunner | None = None,
        lock_timeout: float = 15.0,
    ):
        self._hierarchy = hierarchy
        self._audit = audit_log
        self._events = event_bus
        self._runner = runner or TransactionRunner()
        self._lock_timeout = lock_timeout

    # --- Reads ---

    def get_assignment(self, company_id: int, assignment_id: int) -> PositionAssignment:
        assignment = db.session.get(PositionAssignment, assignment_id)
        if assignment is None or assignment.company_id != company_id:
            raise NotFoundError("assignment", assignment_id)
        return assignment

    def get_current_assignment(self, position_id: int) -> PositionAssignment | None:
        return db.session.execute(
            select(PositionAssignment)
            .where(
                PositionAssignment.position_id == position_id,
                PositionAssignment.status == AssignmentStatus.ACTIVE,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_history(self, company_id: int, position_id: int) -> list[PositionAssignment]:
        """All assignments for a position, most recent first."""
        self._hierarchy.get_position(company_id, position_id)
        return list(
            db.session.execute(
                select(PositionAssignment)
                .where(PositionAssignment.position_id == position_id)
                .order_by(PositionAssignment.start_at.desc(), PositionAssignment.id.desc())
            ).scalars()
        )

    def get_user_assignments(
        self, company_id: int, user_id: str, active_only: bool = False
    ) -> list[PositionAssignment]:
        query = select(PositionAssignment).where(
            PositionAssignment.company_id == company_id,
            PositionAssignment.user_id == user_id,
        )
        if active_only:
            query = query.where(PositionAssignment.status == AssignmentStatus.ACTIVE)
        query = query.order_by(PositionAssignment.start_at.desc(), PositionAssignment.id.desc())
        return list(db.session.execute(query).scalars())

    def get_occupant_at(
        self, company_id: int, position_id: int, at: datetime
    ) -> PositionAssignment | None:
        """The assignment whose [start_at, end_at) contained at, ignoring cancelled ones."""
        self._hierarchy.get_position(company_id, position_id)
        at = ensure_utc(at)
        return db.session.execute(
            select(PositionAssignment)
            .where(
                PositionAssignment.position_id == position_id,
                PositionAssignment.status != AssignmentStatus.CANCELLED,
                PositionAssignment.start_at <= at,
                or_(PositionAssignment.end_at.is_(None), PositionAssignment.end_at > at),
            )
            .order_by(PositionAssignment.start_at.desc(), PositionAssignment.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get_position_history_view(
        self, company_id: int, position_id: int, at: datetime | None = None
    ) -> PositionHistoryView:
        position = self._hierarchy.get_position(company_id, position_id)
        return PositionHistoryView(
            position_id=position.id,
            position_title=position.title,
            department_name=position.department.name if position.department else None,
            assignments=self.get_history(company_id, position_id),
            current=self.get_current_assignment(position_id),
            at=ensure_utc(at) if at else None,
            occupant_at=self.get_occupant_at(company_id, position_id, at) if at else None,
        )

    # --- Writes ---

    def assign(
        self,
        company_id: int,
        position_id: int,
        user_id: str,
        config: AssignmentConfig | None = None,
        actor: str | None = None,
        swap_id: int | None = None,
    ) -> PositionAssignment:
        """End the position's active assignment (if any) and open a new one, atomically.

        Raises:
            NotFoundError: position absent or belongs to another company
            ValidationError: inactive position, blank user, bad interval
            ConflictError: lost the race for the position after all retries
        """
        config = config or AssignmentConfig()
        position = self._hierarchy.get_position(company_id, position_id)
        if not position.is_active:
            raise ValidationError(f"Position {position_id} is inactive")
        if not user_id or not str(user_id).strip():
            raise ValidationError("user_id is required")

        start_at = ensure_utc(config.start_at) if config.start_at else None
        end_at = ensure_utc(config.end_at) if config.end_at else None
        if end_at and end_at <= (start_at or utcnow()):
            raise ValidationError("end_at must be after start_at")

        def work():
            now = utcnow()
            current = self.get_current_assignment(position_id)
            previous = None
            if current is not None:
                previous = (current.id, current.user_id)
                before = current.to_dict()
                current.status = AssignmentStatus.ENDED
                current.end_at = now
                current.ended_by = actor
                db.session.flush()
                self._audit.record(
                    company_id,
                    AuditAction.ASSIGNMENT_ENDED,
                    "assignment",
                    current.id,
                    actor=actor,
                    reason=config.reason,
                    before=before,
                    after=current.to_dict(),
                    related={"position_id": position_id, "swap_id": swap_id},
                )

            assignment = PositionAssignment(
                company_id=company_id,
                position_id=position_id,
                user_id=user_id,
                assignment_type=config.assignment_type,
                start_at=start_at or now,
                end_at=end_at,
                status=AssignmentStatus.ACTIVE,
                reason=config.reason,
                notes=config.notes,
                created_by=actor,
                previous_assignment_id=previous[0] if previous else config.previous_assignment_id,
                swap_request_id=swap_id,
            )
            db.session.add(assignment)
            db.session.flush()
            self._audit.record(
                company_id,
                AuditAction.ASSIGNMENT_CREATED,
                "assignment",
                assignment.id,
                actor=actor,
                reason=config.reason,
                after=assignment.to_dict(),
                related={
                    "position_id": position_id,
                    "previous_assignment_id": assignment.previous_assignment_id,
                    "swap_id": swap_id,
                },
            )
            return assignment, previous

        with position_lock(position_id, timeout=self._lock_timeout):
            assignment, previous = self._runner.run(
                work, f"assign position {position_id}"
            )

        old_user_id = previous[1] if previous else None
        logger.info(
            f"Assigned position {position_id} to {user_id} "
            f"(assignment={assignment.id}, previous={old_user_id}, swap={swap_id})"
        )
        self._publish(
            AssignmentChanged(
                company_id=company_id,
                position_id=position_id,
                assignment_id=assignment.id,
                change="assigned",
                old_user_id=old_user_id,
                new_user_id=user_id,
                actor=actor,
                swap_id=swap_id,
            )
        )
        return assignment

    def end(
        self,
        company_id: int,
        assignment_id: int,
        end_at: datetime | None = None,
        actor: str | None = None,
        reason: str | None = None,
        swap_id: int | None = None,
    ) -> PositionAssignment:
        """Move an active assignment to ended.

        Raises:
            NotFoundError: assignment absent or belongs to another company
            InvalidStateError: assignment is not active
        """
        return self._close(
            company_id,
            assignment_id,
            AssignmentStatus.ENDED,
            AuditAction.ASSIGNMENT_ENDED,
            "end",
            end_at=end_at,
            actor=actor,
            reason=reason,
            swap_id=swap_id,
        )

    def cancel(
        self,
        company_id: int,
        assignment_id: int,
        actor: str | None = None,
        reason: str | None = None,
    ) -> PositionAssignment:
        """Move an active assignment to cancelled (it never should have existed)."""
        return self._close(
            company_id,
            assignment_id,
            AssignmentStatus.CANCELLED,
            AuditAction.ASSIGNMENT_CANCELLED,
            "cancel",
            actor=actor,
            reason=reason,
        )

    def _close(
        self,
        company_id: int,
        assignment_id: int,
        new_status: AssignmentStatus,
        action: str,
        operation: str,
        end_at: datetime | None = None,
        actor: str | None = None,
        reason: str | None = None,
        swap_id: int | None = None,
    ) -> PositionAssignment:
        existing = self.get_assignment(company_id, assignment_id)
        position_id = existing.position_id
        if end_at is not None:
            end_at = ensure_utc(end_at)

        def work():
            assignment = db.session.get(
                PositionAssignment, assignment_id, populate_existing=True
            )
            if assignment.status != AssignmentStatus.ACTIVE:
                raise InvalidStateError(
                    "assignment", assignment_id, assignment.status.value, operation
                )
            before = assignment.to_dict()
            assignment.status = new_status
            assignment.end_at = end_at or utcnow()
            assignment.ended_by = actor
            db.session.flush()
            self._audit.record(
                company_id,
                action,
                "assignment",
                assignment.id,
                actor=actor,
                reason=reason,
                before=before,
                after=assignment.to_dict(),
                related={"position_id": position_id, "swap_id": swap_id},
            )
            return assignment

        with position_lock(position_id, timeout=self._lock_timeout):
            assignment = self._runner.run(work, f"{operation} assignment {assignment_id}")

        logger.info(
            f"Assignment {assignment_id} {new_status.value} "
            f"(position={position_id}, user={assignment.user_id}, swap={swap_id})"
        )
        self._publish(
            AssignmentChanged(
                company_id=company_id,
                position_id=position_id,
                assignment_id=assignment_id,
                change=new_status.value,
                old_user_id=assignment.user_id,
                new_user_id=None,
                actor=actor,
                swap_id=swap_id,
            )
        )
        return assignment

    def _publish(self, event: AssignmentChanged) -> None:
        if self._events is not None:
            self._events.publish(event)
