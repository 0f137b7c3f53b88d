"""OccupantSwapRequest model and SwapStatus enum."""

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..database import db
from .types import JSONType, UTCDateTime, enum_values, utcnow


class SwapStatus(enum.Enum):
    """
    Swap lifecycle.

    pending -> validating -> ended_old_assignments -> created_new_assignments
    -> reassigning_work_items -> completed | partial_failure.
    failed is reachable from validating only.
    """

    PENDING = "pending"
    VALIDATING = "validating"
    ENDED_OLD_ASSIGNMENTS = "ended_old_assignments"
    CREATED_NEW_ASSIGNMENTS = "created_new_assignments"
    REASSIGNING_WORK_ITEMS = "reassigning_work_items"
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


class OccupantSwapRequest(db.Model):
    """
    Tracks one two-position occupant swap from initiation to a terminal state.

    The row is created before validation so that rejected swaps are recorded
    too. Counters and the error list are filled in by the coordinator as the
    work-item fan-out completes.
    """

    __tablename__ = "occupant_swap_requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position_a_id: Mapped[int] = mapped_column(
        ForeignKey("positions.id", ondelete="CASCADE"), nullable=False
    )
    position_b_id: Mapped[int] = mapped_column(
        ForeignKey("positions.id", ondelete="CASCADE"), nullable=False
    )
    user_a_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_b_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    old_assignment_a_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    old_assignment_b_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_assignment_a_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_assignment_b_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    effective_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    requested_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[SwapStatus] = mapped_column(
        Enum(
            SwapStatus,
            name="swapstatus",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=False,
        default=SwapStatus.PENDING,
        index=True,
    )
    tasks_reassigned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    projects_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    approvals_transferred: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            SwapStatus.COMPLETED,
            SwapStatus.PARTIAL_FAILURE,
            SwapStatus.FAILED,
        )

    @property
    def reassignment_details(self) -> dict:
        return {
            "tasks_reassigned": self.tasks_reassigned or 0,
            "projects_updated": self.projects_updated or 0,
            "approvals_transferred": self.approvals_transferred or 0,
            "errors": list(self.errors or []),
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "position_a_id": self.position_a_id,
            "position_b_id": self.position_b_id,
            "user_a_id": self.user_a_id,
            "user_b_id": self.user_b_id,
            "old_assignment_a_id": self.old_assignment_a_id,
            "old_assignment_b_id": self.old_assignment_b_id,
            "new_assignment_a_id": self.new_assignment_a_id,
            "new_assignment_b_id": self.new_assignment_b_id,
            "reason": self.reason,
            "notes": self.notes,
            "effective_date": self.effective_date.isoformat() if self.effective_date else None,
            "requested_by": self.requested_by,
            "status": self.status.value,
            "reassignment_details": self.reassignment_details,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<OccupantSwapRequest id={self.id} positions={self.position_a_id}<->"
            f"{self.position_b_id} status={self.status.value}>"
        )
