"""PositionAssignment model and its enums."""

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..database import db
from .types import UTCDateTime, enum_values, utcnow


class AssignmentType(enum.Enum):
    """How a user occupies a position."""

    PERMANENT = "permanent"
    TEMPORARY = "temporary"
    ACTING = "acting"


class AssignmentStatus(enum.Enum):
    """Assignment lifecycle: active -> ended | cancelled."""

    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class PositionAssignment(db.Model):
    """
    A time-bounded record of a user occupying a position.

    Rows are only ever appended or moved out of ACTIVE; history is never
    rewritten. A partial unique index guarantees that a position has at most
    one ACTIVE row no matter how many writers race.
    """

    __tablename__ = "position_assignments"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position_id: Mapped[int] = mapped_column(
        ForeignKey("positions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    assignment_type: Mapped[AssignmentType] = mapped_column(
        Enum(
            AssignmentType,
            name="assignmenttype",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=False,
        default=AssignmentType.PERMANENT,
    )
    start_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    end_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[AssignmentStatus] = mapped_column(
        Enum(
            AssignmentStatus,
            name="assignmentstatus",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=False,
        default=AssignmentStatus.ACTIVE,
        index=True,
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ended_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    previous_assignment_id: Mapped[int | None] = mapped_column(
        ForeignKey("position_assignments.id", ondelete="SET NULL"), nullable=True
    )
    swap_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("occupant_swap_requests.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    previous_assignment: Mapped["PositionAssignment | None"] = relationship(
        "PositionAssignment", remote_side="PositionAssignment.id"
    )

    @property
    def is_active(self) -> bool:
        return self.status == AssignmentStatus.ACTIVE

    def covers(self, at: datetime) -> bool:
        """True when the assignment's [start_at, end_at) interval contains at."""
        if at < self.start_at:
            return False
        return self.end_at is None or at < self.end_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "position_id": self.position_id,
            "user_id": self.user_id,
            "assignment_type": self.assignment_type.value,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "status": self.status.value,
            "reason": self.reason,
            "notes": self.notes,
            "created_by": self.created_by,
            "ended_by": self.ended_by,
            "previous_assignment_id": self.previous_assignment_id,
            "swap_request_id": self.swap_request_id,
        }

    def __repr__(self) -> str:
        return (
            f"<PositionAssignment id={self.id} position={self.position_id} "
            f"user={self.user_id} status={self.status.value}>"
        )


# At most one active assignment per position
Index(
    "uq_position_assignments_one_active",
    PositionAssignment.position_id,
    unique=True,
    sqlite_where=text("status = 'active'"),
    postgresql_where=text("status = 'active'"),
)
Index(
    "ix_position_assignments_position_start",
    PositionAssignment.position_id,
    PositionAssignment.start_at,
)
