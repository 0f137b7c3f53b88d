"""WorkItem model, item types and per-type status enums."""

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Enum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ..database import db
from .types import JSONType, UTCDateTime, enum_values, utcnow


class WorkItemType(enum.Enum):
    TASK = "task"
    PROJECT = "project"
    APPROVAL = "approval"
    QUALITY_CHECK = "quality_check"
    SAFETY_INSPECTION = "safety_inspection"


class TaskStatus(enum.Enum):
    TODO = "todo"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"
    CANCELLED = "cancelled"


class ProjectStatus(enum.Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ApprovalStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class InspectionStatus(enum.Enum):
    """Shared by quality checks and safety inspections."""

    SCHEDULED = "scheduled"
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"


STATUS_ENUMS: dict[WorkItemType, type[enum.Enum]] = {
    WorkItemType.TASK: TaskStatus,
    WorkItemType.PROJECT: ProjectStatus,
    WorkItemType.APPROVAL: ApprovalStatus,
    WorkItemType.QUALITY_CHECK: InspectionStatus,
    WorkItemType.SAFETY_INSPECTION: InspectionStatus,
}

# Statuses that still need someone to act
OPEN_STATUSES: dict[WorkItemType, frozenset[enum.Enum]] = {
    WorkItemType.TASK: frozenset(
        {TaskStatus.TODO, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS}
    ),
    WorkItemType.PROJECT: frozenset({ProjectStatus.PLANNING, ProjectStatus.ACTIVE}),
    WorkItemType.APPROVAL: frozenset({ApprovalStatus.PENDING}),
    WorkItemType.QUALITY_CHECK: frozenset(
        {InspectionStatus.SCHEDULED, InspectionStatus.PENDING}
    ),
    WorkItemType.SAFETY_INSPECTION: frozenset(
        {InspectionStatus.SCHEDULED, InspectionStatus.PENDING}
    ),
}


def parse_status(item_type: WorkItemType, status: str) -> enum.Enum:
    """Convert a raw status string to the item type's status enum.

    Raises:
        ValueError: if status is not a member of the type's enum
    """
    return STATUS_ENUMS[item_type](status)


def is_open(item_type: WorkItemType, status: str | enum.Enum) -> bool:
    """True when an item of item_type in status still awaits its assignee."""
    if not isinstance(status, enum.Enum):
        try:
            status = parse_status(item_type, status)
        except ValueError:
            return False
    return status in OPEN_STATUSES[item_type]


def open_status_values(item_type: WorkItemType) -> list[str]:
    return sorted(s.value for s in OPEN_STATUSES[item_type])


class WorkItem(db.Model):
    """
    A task, project, approval, quality check or safety inspection that names a
    position as its responsible party.

    assignee_user_id is the effective assignee (after delegation);
    occupant_user_id is the position occupant the item was resolved from.
    """

    __tablename__ = "work_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_type: Mapped[WorkItemType] = mapped_column(
        Enum(
            WorkItemType,
            name="workitemtype",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    assigned_position_id: Mapped[int | None] = mapped_column(
        ForeignKey("positions.id", ondelete="SET NULL"), nullable=True
    )
    assignee_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    occupant_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_delegated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delegation_chain: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONType, nullable=True
    )
    reassigned_from_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assignment_resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def is_open(self) -> bool:
        return is_open(self.item_type, self.status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "item_type": self.item_type.value,
            "title": self.title,
            "status": self.status,
            "assigned_position_id": self.assigned_position_id,
            "assignee_user_id": self.assignee_user_id,
            "occupant_user_id": self.occupant_user_id,
            "is_delegated": self.is_delegated,
            "delegation_chain": self.delegation_chain or [],
            "reassigned_from_user_id": self.reassigned_from_user_id,
            "assignment_resolved_at": (
                self.assignment_resolved_at.isoformat()
                if self.assignment_resolved_at else None
            ),
        }

    def __repr__(self) -> str:
        return (
            f"<WorkItem id={self.id} type={self.item_type.value} status={self.status} "
            f"position={self.assigned_position_id}>"
        )


Index(
    "ix_work_items_position_type_status",
    WorkItem.assigned_position_id,
    WorkItem.item_type,
    WorkItem.status,
)
