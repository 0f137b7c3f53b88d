"""Delegation model and DelegationStatus enum."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..database import db
from .types import UTCDateTime, enum_values, utcnow


class DelegationStatus(enum.Enum):
    """
    Delegation lifecycle.

    pending -> active (approved) | rejected | revoked
    active -> expired | revoked
    """

    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    REJECTED = "rejected"


class Delegation(db.Model):
    """
    A time-bounded transfer of a position's authority to another user.

    Delegations overlay the assignment ledger without touching it: while an
    ACTIVE delegation's [start_at, end_at) covers an instant, the delegate is
    the effective assignee for the delegator's position.
    """

    __tablename__ = "delegations"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    delegator_position_id: Mapped[int] = mapped_column(
        ForeignKey("positions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    delegator_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    delegate_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    delegate_position_id: Mapped[int | None] = mapped_column(
        ForeignKey("positions.id", ondelete="SET NULL"), nullable=True
    )
    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[DelegationStatus] = mapped_column(
        Enum(
            DelegationStatus,
            name="delegationstatus",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=False,
        default=DelegationStatus.PENDING,
        index=True,
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    def covers(self, at: datetime) -> bool:
        return self.start_at <= at < self.end_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "delegator_position_id": self.delegator_position_id,
            "delegator_user_id": self.delegator_user_id,
            "delegate_user_id": self.delegate_user_id,
            "delegate_position_id": self.delegate_position_id,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "status": self.status.value,
            "reason": self.reason,
            "notes": self.notes,
            "requires_approval": self.requires_approval,
            "approved_by": self.approved_by,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "revoked_by": self.revoked_by,
            "rejection_reason": self.rejection_reason,
        }

    def __repr__(self) -> str:
        return (
            f"<Delegation id={self.id} position={self.delegator_position_id} "
            f"{self.delegator_user_id}->{self.delegate_user_id} status={self.status.value}>"
        )


Index(
    "ix_delegations_position_status_window",
    Delegation.delegator_position_id,
    Delegation.status,
    Delegation.start_at,
)
