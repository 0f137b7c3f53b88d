"""Org audit log model."""

from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from ..database import db
from .types import JSONType, UTCDateTime, utcnow


class AuditImmutableError(RuntimeError):
    """Raised when anything tries to modify or delete an audit entry."""


class OrgAuditLogEntry(db.Model):
    """
    Represents one mutation to assignments, delegations, swaps or the org chart.

    (company_id, sequence) is unique and gives a total order per company.
    Entries are append-only: ORM update and delete attempts are rejected.
    """

    __tablename__ = "org_audit_log"
    __table_args__ = (
        UniqueConstraint("company_id", "sequence", name="uq_org_audit_log_company_sequence"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, index=True
    )
    actor: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    before: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    after: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    related: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "actor": self.actor,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "reason": self.reason,
            "before": self.before,
            "after": self.after,
            "related": self.related,
        }

    def __repr__(self) -> str:
        return (
            f"<OrgAuditLogEntry company={self.company_id} seq={self.sequence} "
            f"action={self.action} {self.entity_type}={self.entity_id}>"
        )


class AuditAction:
    """Audit action names."""

    ASSIGNMENT_CREATED = "assignment_created"
    ASSIGNMENT_ENDED = "assignment_ended"
    ASSIGNMENT_CANCELLED = "assignment_cancelled"

    DELEGATION_CREATED = "delegation_created"
    DELEGATION_APPROVED = "delegation_approved"
    DELEGATION_REJECTED = "delegation_rejected"
    DELEGATION_REVOKED = "delegation_revoked"
    DELEGATION_EXPIRED = "delegation_expired"

    SWAP_INITIATED = "swap_initiated"
    SWAP_FAILED = "swap_failed"
    SWAP_ASSIGNMENTS_ENDED = "swap_assignments_ended"
    SWAP_ASSIGNMENTS_CREATED = "swap_assignments_created"
    SWAP_REASSIGNMENT_SUMMARY = "swap_reassignment_summary"

    DEPARTMENT_CREATED = "department_created"
    DEPARTMENT_UPDATED = "department_updated"
    DEPARTMENT_DEACTIVATED = "department_deactivated"
    POSITION_CREATED = "position_created"
    POSITION_UPDATED = "position_updated"
    POSITION_DEACTIVATED = "position_deactivated"


@event.listens_for(OrgAuditLogEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise AuditImmutableError(f"Audit entry {target.id} is immutable")


@event.listens_for(OrgAuditLogEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AuditImmutableError(f"Audit entry {target.id} cannot be deleted")


Index(
    "ix_org_audit_log_entity",
    OrgAuditLogEntry.entity_type,
    OrgAuditLogEntry.entity_id,
)
Index(
    "ix_org_audit_log_company_timestamp",
    OrgAuditLogEntry.company_id,
    OrgAuditLogEntry.timestamp,
)
