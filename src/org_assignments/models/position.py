"""Position model."""

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..database import db
from .types import UTCDateTime, utcnow

if TYPE_CHECKING:
    from .company import Company
    from .department import Department


@dataclass(frozen=True)
class ApprovalAuthority:
    """What the occupant of a position may sign off on."""

    expense_ceiling: int = 0
    can_approve_projects: bool = False
    can_approve_budgets: bool = False
    can_approve_quality: bool = False
    can_approve_safety: bool = False
    can_approve_time_off: bool = False

    def to_dict(self) -> dict:
        return {
            "expense_ceiling": self.expense_ceiling,
            "can_approve_projects": self.can_approve_projects,
            "can_approve_budgets": self.can_approve_budgets,
            "can_approve_quality": self.can_approve_quality,
            "can_approve_safety": self.can_approve_safety,
            "can_approve_time_off": self.can_approve_time_off,
        }


class Position(db.Model):
    """
    Represents a seat in a company's org chart.

    Each position belongs to one Department and optionally reports to another
    position. The reporting tree is independent of the department tree. Level 1
    is the top of the chart and a position's level must be at least one more
    than the level of the position it reports to.
    """

    __tablename__ = "positions"
    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_positions_company_code"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    department_id: Mapped[int] = mapped_column(
        ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(
        String(128), nullable=False
    )
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reports_to_id: Mapped[int | None] = mapped_column(
        ForeignKey("positions.id", ondelete="SET NULL"), nullable=True
    )
    level: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="active"
    )

    # Approval authority
    expense_ceiling: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    can_approve_projects: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_approve_budgets: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_approve_quality: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_approve_safety: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_approve_time_off: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # Relationships
    company: Mapped["Company"] = relationship(
        "Company", back_populates="positions"
    )
    department: Mapped["Department"] = relationship(
        "Department", back_populates="positions"
    )

    # Reporting line
    reports_to: Mapped["Position | None"] = relationship(
        "Position",
        remote_side="Position.id",
        foreign_keys=[reports_to_id],
        back_populates="direct_reports",
    )
    direct_reports: Mapped[list["Position"]] = relationship(
        "Position",
        foreign_keys=[reports_to_id],
        back_populates="reports_to",
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def approval_authority(self) -> ApprovalAuthority:
        return ApprovalAuthority(
            expense_ceiling=self.expense_ceiling or 0,
            can_approve_projects=bool(self.can_approve_projects),
            can_approve_budgets=bool(self.can_approve_budgets),
            can_approve_quality=bool(self.can_approve_quality),
            can_approve_safety=bool(self.can_approve_safety),
            can_approve_time_off=bool(self.can_approve_time_off),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "department_id": self.department_id,
            "title": self.title,
            "code": self.code,
            "description": self.description,
            "reports_to_id": self.reports_to_id,
            "level": self.level,
            "status": self.status,
            "approval_authority": self.approval_authority.to_dict(),
        }

    def __repr__(self) -> str:
        return f"<Position id={self.id} title={self.title} level={self.level}>"
