"""Department model."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..database import db
from .types import UTCDateTime, utcnow

if TYPE_CHECKING:
    from .company import Company
    from .position import Position


class Department(db.Model):
    """
    Represents a department in a company's department tree.

    Departments are soft-deactivated (status="inactive"), never deleted, so
    positions that reference them keep a valid foreign key. The parent link
    forms a tree; acyclicity is checked by the hierarchy store on update.
    """

    __tablename__ = "departments"
    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_departments_company_code"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_department_id: Mapped[int | None] = mapped_column(
        ForeignKey("departments.id", ondelete="RESTRICT"), nullable=True
    )
    location: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="active"
    )
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # Relationships
    company: Mapped["Company"] = relationship("Company", back_populates="departments")
    parent: Mapped["Department | None"] = relationship(
        "Department",
        remote_side="Department.id",
        back_populates="children",
    )
    children: Mapped[list["Department"]] = relationship(
        "Department", back_populates="parent"
    )
    positions: Mapped[list["Position"]] = relationship(
        "Position", back_populates="department"
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "parent_department_id": self.parent_department_id,
            "location": self.location,
            "status": self.status,
        }

    def __repr__(self) -> str:
        return f"<Department id={self.id} code={self.code} status={self.status}>"
