"""Company model."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..database import db
from .types import UTCDateTime, utcnow

if TYPE_CHECKING:
    from .department import Department
    from .position import Position


class Company(db.Model):
    """
    Represents a tenant. Every department, position, assignment, delegation,
    swap and audit entry is scoped to exactly one company.
    """

    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(
        String(128), nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="active"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    # Relationships
    departments: Mapped[list["Department"]] = relationship(
        "Department", back_populates="company"
    )
    positions: Mapped[list["Position"]] = relationship(
        "Position", back_populates="company"
    )

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name} status={self.status}>"
