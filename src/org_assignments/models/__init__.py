"""Database models package.

This package contains all SQLAlchemy model definitions for the org
assignment engine.

Models:
    - Company: Tenant that scopes every other row
    - Department: Department tree node (soft-deactivated, never deleted)
    - Position: Org chart seat with a self-referential reporting tree
    - PositionAssignment: Time-bounded occupancy of a position
    - Delegation: Time-bounded authority overlay on a position
    - OccupantSwapRequest: Two-position occupant swap and its outcome
    - OrgAuditLogEntry: Append-only, per-company ordered audit trail
    - WorkItem: Task/project/approval/inspection tied to a position

Enums:
    - AssignmentType: permanent, temporary, acting
    - AssignmentStatus: active, ended, cancelled
    - DelegationStatus: pending, active, expired, revoked, rejected
    - SwapStatus: pending ... completed, partial_failure, failed
    - WorkItemType and the per-type status enums
"""

from .assignment import AssignmentStatus, AssignmentType, PositionAssignment
from .audit import AuditAction, AuditImmutableError, OrgAuditLogEntry
from .company import Company
from .delegation import Delegation, DelegationStatus
from .department import Department
from .position import ApprovalAuthority, Position
from .swap import OccupantSwapRequest, SwapStatus
from .work_item import (
    ApprovalStatus,
    InspectionStatus,
    OPEN_STATUSES,
    ProjectStatus,
    TaskStatus,
    WorkItem,
    WorkItemType,
    is_open,
)

__all__ = [
    # Models
    "Company",
    "Department",
    "Position",
    "PositionAssignment",
    "Delegation",
    "OccupantSwapRequest",
    "OrgAuditLogEntry",
    "WorkItem",
    # Value objects
    "ApprovalAuthority",
    "AuditAction",
    "AuditImmutableError",
    # Enums
    "AssignmentType",
    "AssignmentStatus",
    "DelegationStatus",
    "SwapStatus",
    "WorkItemType",
    "TaskStatus",
    "ProjectStatus",
    "ApprovalStatus",
    "InspectionStatus",
    "OPEN_STATUSES",
    "is_open",
]
