"""Services package for the org assignment engine."""

from .position_lock import LockNamespace, PositionLockError, position_lock, position_locks
from .event_bus import AssignmentChanged, DelegationChanged, EventBus
from .ledger_transaction import TransactionMetrics, TransactionRunner
from .audit_log import AuditLog
from .org_hierarchy import OrgHierarchyStore
from .assignment_ledger import AssignmentConfig, AssignmentLedger, PositionHistoryView
from .delegation_ledger import DelegationLedger
from .resolution_cache import CacheEntry, ResolutionCache
from .performance_monitor import PerformanceMonitor
from .resolution_engine import (
    DelegationHop,
    EffectiveAssignment,
    ResolutionEngine,
    WorkItemAssignmentContext,
)
from .work_item_store import WorkItemStore, parse_item_type
from .work_item_reassigner import ReassignmentResult, WorkItemReassigner
from .notification_dispatcher import NotificationDispatcher, log_sink
from .delegation_sweeper import DelegationSweeper, SweepResult
from .swap_coordinator import (
    InvalidSwapTransitionError,
    OccupantSwapCoordinator,
    SwapTransitionResult,
    VALID_TRANSITIONS,
    is_terminal_status,
    validate_swap_transition,
)
from .org_service import OrgAssignmentService

__all__ = [
    # Locks
    "LockNamespace",
    "PositionLockError",
    "position_lock",
    "position_locks",
    # Events
    "AssignmentChanged",
    "DelegationChanged",
    "EventBus",
    # Transactions and audit
    "TransactionMetrics",
    "TransactionRunner",
    "AuditLog",
    # Ledgers
    "OrgHierarchyStore",
    "AssignmentConfig",
    "AssignmentLedger",
    "PositionHistoryView",
    "DelegationLedger",
    # Resolution
    "CacheEntry",
    "ResolutionCache",
    "PerformanceMonitor",
    "DelegationHop",
    "EffectiveAssignment",
    "ResolutionEngine",
    "WorkItemAssignmentContext",
    # Work items and swaps
    "WorkItemStore",
    "parse_item_type",
    "ReassignmentResult",
    "WorkItemReassigner",
    "NotificationDispatcher",
    "log_sink",
    "DelegationSweeper",
    "SweepResult",
    "InvalidSwapTransitionError",
    "OccupantSwapCoordinator",
    "SwapTransitionResult",
    "VALID_TRANSITIONS",
    "is_terminal_status",
    "validate_swap_transition",
    # Facade
    "OrgAssignmentService",
]
