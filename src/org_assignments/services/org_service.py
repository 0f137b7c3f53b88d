"""OrgAssignmentService: the public operations of the assignment engine.

Builds and wires every component (ledgers, resolution engine and cache,
reassigner, swap coordinator, audit log, monitor, event bus, notification
dispatcher) and exposes the operations callers use. Callable without HTTP
or CLI context, inside any Flask app context.
"""

import logging
from datetime import datetime
from typing import Any

from ..config import get_ledger_config, get_resolution_config, get_value
from ..database import db
from ..errors import ValidationError
from ..models.assignment import PositionAssignment
from ..models.delegation import Delegation
from ..models.swap import OccupantSwapRequest
from ..models.work_item import WorkItem
from .assignment_ledger import AssignmentConfig, AssignmentLedger, PositionHistoryView
from .audit_log import AuditLog
from .delegation_ledger import DelegationLedger
from .event_bus import AssignmentChanged, DelegationChanged, EventBus
from .ledger_transaction import TransactionRunner
from .notification_dispatcher import NotificationDispatcher, log_sink
from .org_hierarchy import OrgHierarchyStore
from .performance_monitor import PerformanceMonitor
from .resolution_cache import ResolutionCache
from .resolution_engine import EffectiveAssignment, ResolutionEngine, WorkItemAssignmentContext
from .swap_coordinator import OccupantSwapCoordinator
from .work_item_reassigner import WorkItemReassigner
from .work_item_store import WorkItemStore, parse_item_type

logger = logging.getLogger(__name__)


class OrgAssignmentService:
    """Facade over the assignment, delegation, resolution and swap components."""

    def __init__(
        self,
        hierarchy: OrgHierarchyStore,
        assignments: AssignmentLedger,
        delegations: DelegationLedger,
        engine: ResolutionEngine,
        reassigner: WorkItemReassigner,
        swaps: OccupantSwapCoordinator,
        audit_log: AuditLog,
        event_bus: EventBus,
        runner: TransactionRunner,
        notifier: NotificationDispatcher | None = None,
    ):
        self.hierarchy = hierarchy
        self.assignments = assignments
        self.delegations = delegations
        self.engine = engine
        self.reassigner = reassigner
        self.swaps = swaps
        self.audit_log = audit_log
        self.event_bus = event_bus
        self.runner = runner
        self.notifier = notifier

    @classmethod
    def from_config(
        cls,
        config: dict,
        monitor: PerformanceMonitor | None = None,
        cache: ResolutionCache | None = None,
        store: WorkItemStore | None = None,
    ) -> "OrgAssignmentService":
        """Build a fully wired service. Collaborators may be injected for tests."""
        ledger_config = get_ledger_config(config)
        resolution_config = get_resolution_config(config)

        runner = TransactionRunner(
            max_retries=ledger_config["max_retries"],
            retry_delay_ms=ledger_config["retry_delay_ms"],
        )
        lock_timeout = ledger_config["lock_timeout_seconds"]
        event_bus = EventBus()
        audit_log = AuditLog()

        hierarchy = OrgHierarchyStore(audit_log, runner=runner)
        assignments = AssignmentLedger(
            hierarchy, audit_log, event_bus=event_bus, runner=runner, lock_timeout=lock_timeout
        )
        delegations = DelegationLedger(
            hierarchy, assignments, audit_log, event_bus=event_bus, runner=runner
        )

        if cache is None:
            cache = ResolutionCache.from_config(resolution_config)
        if monitor is None:
            monitor = PerformanceMonitor(
                window_size=get_value(config, "monitor", "window_size", default=1000),
                sla_seconds=resolution_config["sla_seconds"],
            )
        engine = ResolutionEngine(
            assignments,
            delegations,
            cache=cache,
            monitor=monitor,
            max_workers=resolution_config["max_workers"],
            default_deadline=resolution_config["deadline_seconds"],
        )

        reassigner = WorkItemReassigner(
            engine,
            store=store or WorkItemStore(),
            sla_seconds=resolution_config["sla_seconds"],
            deadline_seconds=get_value(config, "reassignment", "deadline_seconds"),
            auto_on_assignment_change=get_value(
                config, "reassignment", "auto_on_assignment_change", default=True
            ),
            auto_on_delegation_change=get_value(
                config, "reassignment", "auto_on_delegation_change", default=True
            ),
        )

        notifier = NotificationDispatcher(
            enabled=get_value(config, "notifications", "enabled", default=True),
            queue_size=get_value(config, "notifications", "queue_size", default=1000),
        )
        notifier.add_sink(log_sink)

        swaps = OccupantSwapCoordinator(
            hierarchy,
            assignments,
            reassigner,
            audit_log,
            runner=runner,
            notifier=notifier,
            lock_timeout=lock_timeout,
            reassignment_deadline=get_value(config, "reassignment", "deadline_seconds"),
        )

        # Subscription order matters: invalidate before anything re-resolves
        event_bus.subscribe(object, lambda event: engine.invalidate(event.position_id), "cache-invalidation")
        event_bus.subscribe(AssignmentChanged, reassigner.on_assignment_changed, "reassigner")
        event_bus.subscribe(DelegationChanged, reassigner.on_delegation_changed, "delegation-refresh")
        event_bus.subscribe(object, notifier.on_event, "notifications")

        logger.info(
            f"OrgAssignmentService ready: cache={'on' if cache.enabled else 'off'} "
            f"sla={resolution_config['sla_seconds']}s workers={resolution_config['max_workers']}"
        )
        return cls(
            hierarchy=hierarchy,
            assignments=assignments,
            delegations=delegations,
            engine=engine,
            reassigner=reassigner,
            swaps=swaps,
            audit_log=audit_log,
            event_bus=event_bus,
            runner=runner,
            notifier=notifier,
        )

    # --- Resolution ---

    def resolve_effective_assignment(
        self, company_id: int, position_id: int, at: datetime | None = None
    ) -> EffectiveAssignment | None:
        """Effective assignee for a position, or None when the position is vacant."""
        self.hierarchy.get_position(company_id, position_id)
        effective = self.engine.resolve(position_id, at=at)
        if effective.source_assignment_id is None:
            return None
        return effective

    def resolve_work_item_assignment(
        self,
        company_id: int,
        item_type: str,
        item_id: Any,
        position_id: int | None,
        user_id: str | None,
        deadline: float | None = None,
    ) -> WorkItemAssignmentContext:
        item_type = parse_item_type(item_type).value
        if position_id is not None:
            self.hierarchy.get_position(company_id, position_id)
        return self.engine.resolve_work_item(
            item_type, item_id, position_id, user_id, deadline=deadline
        )

    def batch_resolve_work_items(
        self,
        company_id: int,
        items: list[dict],
        deadline: float | None = None,
    ) -> list[WorkItemAssignmentContext]:
        normalized = []
        for item in items:
            if item.get("position_id") is not None:
                self.hierarchy.get_position(company_id, item["position_id"])
            normalized.append(
                {**item, "item_type": parse_item_type(item.get("item_type", "task")).value}
            )
        return self.engine.resolve_many(normalized, deadline=deadline)

    def create_work_item(
        self,
        company_id: int,
        item_type: str,
        title: str,
        status: str | None = None,
        assigned_position_id: int | None = None,
        assignee_user_id: str | None = None,
    ) -> WorkItem:
        if not title:
            raise ValidationError("title is required")
        if assigned_position_id is not None:
            self.hierarchy.get_position(company_id, assigned_position_id)
        store = self.reassigner.store
        return self.runner.run(
            lambda: store.create(
                company_id,
                item_type,
                title,
                status=status,
                assigned_position_id=assigned_position_id,
                assignee_user_id=assignee_user_id,
            ),
            f"create {item_type} work item",
        )

    def assign_work_item(
        self,
        company_id: int,
        item_id: int,
        position_id: int | None,
        user_id: str | None = None,
        deadline: float | None = None,
    ) -> tuple[WorkItem, WorkItemAssignmentContext]:
        """Resolve an item's effective assignee and persist it onto the item."""
        store = self.reassigner.store
        item = store.get(company_id, item_id)
        if position_id is not None:
            self.hierarchy.get_position(company_id, position_id)
        context = self.engine.resolve_work_item(
            item.item_type.value, item.id, position_id, user_id or item.assignee_user_id,
            deadline=deadline,
        )
        try:
            store.apply_context(item, context)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info(
            f"Work item {item_id} assigned via position {position_id}: "
            f"{context.effective_user_id} (delegated={context.is_delegated})"
        )
        return item, context

    # --- Assignments ---

    def assign_user_to_position(
        self,
        company_id: int,
        position_id: int,
        user_id: str,
        config: AssignmentConfig | dict | None = None,
        actor: str | None = None,
    ) -> PositionAssignment:
        if not isinstance(config, AssignmentConfig):
            config = AssignmentConfig.from_dict(config)
        return self.assignments.assign(company_id, position_id, user_id, config, actor=actor)

    def end_position_assignment(
        self,
        company_id: int,
        assignment_id: int,
        end_at: datetime | None = None,
        actor: str | None = None,
        reason: str | None = None,
    ) -> PositionAssignment:
        return self.assignments.end(company_id, assignment_id, end_at=end_at, actor=actor, reason=reason)

    def get_position_assignment_history(
        self, company_id: int, position_id: int
    ) -> list[PositionAssignment]:
        return self.assignments.get_history(company_id, position_id)

    def get_position_history(
        self, company_id: int, position_id: int, at: datetime | None = None
    ) -> PositionHistoryView:
        return self.assignments.get_position_history_view(company_id, position_id, at=at)

    # --- Swaps ---

    def swap_occupants(
        self,
        company_id: int,
        position_a_id: int,
        position_b_id: int,
        reason: str | None = None,
        notes: str | None = None,
        effective_date: datetime | None = None,
        requested_by: str | None = None,
    ) -> OccupantSwapRequest:
        return self.swaps.swap(
            company_id,
            position_a_id,
            position_b_id,
            reason=reason,
            notes=notes,
            effective_date=effective_date,
            requested_by=requested_by,
        )

    # --- Delegations ---

    def create_delegation(self, company_id: int, actor: str | None = None, **fields) -> Delegation:
        required = ("delegator_position_id", "delegate_user_id", "start_at", "end_at")
        missing = [name for name in required if fields.get(name) is None]
        if missing:
            raise ValidationError(f"Missing delegation fields: {missing}")
        return self.delegations.create(company_id, actor=actor, **fields)

    def approve_delegation(self, company_id: int, delegation_id: int, actor: str | None = None) -> Delegation:
        return self.delegations.activate(company_id, delegation_id, approved_by=actor)

    def reject_delegation(
        self, company_id: int, delegation_id: int, actor: str | None = None, reason: str | None = None
    ) -> Delegation:
        return self.delegations.reject(company_id, delegation_id, rejected_by=actor, reason=reason)

    def revoke_delegation(
        self, company_id: int, delegation_id: int, actor: str | None = None, reason: str | None = None
    ) -> Delegation:
        return self.delegations.revoke(company_id, delegation_id, revoked_by=actor, reason=reason)

    def expire_delegations(self, now: datetime | None = None) -> list[Delegation]:
        return self.delegations.expire_due(now)

    # --- Stats ---

    def stats(self) -> dict:
        monitor = self.engine.monitor
        cache = self.engine.cache
        return {
            "resolution": monitor.get_stats() if monitor else None,
            "cache": cache.stats if cache else None,
            "ledger": self.runner.metrics.get_stats(),
            "events": self.event_bus.stats,
            "notifications": self.notifier.stats if self.notifier else None,
        }

    def shutdown(self) -> None:
        self.engine.shutdown()
        if self.notifier is not None:
            self.notifier.stop()
