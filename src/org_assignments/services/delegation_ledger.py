"""Delegation ledger: time-bounded authority overlays on positions."""

import logging
from datetime import datetime

from sqlalchemy import select

from ..database import db
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..models.audit import AuditAction
from ..models.delegation import Delegation, DelegationStatus
from ..models.types import ensure_utc, utcnow
from .assignment_ledger import AssignmentLedger
from .audit_log import AuditLog
from .event_bus import DelegationChanged, EventBus
from .ledger_transaction import TransactionRunner
from .org_hierarchy import OrgHierarchyStore

logger = logging.getLogger(__name__)

# Valid transitions: {(from_status, operation): to_status}
VALID_TRANSITIONS: dict[tuple[DelegationStatus, str], DelegationStatus] = {
    (DelegationStatus.PENDING, "activate"): DelegationStatus.ACTIVE,
    (DelegationStatus.PENDING, "reject"): DelegationStatus.REJECTED,
    (DelegationStatus.PENDING, "revoke"): DelegationStatus.REVOKED,
    (DelegationStatus.ACTIVE, "revoke"): DelegationStatus.REVOKED,
    (DelegationStatus.ACTIVE, "expire"): DelegationStatus.EXPIRED,
}


class DelegationLedger:
    """
    Owns the Delegation lifecycle.

    A delegation is created by the current occupant of a position in favour
    of another user. Delegations that need approval start pending; the rest
    are active from creation. Only active delegations whose [start_at, end_at)
    covers an instant take part in resolution. Chains are single-hop: a
    delegate's own delegations are never followed.
    """

    def __init__(
        self,
        hierarchy: OrgHierarchyStore,
        assignments: AssignmentLedger,
        audit_log: AuditLog,
        event_bus: EventBus | None = None,
        runner: TransactionRunner | None = None,
    ):
        self._hierarchy = hierarchy
        self._assignments = assignments
        self._audit = audit_log
        self._events = event_bus
        self._runner = runner or TransactionRunner()

    # --- Reads ---

    def get_delegation(self, company_id: int, delegation_id: int) -> Delegation:
        delegation = db.session.get(Delegation, delegation_id)
        if delegation is None or delegation.company_id != company_id:
            raise NotFoundError("delegation", delegation_id)
        return delegation

    def get_active_delegation(
        self,
        position_id: int,
        at: datetime | None = None,
        delegator_user_id: str | None = None,
    ) -> Delegation | None:
        """The active delegation on a position whose window contains at.

        When delegator_user_id is given, only delegations granted by that user
        count; a departed occupant's delegations no longer speak for the seat.

        Overlapping active delegations are not prevented structurally; when
        more than one matches, the most recently created wins and a warning is
        logged.
        """
        at = ensure_utc(at) if at else utcnow()
        stmt = select(Delegation).where(
            Delegation.delegator_position_id == position_id,
            Delegation.status == DelegationStatus.ACTIVE,
            Delegation.start_at <= at,
            Delegation.end_at > at,
        )
        if delegator_user_id is not None:
            stmt = stmt.where(Delegation.delegator_user_id == delegator_user_id)
        matches = list(
            db.session.execute(
                stmt.order_by(Delegation.created_at.desc(), Delegation.id.desc())
            ).scalars()
        )
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                f"Position {position_id} has {len(matches)} overlapping active delegations "
                f"at {at.isoformat()}: using {matches[0].id}, ignoring "
                f"{[d.id for d in matches[1:]]}"
            )
        return matches[0]

    def get_next_delegation_start(
        self, position_id: int, after: datetime, delegator_user_id: str | None = None
    ) -> datetime | None:
        """Start of the earliest active delegation on a position that begins after the given instant."""
        stmt = select(Delegation.start_at).where(
            Delegation.delegator_position_id == position_id,
            Delegation.status == DelegationStatus.ACTIVE,
            Delegation.start_at > ensure_utc(after),
        )
        if delegator_user_id is not None:
            stmt = stmt.where(Delegation.delegator_user_id == delegator_user_id)
        return db.session.execute(
            stmt.order_by(Delegation.start_at).limit(1)
        ).scalar_one_or_none()

    def list_opened_since(self, since: datetime | None, until: datetime) -> list[Delegation]:
        """Active delegations open at until whose window opened after since.

        With since None every delegation open at until is returned.
        """
        until = ensure_utc(until)
        stmt = select(Delegation).where(
            Delegation.status == DelegationStatus.ACTIVE,
            Delegation.start_at <= until,
            Delegation.end_at > until,
        )
        if since is not None:
            stmt = stmt.where(Delegation.start_at > ensure_utc(since))
        return list(
            db.session.execute(stmt.order_by(Delegation.start_at, Delegation.id)).scalars()
        )

    def list_for_position(self, company_id: int, position_id: int) -> list[Delegation]:
        self._hierarchy.get_position(company_id, position_id)
        return list(
            db.session.execute(
                select(Delegation)
                .where(Delegation.delegator_position_id == position_id)
                .order_by(Delegation.created_at.desc(), Delegation.id.desc())
            ).scalars()
        )

    def list_outgoing(
        self, company_id: int, user_id: str, active_only: bool = True
    ) -> list[Delegation]:
        """Delegations the user has granted."""
        query = select(Delegation).where(
            Delegation.company_id == company_id,
            Delegation.delegator_user_id == user_id,
        )
        if active_only:
            query = query.where(Delegation.status == DelegationStatus.ACTIVE)
        return list(db.session.execute(query.order_by(Delegation.start_at.desc())).scalars())

    def list_incoming(
        self, company_id: int, user_id: str, active_only: bool = True
    ) -> list[Delegation]:
        """Delegations the user has received."""
        query = select(Delegation).where(
            Delegation.company_id == company_id,
            Delegation.delegate_user_id == user_id,
        )
        if active_only:
            query = query.where(Delegation.status == DelegationStatus.ACTIVE)
        return list(db.session.execute(query.order_by(Delegation.start_at.desc())).scalars())

    # --- Writes ---

    def create(
        self,
        company_id: int,
        delegator_position_id: int,
        delegate_user_id: str,
        start_at: datetime,
        end_at: datetime,
        reason: str | None = None,
        notes: str | None = None,
        requires_approval: bool = False,
        delegate_position_id: int | None = None,
        actor: str | None = None,
    ) -> Delegation:
        """Create a delegation from the position's current occupant to delegate_user_id.

        Raises:
            NotFoundError: position (or delegate position) absent
            ValidationError: vacant position, self-delegation, empty window
        """
        position = self._hierarchy.get_position(company_id, delegator_position_id)
        if not position.is_active:
            raise ValidationError(f"Position {delegator_position_id} is inactive")
        if delegate_position_id is not None:
            self._hierarchy.get_position(company_id, delegate_position_id)
        if not delegate_user_id:
            raise ValidationError("delegate_user_id is required")
        if start_at is None or end_at is None:
            raise ValidationError("start_at and end_at are required")
        start_at = ensure_utc(start_at)
        end_at = ensure_utc(end_at)
        if end_at <= start_at:
            raise ValidationError("end_at must be after start_at")

        current = self._assignments.get_current_assignment(delegator_position_id)
        if current is None:
            raise ValidationError(
                f"Position {delegator_position_id} is vacant; there is no one to delegate from"
            )
        if current.user_id == delegate_user_id:
            raise ValidationError("A user cannot delegate to themselves")
        delegator_user_id = current.user_id

        status = DelegationStatus.PENDING if requires_approval else DelegationStatus.ACTIVE

        def work():
            now = utcnow()
            delegation = Delegation(
                company_id=company_id,
                delegator_position_id=delegator_position_id,
                delegator_user_id=delegator_user_id,
                delegate_user_id=delegate_user_id,
                delegate_position_id=delegate_position_id,
                start_at=start_at,
                end_at=end_at,
                status=status,
                reason=reason,
                notes=notes,
                requires_approval=requires_approval,
                activated_at=None if requires_approval else now,
                created_by=actor,
            )
            db.session.add(delegation)
            db.session.flush()
            self._audit.record(
                company_id,
                AuditAction.DELEGATION_CREATED,
                "delegation",
                delegation.id,
                actor=actor,
                reason=reason,
                after=delegation.to_dict(),
                related={"position_id": delegator_position_id},
            )
            return delegation

        delegation = self._runner.run(
            work, f"create delegation on position {delegator_position_id}"
        )
        logger.info(
            f"Delegation created: id={delegation.id} position={delegator_position_id} "
            f"{delegator_user_id}->{delegate_user_id} status={status.value}"
        )
        self._publish(delegation, "created", actor)
        return delegation

    def activate(
        self, company_id: int, delegation_id: int, approved_by: str | None = None
    ) -> Delegation:
        """Approve a pending delegation."""

        def apply(delegation: Delegation, now: datetime) -> None:
            delegation.approved_by = approved_by
            delegation.activated_at = now

        return self._transition(
            company_id, delegation_id, "activate", AuditAction.DELEGATION_APPROVED,
            "activated", approved_by, apply,
        )

    def reject(
        self,
        company_id: int,
        delegation_id: int,
        rejected_by: str | None = None,
        reason: str | None = None,
    ) -> Delegation:
        def apply(delegation: Delegation, now: datetime) -> None:
            delegation.rejection_reason = reason

        return self._transition(
            company_id, delegation_id, "reject", AuditAction.DELEGATION_REJECTED,
            "rejected", rejected_by, apply, reason=reason,
        )

    def revoke(
        self,
        company_id: int,
        delegation_id: int,
        revoked_by: str | None = None,
        reason: str | None = None,
    ) -> Delegation:
        def apply(delegation: Delegation, now: datetime) -> None:
            delegation.revoked_at = now
            delegation.revoked_by = revoked_by

        return self._transition(
            company_id, delegation_id, "revoke", AuditAction.DELEGATION_REVOKED,
            "revoked", revoked_by, apply, reason=reason,
        )

    def expire_due(self, now: datetime | None = None) -> list[Delegation]:
        """Expire every active delegation whose window has closed."""
        now = ensure_utc(now) if now else utcnow()
        due_ids = list(
            db.session.execute(
                select(Delegation.id, Delegation.company_id).where(
                    Delegation.status == DelegationStatus.ACTIVE,
                    Delegation.end_at <= now,
                )
            )
        )

        expired = []
        for delegation_id, company_id in due_ids:
            try:
                expired.append(
                    self._transition(
                        company_id, delegation_id, "expire", AuditAction.DELEGATION_EXPIRED,
                        "expired", "system", lambda d, ts: None,
                    )
                )
            except InvalidStateError:
                # Revoked by someone else since the sweep query
                logger.debug(f"Delegation {delegation_id} no longer active, skipping expiry")

        if expired:
            logger.info(f"Expired {len(expired)} delegation(s)")
        return expired

    def _transition(
        self,
        company_id: int,
        delegation_id: int,
        operation: str,
        action: str,
        change: str,
        actor: str | None,
        apply,
        reason: str | None = None,
    ) -> Delegation:
        self.get_delegation(company_id, delegation_id)

        def work():
            delegation = db.session.get(Delegation, delegation_id, populate_existing=True)
            target = VALID_TRANSITIONS.get((delegation.status, operation))
            if target is None:
                raise InvalidStateError(
                    "delegation", delegation_id, delegation.status.value, operation
                )
            before = delegation.to_dict()
            delegation.status = target
            apply(delegation, utcnow())
            db.session.flush()
            self._audit.record(
                company_id,
                action,
                "delegation",
                delegation_id,
                actor=actor,
                reason=reason,
                before=before,
                after=delegation.to_dict(),
                related={"position_id": delegation.delegator_position_id},
            )
            return delegation

        delegation = self._runner.run(work, f"{operation} delegation {delegation_id}")
        logger.info(
            f"Delegation {delegation_id} {change} "
            f"(position={delegation.delegator_position_id}, actor={actor})"
        )
        self._publish(delegation, change, actor)
        return delegation

    def _publish(self, delegation: Delegation, change: str, actor: str | None) -> None:
        if self._events is None:
            return
        self._events.publish(
            DelegationChanged(
                company_id=delegation.company_id,
                position_id=delegation.delegator_position_id,
                delegation_id=delegation.id,
                change=change,
                status=delegation.status.value,
                delegator_user_id=delegation.delegator_user_id,
                delegate_user_id=delegation.delegate_user_id,
                actor=actor,
            )
        )
