"""Tests for the delegation ledger."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from org_assignments.errors import InvalidStateError, NotFoundError, ValidationError
from org_assignments.models import AuditAction, DelegationStatus
from org_assignments.services.event_bus import DelegationChanged

from ..factories import DelegationFactory


def _window(hours_before=1, days_after=7):
    now = datetime.now(timezone.utc)
    return now - timedelta(hours=hours_before), now + timedelta(days=days_after)


@pytest.fixture
def occupied(service, org):
    """The analyst position held by alice."""
    service.assign_user_to_position(org["company"].id, org["analyst"].id, "alice")
    return org


def _create(service, org, delegate="dave", **kwargs):
    start, end = _window()
    fields = dict(
        delegator_position_id=org["analyst"].id,
        delegate_user_id=delegate,
        start_at=start,
        end_at=end,
    )
    fields.update(kwargs)
    return service.create_delegation(org["company"].id, actor="alice", **fields)


class TestCreateDelegation:
    """Test delegation creation."""

    def test_create_without_approval_is_active(self, service, occupied):
        """A delegation that needs no approval is active immediately."""
        delegation = _create(service, occupied, reason="vacation")

        assert delegation.status == DelegationStatus.ACTIVE
        assert delegation.delegator_user_id == "alice"
        assert delegation.delegate_user_id == "dave"
        assert delegation.activated_at is not None
        assert delegation.created_by == "alice"

    def test_create_with_approval_is_pending(self, service, occupied):
        delegation = _create(service, occupied, requires_approval=True)

        assert delegation.status == DelegationStatus.PENDING
        assert delegation.activated_at is None

    def test_vacant_position_rejected(self, service, org):
        """There is no occupant to delegate from."""
        with pytest.raises(ValidationError, match="vacant"):
            _create(service, org)

    def test_self_delegation_rejected(self, service, occupied):
        with pytest.raises(ValidationError, match="themselves"):
            _create(service, occupied, delegate="alice")

    def test_empty_window_rejected(self, service, occupied):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError, match="end_at must be after start_at"):
            _create(service, occupied, start_at=now, end_at=now)

    def test_missing_fields_rejected(self, service, occupied):
        with pytest.raises(ValidationError, match="Missing delegation fields"):
            service.create_delegation(
                occupied["company"].id,
                delegator_position_id=occupied["analyst"].id,
                delegate_user_id="dave",
            )

    def test_unknown_delegate_position(self, service, occupied):
        with pytest.raises(NotFoundError):
            _create(service, occupied, delegate_position_id=98765)

    def test_audit_entry_written(self, service, occupied):
        delegation = _create(service, occupied, reason="vacation")

        entries = service.audit_log.list_for_entity("delegation", delegation.id)
        assert [e.action for e in entries] == [AuditAction.DELEGATION_CREATED]
        assert entries[0].actor == "alice"
        assert entries[0].reason == "vacation"


class TestDelegationTransitions:
    """Test approve, reject, revoke and expire."""

    def test_approve_pending(self, service, occupied):
        company_id = occupied["company"].id
        pending = _create(service, occupied, requires_approval=True)

        approved = service.approve_delegation(company_id, pending.id, actor="boss")

        assert approved.status == DelegationStatus.ACTIVE
        assert approved.approved_by == "boss"
        assert approved.activated_at is not None

    def test_reject_pending(self, service, occupied):
        company_id = occupied["company"].id
        pending = _create(service, occupied, requires_approval=True)

        rejected = service.reject_delegation(company_id, pending.id, actor="boss", reason="no cover needed")

        assert rejected.status == DelegationStatus.REJECTED
        assert rejected.rejection_reason == "no cover needed"

    def test_revoke_active(self, service, occupied):
        company_id = occupied["company"].id
        active = _create(service, occupied)

        revoked = service.revoke_delegation(company_id, active.id, actor="alice", reason="back early")

        assert revoked.status == DelegationStatus.REVOKED
        assert revoked.revoked_by == "alice"
        assert revoked.revoked_at is not None

    def test_approve_active_is_invalid_state(self, service, occupied):
        active = _create(service, occupied)
        with pytest.raises(InvalidStateError) as exc_info:
            service.approve_delegation(occupied["company"].id, active.id)
        assert exc_info.value.current_status == "active"

    @pytest.mark.parametrize("operation", ["approve_delegation", "reject_delegation", "revoke_delegation"])
    def test_terminal_states_reject_transitions(self, service, occupied, operation):
        """Revoked is terminal."""
        company_id = occupied["company"].id
        active = _create(service, occupied)
        service.revoke_delegation(company_id, active.id)

        with pytest.raises(InvalidStateError):
            getattr(service, operation)(company_id, active.id)

    def test_unknown_delegation(self, service, occupied):
        with pytest.raises(NotFoundError):
            service.revoke_delegation(occupied["company"].id, 4242)

    def test_transitions_publish_events(self, service, occupied):
        seen = []
        service.event_bus.subscribe(DelegationChanged, seen.append, "test")
        company_id = occupied["company"].id

        pending = _create(service, occupied, requires_approval=True)
        service.approve_delegation(company_id, pending.id)
        service.revoke_delegation(company_id, pending.id)

        assert [(e.change, e.status) for e in seen] == [
            ("created", "pending"),
            ("activated", "active"),
            ("revoked", "revoked"),
        ]


class TestExpireDue:
    """Test expiry sweeps."""

    def test_expires_only_closed_windows(self, service, occupied):
        company_id, analyst_id = occupied["company"].id, occupied["analyst"].id
        now = datetime.now(timezone.utc)
        closed = DelegationFactory(
            company_id=company_id, delegator_position_id=analyst_id, delegator_user_id="alice",
            start_at=now - timedelta(days=3), end_at=now - timedelta(days=1),
        )
        still_open = DelegationFactory(
            company_id=company_id, delegator_position_id=analyst_id, delegator_user_id="alice",
        )

        expired = service.expire_delegations(now)

        assert [d.id for d in expired] == [closed.id]
        assert expired[0].status == DelegationStatus.EXPIRED
        assert service.delegations.get_delegation(company_id, still_open.id).status == DelegationStatus.ACTIVE

    def test_expiry_is_audited_as_system(self, service, occupied):
        company_id, analyst_id = occupied["company"].id, occupied["analyst"].id
        now = datetime.now(timezone.utc)
        closed = DelegationFactory(
            company_id=company_id, delegator_position_id=analyst_id, delegator_user_id="alice",
            start_at=now - timedelta(days=3), end_at=now - timedelta(days=1),
        )

        service.expire_delegations(now)

        entries = service.audit_log.list_for_entity("delegation", closed.id)
        assert entries[-1].action == AuditAction.DELEGATION_EXPIRED
        assert entries[-1].actor == "system"

    def test_nothing_due(self, service, occupied):
        _create(service, occupied)
        assert service.expire_delegations() == []


class TestActiveDelegationLookup:
    """Test get_active_delegation and related reads."""

    def test_window_bounds(self, service, occupied):
        """start_at is inclusive, end_at exclusive."""
        company_id, analyst_id = occupied["company"].id, occupied["analyst"].id
        start = datetime(2026, 5, 1, tzinfo=timezone.utc)
        end = datetime(2026, 5, 8, tzinfo=timezone.utc)
        delegation = DelegationFactory(
            company_id=company_id, delegator_position_id=analyst_id, delegator_user_id="alice",
            start_at=start, end_at=end,
        )

        assert service.delegations.get_active_delegation(analyst_id, start).id == delegation.id
        assert service.delegations.get_active_delegation(analyst_id, end) is None
        assert service.delegations.get_active_delegation(analyst_id, start - timedelta(seconds=1)) is None

    def test_pending_ignored(self, service, occupied):
        analyst_id = occupied["analyst"].id
        DelegationFactory(
            company_id=occupied["company"].id, delegator_position_id=analyst_id,
            delegator_user_id="alice", status=DelegationStatus.PENDING,
        )
        assert service.delegations.get_active_delegation(analyst_id) is None

    def test_overlap_newest_wins(self, service, occupied, caplog):
        """Overlapping active delegations resolve to the most recently created, with a warning."""
        company_id, analyst_id = occupied["company"].id, occupied["analyst"].id
        now = datetime.now(timezone.utc)
        DelegationFactory(
            company_id=company_id, delegator_position_id=analyst_id, delegator_user_id="alice",
            delegate_user_id="dave", created_at=now - timedelta(hours=2),
        )
        newer = DelegationFactory(
            company_id=company_id, delegator_position_id=analyst_id, delegator_user_id="alice",
            delegate_user_id="erin", created_at=now - timedelta(hours=1),
        )

        with caplog.at_level(logging.WARNING):
            found = service.delegations.get_active_delegation(analyst_id)

        assert found.id == newer.id
        assert "overlapping active delegations" in caplog.text

    def test_next_delegation_start(self, service, occupied):
        company_id, analyst_id = occupied["company"].id, occupied["analyst"].id
        now = datetime.now(timezone.utc)
        later = DelegationFactory(
            company_id=company_id, delegator_position_id=analyst_id, delegator_user_id="alice",
            start_at=now + timedelta(days=2), end_at=now + timedelta(days=4),
        )
        DelegationFactory(
            company_id=company_id, delegator_position_id=analyst_id, delegator_user_id="alice",
            start_at=now + timedelta(days=5), end_at=now + timedelta(days=6),
        )

        assert service.delegations.get_next_delegation_start(analyst_id, now) == later.start_at

    def test_outgoing_and_incoming(self, service, occupied):
        company_id = occupied["company"].id
        active = _create(service, occupied, delegate="dave")
        _create(service, occupied, delegate="erin", requires_approval=True)

        outgoing = service.delegations.list_outgoing(company_id, "alice")
        everything = service.delegations.list_outgoing(company_id, "alice", active_only=False)
        incoming = service.delegations.list_incoming(company_id, "dave")

        assert [d.id for d in outgoing] == [active.id]
        assert len(everything) == 2
        assert [d.id for d in incoming] == [active.id]
