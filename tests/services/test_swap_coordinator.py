"""Tests for the occupant swap coordinator."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from org_assignments.database import db
from org_assignments.errors import NotFoundError, ValidationError
from org_assignments.models import (
    AssignmentStatus,
    AuditAction,
    OccupantSwapRequest,
    SwapStatus,
    WorkItem,
    WorkItemType,
)
from org_assignments.services.org_service import OrgAssignmentService
from org_assignments.services.swap_coordinator import (
    is_terminal_status,
    validate_swap_transition,
)
from org_assignments.services.work_item_store import WorkItemStore

from ..factories import WorkItemFactory


class FlakyWorkItemStore(WorkItemStore):
    """Fails the update for a fixed set of item ids."""

    def __init__(self, failing_ids=()):
        self.failing_ids = set(failing_ids)

    def update_assignee(self, item_id, context, reassigned_from_user_id=None):
        if item_id in self.failing_ids:
            raise RuntimeError(f"work item {item_id} is locked by another writer")
        return super().update_assignee(item_id, context, reassigned_from_user_id)


@pytest.fixture
def staffed(service, org):
    """analyst held by alice, engineer held by bob."""
    company_id = org["company"].id
    org["alice"] = service.assign_user_to_position(company_id, org["analyst"].id, "alice")
    org["bob"] = service.assign_user_to_position(company_id, org["engineer"].id, "bob")
    return org


def _swaps(company_id: int) -> list[OccupantSwapRequest]:
    return list(
        db.session.execute(
            select(OccupantSwapRequest).where(OccupantSwapRequest.company_id == company_id)
        ).scalars()
    )


class TestSwapTransitions:
    """Test the swap state machine."""

    def test_happy_path_transitions(self):
        path = [
            SwapStatus.PENDING,
            SwapStatus.VALIDATING,
            SwapStatus.ENDED_OLD_ASSIGNMENTS,
            SwapStatus.CREATED_NEW_ASSIGNMENTS,
            SwapStatus.REASSIGNING_WORK_ITEMS,
            SwapStatus.COMPLETED,
        ]
        for from_status, to_status in zip(path, path[1:]):
            assert validate_swap_transition(from_status, to_status).valid

    def test_validation_can_fail(self):
        assert validate_swap_transition(SwapStatus.VALIDATING, SwapStatus.FAILED).valid

    def test_cannot_fail_after_mutation(self):
        """Once assignments have changed a swap ends completed or partial_failure."""
        result = validate_swap_transition(SwapStatus.ENDED_OLD_ASSIGNMENTS, SwapStatus.FAILED)
        assert not result.valid
        assert "ended_old_assignments -> failed" in result.reason

    def test_cannot_skip_steps(self):
        assert not validate_swap_transition(SwapStatus.PENDING, SwapStatus.COMPLETED).valid

    def test_terminal_statuses(self):
        assert is_terminal_status(SwapStatus.COMPLETED)
        assert is_terminal_status(SwapStatus.PARTIAL_FAILURE)
        assert is_terminal_status(SwapStatus.FAILED)
        assert not is_terminal_status(SwapStatus.REASSIGNING_WORK_ITEMS)


class TestSwap:
    """Test OccupantSwapCoordinator.swap."""

    def test_swap_exchanges_occupants(self, service, staffed):
        company_id = staffed["company"].id
        analyst_id, engineer_id = staffed["analyst"].id, staffed["engineer"].id
        effective = datetime.now(timezone.utc) - timedelta(seconds=1)

        swap = service.swap_occupants(
            company_id, analyst_id, engineer_id,
            reason="rotation", effective_date=effective, requested_by="hr",
        )

        assert swap.status == SwapStatus.COMPLETED
        assert (swap.user_a_id, swap.user_b_id) == ("alice", "bob")
        assert swap.completed_at is not None
        assert swap.reassignment_details["errors"] == []

        new_a = service.assignments.get_current_assignment(analyst_id)
        new_b = service.assignments.get_current_assignment(engineer_id)
        assert new_a.user_id == "bob"
        assert new_b.user_id == "alice"
        assert new_a.id == swap.new_assignment_a_id
        assert new_a.previous_assignment_id == staffed["alice"].id
        assert new_b.previous_assignment_id == staffed["bob"].id
        assert new_a.swap_request_id == swap.id
        assert new_a.start_at == effective

        old_a = db.session.get(type(new_a), staffed["alice"].id, populate_existing=True)
        assert old_a.status == AssignmentStatus.ENDED
        assert old_a.end_at == effective

    def test_swap_moves_work_items(self, service, staffed):
        company_id = staffed["company"].id
        analyst_id, engineer_id = staffed["analyst"].id, staffed["engineer"].id
        task = WorkItemFactory(company_id=company_id, assigned_position_id=analyst_id, assignee_user_id="alice")
        project = WorkItemFactory(
            company_id=company_id, assigned_position_id=engineer_id, assignee_user_id="bob",
            item_type=WorkItemType.PROJECT, status="active",
        )
        approval = WorkItemFactory(
            company_id=company_id, assigned_position_id=engineer_id, assignee_user_id="bob",
            item_type=WorkItemType.APPROVAL, status="pending",
        )

        swap = service.swap_occupants(company_id, analyst_id, engineer_id)

        assert swap.tasks_reassigned == 1
        assert swap.projects_updated == 1
        assert swap.approvals_transferred == 1
        assert db.session.get(WorkItem, task.id, populate_existing=True).assignee_user_id == "bob"
        assert db.session.get(WorkItem, project.id, populate_existing=True).assignee_user_id == "alice"
        assert db.session.get(WorkItem, approval.id, populate_existing=True).assignee_user_id == "alice"

    def test_departed_occupants_delegation_does_not_follow_the_seat(self, service, staffed):
        """alice delegated the analyst seat to xavier; after the swap bob holds it."""
        company_id = staffed["company"].id
        analyst_id, engineer_id = staffed["analyst"].id, staffed["engineer"].id
        task = WorkItemFactory(company_id=company_id, assigned_position_id=analyst_id, assignee_user_id="alice")
        now = datetime.now(timezone.utc)
        service.create_delegation(
            company_id,
            delegator_position_id=analyst_id,
            delegate_user_id="xavier",
            start_at=now - timedelta(hours=1),
            end_at=now + timedelta(days=3),
        )
        assert service.resolve_effective_assignment(company_id, analyst_id).user_id == "xavier"

        service.swap_occupants(company_id, analyst_id, engineer_id)

        effective = service.resolve_effective_assignment(company_id, analyst_id)
        assert effective.user_id == "bob"
        assert effective.is_delegated is False
        assert not effective.delegation_chain
        stored = db.session.get(WorkItem, task.id, populate_existing=True)
        assert stored.assignee_user_id == "bob"
        assert stored.delegation_chain == []

    def test_swap_twice_restores(self, service, staffed):
        """Swapping is not idempotent; a second swap undoes the first."""
        company_id = staffed["company"].id
        analyst_id, engineer_id = staffed["analyst"].id, staffed["engineer"].id

        service.swap_occupants(company_id, analyst_id, engineer_id)
        service.swap_occupants(company_id, analyst_id, engineer_id)

        assert service.assignments.get_current_assignment(analyst_id).user_id == "alice"
        assert service.assignments.get_current_assignment(engineer_id).user_id == "bob"

    def test_swap_audit_trail(self, service, staffed):
        company_id = staffed["company"].id
        swap = service.swap_occupants(
            company_id, staffed["analyst"].id, staffed["engineer"].id, requested_by="hr"
        )

        actions = [e.action for e in service.audit_log.list_for_entity("swap", swap.id)]
        assert actions == [
            AuditAction.SWAP_INITIATED,
            AuditAction.SWAP_ASSIGNMENTS_ENDED,
            AuditAction.SWAP_ASSIGNMENTS_CREATED,
            AuditAction.SWAP_REASSIGNMENT_SUMMARY,
        ]

    def test_same_position_fails(self, service, staffed):
        company_id = staffed["company"].id
        with pytest.raises(ValidationError, match="itself"):
            service.swap_occupants(company_id, staffed["analyst"].id, staffed["analyst"].id)

        swaps = _swaps(company_id)
        assert len(swaps) == 1
        assert swaps[0].status == SwapStatus.FAILED
        assert swaps[0].errors == ["Cannot swap a position with itself"]

    def test_vacant_position_fails_without_mutation(self, service, staffed):
        company_id = staffed["company"].id
        with pytest.raises(ValidationError, match="no active assignment"):
            service.swap_occupants(company_id, staffed["analyst"].id, staffed["manager"].id)

        assert _swaps(company_id)[0].status == SwapStatus.FAILED
        assert service.assignments.get_current_assignment(staffed["analyst"].id).user_id == "alice"

    def test_missing_position_records_nothing(self, service, staffed):
        company_id = staffed["company"].id
        with pytest.raises(NotFoundError):
            service.swap_occupants(company_id, staffed["analyst"].id, 55555)
        assert _swaps(company_id) == []

    def test_get_swap_scoped_to_company(self, service, staffed):
        swap = service.swap_occupants(staffed["company"].id, staffed["analyst"].id, staffed["engineer"].id)
        with pytest.raises(NotFoundError):
            service.swaps.get_swap(staffed["company"].id + 1, swap.id)

    def test_swap_notifies(self, service, staffed):
        delivered = []
        service.notifier.add_sink(delivered.append)

        service.swap_occupants(staffed["company"].id, staffed["analyst"].id, staffed["engineer"].id)
        service.notifier.drain()

        assert "swap_finished" in [n["type"] for n in delivered]


class TestPartialFailure:
    """Work item failures after the assignments change degrade to partial_failure."""

    def test_two_of_ten_items_fail(self, app, staffed):
        company_id = staffed["company"].id
        analyst_id, engineer_id = staffed["analyst"].id, staffed["engineer"].id
        items = [
            WorkItemFactory(company_id=company_id, assigned_position_id=analyst_id, assignee_user_id="alice")
            for _ in range(10)
        ]
        failing = {items[3].id, items[7].id}
        flaky_service = OrgAssignmentService.from_config(
            app.config["APP_CONFIG"], store=FlakyWorkItemStore(failing)
        )
        try:
            swap = flaky_service.swap_occupants(company_id, analyst_id, engineer_id)
        finally:
            flaky_service.shutdown()

        assert swap.status == SwapStatus.PARTIAL_FAILURE
        assert swap.tasks_reassigned == 8
        assert len(swap.errors) == 2
        assert all("locked by another writer" in e for e in swap.errors)

        # The assignment changes stand
        assert flaky_service.assignments.get_current_assignment(analyst_id).user_id == "bob"
        for item in items:
            reloaded = db.session.get(WorkItem, item.id, populate_existing=True)
            expected = "alice" if item.id in failing else "bob"
            assert reloaded.assignee_user_id == expected
