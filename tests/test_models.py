"""Tests for model helpers and table constraints."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from org_assignments.models import (
    ApprovalAuthority,
    AssignmentStatus,
    Delegation,
    InspectionStatus,
    OccupantSwapRequest,
    PositionAssignment,
    SwapStatus,
    TaskStatus,
    WorkItemType,
    is_open,
)
from org_assignments.models.types import ensure_utc
from org_assignments.models.work_item import open_status_values

from .factories import PositionAssignmentFactory

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestEnsureUtc:

    def test_naive_is_taken_as_utc(self):
        assert ensure_utc(datetime(2024, 1, 1, 9, 0)) == datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def test_aware_is_converted(self):
        cet = timezone(timedelta(hours=1))
        converted = ensure_utc(datetime(2024, 1, 1, 10, 0, tzinfo=cet))
        assert converted.tzinfo == timezone.utc
        assert converted.hour == 9


class TestWorkItemStatuses:

    @pytest.mark.parametrize(
        "item_type,status,expected",
        [
            (WorkItemType.TASK, "todo", True),
            (WorkItemType.TASK, TaskStatus.IN_PROGRESS, True),
            (WorkItemType.TASK, "done", False),
            (WorkItemType.PROJECT, "active", True),
            (WorkItemType.PROJECT, "on_hold", False),
            (WorkItemType.APPROVAL, "pending", True),
            (WorkItemType.APPROVAL, "approved", False),
            (WorkItemType.SAFETY_INSPECTION, InspectionStatus.SCHEDULED, True),
            (WorkItemType.QUALITY_CHECK, "passed", False),
            (WorkItemType.TASK, "bogus", False),
        ],
    )
    def test_is_open(self, item_type, status, expected):
        assert is_open(item_type, status) is expected

    def test_open_status_values_sorted(self):
        assert open_status_values(WorkItemType.SAFETY_INSPECTION) == ["pending", "scheduled"]
        assert open_status_values(WorkItemType.TASK) == ["assigned", "in_progress", "todo"]


class TestIntervals:

    def test_assignment_covers_half_open(self):
        assignment = PositionAssignment(start_at=NOW, end_at=NOW + timedelta(days=1))
        assert assignment.covers(NOW)
        assert not assignment.covers(NOW + timedelta(days=1))
        assert not assignment.covers(NOW - timedelta(seconds=1))

    def test_open_ended_assignment(self):
        assignment = PositionAssignment(start_at=NOW, end_at=None)
        assert assignment.covers(NOW + timedelta(days=3650))

    def test_delegation_covers(self):
        delegation = Delegation(start_at=NOW, end_at=NOW + timedelta(hours=1))
        assert delegation.covers(NOW + timedelta(minutes=59))
        assert not delegation.covers(NOW + timedelta(hours=1))


class TestValueObjects:

    def test_approval_authority_defaults(self):
        authority = ApprovalAuthority()
        assert authority.to_dict()["expense_ceiling"] == 0
        assert not any(v for k, v in authority.to_dict().items() if k.startswith("can_"))

    def test_position_authority(self, org):
        manager = org["manager"]
        manager.expense_ceiling = 5000
        manager.can_approve_budgets = True

        authority = manager.approval_authority

        assert authority.expense_ceiling == 5000
        assert authority.can_approve_budgets is True
        assert authority.can_approve_safety is False

    @pytest.mark.parametrize(
        "status,terminal",
        [
            (SwapStatus.PENDING, False),
            (SwapStatus.REASSIGNING_WORK_ITEMS, False),
            (SwapStatus.COMPLETED, True),
            (SwapStatus.PARTIAL_FAILURE, True),
            (SwapStatus.FAILED, True),
        ],
    )
    def test_swap_terminal(self, status, terminal):
        assert OccupantSwapRequest(status=status).is_terminal is terminal


class TestOneActiveAssignment:
    """The partial unique index allows one active row per position."""

    def test_second_active_row_rejected(self, org, db_session):
        company, analyst = org["company"], org["analyst"]
        PositionAssignmentFactory(company_id=company.id, position_id=analyst.id, user_id="alice")

        with pytest.raises(IntegrityError):
            PositionAssignmentFactory(company_id=company.id, position_id=analyst.id, user_id="bob")
        db_session.rollback()

    def test_ended_rows_do_not_conflict(self, org, db_session):
        company, analyst = org["company"], org["analyst"]
        for user in ("alice", "bob"):
            PositionAssignmentFactory(
                company_id=company.id, position_id=analyst.id, user_id=user,
                status=AssignmentStatus.ENDED, end_at=datetime.now(timezone.utc),
            )
        PositionAssignmentFactory(company_id=company.id, position_id=analyst.id, user_id="carol")

        rows = db_session.query(PositionAssignment).filter_by(position_id=analyst.id).all()
        assert sorted(r.user_id for r in rows) == ["alice", "bob", "carol"]
