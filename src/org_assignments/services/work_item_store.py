"""Work-item persistence used by resolution and reassignment."""

import logging

from sqlalchemy import or_, select

from ..database import db
from ..errors import NotFoundError, ValidationError
from ..models.types import utcnow
from ..models.work_item import (
    OPEN_STATUSES,
    WorkItem,
    WorkItemType,
    open_status_values,
    parse_status,
)
from .resolution_engine import WorkItemAssignmentContext

logger = logging.getLogger(__name__)


def parse_item_type(value: str | WorkItemType) -> WorkItemType:
    if isinstance(value, WorkItemType):
        return value
    try:
        return WorkItemType(value)
    except ValueError:
        raise ValidationError(f"Unknown work item type {value!r}")


class WorkItemStore:
    """
    Finds open work items by position and writes resolved assignees onto them.

    Writes only add to the session and flush; the caller decides when to
    commit, so the reassigner can commit item by item.
    """

    def get(self, company_id: int, item_id: int) -> WorkItem:
        item = db.session.get(WorkItem, item_id)
        if item is None or item.company_id != company_id:
            raise NotFoundError("work_item", item_id)
        return item

    def create(
        self,
        company_id: int,
        item_type: str | WorkItemType,
        title: str,
        status: str | None = None,
        assigned_position_id: int | None = None,
        assignee_user_id: str | None = None,
    ) -> WorkItem:
        item_type = parse_item_type(item_type)
        if status is None:
            status = open_status_values(item_type)[0]
        try:
            parse_status(item_type, status)
        except ValueError:
            raise ValidationError(f"Unknown {item_type.value} status {status!r}")

        item = WorkItem(
            company_id=company_id,
            item_type=item_type,
            title=title,
            status=status,
            assigned_position_id=assigned_position_id,
            assignee_user_id=assignee_user_id,
        )
        db.session.add(item)
        db.session.flush()
        return item

    def find_open_ids(
        self,
        position_id: int,
        item_types: list[WorkItemType] | None = None,
    ) -> list[tuple[int, WorkItemType]]:
        """(id, type) of every open item assigned to the position, oldest first."""
        types = item_types or list(WorkItemType)
        clauses = [
            (WorkItem.item_type == item_type)
            & WorkItem.status.in_([s.value for s in OPEN_STATUSES[item_type]])
            for item_type in types
        ]
        rows = db.session.execute(
            select(WorkItem.id, WorkItem.item_type)
            .where(WorkItem.assigned_position_id == position_id, or_(*clauses))
            .order_by(WorkItem.id)
        )
        return [(row.id, row.item_type) for row in rows]

    def find_open(self, position_id: int) -> list[WorkItem]:
        ids = [item_id for item_id, _ in self.find_open_ids(position_id)]
        if not ids:
            return []
        return list(
            db.session.execute(
                select(WorkItem).where(WorkItem.id.in_(ids)).order_by(WorkItem.id)
            ).scalars()
        )

    def apply_context(
        self,
        item: WorkItem,
        context: WorkItemAssignmentContext,
        reassigned_from_user_id: str | None = None,
    ) -> WorkItem:
        """Write a resolution result onto an item's assignee and delegation fields."""
        item.assigned_position_id = context.effective_position_id
        item.assignee_user_id = context.effective_user_id
        item.occupant_user_id = context.occupant_user_id
        item.is_delegated = context.is_delegated
        item.delegation_chain = [hop.to_dict() for hop in context.delegation_chain]
        item.assignment_resolved_at = context.resolved_at or utcnow()
        if reassigned_from_user_id is not None:
            item.reassigned_from_user_id = reassigned_from_user_id
        db.session.flush()
        return item

    def update_assignee(
        self,
        item_id: int,
        context: WorkItemAssignmentContext,
        reassigned_from_user_id: str | None = None,
    ) -> WorkItem:
        item = db.session.get(WorkItem, item_id)
        if item is None:
            raise NotFoundError("work_item", item_id)
        return self.apply_context(item, context, reassigned_from_user_id)
