"""Department and position tree maintenance."""

import logging
from typing import Any

from sqlalchemy import select

from ..database import db
from ..errors import NotFoundError, ValidationError
from ..models.audit import AuditAction
from ..models.company import Company
from ..models.department import Department
from ..models.position import Position
from .audit_log import AuditLog
from .ledger_transaction import TransactionRunner

logger = logging.getLogger(__name__)

DEPARTMENT_FIELDS = ("name", "code", "description", "parent_department_id", "location")
POSITION_FIELDS = (
    "title",
    "code",
    "description",
    "department_id",
    "reports_to_id",
    "level",
    "expense_ceiling",
    "can_approve_projects",
    "can_approve_budgets",
    "can_approve_quality",
    "can_approve_safety",
    "can_approve_time_off",
)


class OrgHierarchyStore:
    """
    Owns companies, departments and positions.

    Both trees are checked on every write: a department or position may not
    become its own ancestor, and a position's level must be at least one more
    than its manager's. Departments and positions are soft-deactivated so
    historical assignments keep pointing at real rows.
    """

    def __init__(self, audit_log: AuditLog, runner: TransactionRunner | None = None):
        self._audit = audit_log
        self._runner = runner or TransactionRunner()

    # --- Companies ---

    def create_company(self, name: str, description: str | None = None) -> Company:
        if not name or not name.strip():
            raise ValidationError("Company name is required")

        def work():
            company = Company(name=name.strip(), description=description)
            db.session.add(company)
            db.session.flush()
            return company

        company = self._runner.run(work, f"create company {name!r}")
        logger.info(f"Company created: id={company.id} name={company.name}")
        return company

    def get_company(self, company_id: int) -> Company:
        company = db.session.get(Company, company_id)
        if company is None:
            raise NotFoundError("company", company_id)
        return company

    # --- Departments ---

    def get_department(self, company_id: int, department_id: int) -> Department:
        department = db.session.get(Department, department_id)
        if department is None or department.company_id != company_id:
            raise NotFoundError("department", department_id)
        return department

    def list_departments(self, company_id: int, include_inactive: bool = False) -> list[Department]:
        query = select(Department).where(Department.company_id == company_id)
        if not include_inactive:
            query = query.where(Department.status == "active")
        return list(db.session.execute(query.order_by(Department.name)).scalars())

    def create_department(
        self,
        company_id: int,
        name: str,
        code: str,
        parent_department_id: int | None = None,
        location: str | None = None,
        description: str | None = None,
        actor: str | None = None,
    ) -> Department:
        self.get_company(company_id)
        if not name or not code:
            raise ValidationError("Department name and code are required")
        if parent_department_id is not None:
            self.get_department(company_id, parent_department_id)
        self._check_department_code(company_id, code)

        def work():
            department = Department(
                company_id=company_id,
                name=name,
                code=code,
                parent_department_id=parent_department_id,
                location=location,
                description=description,
                created_by=actor,
            )
            db.session.add(department)
            db.session.flush()
            self._audit.record(
                company_id,
                AuditAction.DEPARTMENT_CREATED,
                "department",
                department.id,
                actor=actor,
                after=department.to_dict(),
            )
            return department

        department = self._runner.run(work, f"create department {code}")
        logger.info(f"Department created: id={department.id} code={code} company={company_id}")
        return department

    def update_department(
        self,
        company_id: int,
        department_id: int,
        changes: dict[str, Any],
        actor: str | None = None,
    ) -> Department:
        unknown = set(changes) - set(DEPARTMENT_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown department fields: {sorted(unknown)}")

        department = self.get_department(company_id, department_id)
        if "code" in changes and changes["code"] != department.code:
            self._check_department_code(company_id, changes["code"])
        if changes.get("parent_department_id") is not None:
            self._check_department_parent(company_id, department_id, changes["parent_department_id"])

        def work():
            current = self.get_department(company_id, department_id)
            before = current.to_dict()
            for key, value in changes.items():
                setattr(current, key, value)
            db.session.flush()
            self._audit.record(
                company_id,
                AuditAction.DEPARTMENT_UPDATED,
                "department",
                department_id,
                actor=actor,
                before=before,
                after=current.to_dict(),
            )
            return current

        return self._runner.run(work, f"update department {department_id}")

    def deactivate_department(
        self, company_id: int, department_id: int, actor: str | None = None
    ) -> Department:
        self.get_department(company_id, department_id)

        def work():
            department = self.get_department(company_id, department_id)
            if department.status == "inactive":
                return department
            department.status = "inactive"
            db.session.flush()
            self._audit.record(
                company_id,
                AuditAction.DEPARTMENT_DEACTIVATED,
                "department",
                department_id,
                actor=actor,
                before={"status": "active"},
                after={"status": "inactive"},
            )
            return department

        department = self._runner.run(work, f"deactivate department {department_id}")
        logger.info(f"Department deactivated: id={department_id}")
        return department

    def _check_department_code(self, company_id: int, code: str) -> None:
        existing = db.session.execute(
            select(Department.id).where(
                Department.company_id == company_id, Department.code == code
            )
        ).first()
        if existing:
            raise ValidationError(f"Department code {code!r} already exists")

    def _check_department_parent(self, company_id: int, department_id: int, parent_id: int) -> None:
        """Reject a parent that is the department itself or one of its descendants."""
        node = self.get_department(company_id, parent_id)
        seen = set()
        while node is not None:
            if node.id == department_id:
                raise ValidationError(
                    f"Department {parent_id} cannot be the parent of {department_id}: cycle"
                )
            if node.id in seen:
                break
            seen.add(node.id)
            node = node.parent

    # --- Positions ---

    def get_position(self, company_id: int, position_id: int) -> Position:
        position = db.session.get(Position, position_id)
        if position is None or position.company_id != company_id:
            raise NotFoundError("position", position_id)
        return position

    def list_positions(
        self,
        company_id: int,
        department_id: int | None = None,
        include_inactive: bool = False,
    ) -> list[Position]:
        query = select(Position).where(Position.company_id == company_id)
        if department_id is not None:
            query = query.where(Position.department_id == department_id)
        if not include_inactive:
            query = query.where(Position.status == "active")
        query = query.order_by(Position.level, Position.title)
        return list(db.session.execute(query).scalars())

    def get_reporting_chain(self, company_id: int, position_id: int) -> list[Position]:
        """Managers of a position, nearest first, up to the top of the chart."""
        position = self.get_position(company_id, position_id)
        chain = []
        seen = {position.id}
        node = position.reports_to
        while node is not None and node.id not in seen:
            chain.append(node)
            seen.add(node.id)
            node = node.reports_to
        return chain

    def get_direct_reports(self, company_id: int, position_id: int) -> list[Position]:
        self.get_position(company_id, position_id)
        return list(
            db.session.execute(
                select(Position)
                .where(Position.reports_to_id == position_id, Position.status == "active")
                .order_by(Position.level, Position.title)
            ).scalars()
        )

    def create_position(
        self,
        company_id: int,
        department_id: int,
        title: str,
        code: str,
        level: int = 1,
        reports_to_id: int | None = None,
        description: str | None = None,
        actor: str | None = None,
        **authority: Any,
    ) -> Position:
        self.get_company(company_id)
        if not title or not code:
            raise ValidationError("Position title and code are required")
        department = self.get_department(company_id, department_id)
        if not department.is_active:
            raise ValidationError(f"Department {department_id} is inactive")
        unknown = set(authority) - set(POSITION_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown position fields: {sorted(unknown)}")
        self._check_position_code(company_id, code)
        self._check_level(company_id, None, level, reports_to_id)

        def work():
            position = Position(
                company_id=company_id,
                department_id=department_id,
                title=title,
                code=code,
                level=level,
                reports_to_id=reports_to_id,
                description=description,
                created_by=actor,
                **authority,
            )
            db.session.add(position)
            db.session.flush()
            self._audit.record(
                company_id,
                AuditAction.POSITION_CREATED,
                "position",
                position.id,
                actor=actor,
                after=position.to_dict(),
            )
            return position

        position = self._runner.run(work, f"create position {code}")
        logger.info(
            f"Position created: id={position.id} code={code} level={level} "
            f"reports_to={reports_to_id}"
        )
        return position

    def update_position(
        self,
        company_id: int,
        position_id: int,
        changes: dict[str, Any],
        actor: str | None = None,
    ) -> Position:
        unknown = set(changes) - set(POSITION_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown position fields: {sorted(unknown)}")

        position = self.get_position(company_id, position_id)
        if "code" in changes and changes["code"] != position.code:
            self._check_position_code(company_id, changes["code"])
        if "department_id" in changes:
            self.get_department(company_id, changes["department_id"])
        if "level" in changes or "reports_to_id" in changes:
            level = changes.get("level", position.level)
            reports_to_id = changes.get("reports_to_id", position.reports_to_id)
            self._check_level(company_id, position_id, level, reports_to_id)

        def work():
            current = self.get_position(company_id, position_id)
            before = current.to_dict()
            for key, value in changes.items():
                setattr(current, key, value)
            db.session.flush()
            self._audit.record(
                company_id,
                AuditAction.POSITION_UPDATED,
                "position",
                position_id,
                actor=actor,
                before=before,
                after=current.to_dict(),
            )
            return current

        return self._runner.run(work, f"update position {position_id}")

    def deactivate_position(
        self, company_id: int, position_id: int, actor: str | None = None
    ) -> Position:
        self.get_position(company_id, position_id)

        def work():
            position = self.get_position(company_id, position_id)
            if position.status == "inactive":
                return position
            position.status = "inactive"
            db.session.flush()
            self._audit.record(
                company_id,
                AuditAction.POSITION_DEACTIVATED,
                "position",
                position_id,
                actor=actor,
                before={"status": "active"},
                after={"status": "inactive"},
            )
            return position

        position = self._runner.run(work, f"deactivate position {position_id}")
        logger.info(f"Position deactivated: id={position_id}")
        return position

    def _check_position_code(self, company_id: int, code: str) -> None:
        existing = db.session.execute(
            select(Position.id).where(Position.company_id == company_id, Position.code == code)
        ).first()
        if existing:
            raise ValidationError(f"Position code {code!r} already exists")

    def _check_level(
        self,
        company_id: int,
        position_id: int | None,
        level: int,
        reports_to_id: int | None,
    ) -> None:
        """Validate level and reporting line for a new or updated position.

        Raises:
            ValidationError: on a non-positive level, a reporting cycle, a
                level not below the manager's, or (for an existing position)
                a level that would no longer sit above its direct reports.
        """
        if not isinstance(level, int) or level < 1:
            raise ValidationError(f"Position level must be a positive integer, got {level!r}")

        if reports_to_id is not None:
            manager = self.get_position(company_id, reports_to_id)
            node = manager
            seen = set()
            while node is not None and node.id not in seen:
                if position_id is not None and node.id == position_id:
                    raise ValidationError(
                        f"Position {reports_to_id} cannot be the manager of {position_id}: cycle"
                    )
                seen.add(node.id)
                node = node.reports_to
            if level < manager.level + 1:
                raise ValidationError(
                    f"Position level {level} must be at least {manager.level + 1} "
                    f"(manager {manager.code} is level {manager.level})"
                )

        if position_id is not None:
            for report in self.get_direct_reports(company_id, position_id):
                if report.level < level + 1:
                    raise ValidationError(
                        f"Level {level} would not sit above direct report "
                        f"{report.code} (level {report.level})"
                    )
