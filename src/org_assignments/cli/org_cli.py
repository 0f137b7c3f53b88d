"""Flask CLI commands for position assignments.

Provides ``flask org assign``, ``flask org end-assignment``,
``flask org swap``, ``flask org resolve``, ``flask org history``,
``flask org expire-delegations`` and ``flask org stats``.
"""

import json
from datetime import datetime

import click
from flask import current_app
from flask.cli import AppGroup

from ..errors import OrgError
from ..models.assignment import AssignmentType
from ..models.types import ensure_utc
from ..services.assignment_ledger import AssignmentConfig
from ..services.position_lock import PositionLockError

org_cli = AppGroup("org", help="Position assignment and delegation commands.")

DATETIME_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S%z"]


def _service():
    return current_app.extensions["org_service"]


def _utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value else None


def _fail(error: Exception) -> None:
    click.echo(f"Error: {error}", err=True)
    raise SystemExit(1)


@org_cli.command("assign")
@click.option("--company", "company_id", type=int, required=True, help="Company ID.")
@click.option("--position", "position_id", type=int, required=True, help="Position ID.")
@click.option("--user", "user_id", required=True, help="User to place in the position.")
@click.option(
    "--type",
    "assignment_type",
    type=click.Choice([t.value for t in AssignmentType]),
    default=AssignmentType.PERMANENT.value,
    show_default=True,
)
@click.option("--start", "start_at", type=click.DateTime(DATETIME_FORMATS), default=None)
@click.option("--end", "end_at", type=click.DateTime(DATETIME_FORMATS), default=None)
@click.option("--reason", default=None)
@click.option("--actor", default=None, help="Recorded in the audit log.")
def assign_command(
    company_id: int,
    position_id: int,
    user_id: str,
    assignment_type: str,
    start_at: datetime | None,
    end_at: datetime | None,
    reason: str | None,
    actor: str | None,
) -> None:
    """Assign a user to a position, ending the current assignment."""
    config = AssignmentConfig(
        assignment_type=AssignmentType(assignment_type),
        start_at=_utc(start_at),
        end_at=_utc(end_at),
        reason=reason,
    )
    try:
        assignment = _service().assign_user_to_position(
            company_id, position_id, user_id, config=config, actor=actor
        )
    except (OrgError, PositionLockError) as e:
        _fail(e)

    click.echo(f"Assigned {user_id} to position {position_id}:")
    click.echo(f"  Assignment: {assignment.id}")
    click.echo(f"  Type:       {assignment.assignment_type.value}")
    if assignment.previous_assignment_id:
        click.echo(f"  Replaces:   {assignment.previous_assignment_id}")


@org_cli.command("end-assignment")
@click.option("--company", "company_id", type=int, required=True, help="Company ID.")
@click.option("--assignment", "assignment_id", type=int, required=True, help="Assignment ID.")
@click.option("--end", "end_at", type=click.DateTime(DATETIME_FORMATS), default=None)
@click.option("--reason", default=None)
@click.option("--actor", default=None)
def end_assignment_command(
    company_id: int,
    assignment_id: int,
    end_at: datetime | None,
    reason: str | None,
    actor: str | None,
) -> None:
    """End an active assignment, leaving the position vacant."""
    try:
        assignment = _service().end_position_assignment(
            company_id, assignment_id, end_at=_utc(end_at), actor=actor, reason=reason
        )
    except (OrgError, PositionLockError) as e:
        _fail(e)

    click.echo(
        f"Assignment {assignment.id} ended at {assignment.end_at.isoformat()}; "
        f"position {assignment.position_id} is vacant."
    )


@org_cli.command("swap")
@click.option("--company", "company_id", type=int, required=True, help="Company ID.")
@click.option("--a", "position_a_id", type=int, required=True, help="First position ID.")
@click.option("--b", "position_b_id", type=int, required=True, help="Second position ID.")
@click.option("--reason", default=None)
@click.option("--effective", "effective_date", type=click.DateTime(DATETIME_FORMATS), default=None)
@click.option("--actor", default=None)
def swap_command(
    company_id: int,
    position_a_id: int,
    position_b_id: int,
    reason: str | None,
    effective_date: datetime | None,
    actor: str | None,
) -> None:
    """Swap the occupants of two positions and reassign their open work."""
    try:
        swap = _service().swap_occupants(
            company_id,
            position_a_id,
            position_b_id,
            reason=reason,
            effective_date=_utc(effective_date),
            requested_by=actor,
        )
    except (OrgError, PositionLockError) as e:
        _fail(e)

    click.echo(f"Swap {swap.id}: {swap.status.value}")
    click.echo(f"  Position {position_a_id}: {swap.user_a_id} -> {swap.user_b_id}")
    click.echo(f"  Position {position_b_id}: {swap.user_b_id} -> {swap.user_a_id}")
    click.echo(
        f"  Reassigned: {swap.tasks_reassigned} tasks, {swap.projects_updated} projects, "
        f"{swap.approvals_transferred} approvals"
    )
    for error in swap.errors or []:
        click.echo(f"  ! {error}")
    if swap.errors:
        raise SystemExit(2)


@org_cli.command("resolve")
@click.option("--company", "company_id", type=int, required=True, help="Company ID.")
@click.option("--position", "position_id", type=int, required=True, help="Position ID.")
@click.option("--at", "at", type=click.DateTime(DATETIME_FORMATS), default=None)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print raw JSON.")
def resolve_command(company_id: int, position_id: int, at: datetime | None, as_json: bool) -> None:
    """Show who currently acts for a position."""
    try:
        effective = _service().resolve_effective_assignment(company_id, position_id, at=_utc(at))
    except OrgError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(effective.to_dict() if effective else None, indent=2))
        return
    if effective is None:
        click.echo(f"Position {position_id} is vacant.")
        return

    click.echo(f"Position {position_id}: {effective.user_id}")
    if effective.is_delegated:
        click.echo(f"  Delegated from {effective.occupant_user_id} (delegation {effective.delegation_id})")
    click.echo(f"  Resolved in {effective.resolution_time_ms:.2f}ms{' (cached)' if effective.used_cache else ''}")


@org_cli.command("history")
@click.option("--company", "company_id", type=int, required=True, help="Company ID.")
@click.option("--position", "position_id", type=int, required=True, help="Position ID.")
@click.option("--at", "at", type=click.DateTime(DATETIME_FORMATS), default=None)
def history_command(company_id: int, position_id: int, at: datetime | None) -> None:
    """List a position's assignments, most recent first."""
    try:
        view = _service().get_position_history(company_id, position_id, at=_utc(at))
    except OrgError as e:
        _fail(e)

    click.echo(f"{view.position_title} ({view.department_name or '-'})")
    if not view.assignments:
        click.echo("No assignments.")
    for a in view.assignments:
        end = a.end_at.isoformat() if a.end_at else "open"
        click.echo(f"  {a.id:>6}  {a.user_id:<20} {a.status.value:<10} {a.start_at.isoformat()} -> {end}")
    if view.at is not None:
        occupant = view.occupant_at.user_id if view.occupant_at else "vacant"
        click.echo(f"Occupant at {view.at.isoformat()}: {occupant}")


@org_cli.command("expire-delegations")
@click.option("--now", "now", type=click.DateTime(DATETIME_FORMATS), default=None)
def expire_delegations_command(now: datetime | None) -> None:
    """Expire active delegations whose window has closed."""
    expired = _service().expire_delegations(_utc(now))
    click.echo(f"Expired {len(expired)} delegation{'s' if len(expired) != 1 else ''}.")
    for d in expired:
        click.echo(f"  {d.id}: position {d.delegator_position_id} {d.delegator_user_id} -> {d.delegate_user_id}")


@org_cli.command("stats")
def stats_command() -> None:
    """Print resolution, cache and ledger statistics as JSON."""
    click.echo(json.dumps(_service().stats(), indent=2, default=str))
