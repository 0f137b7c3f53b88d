"""initial org assignment schema

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-19 09:12:44.281903

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '3f1c9a7d2b10'
down_revision = None
branch_labels = None
depends_on = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade():
    op.create_table('companies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('departments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('parent_department_id', sa.Integer(), nullable=True),
        sa.Column('location', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_department_id'], ['departments.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'code', name='uq_departments_company_code')
    )
    op.create_index('ix_departments_company_id', 'departments', ['company_id'])

    op.create_table('positions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=128), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reports_to_id', sa.Integer(), nullable=True),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('expense_ceiling', sa.Integer(), nullable=False),
        sa.Column('can_approve_projects', sa.Boolean(), nullable=False),
        sa.Column('can_approve_budgets', sa.Boolean(), nullable=False),
        sa.Column('can_approve_quality', sa.Boolean(), nullable=False),
        sa.Column('can_approve_safety', sa.Boolean(), nullable=False),
        sa.Column('can_approve_time_off', sa.Boolean(), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['reports_to_id'], ['positions.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'code', name='uq_positions_company_code')
    )
    op.create_index('ix_positions_company_id', 'positions', ['company_id'])
    op.create_index('ix_positions_department_id', 'positions', ['department_id'])

    op.create_table('occupant_swap_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('position_a_id', sa.Integer(), nullable=False),
        sa.Column('position_b_id', sa.Integer(), nullable=False),
        sa.Column('user_a_id', sa.String(length=64), nullable=True),
        sa.Column('user_b_id', sa.String(length=64), nullable=True),
        sa.Column('old_assignment_a_id', sa.Integer(), nullable=True),
        sa.Column('old_assignment_b_id', sa.Integer(), nullable=True),
        sa.Column('new_assignment_a_id', sa.Integer(), nullable=True),
        sa.Column('new_assignment_b_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('effective_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('requested_by', sa.String(length=64), nullable=True),
        sa.Column('status', sa.Enum(
            'pending', 'validating', 'ended_old_assignments', 'created_new_assignments',
            'reassigning_work_items', 'completed', 'partial_failure', 'failed',
            name='swapstatus', create_constraint=True), nullable=False),
        sa.Column('tasks_reassigned', sa.Integer(), nullable=False),
        sa.Column('projects_updated', sa.Integer(), nullable=False),
        sa.Column('approvals_transferred', sa.Integer(), nullable=False),
        sa.Column('errors', _json(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['position_a_id'], ['positions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['position_b_id'], ['positions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_occupant_swap_requests_company_id', 'occupant_swap_requests', ['company_id'])
    op.create_index('ix_occupant_swap_requests_status', 'occupant_swap_requests', ['status'])

    op.create_table('position_assignments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('position_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('assignment_type', sa.Enum(
            'permanent', 'temporary', 'acting',
            name='assignmenttype', create_constraint=True), nullable=False),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.Enum(
            'active', 'ended', 'cancelled',
            name='assignmentstatus', create_constraint=True), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('ended_by', sa.String(length=64), nullable=True),
        sa.Column('previous_assignment_id', sa.Integer(), nullable=True),
        sa.Column('swap_request_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['position_id'], ['positions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['previous_assignment_id'], ['position_assignments.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['swap_request_id'], ['occupant_swap_requests.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_position_assignments_company_id', 'position_assignments', ['company_id'])
    op.create_index('ix_position_assignments_position_id', 'position_assignments', ['position_id'])
    op.create_index('ix_position_assignments_user_id', 'position_assignments', ['user_id'])
    op.create_index('ix_position_assignments_status', 'position_assignments', ['status'])
    op.create_index(
        'ix_position_assignments_position_start',
        'position_assignments',
        ['position_id', 'start_at'],
    )
    # At most one active assignment per position
    op.create_index(
        'uq_position_assignments_one_active',
        'position_assignments',
        ['position_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )

    op.create_table('delegations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('delegator_position_id', sa.Integer(), nullable=False),
        sa.Column('delegator_user_id', sa.String(length=64), nullable=False),
        sa.Column('delegate_user_id', sa.String(length=64), nullable=False),
        sa.Column('delegate_position_id', sa.Integer(), nullable=True),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.Enum(
            'pending', 'active', 'expired', 'revoked', 'rejected',
            name='delegationstatus', create_constraint=True), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('requires_approval', sa.Boolean(), nullable=False),
        sa.Column('approved_by', sa.String(length=64), nullable=True),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_by', sa.String(length=64), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['delegator_position_id'], ['positions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['delegate_position_id'], ['positions.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_delegations_company_id', 'delegations', ['company_id'])
    op.create_index('ix_delegations_delegator_position_id', 'delegations', ['delegator_position_id'])
    op.create_index('ix_delegations_delegator_user_id', 'delegations', ['delegator_user_id'])
    op.create_index('ix_delegations_delegate_user_id', 'delegations', ['delegate_user_id'])
    op.create_index('ix_delegations_status', 'delegations', ['status'])
    op.create_index(
        'ix_delegations_position_status_window',
        'delegations',
        ['delegator_position_id', 'status', 'start_at'],
    )

    op.create_table('work_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('item_type', sa.Enum(
            'task', 'project', 'approval', 'quality_check', 'safety_inspection',
            name='workitemtype', create_constraint=True), nullable=False),
        sa.Column('title', sa.String(length=256), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('assigned_position_id', sa.Integer(), nullable=True),
        sa.Column('assignee_user_id', sa.String(length=64), nullable=True),
        sa.Column('occupant_user_id', sa.String(length=64), nullable=True),
        sa.Column('is_delegated', sa.Boolean(), nullable=False),
        sa.Column('delegation_chain', _json(), nullable=True),
        sa.Column('reassigned_from_user_id', sa.String(length=64), nullable=True),
        sa.Column('assignment_resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assigned_position_id'], ['positions.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_work_items_company_id', 'work_items', ['company_id'])
    op.create_index(
        'ix_work_items_position_type_status',
        'work_items',
        ['assigned_position_id', 'item_type', 'status'],
    )

    op.create_table('org_audit_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('actor', sa.String(length=64), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('before', _json(), nullable=True),
        sa.Column('after', _json(), nullable=True),
        sa.Column('related', _json(), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'sequence', name='uq_org_audit_log_company_sequence')
    )
    op.create_index('ix_org_audit_log_action', 'org_audit_log', ['action'])
    op.create_index('ix_org_audit_log_timestamp', 'org_audit_log', ['timestamp'])
    op.create_index('ix_org_audit_log_entity', 'org_audit_log', ['entity_type', 'entity_id'])
    op.create_index(
        'ix_org_audit_log_company_timestamp',
        'org_audit_log',
        ['company_id', 'timestamp'],
    )


def downgrade():
    op.drop_table('org_audit_log')
    op.drop_table('work_items')
    op.drop_table('delegations')
    op.drop_index('uq_position_assignments_one_active', table_name='position_assignments')
    op.drop_table('position_assignments')
    op.drop_table('occupant_swap_requests')
    op.drop_table('positions')
    op.drop_table('departments')
    op.drop_table('companies')

    for enum_name in ('workitemtype', 'delegationstatus', 'assignmentstatus',
                      'assignmenttype', 'swapstatus'):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
