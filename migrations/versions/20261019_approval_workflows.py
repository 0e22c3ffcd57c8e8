"""Create organization, expense and approval workflow tables

Revision ID: 20261019_approval_workflows
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_approval_workflows'
down_revision = None
branch_labels = None
depends_on = None

member_role = sa.Enum('EMPLOYEE', 'MANAGER', 'FINANCE', 'ADMIN', name='member_role')
expense_status = sa.Enum('DRAFT', 'SUBMITTED', 'APPROVED', 'REJECTED', 'REIMBURSED', name='expense_status')
report_status = sa.Enum('DRAFT', 'SUBMITTED', 'APPROVED', 'REJECTED', 'PAID', name='report_status')
step_type = sa.Enum(
    'MANAGER', 'ROLE', 'SPECIFIC_USER', 'SPECIFIC_MANAGER', 'MULTIPLE_USERS', 'PAYMENT', 'DEPARTMENT_OWNER',
    name='approval_step_type',
)
approval_status = sa.Enum(
    'PENDING', 'APPROVED', 'AWAITING_PAYMENT', 'REJECTED', 'CANCELLED', 'PAID', name='approval_status'
)
action_type = sa.Enum(
    'APPROVED', 'REJECTED', 'DELEGATED', 'COMMENTED', 'SUBMITTED', 'PAID', name='approval_action_type'
)


def upgrade():
    bind = op.get_bind()
    tables = sa.inspect(bind).get_table_names()

    if 'organizations' not in tables:
        op.create_table(
            'organizations',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=255), nullable=False, unique=True),
            sa.Column('currency_code', sa.String(length=10), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )

    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('first_name', sa.String(length=100), nullable=False),
            sa.Column('last_name', sa.String(length=100), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('password_hash', sa.String(length=255), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        op.create_index('ix_users_email', 'users', ['email'], unique=True)

    if 'organization_members' not in tables:
        op.create_table(
            'organization_members',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('role', member_role, nullable=False),
            sa.Column('manager_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('department', sa.String(length=120), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.UniqueConstraint('organization_id', 'user_id', name='uq_member_org_user'),
        )
        op.create_index('ix_organization_members_organization_id', 'organization_members', ['organization_id'])
        op.create_index('ix_organization_members_user_id', 'organization_members', ['user_id'])

    if 'expense_reports' not in tables:
        op.create_table(
            'expense_reports',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('status', report_status, nullable=False),
            sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('approved_at', sa.DateTime(), nullable=True),
            sa.Column('rejected_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('rejected_at', sa.DateTime(), nullable=True),
            sa.Column('rejection_reason', sa.Text(), nullable=True),
            sa.Column('paid_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('paid_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        op.create_index('ix_expense_reports_organization_id', 'expense_reports', ['organization_id'])
        op.create_index('ix_expense_reports_user_id', 'expense_reports', ['user_id'])

    if 'expenses' not in tables:
        op.create_table(
            'expenses',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('report_id', sa.Integer(), sa.ForeignKey('expense_reports.id'), nullable=True),
            sa.Column('merchant', sa.String(length=255), nullable=True),
            sa.Column('amount', sa.Numeric(12, 2), nullable=False),
            sa.Column('currency', sa.String(length=10), nullable=False),
            sa.Column('amount_in_org_currency', sa.Numeric(12, 2), nullable=True),
            sa.Column('category', sa.String(length=120), nullable=True),
            sa.Column('expense_date', sa.Date(), nullable=True),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('receipt_path', sa.String(length=255), nullable=True),
            sa.Column('project_code', sa.String(length=120), nullable=True),
            sa.Column('tags', sa.JSON(), nullable=False),
            sa.Column('status', expense_status, nullable=False),
            sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('approved_at', sa.DateTime(), nullable=True),
            sa.Column('rejected_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('rejected_at', sa.DateTime(), nullable=True),
            sa.Column('rejection_reason', sa.Text(), nullable=True),
            sa.Column('reimbursed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('reimbursed_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        op.create_index('ix_expenses_organization_id', 'expenses', ['organization_id'])
        op.create_index('ix_expenses_user_id', 'expenses', ['user_id'])
        op.create_index('ix_expenses_report_id', 'expenses', ['report_id'])

    if 'approval_workflows' not in tables:
        op.create_table(
            'approval_workflows',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('is_default', sa.Boolean(), nullable=False),
            sa.Column('conditions', sa.JSON(), nullable=False),
            sa.Column('priority', sa.Integer(), nullable=False),
            sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('organization_id', 'name', name='uq_workflow_name_per_org'),
        )
        op.create_index('ix_approval_workflows_organization_id', 'approval_workflows', ['organization_id'])

    if 'approval_steps' not in tables:
        op.create_table(
            'approval_steps',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('workflow_id', sa.Integer(), sa.ForeignKey('approval_workflows.id'), nullable=False),
            sa.Column('step_order', sa.Integer(), nullable=False),
            sa.Column('step_type', step_type, nullable=False),
            sa.Column('approver_role', sa.String(length=50), nullable=True),
            sa.Column('approver_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('approver_user_ids', sa.JSON(), nullable=False),
            sa.Column('is_payment_step', sa.Boolean(), nullable=False),
            sa.UniqueConstraint('workflow_id', 'step_order', name='uq_step_order_per_workflow'),
        )
        op.create_index('ix_approval_steps_workflow_id', 'approval_steps', ['workflow_id'])

    if 'expense_approvals' not in tables:
        op.create_table(
            'expense_approvals',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
            sa.Column('expense_id', sa.Integer(), sa.ForeignKey('expenses.id'), nullable=True, unique=True),
            sa.Column('report_id', sa.Integer(), sa.ForeignKey('expense_reports.id'), nullable=True, unique=True),
            sa.Column('workflow_id', sa.Integer(), sa.ForeignKey('approval_workflows.id'), nullable=False),
            sa.Column('current_step', sa.Integer(), nullable=False),
            sa.Column('total_steps', sa.Integer(), nullable=False),
            sa.Column('status', approval_status, nullable=False),
            sa.Column('current_approver_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('submitted_at', sa.DateTime(), nullable=False),
            sa.Column('completed_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.Column('version', sa.Integer(), nullable=False),
            sa.CheckConstraint(
                '(expense_id IS NOT NULL AND report_id IS NULL) OR '
                '(expense_id IS NULL AND report_id IS NOT NULL)',
                name='ck_expense_or_report',
            ),
        )
        op.create_index('ix_expense_approvals_organization_id', 'expense_approvals', ['organization_id'])
        op.create_index('ix_expense_approvals_status', 'expense_approvals', ['status'])
        op.create_index('ix_expense_approvals_current_approver_id', 'expense_approvals', ['current_approver_id'])

    if 'approval_actions' not in tables:
        op.create_table(
            'approval_actions',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column(
                'expense_approval_id', sa.Integer(), sa.ForeignKey('expense_approvals.id'), nullable=False
            ),
            sa.Column('step_number', sa.Integer(), nullable=False),
            sa.Column('action', action_type, nullable=False),
            sa.Column('actor_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('actor_role', sa.String(length=50), nullable=False),
            sa.Column('comment', sa.Text(), nullable=True),
            sa.Column('rejection_reason', sa.Text(), nullable=True),
            sa.Column('delegated_to', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('action_at', sa.DateTime(), nullable=False),
            sa.Column('ip_address', sa.String(length=45), nullable=True),
            sa.Column('user_agent', sa.Text(), nullable=True),
        )
        op.create_index('ix_approval_actions_expense_approval_id', 'approval_actions', ['expense_approval_id'])
        op.create_index('ix_approval_actions_actor_id', 'approval_actions', ['actor_id'])

    if 'approval_delegations' not in tables:
        op.create_table(
            'approval_delegations',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
            sa.Column('delegator_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('delegate_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('start_date', sa.Date(), nullable=False),
            sa.Column('end_date', sa.Date(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('reason', sa.Text(), nullable=True),
            sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.CheckConstraint('end_date >= start_date', name='ck_valid_delegation_period'),
            sa.CheckConstraint('delegator_id != delegate_id', name='ck_no_self_delegation'),
        )
        op.create_index('ix_approval_delegations_organization_id', 'approval_delegations', ['organization_id'])
        op.create_index('ix_approval_delegations_delegator_id', 'approval_delegations', ['delegator_id'])


def downgrade():
    bind = op.get_bind()
    tables = sa.inspect(bind).get_table_names()

    for table in (
        'approval_delegations',
        'approval_actions',
        'expense_approvals',
        'approval_steps',
        'approval_workflows',
        'expenses',
        'expense_reports',
        'organization_members',
        'users',
        'organizations',
    ):
        if table in tables:
            op.drop_table(table)
