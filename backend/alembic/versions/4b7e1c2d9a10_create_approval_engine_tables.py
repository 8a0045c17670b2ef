"""create approval engine tables

Revision ID: 4b7e1c2d9a10
Revises:
Create Date: 2026-10-19 09:12:44.381207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4b7e1c2d9a10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'approval_workflows',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('workflow_type', sa.String(100), nullable=False),
        sa.Column('steps', sa.JSON(), nullable=False),
        sa.Column('auto_approve_threshold', sa.Numeric(18, 2), nullable=True),
        sa.Column('require_all_approvers', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_workflows_client_id', 'approval_workflows', ['client_id'])
    op.create_index('ix_approval_workflows_workflow_type', 'approval_workflows', ['workflow_type'])

    op.create_table(
        'approval_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('workflow_id', sa.Uuid(), nullable=True),
        sa.Column('workflow_version', sa.Integer(), nullable=True),
        sa.Column('client_id', sa.Uuid(), nullable=True),
        sa.Column('item_type', sa.String(100), nullable=False),
        sa.Column('item_id', sa.String(255), nullable=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('priority', sa.String(10), nullable=False),
        sa.Column('current_step', sa.Integer(), nullable=False),
        sa.Column('total_steps', sa.Integer(), nullable=False),
        sa.Column('steps_snapshot', sa.JSON(), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submitted_by', sa.Uuid(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decision_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['workflow_id'], ['approval_workflows.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_items_workflow_id', 'approval_items', ['workflow_id'])
    op.create_index('ix_approval_items_client_id', 'approval_items', ['client_id'])
    op.create_index('ix_approval_items_status', 'approval_items', ['status'])
    op.create_index('ix_approval_items_due_date', 'approval_items', ['due_date'])

    op.create_table(
        'approval_decisions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('approval_item_id', sa.Uuid(), nullable=False),
        sa.Column('step_number', sa.Integer(), nullable=False),
        sa.Column('approver_id', sa.Uuid(), nullable=False),
        sa.Column('decision', sa.String(20), nullable=False),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['approval_item_id'], ['approval_items.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'approval_item_id', 'step_number', 'approver_id',
            name='uq_approval_decisions_item_step_approver',
        ),
    )
    op.create_index('ix_approval_decisions_approval_item_id', 'approval_decisions', ['approval_item_id'])
    op.create_index('ix_approval_decisions_approver_id', 'approval_decisions', ['approver_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=True),
        sa.Column('client_id', sa.Uuid(), nullable=True),
        sa.Column('before_state', sa.Text(), nullable=True),
        sa.Column('after_state', sa.Text(), nullable=True),
        sa.Column('request_id', sa.String(64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.create_index('ix_audit_logs_client_id', 'audit_logs', ['client_id'])


def downgrade() -> None:
    op.drop_index('ix_audit_logs_client_id', table_name='audit_logs')
    op.drop_index('ix_audit_logs_entity_id', table_name='audit_logs')
    op.drop_index('ix_audit_logs_entity_type', table_name='audit_logs')
    op.drop_index('ix_audit_logs_action', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('ix_approval_decisions_approver_id', table_name='approval_decisions')
    op.drop_index('ix_approval_decisions_approval_item_id', table_name='approval_decisions')
    op.drop_table('approval_decisions')
    op.drop_index('ix_approval_items_due_date', table_name='approval_items')
    op.drop_index('ix_approval_items_status', table_name='approval_items')
    op.drop_index('ix_approval_items_client_id', table_name='approval_items')
    op.drop_index('ix_approval_items_workflow_id', table_name='approval_items')
    op.drop_table('approval_items')
    op.drop_index('ix_approval_workflows_workflow_type', table_name='approval_workflows')
    op.drop_index('ix_approval_workflows_client_id', table_name='approval_workflows')
    op.drop_table('approval_workflows')
