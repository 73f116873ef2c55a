"""Create scheduled audit, run and reminder marker tables

Revision ID: c3d4e5f6a7b8
Revises:
Create Date: 2024-01-10 09:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel
from alembic import op

# revision identifiers, used by Alembic.
revision: str = 'c3d4e5f6a7b8'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create scheduled_audit, scheduled_audit_run, scheduled_audit_reminder."""
    op.create_table(
        'scheduled_audit',
        sa.Column('id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('description', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=''),
        sa.Column('recurrence_type', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('next_run_date', sa.DateTime(), nullable=True),
        sa.Column('last_run_date', sa.DateTime(), nullable=True),
        sa.Column('audit_type', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='full'),
        sa.Column('scope_type', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('scope_config', sa.JSON(), nullable=True),
        sa.Column('assigned_auditors', sa.JSON(), nullable=True),
        sa.Column('auto_assign', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notification_recipients', sa.JSON(), nullable=True),
        sa.Column('reminder_settings', sa.JSON(), nullable=True),
        sa.Column('checklist_items', sa.JSON(), nullable=True),
        sa.Column('status', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='active'),
        sa.Column('total_runs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_runs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scheduled_audit_next_run_date', 'scheduled_audit', ['next_run_date'])
    op.create_index('ix_scheduled_audit_status', 'scheduled_audit', ['status'])
    op.create_index('ix_scheduled_audit_created_by', 'scheduled_audit', ['created_by'])

    op.create_table(
        'scheduled_audit_run',
        sa.Column('id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('scheduled_audit_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('run_date', sa.DateTime(), nullable=False),
        sa.Column('status', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='pending'),
        sa.Column('assets_to_audit', sa.JSON(), nullable=True),
        sa.Column('total_assets', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('assigned_auditors', sa.JSON(), nullable=True),
        sa.Column('observations', sa.JSON(), nullable=True),
        sa.Column('assets_found', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('assets_not_found', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('assets_damaged', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('assets_missing', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completion_percentage', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scheduled_audit_run_scheduled_audit_id', 'scheduled_audit_run', ['scheduled_audit_id'])
    op.create_index('ix_scheduled_audit_run_status', 'scheduled_audit_run', ['status'])

    op.create_table(
        'scheduled_audit_reminder',
        sa.Column('scheduled_audit_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('channel', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('sent_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('scheduled_audit_id', 'due_date', 'channel'),
    )


def downgrade() -> None:
    """Drop the scheduled audit tables."""
    op.drop_table('scheduled_audit_reminder')
    op.drop_index('ix_scheduled_audit_run_status', table_name='scheduled_audit_run')
    op.drop_index('ix_scheduled_audit_run_scheduled_audit_id', table_name='scheduled_audit_run')
    op.drop_table('scheduled_audit_run')
    op.drop_index('ix_scheduled_audit_created_by', table_name='scheduled_audit')
    op.drop_index('ix_scheduled_audit_status', table_name='scheduled_audit')
    op.drop_index('ix_scheduled_audit_next_run_date', table_name='scheduled_audit')
    op.drop_table('scheduled_audit')
