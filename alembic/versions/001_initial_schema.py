"""Initial schema

Revision ID: 001
Revises: 
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'state_snapshots',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('scope', sa.String(length=255), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.String(length=255), nullable=True),
        sa.Column('resource_count', sa.Integer(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scope', 'version', name='uq_snapshot_scope_version')
    )
    op.create_index('idx_snapshots_scope_version', 'state_snapshots', ['scope', 'version'])

    op.create_table(
        'state_locks',
        sa.Column('scope', sa.String(length=255), nullable=False),
        sa.Column('lock_id', sa.String(length=64), nullable=False),
        sa.Column('holder', sa.String(length=255), nullable=False),
        sa.Column('acquired_at', sa.Float(), nullable=False),
        sa.Column('lease_expires_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('scope')
    )

    op.create_table(
        'runs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.String(length=255), nullable=False),
        sa.Column('scope', sa.String(length=255), nullable=False),
        sa.Column('plan_id', sa.String(length=255), nullable=True),
        sa.Column('requested_by', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=17), nullable=False),
        sa.Column('started_at', sa.Float(), nullable=True),
        sa.Column('finished_at', sa.Float(), nullable=True),
        sa.Column('base_version', sa.Integer(), nullable=True),
        sa.Column('final_version', sa.Integer(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_runs_run_id', 'runs', ['run_id'], unique=True)
    op.create_index('ix_runs_scope', 'runs', ['scope'])
    op.create_index('ix_runs_status', 'runs', ['status'])
    op.create_index('idx_runs_scope_created', 'runs', ['scope', 'created_at'])

    op.create_table(
        'run_operations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.String(length=255), nullable=False),
        sa.Column('resource', sa.String(length=500), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('phase', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('before_state', sa.JSON(), nullable=True),
        sa.Column('after_state', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_run_operations_run_id', 'run_operations', ['run_id'])
    op.create_index(
        'idx_run_operations_run_resource', 'run_operations', ['run_id', 'resource']
    )


def downgrade() -> None:
    op.drop_index('idx_run_operations_run_resource', table_name='run_operations')
    op.drop_index('ix_run_operations_run_id', table_name='run_operations')
    op.drop_table('run_operations')

    op.drop_index('idx_runs_scope_created', table_name='runs')
    op.drop_index('ix_runs_status', table_name='runs')
    op.drop_index('ix_runs_scope', table_name='runs')
    op.drop_index('ix_runs_run_id', table_name='runs')
    op.drop_table('runs')

    op.drop_table('state_locks')

    op.drop_index('idx_snapshots_scope_version', table_name='state_snapshots')
    op.drop_table('state_snapshots')
