"""Create sync job tables: sync_jobs, job_events, job_cooldowns

Revision ID: 001_sync_job_tables
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_sync_job_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_WHERE = sa.text("status IN ('queued', 'processing')")


def upgrade() -> None:
    op.create_table(
        'sync_jobs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=64), nullable=False),
        sa.Column('target_key', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='queued'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('result', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_code', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('retry_count <= max_retries', name='ck_sync_jobs_retry_bound'),
    )
    op.create_index('ix_sync_jobs_tenant_id', 'sync_jobs', ['tenant_id'])
    op.create_index('ix_sync_jobs_kind', 'sync_jobs', ['kind'])
    op.create_index('ix_sync_jobs_status', 'sync_jobs', ['status'])
    op.create_index('ix_sync_jobs_ready', 'sync_jobs', ['status', 'next_retry_at', 'created_at'])
    op.create_index(
        'uq_sync_jobs_active_target',
        'sync_jobs',
        ['tenant_id', 'kind', sa.text("coalesce(target_key, '')")],
        unique=True,
        postgresql_where=ACTIVE_WHERE,
    )

    op.create_table(
        'job_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=64), nullable=False),
        sa.Column('from_status', sa.String(length=32), nullable=True),
        sa.Column('to_status', sa.String(length=32), nullable=False),
        sa.Column('detail', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_job_events_job_id', 'job_events', ['job_id'])
    op.create_index('ix_job_events_tenant_id', 'job_events', ['tenant_id'])
    op.create_index('ix_job_events_to_status', 'job_events', ['to_status'])
    op.create_index('ix_job_events_created_at', 'job_events', ['created_at'])
    op.create_index('ix_job_events_job_created', 'job_events', ['job_id', 'created_at'])

    op.create_table(
        'job_cooldowns',
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=64), nullable=False),
        sa.Column('scope_key', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('last_run_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('tenant_id', 'kind', 'scope_key'),
    )


def downgrade() -> None:
    op.drop_table('job_cooldowns')

    op.drop_index('ix_job_events_job_created', table_name='job_events')
    op.drop_index('ix_job_events_created_at', table_name='job_events')
    op.drop_index('ix_job_events_to_status', table_name='job_events')
    op.drop_index('ix_job_events_tenant_id', table_name='job_events')
    op.drop_index('ix_job_events_job_id', table_name='job_events')
    op.drop_table('job_events')

    op.drop_index('uq_sync_jobs_active_target', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_ready', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_status', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_kind', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_tenant_id', table_name='sync_jobs')
    op.drop_table('sync_jobs')
