"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Works (owned by the catalogue service)
    op.create_table(
        'works',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('author', sa.Text(), nullable=True),
        sa.Column('isbn', sa.String(length=32), nullable=True),
        sa.Column('excerpt', sa.Text(), nullable=True),
        sa.Column('keywords', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_works_tenant_id', 'works', ['tenant_id'])

    # Monitoring tasks
    op.create_table(
        'monitoring_tasks',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('work_id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('queries', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('schedule_spec', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('last_run_at', sa.DateTime(), nullable=True),
        sa.Column('next_run_at', sa.DateTime(), nullable=True),
        sa.Column('run_count', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['work_id'], ['works.id'], )
    )
    op.create_index('ix_monitoring_tasks_due', 'monitoring_tasks', ['status', 'next_run_at'])

    # Crawl results
    op.create_table(
        'crawl_results',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('job_id', sa.String(length=36), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=False),
        sa.Column('status_code', sa.Integer(), nullable=False),
        sa.Column('content_type', sa.String(length=128), nullable=True),
        sa.Column('headers', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('raw_content_ref', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['job_id'], ['monitoring_tasks.id'], )
    )
    op.create_index('ix_crawl_results_job_id', 'crawl_results', ['job_id'])

    # Evidence
    op.create_table(
        'evidence',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('storage_path', sa.Text(), nullable=False),
        sa.Column('content_type', sa.String(length=128), nullable=False),
        sa.Column('sha256', sa.String(length=64), nullable=False),
        sa.Column('simhash', sa.String(length=16), nullable=False),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Detections
    op.create_table(
        'detections',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('work_id', sa.String(length=36), nullable=False),
        sa.Column('crawl_result_id', sa.String(length=36), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=False),
        sa.Column('score', sa.Float(), nullable=False),
        sa.Column('confidence', sa.String(length=8), nullable=False),
        sa.Column('reasons', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('fingerprint_match', sa.Float(), nullable=True),
        sa.Column('evidence_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['work_id'], ['works.id'], ),
        sa.ForeignKeyConstraint(['crawl_result_id'], ['crawl_results.id'], ),
        sa.ForeignKeyConstraint(['evidence_id'], ['evidence.id'], ),
        sa.UniqueConstraint('crawl_result_id', 'work_id', name='uq_detection_crawl_result_work')
    )

    # Cases (owned by case management)
    op.create_table(
        'cases',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('detection_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['detection_id'], ['detections.id'], )
    )

    # Takedown requests
    op.create_table(
        'takedown_requests',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('case_id', sa.String(length=36), nullable=False),
        sa.Column('platform', sa.String(length=32), nullable=False),
        sa.Column('template_used', sa.String(length=64), nullable=True),
        sa.Column('request_payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('response', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['case_id'], ['cases.id'], )
    )
    op.create_index('ix_takedown_requests_case_id', 'takedown_requests', ['case_id'])


def downgrade() -> None:
    op.drop_index('ix_takedown_requests_case_id', table_name='takedown_requests')
    op.drop_table('takedown_requests')
    op.drop_table('cases')
    op.drop_table('detections')
    op.drop_table('evidence')
    op.drop_index('ix_crawl_results_job_id', table_name='crawl_results')
    op.drop_table('crawl_results')
    op.drop_index('ix_monitoring_tasks_due', table_name='monitoring_tasks')
    op.drop_table('monitoring_tasks')
    op.drop_index('ix_works_tenant_id', table_name='works')
    op.drop_table('works')
