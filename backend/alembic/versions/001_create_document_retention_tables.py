"""create document retention tables

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates tables for HR document retention:
- documents: Document metadata, retention assignment and legal hold
- retention_policies: Retention rules (scope, conditions, period, action)
- retention_jobs: Apply / actions runs with progress and resume cursor
- audit_logs: Retention actions, legal hold and policy changes
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create document retention tables"""

    # documents table
    op.create_table(
        'documents',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('filename', sa.String(500), nullable=False),
        sa.Column('title', sa.String(500), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(50), nullable=True, index=True),
        sa.Column('type', sa.String(50), nullable=True, index=True),
        sa.Column('employee_id', sa.String(100), nullable=True, index=True),
        sa.Column('department', sa.String(100), nullable=True),
        sa.Column('mime_type', sa.String(100), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='ACTIVE'),
        sa.Column('storage_path', sa.String(1000), nullable=False),
        sa.Column('assigned_policy_id', UUID(as_uuid=True), nullable=True, index=True),
        sa.Column('retention_deadline', sa.DateTime(), nullable=True, index=True),
        sa.Column('legal_hold', sa.Boolean(), nullable=False, server_default=sa.false(), index=True),
        sa.Column('legal_hold_reason', sa.String(500), nullable=True),
        sa.Column('legal_hold_set_by', sa.String(100), nullable=True),
        sa.Column('legal_hold_set_at', sa.DateTime(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false(), index=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('archived_at', sa.DateTime(), nullable=True),
        sa.Column('review_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('review_required_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # Candidate scan for retention actions
    op.create_index(
        'ix_documents_due',
        'documents',
        ['retention_deadline', 'is_deleted', 'legal_hold']
    )

    # retention_policies table
    op.create_table(
        'retention_policies',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(100), unique=True, nullable=False, index=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('document_category', sa.String(50), nullable=True, index=True),
        sa.Column('document_type', sa.String(50), nullable=True),
        sa.Column('retention_period_days', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column('conditions', JSONB, nullable=True),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # retention_jobs table
    op.create_table(
        'retention_jobs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('job_type', sa.String(20), nullable=False, index=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('dry_run', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('requested_by', sa.String(100), nullable=True),
        sa.Column('total_candidates', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('assigned_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('summary', JSONB, nullable=True),
        sa.Column('failures', JSONB, nullable=True),
        sa.Column('cursor_policy_id', UUID(as_uuid=True), nullable=True),
        sa.Column('cursor_document_id', UUID(as_uuid=True), nullable=True),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True, index=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
    )

    # Active job lookup per type
    op.create_index(
        'ix_retention_jobs_type_status',
        'retention_jobs',
        ['job_type', 'status']
    )

    # audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('entity_type', sa.String(50), nullable=False, index=True),
        sa.Column('entity_id', sa.String(100), nullable=False, index=True),
        sa.Column('action', sa.String(50), nullable=False, index=True),
        sa.Column('actor_id', sa.String(100), nullable=True, index=True),
        sa.Column('metadata', JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
    )


def downgrade() -> None:
    """Drop document retention tables"""
    op.drop_table('audit_logs')
    op.drop_index('ix_retention_jobs_type_status', table_name='retention_jobs')
    op.drop_table('retention_jobs')
    op.drop_table('retention_policies')
    op.drop_index('ix_documents_due', table_name='documents')
    op.drop_table('documents')
