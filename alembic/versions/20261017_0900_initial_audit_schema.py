"""Initial audit management schema

Revision ID: 20261017_0900_initial_audit_schema
Revises:
Create Date: 2026-10-17 09:00:00.000000

Creates tables for:
- departments, users: internal accounts referenced by audits
- auditors: internal (bound to a user) and external auditors
- audits: audit plan and lifecycle status
- findings, corrective_actions: remediation workflow
- inspection_items, pre_audit_checklist_items: checklists
- audit_documents, audit_notifications, activity_logs
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261017_0900_initial_audit_schema'
down_revision = None
branch_labels = None
depends_on = None


USER_ROLE = sa.Enum('ADMIN', 'QUALITY_MANAGER', 'AUDITOR', 'STAFF', 'VIEWER', name='userrole')
AUDIT_TYPE = sa.Enum(
    'INTERNAL', 'EXTERNAL', 'COMPLIANCE', 'PROCESS', 'QUALITY', 'SAFETY', 'SUPPLIER', 'SYSTEM',
    name='audittype',
)
AUDIT_STATUS = sa.Enum('PLANNED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', 'DELAYED', name='auditstatus')
FINDING_TYPE = sa.Enum(
    'OBSERVATION', 'NON_CONFORMITY', 'MAJOR_NON_CONFORMITY', 'OPPORTUNITY_FOR_IMPROVEMENT',
    name='findingtype',
)
FINDING_STATUS = sa.Enum('OPEN', 'IN_PROGRESS', 'RESOLVED', 'VERIFIED', 'CLOSED', name='findingstatus')
FINDING_PRIORITY = sa.Enum('LOW', 'MEDIUM', 'HIGH', 'CRITICAL', name='findingpriority')
ACTION_TYPE = sa.Enum('CORRECTIVE', 'PREVENTIVE', name='actiontype')
ACTION_STATUS = sa.Enum('OPEN', 'IN_PROGRESS', 'COMPLETED', 'VERIFIED', name='actionstatus')
ACTIVITY_ACTION = sa.Enum(
    'AUDIT_CREATED', 'AUDIT_UPDATED', 'AUDIT_DELETED', 'AUDIT_STATUS_CHANGED', 'AUDIT_CLOSED',
    'AUDIT_NOTIFICATIONS_SENT', 'EXECUTION_PHASE_STARTED', 'EXECUTION_PHASE_COMPLETED',
    'FINDING_CREATED', 'FINDING_UPDATED', 'FINDING_CLOSED',
    'CORRECTIVE_ACTION_CREATED', 'CORRECTIVE_ACTION_UPDATED', 'CORRECTIVE_ACTION_VERIFIED',
    'INSPECTION_CHECKLIST_CREATED', 'INSPECTION_ITEM_UPDATED',
    'PRE_AUDIT_CHECKLIST_CREATED', 'CHECKLIST_ITEM_UPDATED',
    'AUDIT_DOCUMENT_UPLOADED', 'AUDIT_DOCUMENT_DELETED',
    name='activityaction',
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # ===========================================
    # ACCOUNTS
    # ===========================================
    op.create_table(
        'departments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(150), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('role', USER_ROLE, nullable=False),
        sa.Column('department_id', sa.Uuid(), sa.ForeignKey('departments.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'auditors',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('is_external', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('firm_name', sa.String(200), nullable=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, unique=True),
        *_timestamps(),
    )

    # ===========================================
    # AUDITS
    # ===========================================
    op.create_table(
        'audits',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('audit_type', AUDIT_TYPE, nullable=False, index=True),
        sa.Column('status', AUDIT_STATUS, nullable=False, index=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('auditor_id', sa.Uuid(), sa.ForeignKey('auditors.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('auditee_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('department_id', sa.Uuid(), sa.ForeignKey('departments.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('created_by_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('firm_name', sa.String(200), nullable=True),
        sa.Column('objectives', sa.Text(), nullable=True),
        sa.Column('scope', sa.Text(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        *_timestamps(),
    )
    # Scheduler candidate lookups
    op.create_index('ix_audits_status_start_date', 'audits', ['status', 'start_date'])
    op.create_index('ix_audits_status_end_date', 'audits', ['status', 'end_date'])

    # ===========================================
    # FINDINGS & CORRECTIVE ACTIONS
    # ===========================================
    op.create_table(
        'findings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('audit_id', sa.Uuid(), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('finding_type', FINDING_TYPE, nullable=False),
        sa.Column('status', FINDING_STATUS, nullable=False),
        sa.Column('priority', FINDING_PRIORITY, nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_to_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('evidence', sa.String(1000), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    # Closure gate count
    op.create_index('ix_findings_audit_type_status', 'findings', ['audit_id', 'finding_type', 'status'])

    op.create_table(
        'corrective_actions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('audit_id', sa.Uuid(), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('finding_id', sa.Uuid(), sa.ForeignKey('findings.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('action_type', ACTION_TYPE, nullable=False),
        sa.Column('assigned_to_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', ACTION_STATUS, nullable=False),
        sa.Column('evidence', sa.String(1000), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_by_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
    )

    # ===========================================
    # CHECKLISTS
    # ===========================================
    op.create_table(
        'inspection_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('audit_id', sa.Uuid(), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('area_name', sa.String(200), nullable=False),
        sa.Column('item_name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('standard_reference', sa.String(200), nullable=True),
        sa.Column('is_compliant', sa.Boolean(), nullable=True),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('evidence', sa.String(1000), nullable=True),
        sa.Column('inspected_by_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'pre_audit_checklist_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('audit_id', sa.Uuid(), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('responsible_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
    )

    # ===========================================
    # DOCUMENTS, NOTIFICATIONS, ACTIVITY
    # ===========================================
    op.create_table(
        'audit_documents',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('audit_id', sa.Uuid(), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('document_type', sa.String(100), nullable=False),
        sa.Column('file_url', sa.String(1000), nullable=False),
        sa.Column('file_path', sa.String(1000), nullable=True),
        sa.Column('uploaded_by_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'audit_notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('audit_id', sa.Uuid(), sa.ForeignKey('audits.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false(), index=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    # Append-only: no UPDATE or DELETE grants in production
    op.create_table(
        'activity_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=True, index=True),
        sa.Column('action', ACTIVITY_ACTION, nullable=False, index=True),
        sa.Column('target_type', sa.String(50), nullable=True),
        sa.Column('target_id', sa.String(100), nullable=True, index=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), index=True),
    )


def downgrade() -> None:
    op.drop_table('activity_logs')
    op.drop_table('audit_notifications')
    op.drop_table('audit_documents')
    op.drop_table('pre_audit_checklist_items')
    op.drop_table('inspection_items')
    op.drop_table('corrective_actions')
    op.drop_index('ix_findings_audit_type_status', table_name='findings')
    op.drop_table('findings')
    op.drop_index('ix_audits_status_end_date', table_name='audits')
    op.drop_index('ix_audits_status_start_date', table_name='audits')
    op.drop_table('audits')
    op.drop_table('auditors')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    op.drop_table('departments')

    bind = op.get_bind()
    for enum in (
        ACTIVITY_ACTION, ACTION_STATUS, ACTION_TYPE, FINDING_PRIORITY, FINDING_STATUS,
        FINDING_TYPE, AUDIT_STATUS, AUDIT_TYPE, USER_ROLE,
    ):
        enum.drop(bind, checkfirst=True)
