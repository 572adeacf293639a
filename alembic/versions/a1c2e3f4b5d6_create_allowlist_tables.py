"""Create app_users, allowed_emails and allowlist_audit_logs

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-19 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a1c2e3f4b5d6'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('app_users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('auth_uid', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('display_name', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=20), server_default='student', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_app_users'),
    )
    op.create_index('ix_app_users_auth_uid', 'app_users', ['auth_uid'], unique=True)

    op.create_table('allowed_emails',
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('status', sa.String(length=16), server_default='pending', nullable=False),
        sa.Column('label', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.String(length=512), nullable=True),
        sa.Column('invited_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'revoked')", name='allowed_email_status'
        ),
        sa.ForeignKeyConstraint(
            ['created_by'], ['app_users.id'],
            name='fk_allowed_emails_created_by_app_users', ondelete='SET NULL',
        ),
        sa.PrimaryKeyConstraint('email', name='pk_allowed_emails'),
    )
    op.create_index('ix_allowed_emails_status', 'allowed_emails', ['status'])
    op.create_index('ix_allowed_emails_updated_at', 'allowed_emails', ['updated_at'])

    op.create_table('allowlist_audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('request_id', sa.String(length=64), nullable=False),
        sa.Column('operation', sa.String(length=16), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('staff_user_id', sa.Uuid(), nullable=False),
        sa.Column('prev', sa.JSON(), nullable=True),
        sa.Column('next', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint(
            "operation IN ('insert', 'update', 'csv-import')",
            name='allowlist_audit_operation',
        ),
        sa.ForeignKeyConstraint(
            ['staff_user_id'], ['app_users.id'],
            name='fk_allowlist_audit_logs_staff_user_id_app_users',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_allowlist_audit_logs'),
    )
    op.create_index('ix_allowlist_audit_logs_request_id', 'allowlist_audit_logs', ['request_id'])
    op.create_index('ix_allowlist_audit_logs_email', 'allowlist_audit_logs', ['email'])


def downgrade() -> None:
    op.drop_index('ix_allowlist_audit_logs_email', table_name='allowlist_audit_logs')
    op.drop_index('ix_allowlist_audit_logs_request_id', table_name='allowlist_audit_logs')
    op.drop_table('allowlist_audit_logs')
    op.drop_index('ix_allowed_emails_updated_at', table_name='allowed_emails')
    op.drop_index('ix_allowed_emails_status', table_name='allowed_emails')
    op.drop_table('allowed_emails')
    op.drop_index('ix_app_users_auth_uid', table_name='app_users')
    op.drop_table('app_users')
