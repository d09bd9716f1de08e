"""billing tables

Revision ID: 4e1a9c2d7b30
Revises:
Create Date: 2026-10-18 09:00:00
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = '4e1a9c2d7b30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OPEN_STATUS_PREDICATE = sa.text("status IN ('pending_payment', 'pending_verification')")


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='user'),
        sa.Column('telegram_id', sa.BigInteger(), nullable=True),
        sa.Column('is_premium', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('premium_expires_at', sa.DateTime(), nullable=True),
        sa.Column('gateway_customer_ref', sa.String(length=255), nullable=True),
        sa.Column('gateway_subscription_ref', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_gateway_customer_ref', 'users', ['gateway_customer_ref'])
    op.create_index('ix_users_gateway_subscription_ref', 'users', ['gateway_subscription_ref'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('package_name', sa.String(length=64), nullable=False),
        sa.Column('package_type', sa.String(length=32), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=True),
        sa.Column('duration_months', sa.Integer(), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('bank_name', sa.String(length=64), nullable=True),
        sa.Column('bank_account_number', sa.String(length=64), nullable=True),
        sa.Column('bank_account_name', sa.String(length=128), nullable=True),
        sa.Column('payment_proof_url', sa.String(length=512), nullable=True),
        sa.Column('payment_proof_uploaded_at', sa.DateTime(), nullable=True),
        sa.Column('gateway_session_id', sa.String(length=255), nullable=True),
        sa.Column('gateway_payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('gateway_invoice_id', sa.String(length=255), nullable=True),
        sa.Column('gateway_customer_id', sa.String(length=255), nullable=True),
        sa.Column('gateway_subscription_id', sa.String(length=255), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.Column('approval_step', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('gateway_session_id'),
        sa.UniqueConstraint('gateway_invoice_id'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'])
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_user_status', 'payments', ['user_id', 'status'])
    op.create_index('ix_payments_status_created', 'payments', ['status', 'created_at'])
    # At most one open payment per user
    op.create_index(
        'uq_payments_user_open',
        'payments',
        ['user_id'],
        unique=True,
        sqlite_where=OPEN_STATUS_PREDICATE,
        postgresql_where=OPEN_STATUS_PREDICATE,
    )

    op.create_table(
        'usage_limits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('date', sa.String(length=10), nullable=False),
        sa.Column('package_type', sa.String(length=16), nullable=False),
        sa.Column('frame_upload_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('frame_upload_limit', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ai_generation_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ai_generation_limit', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'date', name='uq_usage_limits_user_date'),
    )
    op.create_index('ix_usage_limits_id', 'usage_limits', ['id'])
    op.create_index('ix_usage_limits_user_id', 'usage_limits', ['user_id'])
    op.create_index('ix_usage_limits_date', 'usage_limits', ['date'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_notifications_id', 'notifications', ['id'])
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table(
        'gateway_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('outcome', sa.String(length=32), nullable=False),
        sa.Column('received_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_gateway_events_id', 'gateway_events', ['id'])
    op.create_index('ix_gateway_events_event_id', 'gateway_events', ['event_id'], unique=True)


def downgrade() -> None:
    op.drop_table('gateway_events')
    op.drop_table('notifications')
    op.drop_table('usage_limits')
    op.drop_index('uq_payments_user_open', table_name='payments')
    op.drop_table('payments')
    op.drop_table('users')
