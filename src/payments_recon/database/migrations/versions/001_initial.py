"""Initial migration - create source record tables and reconciliation_alerts

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create payment_links table
    op.create_table(
        'payment_links',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(255), nullable=True),
        sa.Column('short_code', sa.String(32), nullable=True, unique=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='active'),
        sa.Column('amount', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('transaction_id', sa.String(36), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_payment_links_status_completed_at', 'payment_links', ['status', 'completed_at'])
    op.create_index('ix_payment_links_organization_id', 'payment_links', ['organization_id'])

    # Create checkout_sessions table
    op.create_table(
        'checkout_sessions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='open'),
        sa.Column('amount', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_checkout_sessions_status_completed_at', 'checkout_sessions', ['status', 'completed_at'])
    op.create_index('ix_checkout_sessions_organization_id', 'checkout_sessions', ['organization_id'])

    # Create transactions table
    op.create_table(
        'transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='pending'),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('payment_link_id', sa.String(36), nullable=True),
        sa.Column('checkout_session_id', sa.String(36), sa.ForeignKey('checkout_sessions.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_transactions_checkout_session_id', 'transactions', ['checkout_session_id'])
    op.create_index('ix_transactions_status_created_at', 'transactions', ['status', 'created_at'])
    op.create_index('ix_transactions_payment_link_id', 'transactions', ['payment_link_id'])
    op.create_index('ix_transactions_organization_id', 'transactions', ['organization_id'])

    # Create webhook_events table
    op.create_table(
        'webhook_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(255), nullable=True),
        sa.Column('provider', sa.String(50), nullable=False, server_default='psp'),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('processing_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('last_processed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_webhook_events_processed_created_at', 'webhook_events', ['processed', 'created_at'])
    op.create_index('ix_webhook_events_organization_id', 'webhook_events', ['organization_id'])

    # Create reconciliation_alerts table
    op.create_table(
        'reconciliation_alerts',
        sa.Column('pk', sa.String(36), primary_key=True),
        sa.Column('alert_id', sa.String(255), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('resource_id', sa.String(255), nullable=False),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('organization_id', sa.String(255), nullable=True),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    # One unresolved alert per alert_id; resolved history may repeat it
    op.create_index(
        'uq_reconciliation_alerts_unresolved_alert_id',
        'reconciliation_alerts',
        ['alert_id'],
        unique=True,
        sqlite_where=sa.text('resolved = 0'),
        postgresql_where=sa.text('resolved = false'),
    )
    op.create_index('ix_reconciliation_alerts_alert_id', 'reconciliation_alerts', ['alert_id'])
    op.create_index('ix_reconciliation_alerts_resolved_type', 'reconciliation_alerts', ['resolved', 'type'])
    op.create_index('ix_reconciliation_alerts_created_at', 'reconciliation_alerts', ['created_at'])
    op.create_index('ix_reconciliation_alerts_organization_id', 'reconciliation_alerts', ['organization_id'])


def downgrade() -> None:
    op.drop_table('reconciliation_alerts')
    op.drop_table('webhook_events')
    op.drop_table('transactions')
    op.drop_table('checkout_sessions')
    op.drop_table('payment_links')
