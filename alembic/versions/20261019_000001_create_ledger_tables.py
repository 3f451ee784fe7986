"""Create marketplace and settlement ledger tables

Revision ID: 20261019_000001
Revises: None
Create Date: 2026-10-19

Orders, stores and incidents are owned by other subsystems and created here
only when missing from a fresh database. Transactions and platform revenue
are append-only; their unique constraints reject duplicate settlement.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, stores, orders and ledger tables."""
    op.create_table(
        'users',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone_number', sa.String(50), nullable=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'stores',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('vendor_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stores_vendor_id', 'stores', ['vendor_id'])
    op.create_index('ix_stores_is_active', 'stores', ['is_active'])

    op.create_table(
        'store_incidents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('store_id', sa.String(64), nullable=False),
        sa.Column('order_id', sa.String(64), nullable=True),
        sa.Column(
            'type',
            sa.Enum('REFUND', 'REFUND_AFTER_RELEASE', 'CHARGEBACK', 'DISPUTE', name='incident_type', create_constraint=True),
            nullable=False
        ),
        sa.Column('amount', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], name='fk_store_incidents_store_id', ondelete='CASCADE'),
    )
    op.create_index('ix_store_incidents_store_id', 'store_incidents', ['store_id'])
    op.create_index('ix_store_incidents_order_id', 'store_incidents', ['order_id'])
    op.create_index('ix_store_incidents_type', 'store_incidents', ['type'])
    op.create_index('ix_store_incidents_created_at', 'store_incidents', ['created_at'])

    op.create_table(
        'orders',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('total', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('currency', sa.String(8), nullable=True),
        sa.Column('transaction_id', sa.String(128), nullable=True),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('payment_details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_transaction_id', 'orders', ['transaction_id'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(64), nullable=False),
        sa.Column('vendor_id', sa.String(64), nullable=False),
        sa.Column('product_id', sa.String(64), nullable=True),
        sa.Column('price', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_order_items_order_id', ondelete='CASCADE'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_vendor_id', 'order_items', ['vendor_id'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('vendor_id', sa.String(64), nullable=False),
        sa.Column('order_id', sa.String(64), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('amount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('platform_fee', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('currency', sa.String(8), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('transaction_id', sa.String(128), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'vendor_id', name='uq_transactions_order_vendor'),
    )
    op.create_index('ix_transactions_vendor_id', 'transactions', ['vendor_id'])
    op.create_index('ix_transactions_order_id', 'transactions', ['order_id'])
    op.create_index('ix_transactions_transaction_id', 'transactions', ['transaction_id'])
    op.create_index('ix_transactions_created_at', 'transactions', ['created_at'])

    op.create_table(
        'balances',
        sa.Column('vendor_id', sa.String(64), nullable=False),
        sa.Column('available', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('total', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('currency', sa.String(8), nullable=False),
        sa.Column('last_updated', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('vendor_id'),
    )

    op.create_table(
        'platform_revenue',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(64), nullable=False),
        sa.Column('amount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('currency', sa.String(8), nullable=False),
        sa.Column('source', sa.String(64), nullable=False),
        sa.Column('transaction_id', sa.String(128), nullable=False),
        sa.Column('timestamp', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_platform_revenue_order_id', 'platform_revenue', ['order_id'], unique=True)

    op.create_table(
        'transaction_locks',
        sa.Column('key', sa.String(64), nullable=False),
        sa.Column('order_id', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )
    op.create_index('ix_transaction_locks_expires_at', 'transaction_locks', ['expires_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('order_id', sa.String(64), nullable=True),
        sa.Column('read', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table(
        'webhook_errors',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('kind', sa.String(32), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=False),
        sa.Column('stack', sa.Text(), nullable=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('resolved', sa.Boolean(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_webhook_errors_provider', 'webhook_errors', ['provider'])
    op.create_index('ix_webhook_errors_resolved', 'webhook_errors', ['resolved'])


def downgrade() -> None:
    """Drop ledger and marketplace tables."""
    op.drop_index('ix_webhook_errors_resolved', table_name='webhook_errors')
    op.drop_index('ix_webhook_errors_provider', table_name='webhook_errors')
    op.drop_table('webhook_errors')
    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_transaction_locks_expires_at', table_name='transaction_locks')
    op.drop_table('transaction_locks')
    op.drop_index('ix_platform_revenue_order_id', table_name='platform_revenue')
    op.drop_table('platform_revenue')
    op.drop_table('balances')
    op.drop_index('ix_transactions_created_at', table_name='transactions')
    op.drop_index('ix_transactions_transaction_id', table_name='transactions')
    op.drop_index('ix_transactions_order_id', table_name='transactions')
    op.drop_index('ix_transactions_vendor_id', table_name='transactions')
    op.drop_table('transactions')
    op.drop_index('ix_order_items_vendor_id', table_name='order_items')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_transaction_id', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_store_incidents_created_at', table_name='store_incidents')
    op.drop_index('ix_store_incidents_type', table_name='store_incidents')
    op.drop_index('ix_store_incidents_order_id', table_name='store_incidents')
    op.drop_index('ix_store_incidents_store_id', table_name='store_incidents')
    op.drop_table('store_incidents')
    op.drop_index('ix_stores_is_active', table_name='stores')
    op.drop_index('ix_stores_vendor_id', table_name='stores')
    op.drop_table('stores')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
