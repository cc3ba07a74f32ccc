"""create order workflow tables

Revision ID: a1f3c2d9e4b7
Revises:
Create Date: 2026-10-19 11:20:41.512337

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1f3c2d9e4b7'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('random_prefix', sa.String(4), nullable=False),
        sa.Column('order_id', sa.String(50), nullable=True),
        sa.Column('customer_id', sa.String(50), nullable=False),
        sa.Column('customer_name', sa.String(100), nullable=False, server_default=sa.text("''")),
        sa.Column('company_name', sa.String(200), nullable=False, server_default=sa.text("''")),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0.00'),
        sa.Column('is_partial_order', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('original_order', sa.String(50), nullable=True),
        sa.Column('invoice', sa.JSON(), nullable=True),
        sa.Column('invoice_key', sa.String(1024), nullable=True),
        sa.Column('invoice_rejected_reason', sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_by', sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column('updated_by', sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_order_id', 'orders', ['order_id'], unique=True)
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_original_order', 'orders', ['original_order'])
    op.create_index('idx_orders_status_created', 'orders', ['status', 'created_at'])
    op.create_index('idx_orders_customer_status', 'orders', ['customer_id', 'status'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('product_id', sa.String(100), nullable=False),
        sa.Column('variant', sa.String(100), nullable=False, server_default=sa.text("''")),
        sa.Column('name', sa.String(200), nullable=False, server_default=sa.text("''")),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('available_quantity', sa.Integer(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0.00'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('order_id', 'product_id', 'variant', name='uq_order_items_identity'),
    )
    op.create_index('ix_order_items_id', 'order_items', ['id'])
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'order_item_actions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('action_type', sa.String(16), nullable=False),
        sa.Column('product_id', sa.String(100), nullable=False),
        sa.Column('variant', sa.String(100), nullable=False),
        sa.Column('new_variant', sa.String(100), nullable=True),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('actor_role', sa.String(32), nullable=False, server_default=sa.text("''")),
        sa.Column('actor_id', sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_order_item_actions_id', 'order_item_actions', ['id'])
    op.create_index('ix_order_item_actions_order_id', 'order_item_actions', ['order_id'])

    op.create_table(
        'order_status_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('from_status', sa.String(32), nullable=True),
        sa.Column('to_status', sa.String(32), nullable=False),
        sa.Column('action', sa.String(32), nullable=False),
        sa.Column('actor_role', sa.String(32), nullable=False, server_default=sa.text("''")),
        sa.Column('actor_id', sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column('reason', sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_order_status_events_id', 'order_status_events', ['id'])
    op.create_index('ix_order_status_events_order_id', 'order_status_events', ['order_id'])

    op.create_table(
        'order_fulfillment_audit',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('back_order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('product_id', sa.String(100), nullable=False),
        sa.Column('variant', sa.String(100), nullable=False),
        sa.Column('requested', sa.Integer(), nullable=False),
        sa.Column('available', sa.Integer(), nullable=False),
        sa.Column('confirmed', sa.Integer(), nullable=False),
        sa.Column('shortfall', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_order_fulfillment_audit_id', 'order_fulfillment_audit', ['id'])
    op.create_index('ix_order_fulfillment_audit_order_id', 'order_fulfillment_audit', ['order_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('order_fulfillment_audit')
    op.drop_table('order_status_events')
    op.drop_table('order_item_actions')
    op.drop_table('order_items')
    op.drop_table('orders')
