"""initial stockrun schema

Revision ID: s1a2b3c4d5e6
Revises:
Create Date: 2026-10-18 00:00:00.000000

This migration creates the complete StockRun schema from scratch:
- users / session_tokens: accounts, roles, field-staff location columns
- products: catalog with warehouse stock
- orders / order_lines: customer orders feeding delivery aggregation
- driver_allocations (+ items, returns): stock lent to drivers per date
- driver_sales (+ lines): driver point-of-sale records
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 's1a2b3c4d5e6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # users: accounts + last known location of field staff
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('location_sharing', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('location_latitude', sa.Float(), nullable=True),
        sa.Column('location_longitude', sa.Float(), nullable=True),
        sa.Column('location_recorded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('location_accuracy_m', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_role_sharing', 'users', ['role', 'location_sharing'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)

    # ============================================================================
    # products: catalog with warehouse stock (drivers see allocations instead)
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=120), nullable=True),
        sa.Column('supplier', sa.String(length=255), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_price_cents', sa.Integer(), nullable=True),
        sa.Column('margin_price_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)

    # ============================================================================
    # orders: only PENDING orders feed delivery aggregation
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_ref', sa.String(length=64), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('delivery_address', sa.Text(), nullable=True),
        sa.Column('order_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expected_delivery_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_customer_ref', 'orders', ['customer_ref'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_status_delivery', 'orders', ['status', 'expected_delivery_date'])

    op.create_table(
        'order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_lines_order_id', 'order_lines', ['order_id'])

    # ============================================================================
    # driver_allocations: stock lent to a driver for one delivery date
    # ============================================================================
    # The partial unique index is the authoritative guard against two active
    # allocations for the same (driver, date). Reconciled rows are exempt.
    op.create_table(
        'driver_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        sa.Column('driver_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('allocation_date', sa.Date(), nullable=False),
        sa.Column('batch_key', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ALLOCATED'),
        sa.Column('sales_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('reconciled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('reconciled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['driver_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['reconciled_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_driver_allocations_driver_id', 'driver_allocations', ['driver_id'])
    op.create_index('ix_driver_allocations_batch_key', 'driver_allocations', ['batch_key'])
    op.create_index('ix_driver_allocations_status_date', 'driver_allocations', ['status', 'allocation_date'])
    op.create_index(
        'uq_driver_allocations_active_driver_date',
        'driver_allocations',
        ['driver_id', 'allocation_date'],
        unique=True,
        sqlite_where=sa.text("status = 'ALLOCATED'"),
        postgresql_where=sa.text("status = 'ALLOCATED'"),
    )

    op.create_table(
        'driver_allocation_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('allocation_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('sold', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('quantity >= 0', name='ck_allocation_items_quantity_nonneg'),
        sa.CheckConstraint('sold >= 0', name='ck_allocation_items_sold_nonneg'),
        sa.CheckConstraint('sold <= quantity', name='ck_allocation_items_sold_le_quantity'),
        sa.ForeignKeyConstraint(['allocation_id'], ['driver_allocations.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_driver_allocation_items_allocation_id', 'driver_allocation_items', ['allocation_id'])
    op.create_index('ix_driver_allocation_items_product_id', 'driver_allocation_items', ['product_id'])

    op.create_table(
        'driver_allocation_returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('allocation_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='ck_allocation_returns_quantity_nonneg'),
        sa.ForeignKeyConstraint(['allocation_id'], ['driver_allocations.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_driver_allocation_returns_allocation_id', 'driver_allocation_returns', ['allocation_id'])

    # ============================================================================
    # driver_sales: driver point-of-sale against allocated stock
    # ============================================================================
    op.create_table(
        'driver_sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        sa.Column('allocation_id', sa.Integer(), nullable=False),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='CASH'),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('customer_ref', sa.String(length=64), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['driver_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['allocation_id'], ['driver_allocations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_driver_sales_driver_id', 'driver_sales', ['driver_id'])
    op.create_index('ix_driver_sales_allocation_id', 'driver_sales', ['allocation_id'])

    op.create_table(
        'driver_sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['driver_sales.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_driver_sale_lines_sale_id', 'driver_sale_lines', ['sale_id'])


def downgrade():
    op.drop_index('ix_driver_sale_lines_sale_id', table_name='driver_sale_lines')
    op.drop_table('driver_sale_lines')
    op.drop_index('ix_driver_sales_allocation_id', table_name='driver_sales')
    op.drop_index('ix_driver_sales_driver_id', table_name='driver_sales')
    op.drop_table('driver_sales')
    op.drop_index('ix_driver_allocation_returns_allocation_id', table_name='driver_allocation_returns')
    op.drop_table('driver_allocation_returns')
    op.drop_index('ix_driver_allocation_items_product_id', table_name='driver_allocation_items')
    op.drop_index('ix_driver_allocation_items_allocation_id', table_name='driver_allocation_items')
    op.drop_table('driver_allocation_items')
    op.drop_index('uq_driver_allocations_active_driver_date', table_name='driver_allocations')
    op.drop_index('ix_driver_allocations_status_date', table_name='driver_allocations')
    op.drop_index('ix_driver_allocations_batch_key', table_name='driver_allocations')
    op.drop_index('ix_driver_allocations_driver_id', table_name='driver_allocations')
    op.drop_table('driver_allocations')
    op.drop_index('ix_order_lines_order_id', table_name='order_lines')
    op.drop_table('order_lines')
    op.drop_index('ix_orders_status_delivery', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_customer_ref', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_products_sku', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_session_tokens_token_hash', table_name='session_tokens')
    op.drop_index('ix_session_tokens_user_id', table_name='session_tokens')
    op.drop_table('session_tokens')
    op.drop_index('ix_users_role_sharing', table_name='users')
    op.drop_index('ix_users_role', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
