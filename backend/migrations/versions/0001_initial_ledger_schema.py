"""Initial schema: catalog, sales, stock ledger, cash book

Revision ID: 0001_initial
Revises:
Create Date: 2024-05-01

This migration adds:
1. products (catalog; no stock column, stock is derived from the ledger)
2. sale_transactions
3. stock_movements (append-only; sale egress linked by unique sale_id)
4. cash_movements
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. PRODUCTS
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('brand', sa.String(length=120), nullable=True),
        sa.Column('category', sa.String(length=120), nullable=True),
        sa.Column('presentation', sa.String(length=120), nullable=True),
        sa.Column('flavor', sa.String(length=120), nullable=True),
        sa.Column('weight', sa.String(length=64), nullable=True),
        sa.Column('location', sa.String(length=120), nullable=True),
        sa.Column('image_path', sa.String(length=512), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('lot_number', sa.String(length=64), nullable=True),
        sa.Column('sale_price_cents', sa.Integer(), nullable=True),
        sa.Column('cost_price_cents', sa.Integer(), nullable=True),
        sa.Column('min_stock', sa.Integer(), nullable=True),
        sa.Column('max_stock', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='Active'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_category', ['category'], unique=False)
        batch_op.create_index('ix_products_name', ['name'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_status'), ['status'], unique=False)

    # ==========================================================================
    # 2. SALE TRANSACTIONS
    # ==========================================================================
    op.create_table('sale_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sale_price_cents', sa.Integer(), nullable=False),
        sa.Column('channel', sa.String(length=64), nullable=True),
        sa.Column('sale_date', sa.Date(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_sale_transactions_quantity_positive'),
        sa.CheckConstraint('sale_price_cents >= 0', name='ck_sale_transactions_total_nonnegative'),
        sa.CheckConstraint('discount_bps >= 0 AND discount_bps <= 10000', name='ck_sale_transactions_discount_range'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sale_transactions', schema=None) as batch_op:
        batch_op.create_index('ix_sale_transactions_date_product', ['sale_date', 'product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_transactions_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_transactions_sale_date'), ['sale_date'], unique=False)

    # ==========================================================================
    # 3. STOCK MOVEMENTS (append-only ledger)
    # ==========================================================================
    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='manual'),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_stock_movements_quantity_positive'),
        sa.CheckConstraint("type IN ('ingress', 'egress')", name='ck_stock_movements_type'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sale_transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', name='uq_stock_movements_sale'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index('ix_stock_movements_product_occurred', ['product_id', 'occurred_at', 'id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_type'), ['type'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_occurred_at'), ['occurred_at'], unique=False)

    # ==========================================================================
    # 4. CASH MOVEMENTS
    # ==========================================================================
    op.create_table('cash_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(length=120), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('movement_date', sa.Date(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_cash_movements_amount_positive'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_movements_movement_type'), ['movement_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_movements_movement_date'), ['movement_date'], unique=False)


def downgrade():
    op.drop_table('cash_movements')
    op.drop_table('stock_movements')
    op.drop_table('sale_transactions')
    op.drop_table('products')
