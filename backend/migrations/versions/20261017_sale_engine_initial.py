"""Initial schema: departments, catalogue, ingredients, pricing, sales, stock movements

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17

This migration creates:
1. departments
2. products / product_variants (quantity- or volume-tracked stock)
3. ingredients (department-scoped bulk volume, weigh-in fields)
4. pricing_configs (per-department mixture pricing)
5. sales / sale_items (financial record, typed lines)
6. stock_movements (append-only stock audit)
7. document_sequences (receipt/invoice numbering)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. DEPARTMENTS
    # ==========================================================================
    op.create_table('departments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_departments_code', 'departments', ['code'], unique=True)

    # ==========================================================================
    # 2. CATALOGUE
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('tracking_mode', sa.String(length=16), nullable=False, server_default='quantity'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_volume', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('department_id', 'sku', name='uq_products_department_sku'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_department_id', 'products', ['department_id'])
    op.create_index('ix_products_department_name', 'products', ['department_id', 'name'])

    op.create_table('product_variants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

    # ==========================================================================
    # 3. INGREDIENTS
    # ==========================================================================
    op.create_table('ingredients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('stock_volume', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('empty_container_weight_g', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('current_weight_g', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('density', sa.Numeric(precision=6, scale=3), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_ingredients_department_id', 'ingredients', ['department_id'])
    op.create_index('ix_ingredients_department_name', 'ingredients', ['department_id', 'name'])

    # ==========================================================================
    # 4. PRICING
    # ==========================================================================
    op.create_table('pricing_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.Column('retail_rate_cents_per_ml', sa.Integer(), nullable=False),
        sa.Column('wholesale_rate_cents_per_ml', sa.Integer(), nullable=False),
        sa.Column('container_cost_tiers', sa.JSON(), nullable=False),
        sa.Column('retail_size_prices', sa.JSON(), nullable=False),
        sa.Column('default_container_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('department_id'),
        sqlite_autoincrement=True,
    )

    # ==========================================================================
    # 5. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.Column('receipt_number', sa.String(length=64), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=True),
        sa.Column('is_invoice', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('amount_paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('change_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('cashier_id', sa.String(length=64), nullable=True),
        sa.Column('cashier_name', sa.String(length=255), nullable=True),
        sa.Column('customer_id', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_by', sa.String(length=64), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_number'),
        sa.UniqueConstraint('invoice_number'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_department_id', 'sales', ['department_id'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_department_status_created', 'sales', ['department_id', 'status', 'created_at'])

    op.create_table('sale_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('volume', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('customer_tier', sa.String(length=16), nullable=True),
        sa.Column('container_cost_cents', sa.Integer(), nullable=True),
        sa.Column('mixture_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_items_sale_id', 'sale_items', ['sale_id'])
    op.create_index('ix_sale_items_product_id', 'sale_items', ['product_id'])
    op.create_index('ix_sale_items_variant_id', 'sale_items', ['variant_id'])

    # ==========================================================================
    # 6. STOCK MOVEMENTS
    # ==========================================================================
    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('sale_item_id', sa.Integer(), nullable=True),
        sa.Column('entity_type', sa.String(length=16), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('stock_field', sa.String(length=16), nullable=False, server_default='stock'),
        sa.Column('requested', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('applied_delta', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('stock_before', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('stock_after', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['sale_item_id'], ['sale_items.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_movements_sale_id', 'stock_movements', ['sale_id'])
    op.create_index('ix_stock_movements_sale_item_id', 'stock_movements', ['sale_item_id'])
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_entity', 'stock_movements', ['entity_type', 'entity_id'])

    # ==========================================================================
    # 7. DOCUMENT SEQUENCES
    # ==========================================================================
    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', name='uq_doc_sequences_type'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])


def downgrade():
    op.drop_index('ix_document_sequences_document_type', table_name='document_sequences')
    op.drop_table('document_sequences')

    op.drop_index('ix_stock_movements_entity', table_name='stock_movements')
    op.drop_index('ix_stock_movements_movement_type', table_name='stock_movements')
    op.drop_index('ix_stock_movements_sale_item_id', table_name='stock_movements')
    op.drop_index('ix_stock_movements_sale_id', table_name='stock_movements')
    op.drop_table('stock_movements')

    op.drop_index('ix_sale_items_variant_id', table_name='sale_items')
    op.drop_index('ix_sale_items_product_id', table_name='sale_items')
    op.drop_index('ix_sale_items_sale_id', table_name='sale_items')
    op.drop_table('sale_items')

    op.drop_index('ix_sales_department_status_created', table_name='sales')
    op.drop_index('ix_sales_status', table_name='sales')
    op.drop_index('ix_sales_department_id', table_name='sales')
    op.drop_table('sales')

    op.drop_table('pricing_configs')

    op.drop_index('ix_ingredients_department_name', table_name='ingredients')
    op.drop_index('ix_ingredients_department_id', table_name='ingredients')
    op.drop_table('ingredients')

    op.drop_index('ix_product_variants_product_id', table_name='product_variants')
    op.drop_table('product_variants')

    op.drop_index('ix_products_department_name', table_name='products')
    op.drop_index('ix_products_department_id', table_name='products')
    op.drop_table('products')

    op.drop_index('ix_departments_code', table_name='departments')
    op.drop_table('departments')
