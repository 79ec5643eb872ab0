"""Variant batches, allocations and the commerce platform mirror

Revision ID: 20261018_variant_batches
Revises:
Create Date: 2026-10-18

This migration adds:
1. variant_batches (lots; lot number unique per variant)
2. variant_batch_allocations (lot -> order line item, cascade on lot delete)
3. Commerce mirror: orders, order_line_items, payments, product_variants,
   inventory_items, variant_inventory_items, stock_locations,
   inventory_levels, price_lists, price_list_rules, prices, store_settings
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_variant_batches'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. VARIANT BATCHES
    # ==========================================================================
    op.create_table('variant_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.String(length=64), nullable=False),
        sa.Column('lot_number', sa.String(length=128), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('coa_file_key', sa.String(length=512), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('invoice_url', sa.String(length=1024), nullable=True),
        sa.Column('lab_invoice_url', sa.String(length=1024), nullable=True),
        sa.Column('supplier_cost_per_vial', sa.Numeric(precision=12, scale=4), nullable=True),
        sa.Column('testing_cost', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variant_id', 'lot_number', name='uq_variant_batches_variant_lot'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('variant_batches', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_variant_batches_variant_id'), ['variant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_variant_batches_lot_number'), ['lot_number'], unique=False)
        batch_op.create_index('ix_variant_batches_variant_created', ['variant_id', 'created_at'], unique=False)

    # ==========================================================================
    # 2. VARIANT BATCH ALLOCATIONS
    # ==========================================================================
    op.create_table('variant_batch_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variant_batch_id', sa.Integer(), nullable=False),
        sa.Column('order_line_item_id', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['variant_batch_id'], ['variant_batches.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('variant_batch_allocations', schema=None) as batch_op:
        batch_op.create_index('ix_vba_batch', ['variant_batch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_variant_batch_allocations_order_line_item_id'), ['order_line_item_id'], unique=False)

    # ==========================================================================
    # 3. COMMERCE MIRROR
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('display_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('customer_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_customer_id'), ['customer_id'], unique=False)

    op.create_table('order_line_items',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('variant_id', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('product_title', sa.String(length=255), nullable=True),
        sa.Column('variant_title', sa.String(length=255), nullable=True),
        sa.Column('variant_sku', sa.String(length=128), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('order_line_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_line_items_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_order_line_items_variant_id'), ['variant_id'], unique=False)

    op.create_table('payments',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payments_order_id'), ['order_id'], unique=False)

    op.create_table('product_variants',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('sku', sa.String(length=128), nullable=True),
        sa.Column('manage_inventory', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('price_set_id', sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('product_variants', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_product_variants_price_set_id'), ['price_set_id'], unique=False)

    op.create_table('inventory_items',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('sku', sa.String(length=128), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('variant_inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.String(length=64), nullable=False),
        sa.Column('inventory_item_id', sa.String(length=64), nullable=False),
        sa.Column('required_quantity', sa.Integer(), nullable=True, server_default='1'),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.ForeignKeyConstraint(['inventory_item_id'], ['inventory_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variant_id', 'inventory_item_id', name='uq_variant_inventory_item'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('variant_inventory_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_variant_inventory_items_variant_id'), ['variant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_variant_inventory_items_inventory_item_id'), ['inventory_item_id'], unique=False)

    op.create_table('stock_locations',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('inventory_levels',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_item_id', sa.String(length=64), nullable=False),
        sa.Column('location_id', sa.String(length=64), nullable=False),
        sa.Column('stocked_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['inventory_item_id'], ['inventory_items.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['stock_locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('inventory_item_id', 'location_id', name='uq_inventory_levels_item_location'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('inventory_levels', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_inventory_levels_inventory_item_id'), ['inventory_item_id'], unique=False)

    op.create_table('price_lists',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('handle', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('type', sa.String(length=16), nullable=False, server_default='override'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('handle')
    )

    op.create_table('price_list_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('price_list_id', sa.String(length=64), nullable=False),
        sa.Column('attribute', sa.String(length=64), nullable=False),
        sa.Column('value', sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(['price_list_id'], ['price_lists.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('price_list_id', 'attribute', 'value', name='uq_price_list_rules'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('price_list_rules', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_price_list_rules_price_list_id'), ['price_list_id'], unique=False)

    op.create_table('prices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('price_set_id', sa.String(length=64), nullable=False),
        sa.Column('price_list_id', sa.String(length=64), nullable=True),
        sa.Column('currency_code', sa.String(length=3), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['price_list_id'], ['price_lists.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('prices', schema=None) as batch_op:
        batch_op.create_index('ix_prices_set_list_currency', ['price_set_id', 'price_list_id', 'currency_code'], unique=False)

    op.create_table('store_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key'),
        sqlite_autoincrement=True
    )


def downgrade():
    op.drop_table('store_settings')
    with op.batch_alter_table('prices', schema=None) as batch_op:
        batch_op.drop_index('ix_prices_set_list_currency')
    op.drop_table('prices')
    with op.batch_alter_table('price_list_rules', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_price_list_rules_price_list_id'))
    op.drop_table('price_list_rules')
    op.drop_table('price_lists')
    with op.batch_alter_table('inventory_levels', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_inventory_levels_inventory_item_id'))
    op.drop_table('inventory_levels')
    op.drop_table('stock_locations')
    with op.batch_alter_table('variant_inventory_items', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_variant_inventory_items_inventory_item_id'))
        batch_op.drop_index(batch_op.f('ix_variant_inventory_items_variant_id'))
    op.drop_table('variant_inventory_items')
    op.drop_table('inventory_items')
    with op.batch_alter_table('product_variants', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_product_variants_price_set_id'))
    op.drop_table('product_variants')
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_payments_order_id'))
    op.drop_table('payments')
    with op.batch_alter_table('order_line_items', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_order_line_items_variant_id'))
        batch_op.drop_index(batch_op.f('ix_order_line_items_order_id'))
    op.drop_table('order_line_items')
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_orders_customer_id'))
    op.drop_table('orders')
    with op.batch_alter_table('variant_batch_allocations', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_variant_batch_allocations_order_line_item_id'))
        batch_op.drop_index('ix_vba_batch')
    op.drop_table('variant_batch_allocations')
    with op.batch_alter_table('variant_batches', schema=None) as batch_op:
        batch_op.drop_index('ix_variant_batches_variant_created')
        batch_op.drop_index(batch_op.f('ix_variant_batches_lot_number'))
        batch_op.drop_index(batch_op.f('ix_variant_batches_variant_id'))
    op.drop_table('variant_batches')
