"""initial fulfillment schema

Revision ID: k1f0a2b3c4d5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete fulfillment schema:
- branches, products, product_variants, ingredients, recipe_lines: catalog
- orders, order_line_items, order_status_events: order ledger + history
- order_number_sequences, delivery_slot_bookings: atomic counters
- stock_transactions: append-only ingredient ledger
- payment_evidence: transfer slips and their outcomes
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'k1f0a2b3c4d5'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def _updated_at():
    return sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # Catalog
    # ============================================================================
    op.create_table(
        'branches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_branches_code'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('cost_cents', sa.Integer(), nullable=True),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_branch_id', 'products', ['branch_id'])
    op.create_index('ix_products_branch_available', 'products', ['branch_id', 'is_available'])

    op.create_table(
        'product_variants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('price_modifier_cents', sa.Integer(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

    op.create_table(
        'ingredients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False),
        sa.Column('cost_per_unit_cents', sa.Integer(), nullable=False),
        sa.Column('current_stock', sa.Numeric(14, 3), nullable=False),
        sa.Column('min_stock_level', sa.Numeric(14, 3), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        _updated_at(),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'name', name='uq_ingredients_branch_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_ingredients_branch_id', 'ingredients', ['branch_id'])

    op.create_table(
        'recipe_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('ingredient_id', sa.Integer(), nullable=False),
        sa.Column('quantity_per_unit', sa.Numeric(14, 3), nullable=False),
        sa.CheckConstraint('quantity_per_unit > 0', name='ck_recipe_lines_quantity_positive'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['ingredient_id'], ['ingredients.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'ingredient_id', name='uq_recipe_lines_product_ingredient'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_recipe_lines_product_id', 'recipe_lines', ['product_id'])
    op.create_index('ix_recipe_lines_ingredient_id', 'recipe_lines', ['ingredient_id'])

    # ============================================================================
    # Orders
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('customer_name', sa.String(length=120), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('line_user_id', sa.String(length=64), nullable=True),
        sa.Column('delivery_type', sa.String(length=20), nullable=False),
        sa.Column('delivery_address', sa.String(length=500), nullable=True),
        sa.Column('delivery_area', sa.String(length=120), nullable=True),
        sa.Column('delivery_date', sa.Date(), nullable=True),
        sa.Column('delivery_time_slot', sa.String(length=32), nullable=True),
        sa.Column('payment_method', sa.String(length=20), nullable=False),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('estimated_prep_minutes', sa.Integer(), nullable=True),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('payment_ref', sa.String(length=128), nullable=True),
        sa.Column('payment_verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stock_deducted_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.CheckConstraint(
            'total_cents = subtotal_cents - discount_cents + tax_cents',
            name='ck_orders_total_equation',
        ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_branch_id', 'orders', ['branch_id'])
    op.create_index('ix_orders_business_date', 'orders', ['business_date'])
    op.create_index('ix_orders_line_user_id', 'orders', ['line_user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_branch_status_created', 'orders', ['branch_id', 'status', 'created_at'])

    op.create_table(
        'order_line_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('variant_name', sa.String(length=120), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        _created_at(),
        sa.CheckConstraint('quantity > 0', name='ck_order_line_items_quantity_positive'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_line_items_order_id', 'order_line_items', ['order_id'])
    op.create_index('ix_order_line_items_product_id', 'order_line_items', ['product_id'])

    op.create_table(
        'order_status_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('from_status', sa.String(length=20), nullable=True),
        sa.Column('to_status', sa.String(length=20), nullable=False),
        sa.Column('actor', sa.String(length=64), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_status_events_order_id', 'order_status_events', ['order_id'])
    op.create_index('ix_order_status_events_order_occurred', 'order_status_events', ['order_id', 'occurred_at'])

    # ============================================================================
    # Counters
    # ============================================================================
    op.create_table(
        'order_number_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False),
        _updated_at(),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'business_date', name='uq_order_number_sequences_branch_date'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_number_sequences_branch_id', 'order_number_sequences', ['branch_id'])

    op.create_table(
        'delivery_slot_bookings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('delivery_date', sa.Date(), nullable=False),
        sa.Column('slot_code', sa.String(length=32), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('booked_count', sa.Integer(), nullable=False),
        _updated_at(),
        sa.CheckConstraint('booked_count >= 0', name='ck_delivery_slots_booked_nonnegative'),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'delivery_date', 'slot_code', name='uq_delivery_slots_branch_date_slot'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_delivery_slot_bookings_branch_id', 'delivery_slot_bookings', ['branch_id'])

    # ============================================================================
    # Stock ledger
    # ============================================================================
    op.create_table(
        'stock_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ingredient_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('quantity_delta', sa.Numeric(14, 3), nullable=False),
        sa.Column('stock_before', sa.Numeric(14, 3), nullable=False),
        sa.Column('stock_after', sa.Numeric(14, 3), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('actor', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['ingredient_id'], ['ingredients.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'ingredient_id', 'type', name='uq_stock_txns_order_ingredient_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_transactions_ingredient_id', 'stock_transactions', ['ingredient_id'])
    op.create_index('ix_stock_transactions_type', 'stock_transactions', ['type'])
    op.create_index('ix_stock_transactions_order_id', 'stock_transactions', ['order_id'])
    op.create_index('ix_stock_transactions_occurred_at', 'stock_transactions', ['occurred_at'])
    op.create_index('ix_stock_txns_ingredient_occurred', 'stock_transactions', ['ingredient_id', 'occurred_at'])

    # ============================================================================
    # Payment evidence
    # ============================================================================
    op.create_table(
        'payment_evidence',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('image_reference', sa.String(length=1024), nullable=False),
        sa.Column('transaction_ref', sa.String(length=128), nullable=True),
        sa.Column('attached_ref', sa.String(length=128), nullable=True),
        sa.Column('claimed_amount_cents', sa.Integer(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sender_account', sa.String(length=64), nullable=True),
        sa.Column('sender_name', sa.String(length=255), nullable=True),
        sa.Column('sender_bank', sa.String(length=32), nullable=True),
        sa.Column('receiver_account', sa.String(length=64), nullable=True),
        sa.Column('receiver_name', sa.String(length=255), nullable=True),
        sa.Column('receiver_bank', sa.String(length=32), nullable=True),
        sa.Column('outcome', sa.String(length=20), nullable=False),
        sa.Column('failed_checks', sa.JSON(), nullable=False),
        sa.Column('error', sa.String(length=500), nullable=True),
        sa.Column('reviewed_by', sa.String(length=64), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('review_note', sa.String(length=255), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('attached_ref', name='uq_payment_evidence_attached_ref'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payment_evidence_order_id', 'payment_evidence', ['order_id'])
    op.create_index('ix_payment_evidence_transaction_ref', 'payment_evidence', ['transaction_ref'])
    op.create_index('ix_payment_evidence_outcome', 'payment_evidence', ['outcome'])


def downgrade():
    op.drop_table('payment_evidence')
    op.drop_table('stock_transactions')
    op.drop_table('delivery_slot_bookings')
    op.drop_table('order_number_sequences')
    op.drop_table('order_status_events')
    op.drop_table('order_line_items')
    op.drop_table('orders')
    op.drop_table('recipe_lines')
    op.drop_table('ingredients')
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('branches')
