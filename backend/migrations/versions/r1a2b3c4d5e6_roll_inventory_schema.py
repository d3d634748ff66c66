"""roll inventory schema

Revision ID: r1a2b3c4d5e6
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the roll inventory schema from scratch:
- suppliers, categories, gsms, qualities, products, skus: catalog references
- purchase_invoices, batches, landed_cost_entries: receiving records
- rolls: one row per physical roll, with lifecycle pointers and version_id
- roll_ledger_events: append-only audit trail of roll lifecycle changes
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'r1a2b3c4d5e6'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    """
    Create all roll inventory tables.

    Status, cost type and basis are stored as short strings (non-native
    enums) so the same schema runs on SQLite and server databases.
    """

    # ============================================================================
    # Catalog references
    # ============================================================================
    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_suppliers_code', 'suppliers', ['code'], unique=True)

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('code', sa.String(length=8), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'gsms',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=32), nullable=False),
        sa.Column('value', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'qualities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('gsm_id', sa.Integer(), nullable=False),
        sa.Column('quality_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
        sa.ForeignKeyConstraint(['gsm_id'], ['gsms.id']),
        sa.ForeignKeyConstraint(['quality_id'], ['qualities.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('category_id', 'gsm_id', 'quality_id', name='uq_products_category_gsm_quality'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_category_id', 'products', ['category_id'])
    op.create_index('ix_products_gsm_id', 'products', ['gsm_id'])
    op.create_index('ix_products_quality_id', 'products', ['quality_id'])

    op.create_table(
        'skus',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('sku_code', sa.String(length=64), nullable=False),
        sa.Column('width_inches', sa.Integer(), nullable=False),
        sa.Column('category_name', sa.String(length=64), nullable=False),
        sa.Column('gsm', sa.String(length=32), nullable=False),
        sa.Column('quality_name', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku_code'),
        sa.UniqueConstraint('product_id', 'width_inches', name='uq_skus_product_width'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_skus_product_id', 'skus', ['product_id'])

    # ============================================================================
    # Receiving records
    # ============================================================================
    op.create_table(
        'purchase_invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('supplier_invoice_number', sa.String(length=64), nullable=True),
        sa.Column('purchase_order_ref', sa.String(length=64), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_invoices_supplier_id', 'purchase_invoices', ['supplier_id'])

    op.create_table(
        'batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_code', sa.String(length=64), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('purchase_invoice_id', sa.Integer(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.ForeignKeyConstraint(['purchase_invoice_id'], ['purchase_invoices.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_batches_batch_code', 'batches', ['batch_code'], unique=True)
    op.create_index('ix_batches_supplier_id', 'batches', ['supplier_id'])
    op.create_index('ix_batches_purchase_invoice_id', 'batches', ['purchase_invoice_id'])
    op.create_index('ix_batches_received_at', 'batches', ['received_at'])

    op.create_table(
        'landed_cost_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_invoice_id', sa.Integer(), nullable=False),
        sa.Column('cost_type', sa.String(length=16), nullable=False),
        sa.Column('basis', sa.String(length=8), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('allocated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('allocated_by', sa.String(length=64), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['purchase_invoice_id'], ['purchase_invoices.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount >= 0', name='ck_landed_cost_amount_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_landed_cost_entries_purchase_invoice_id', 'landed_cost_entries', ['purchase_invoice_id'])
    op.create_index('ix_landed_cost_entries_allocated_at', 'landed_cost_entries', ['allocated_at'])

    # ============================================================================
    # rolls: the unit of inventory
    # ============================================================================
    op.create_table(
        'rolls',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('roll_number', sa.String(length=64), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('qr_payload', sa.JSON(), nullable=True),
        sa.Column('sku_id', sa.Integer(), nullable=True),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('purchase_invoice_id', sa.Integer(), nullable=True),
        sa.Column('purchase_order_ref', sa.String(length=64), nullable=True),
        sa.Column('grn_ref', sa.String(length=64), nullable=True),
        sa.Column('width_inches', sa.Integer(), nullable=False),
        sa.Column('original_length', sa.Numeric(12, 2), nullable=False),
        sa.Column('current_length', sa.Numeric(12, 2), nullable=False),
        sa.Column('category_name', sa.String(length=64), nullable=True),
        sa.Column('gsm', sa.String(length=32), nullable=True),
        sa.Column('quality_name', sa.String(length=64), nullable=True),
        sa.Column('base_cost_per_meter', sa.Numeric(14, 4), nullable=False),
        sa.Column('landed_cost_per_meter', sa.Numeric(14, 4), nullable=False),
        sa.Column('total_landed_cost', sa.Numeric(14, 2), nullable=False),
        sa.Column('declared_value', sa.Numeric(14, 2), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('mapped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('allocation_ref', sa.String(length=64), nullable=True),
        sa.Column('allocated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('allocated_by', sa.String(length=64), nullable=True),
        sa.Column('dispatch_ref', sa.String(length=64), nullable=True),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dispatched_by', sa.String(length=64), nullable=True),
        sa.Column('return_reason', sa.String(length=255), nullable=True),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('returned_by', sa.String(length=64), nullable=True),
        sa.Column('parent_roll_id', sa.Integer(), nullable=True),
        sa.Column('scrap_reason', sa.String(length=255), nullable=True),
        sa.Column('scrapped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('scrapped_by', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['sku_id'], ['skus.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id']),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.ForeignKeyConstraint(['purchase_invoice_id'], ['purchase_invoices.id']),
        sa.ForeignKeyConstraint(['parent_roll_id'], ['rolls.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('roll_number'),
        sa.UniqueConstraint('barcode'),
        sa.CheckConstraint('current_length >= 0', name='ck_rolls_current_length_non_negative'),
        sa.CheckConstraint('current_length <= original_length', name='ck_rolls_current_le_original'),
        sa.CheckConstraint(
            "status NOT IN ('Allocated', 'Dispatched') OR allocation_ref IS NOT NULL",
            name='ck_rolls_allocation_ref_required',
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_rolls_sku_id', 'rolls', ['sku_id'])
    op.create_index('ix_rolls_batch_id', 'rolls', ['batch_id'])
    op.create_index('ix_rolls_supplier_id', 'rolls', ['supplier_id'])
    op.create_index('ix_rolls_purchase_invoice_id', 'rolls', ['purchase_invoice_id'])
    op.create_index('ix_rolls_status', 'rolls', ['status'])
    op.create_index('ix_rolls_received_at', 'rolls', ['received_at'])
    op.create_index('ix_rolls_allocation_ref', 'rolls', ['allocation_ref'])
    op.create_index('ix_rolls_dispatch_ref', 'rolls', ['dispatch_ref'])
    op.create_index('ix_rolls_parent_roll_id', 'rolls', ['parent_roll_id'])
    op.create_index('ix_rolls_sku_status_received', 'rolls', ['sku_id', 'status', 'received_at'])
    op.create_index('ix_rolls_status_received', 'rolls', ['status', 'received_at'])

    # ============================================================================
    # roll_ledger_events: append-only audit trail
    # ============================================================================
    op.create_table(
        'roll_ledger_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('roll_id', sa.Integer(), nullable=True),
        sa.Column('reference', sa.String(length=64), nullable=True),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('from_status', sa.String(length=16), nullable=True),
        sa.Column('to_status', sa.String(length=16), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        _created_at(),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['roll_id'], ['rolls.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_roll_ledger_events_event_type', 'roll_ledger_events', ['event_type'])
    op.create_index('ix_roll_ledger_events_roll_id', 'roll_ledger_events', ['roll_id'])
    op.create_index('ix_roll_ledger_events_reference', 'roll_ledger_events', ['reference'])
    op.create_index('ix_roll_ledger_events_actor_id', 'roll_ledger_events', ['actor_id'])
    op.create_index('ix_roll_ledger_events_occurred_at', 'roll_ledger_events', ['occurred_at'])
    op.create_index('ix_roll_ledger_roll_occurred', 'roll_ledger_events', ['roll_id', 'occurred_at'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('roll_ledger_events')
    op.drop_table('rolls')
    op.drop_table('landed_cost_entries')
    op.drop_table('batches')
    op.drop_table('purchase_invoices')
    op.drop_table('skus')
    op.drop_table('products')
    op.drop_table('qualities')
    op.drop_table('gsms')
    op.drop_table('categories')
    op.drop_table('suppliers')
