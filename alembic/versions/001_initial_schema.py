"""Initial schema - packaging hierarchy, proforma invoices, payments, orders, history

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Packaging reference data
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('primary_unit', sa.String(length=50), nullable=True),
        sa.Column('secondary_unit', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_categories_company_id', 'categories', ['company_id'])

    op.create_table(
        'packaging_units',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('abbreviation', sa.String(length=20), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    op.create_table(
        'packaging_hierarchy',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('from_unit_id', sa.Integer(), nullable=False),
        sa.Column('to_unit_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['from_unit_id'], ['packaging_units.id']),
        sa.ForeignKeyConstraint(['to_unit_id'], ['packaging_units.id']),
        sa.CheckConstraint('quantity > 0', name='ck_packaging_hierarchy_quantity_positive'),
        sa.CheckConstraint('level >= 1', name='ck_packaging_hierarchy_level_positive')
    )
    op.create_index('ix_packaging_hierarchy_category_level', 'packaging_hierarchy', ['category_id', 'level'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=True),
        sa.Column('packaging_hierarchy_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'])
    )
    op.create_index('ix_products_company_id', 'products', ['company_id'])

    # Proforma invoices
    op.create_table(
        'pi_invoices',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('pi_number', sa.String(length=50), nullable=False),
        sa.Column('party_id', sa.Integer(), nullable=True),
        sa.Column('party_name', sa.String(), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='pending'),
        sa.Column('container_type', sa.String(length=50), nullable=True),
        sa.Column('charges', sa.JSON(), nullable=True),
        sa.Column('advance_amount', sa.Numeric(precision=18, scale=2), nullable=False, server_default='0'),
        sa.Column('delivery_term', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),

        # Aggregates
        sa.Column('subtotal', sa.Numeric(precision=18, scale=2), nullable=False, server_default='0'),
        sa.Column('total_weight', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('total_gross_weight', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('total_volume', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('total_boxes', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('total_pallets', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('charges_total', sa.Numeric(precision=18, scale=2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(precision=18, scale=2), nullable=False, server_default='0'),
        sa.Column('required_containers', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('number_of_containers', sa.Integer(), nullable=False, server_default='1'),

        # Audit
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pi_number'),
        sa.CheckConstraint('number_of_containers >= 1', name='ck_pi_invoices_containers_positive')
    )
    op.create_index('ix_pi_invoices_company_status', 'pi_invoices', ['company_id', 'status'])

    op.create_table(
        'pi_products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(), nullable=True),
        sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('unit', sa.String(length=50), nullable=True),
        sa.Column('rate', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(precision=18, scale=2), nullable=False, server_default='0'),
        sa.Column('total_weight', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('calculated_boxes', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('calculated_pallets', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('total_cbm', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('breakdown_weight', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('gross_weight_per_box', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['invoice_id'], ['pi_invoices.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'])
    )
    op.create_index('ix_pi_products_invoice_line', 'pi_products', ['invoice_id', 'line_number'])

    # Confirmation side effects: at most one of each per invoice
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('due_amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('due_date', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='pending'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['invoice_id'], ['pi_invoices.id']),
        sa.UniqueConstraint('invoice_id', name='uq_payments_invoice_id')
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=50), nullable=False),
        sa.Column('pi_number', sa.String(length=50), nullable=True),
        sa.Column('total_amount', sa.Numeric(precision=18, scale=2), nullable=False, server_default='0'),
        sa.Column('payment_amount', sa.Numeric(precision=18, scale=2), nullable=True),
        sa.Column('product_qty', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('delivery_terms', sa.String(), nullable=True),
        sa.Column('order_status', sa.String(length=50), nullable=False, server_default='confirmed'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['invoice_id'], ['pi_invoices.id']),
        sa.UniqueConstraint('invoice_id', name='uq_orders_invoice_id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number')
    )

    # History is not foreign-keyed: it must survive invoice deletion
    op.create_table(
        'pi_invoice_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('status_before', sa.String(length=50), nullable=True),
        sa.Column('status_after', sa.String(length=50), nullable=True),
        sa.Column('changed_fields', sa.JSON(), nullable=True),
        sa.Column('change_data', sa.JSON(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_pi_invoice_history_invoice_id', 'pi_invoice_history', ['invoice_id'])

    op.create_table(
        'pi_yearly_counters',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('financial_year', sa.String(length=20), nullable=False),
        sa.Column('last_number', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('financial_year')
    )


def downgrade() -> None:
    op.drop_table('pi_yearly_counters')
    op.drop_index('ix_pi_invoice_history_invoice_id', table_name='pi_invoice_history')
    op.drop_table('pi_invoice_history')
    op.drop_table('orders')
    op.drop_table('payments')
    op.drop_index('ix_pi_products_invoice_line', table_name='pi_products')
    op.drop_table('pi_products')
    op.drop_index('ix_pi_invoices_company_status', table_name='pi_invoices')
    op.drop_table('pi_invoices')
    op.drop_index('ix_products_company_id', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_packaging_hierarchy_category_level', table_name='packaging_hierarchy')
    op.drop_table('packaging_hierarchy')
    op.drop_table('packaging_units')
    op.drop_index('ix_categories_company_id', table_name='categories')
    op.drop_table('categories')
