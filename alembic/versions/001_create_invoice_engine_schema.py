"""Create parties, ledger, schemes and invoice tables.

Revision ID: 001_invoice_engine
Revises:
Create Date: 2024-01-01

Tables:
- customers / suppliers: financial info used by the tax and balance stages
- ledger_entries: read for the previous balance of a party
- schemes: bonus quantity / discount 2 / TO2 promotions
- invoices / invoice_items: versioned invoice aggregate
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_invoice_engine'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


MONEY = sa.Numeric(14, 2)
RATE = sa.Numeric(5, 2)
QUANTITY = sa.Numeric(12, 2)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def _party_columns():
    return [
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('code', sa.String(20), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('credit_limit', MONEY, nullable=False, server_default='0'),
        sa.Column('payment_terms', sa.Integer, nullable=False, server_default='30'),
        sa.Column('tax_number', sa.String(50), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('advance_tax_rate', RATE, nullable=False, server_default='0'),
        sa.Column('is_non_filer', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean, nullable=True, server_default=sa.true()),
        *_timestamps(),
    ]


def upgrade() -> None:
    """Create the invoice engine schema."""

    for table in ('customers', 'suppliers'):
        op.create_table(table, *_party_columns())
        op.create_index(f'ix_{table}_code', table, ['code'], unique=True)
        op.create_index(f'ix_{table}_name', table, ['name'])

    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('party_id', sa.Uuid, nullable=False),
        sa.Column('party_type', sa.String(20), nullable=False),
        sa.Column('entry_date', sa.Date, nullable=False),
        sa.Column('debit', MONEY, nullable=False, server_default='0'),
        sa.Column('credit', MONEY, nullable=False, server_default='0'),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('reference_type', sa.String(50), nullable=True),
        sa.Column('reference_id', sa.Uuid, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_ledger_entries_party_date', 'ledger_entries', ['party_id', 'entry_date'])

    op.create_table(
        'schemes',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('scheme_type', sa.String(10), nullable=False),
        sa.Column('company_id', sa.Uuid, nullable=True),
        sa.Column('group', sa.String(50), nullable=True),
        sa.Column('scheme_format', sa.String(50), nullable=False),
        sa.Column('discount_percent', RATE, nullable=True),
        sa.Column('discount2_percent', RATE, nullable=True),
        sa.Column('to2_percent', RATE, nullable=True),
        sa.Column('claim_account_id', sa.Uuid, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('start_date', sa.Date, nullable=False),
        sa.Column('end_date', sa.Date, nullable=False),
        sa.Column('applicable_items', sa.JSON, nullable=True),
        sa.Column('applicable_customers', sa.JSON, nullable=True),
        sa.Column('minimum_quantity', QUANTITY, nullable=True),
        sa.Column('maximum_quantity', QUANTITY, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_schemes_name', 'schemes', ['name'], unique=True)
    op.create_index('ix_schemes_scheme_type', 'schemes', ['scheme_type'])
    op.create_index('ix_schemes_is_active', 'schemes', ['is_active'])
    op.create_index('ix_schemes_company_active', 'schemes', ['company_id', 'is_active'])
    op.create_index('ix_schemes_dates', 'schemes', ['start_date', 'end_date'])

    op.create_table(
        'invoices',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('version_id', sa.Integer, nullable=False),
        sa.Column('invoice_number', sa.String(50), nullable=False),
        sa.Column('invoice_type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False),
        sa.Column('company_id', sa.Uuid, nullable=True),
        sa.Column('customer_id', sa.Uuid, sa.ForeignKey('customers.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('supplier_id', sa.Uuid, sa.ForeignKey('suppliers.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('supplier_bill_number', sa.String(100), nullable=True),
        sa.Column('original_invoice_id', sa.Uuid, sa.ForeignKey('invoices.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('return_metadata', sa.JSON, nullable=True),
        sa.Column('invoice_date', sa.Date, nullable=False),
        sa.Column('due_date', sa.Date, nullable=False),
        sa.Column('expiry_date', sa.Date, nullable=True),
        sa.Column('to1_percent', RATE, nullable=True),
        sa.Column('to1_amount', MONEY, nullable=True),
        sa.Column('to2_percent', RATE, nullable=True),
        sa.Column('to2_amount', MONEY, nullable=True),
        sa.Column('scheme_to2_percent', RATE, nullable=True),
        sa.Column('income_tax_base', MONEY, nullable=True),
        sa.Column('income_tax', MONEY, nullable=True),
        sa.Column('subtotal', MONEY, nullable=False, server_default='0'),
        sa.Column('total_discount', MONEY, nullable=False, server_default='0'),
        sa.Column('total_tax', MONEY, nullable=False, server_default='0'),
        sa.Column('grand_total', MONEY, nullable=False, server_default='0'),
        sa.Column('gst18_total', MONEY, nullable=True),
        sa.Column('gst4_total', MONEY, nullable=True),
        sa.Column('advance_tax_total', MONEY, nullable=True),
        sa.Column('non_filer_gst_total', MONEY, nullable=True),
        sa.Column('income_tax_total', MONEY, nullable=True),
        sa.Column('total_cartons', sa.Integer, nullable=True),
        sa.Column('previous_balance', MONEY, nullable=True),
        sa.Column('total_balance', MONEY, nullable=True),
        sa.Column('credit_limit_exceeded', sa.Boolean, nullable=True),
        sa.Column('available_credit', MONEY, nullable=True),
        sa.Column('credit_limit_warning', sa.String(500), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_by', sa.Uuid, nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'], unique=True)
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_payment_status', 'invoices', ['payment_status'])
    op.create_index('ix_invoices_due_date', 'invoices', ['due_date'])
    op.create_index('ix_invoices_type_date', 'invoices', ['invoice_type', 'invoice_date'])
    op.create_index('ix_invoices_customer_date', 'invoices', ['customer_id', 'invoice_date'])
    op.create_index('ix_invoices_supplier_date', 'invoices', ['supplier_id', 'invoice_date'])
    op.create_index('ix_invoices_supplier_bill', 'invoices', ['supplier_id', 'supplier_bill_number'])

    op.create_table(
        'invoice_items',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('invoice_id', sa.Uuid, sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('line_number', sa.Integer, nullable=False),
        sa.Column('item_id', sa.String(64), nullable=False),
        sa.Column('item_name', sa.String(300), nullable=True),
        sa.Column('batch_number', sa.String(50), nullable=True),
        sa.Column('batch_expiry_date', sa.Date, nullable=True),
        sa.Column('quantity', QUANTITY, nullable=False),
        sa.Column('unit_price', MONEY, nullable=False),
        sa.Column('discount_percent', RATE, nullable=True),
        sa.Column('box_quantity', QUANTITY, nullable=True),
        sa.Column('unit_quantity', QUANTITY, nullable=True),
        sa.Column('box_rate', MONEY, nullable=True),
        sa.Column('unit_rate', MONEY, nullable=True),
        sa.Column('gst_rate', RATE, nullable=True),
        sa.Column('discount1_percent', RATE, nullable=True),
        sa.Column('discount1_amount', MONEY, nullable=True),
        sa.Column('discount2_percent', RATE, nullable=True),
        sa.Column('discount2_amount', MONEY, nullable=True),
        sa.Column('scheme_discount2_percent', RATE, nullable=True),
        sa.Column('scheme1_quantity', QUANTITY, nullable=True),
        sa.Column('scheme2_quantity', QUANTITY, nullable=True),
        sa.Column('scheme_quantity', QUANTITY, nullable=True),
        sa.Column('carton_qty', sa.Integer, nullable=True),
        sa.Column('item_subtotal', MONEY, nullable=True),
        sa.Column('discount_amount', MONEY, nullable=True),
        sa.Column('taxable_amount', MONEY, nullable=True),
        sa.Column('gst_amount', MONEY, nullable=True),
        sa.Column('advance_tax_percent', RATE, nullable=True),
        sa.Column('advance_tax_amount', MONEY, nullable=True),
        sa.Column('tax_amount', MONEY, nullable=True),
        sa.Column('line_total', MONEY, nullable=True),
    )
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])
    op.create_index('ix_invoice_items_item_id', 'invoice_items', ['item_id'])


def downgrade() -> None:
    """Drop the invoice engine schema."""
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('schemes')
    op.drop_table('ledger_entries')
    op.drop_table('suppliers')
    op.drop_table('customers')
