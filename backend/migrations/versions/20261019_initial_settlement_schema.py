"""Initial settlement schema: customers, register sessions, sales, credit ledger

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. Customers and the append-only credit ledger
2. Cash register sessions and manual cash transactions
3. Sales with line snapshots and split-payment allocation rows
4. Per-day document sequences (receipt numbers) and the event outbox
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. CUSTOMERS
    # ==========================================================================
    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=False, server_default=''),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('tax_number', sa.String(length=32), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('credit_limit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_debt_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_customers_name', 'customers', ['name'])
    op.create_index('ix_customers_is_active', 'customers', ['is_active'])

    # ==========================================================================
    # 2. REGISTER SESSIONS
    # ==========================================================================
    op.create_table('cash_register_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('register_id', sa.String(length=32), nullable=False, server_default='MAIN'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('opening_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cash_sales_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('card_sales_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cash_deposit_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cash_withdrawal_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('counting_amount_cents', sa.Integer(), nullable=True),
        sa.Column('counting_difference_cents', sa.Integer(), nullable=True),
        sa.Column('opening_date', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('closing_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_register_sessions_register_status', 'cash_register_sessions', ['register_id', 'status'])
    op.create_index('ix_cash_register_sessions_status', 'cash_register_sessions', ['status'])
    op.create_index('ix_cash_register_sessions_opening_date', 'cash_register_sessions', ['opening_date'])

    # ==========================================================================
    # 3. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_no', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False),
        sa.Column('original_total_cents', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('discount_type', sa.String(length=16), nullable=True),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('split_type', sa.String(length=16), nullable=True),
        sa.Column('cash_received_cents', sa.Integer(), nullable=True),
        sa.Column('change_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('cash_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('card_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('register_session_id', sa.Integer(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refund_reason', sa.String(length=255), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['register_session_id'], ['cash_register_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_no', name='uq_sales_receipt_no'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_status_created', 'sales', ['status', 'created_at'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_payment_method', 'sales', ['payment_method'])
    op.create_index('ix_sales_customer_id', 'sales', ['customer_id'])
    op.create_index('ix_sales_register_session_id', 'sales', ['register_session_id'])
    op.create_index('ix_sales_created_at', 'sales', ['created_at'])

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('unit_price_with_tax_cents', sa.Integer(), nullable=False),
        sa.Column('tax_rate', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'])

    op.create_table('sale_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('split_type', sa.String(length=16), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('participant_index', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('received_cents', sa.Integer(), nullable=False),
        sa.Column('change_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_allocations_sale_id', 'sale_allocations', ['sale_id'])
    op.create_index('ix_sale_allocations_customer_id', 'sale_allocations', ['customer_id'])

    # ==========================================================================
    # 4. LEDGERS
    # ==========================================================================
    op.create_table('cash_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['session_id'], ['cash_register_sessions.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_cash_transactions_session_created', 'cash_transactions', ['session_id', 'created_at'])
    op.create_index('ix_cash_transactions_session_id', 'cash_transactions', ['session_id'])
    op.create_index('ix_cash_transactions_type', 'cash_transactions', ['type'])
    op.create_index('ix_cash_transactions_sale_id', 'cash_transactions', ['sale_id'])
    op.create_index('ix_cash_transactions_created_at', 'cash_transactions', ['created_at'])

    op.create_table('credit_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('related_sale_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['related_sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_credit_txns_customer_date', 'credit_transactions', ['customer_id', 'date'])
    op.create_index('ix_credit_transactions_customer_id', 'credit_transactions', ['customer_id'])
    op.create_index('ix_credit_transactions_type', 'credit_transactions', ['type'])
    op.create_index('ix_credit_transactions_related_sale_id', 'credit_transactions', ['related_sale_id'])

    # ==========================================================================
    # 5. DOCUMENT SEQUENCES & OUTBOX
    # ==========================================================================
    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('day_key', sa.String(length=8), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', 'day_key', name='uq_doc_sequences_type_day'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])

    op.create_table('outbox_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_outbox_events_name_created', 'outbox_events', ['name', 'created_at'])
    op.create_index('ix_outbox_events_name', 'outbox_events', ['name'])


def downgrade():
    op.drop_table('outbox_events')
    op.drop_table('document_sequences')
    op.drop_table('credit_transactions')
    op.drop_table('cash_transactions')
    op.drop_table('sale_allocations')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('cash_register_sessions')
    op.drop_table('customers')
