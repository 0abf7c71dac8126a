"""Initial schema: stores, users, deposits, transfers, warehouse, borrows, comparisons

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_initial'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False)


def upgrade():
    # ==========================================================================
    # 1. TENANCY
    # ==========================================================================
    op.create_table('stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_central', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('diff_tolerance', sa.Numeric(5, 2), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_stores_code'),
    )

    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('display_name', sa.String(length=120), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='staff'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='1'),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username', name='uq_users_username'),
    )
    op.create_index('ix_users_role', 'users', ['role'], unique=False)

    op.create_table('user_stores',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', 'store_id'),
    )

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sequence_key', sa.String(length=64), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sequence_key', name='uq_document_sequences_key'),
    )

    # ==========================================================================
    # 2. DEPOSITS AND WITHDRAWALS
    # ==========================================================================
    op.create_table('deposits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('deposit_code', sa.String(length=32), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('customer_name', sa.String(length=120), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('table_number', sa.String(length=16), nullable=True),
        sa.Column('product_name', sa.String(length=200), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Numeric(10, 2), nullable=False),
        sa.Column('remaining_qty', sa.Numeric(10, 2), nullable=False),
        sa.Column('remaining_percent', sa.Numeric(5, 2), nullable=False, server_default='100'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending_confirm'),
        sa.Column('is_vip', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_no_deposit', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_by', sa.Integer(), nullable=True),
        sa.Column('photo_url', sa.String(length=500), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('confirmed_by', sa.Integer(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirm_photo_url', sa.String(length=500), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['users.id']),
        sa.ForeignKeyConstraint(['received_by'], ['users.id']),
        sa.ForeignKeyConstraint(['confirmed_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('deposit_code', name='uq_deposits_code'),
        sa.CheckConstraint('remaining_qty >= 0', name='ck_deposits_remaining_non_negative'),
        sa.CheckConstraint('remaining_qty <= quantity', name='ck_deposits_remaining_le_quantity'),
    )
    with op.batch_alter_table('deposits', schema=None) as batch_op:
        batch_op.create_index('ix_deposits_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_deposits_customer_id', ['customer_id'], unique=False)
        batch_op.create_index('ix_deposits_status', ['status'], unique=False)
        batch_op.create_index('ix_deposits_expiry_date', ['expiry_date'], unique=False)
        batch_op.create_index('ix_deposits_store_status', ['store_id', 'status'], unique=False)

    op.create_table('withdrawals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('deposit_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('requested_qty', sa.Numeric(10, 2), nullable=False),
        sa.Column('actual_qty', sa.Numeric(10, 2), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('requested_by', sa.Integer(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_by', sa.Integer(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('photo_url', sa.String(length=500), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['deposit_id'], ['deposits.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['requested_by'], ['users.id']),
        sa.ForeignKeyConstraint(['approved_by'], ['users.id']),
        sa.ForeignKeyConstraint(['processed_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('withdrawals', schema=None) as batch_op:
        batch_op.create_index('ix_withdrawals_deposit_id', ['deposit_id'], unique=False)
        batch_op.create_index('ix_withdrawals_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_withdrawals_status', ['status'], unique=False)
        batch_op.create_index('ix_withdrawals_deposit_status', ['deposit_id', 'status'], unique=False)

    # ==========================================================================
    # 3. TRANSFERS AND CENTRAL WAREHOUSE
    # ==========================================================================
    op.create_table('transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_code', sa.String(length=32), nullable=True),
        sa.Column('from_store_id', sa.Integer(), nullable=False),
        sa.Column('to_store_id', sa.Integer(), nullable=False),
        sa.Column('deposit_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=200), nullable=False),
        sa.Column('quantity', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('requested_by', sa.Integer(), nullable=True),
        sa.Column('photo_url', sa.String(length=500), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('confirmed_by', sa.Integer(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirm_photo_url', sa.String(length=500), nullable=True),
        sa.Column('rejected_by', sa.Integer(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['from_store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['to_store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['deposit_id'], ['deposits.id']),
        sa.ForeignKeyConstraint(['requested_by'], ['users.id']),
        sa.ForeignKeyConstraint(['confirmed_by'], ['users.id']),
        sa.ForeignKeyConstraint(['rejected_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('transfers', schema=None) as batch_op:
        batch_op.create_index('ix_transfers_code', ['transfer_code'], unique=False)
        batch_op.create_index('ix_transfers_deposit_id', ['deposit_id'], unique=False)
        batch_op.create_index('ix_transfers_status', ['status'], unique=False)
        batch_op.create_index('ix_transfers_to_status', ['to_store_id', 'status'], unique=False)
        batch_op.create_index('ix_transfers_from_status', ['from_store_id', 'status'], unique=False)

    op.create_table('hq_deposits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_id', sa.Integer(), nullable=False),
        sa.Column('deposit_id', sa.Integer(), nullable=False),
        sa.Column('from_store_id', sa.Integer(), nullable=False),
        sa.Column('transfer_code', sa.String(length=32), nullable=True),
        sa.Column('deposit_code', sa.String(length=32), nullable=True),
        sa.Column('product_name', sa.String(length=200), nullable=False),
        sa.Column('customer_name', sa.String(length=120), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='awaiting_withdrawal'),
        sa.Column('received_by', sa.Integer(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_photo_url', sa.String(length=500), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('withdrawn_by', sa.Integer(), nullable=True),
        sa.Column('withdrawn_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('withdrawal_notes', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['transfer_id'], ['transfers.id']),
        sa.ForeignKeyConstraint(['deposit_id'], ['deposits.id']),
        sa.ForeignKeyConstraint(['from_store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['received_by'], ['users.id']),
        sa.ForeignKeyConstraint(['withdrawn_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transfer_id', name='uq_hq_deposits_transfer'),
    )
    with op.batch_alter_table('hq_deposits', schema=None) as batch_op:
        batch_op.create_index('ix_hq_deposits_deposit_id', ['deposit_id'], unique=False)
        batch_op.create_index('ix_hq_deposits_from_store_id', ['from_store_id'], unique=False)
        batch_op.create_index('ix_hq_deposits_status', ['status'], unique=False)

    # ==========================================================================
    # 4. BORROWS
    # ==========================================================================
    op.create_table('borrows',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('from_store_id', sa.Integer(), nullable=False),
        sa.Column('to_store_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending_approval'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.Integer(), nullable=True),
        sa.Column('borrower_photo_url', sa.String(length=500), nullable=True),
        sa.Column('lender_photo_url', sa.String(length=500), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_by', sa.Integer(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('borrower_pos_confirmed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('borrower_pos_confirmed_by', sa.Integer(), nullable=True),
        sa.Column('borrower_pos_confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('lender_pos_confirmed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('lender_pos_confirmed_by', sa.Integer(), nullable=True),
        sa.Column('lender_pos_confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['from_store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['to_store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['requested_by'], ['users.id']),
        sa.ForeignKeyConstraint(['approved_by'], ['users.id']),
        sa.ForeignKeyConstraint(['rejected_by'], ['users.id']),
        sa.ForeignKeyConstraint(['borrower_pos_confirmed_by'], ['users.id']),
        sa.ForeignKeyConstraint(['lender_pos_confirmed_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('borrows', schema=None) as batch_op:
        batch_op.create_index('ix_borrows_status', ['status'], unique=False)
        batch_op.create_index('ix_borrows_from_status', ['from_store_id', 'status'], unique=False)
        batch_op.create_index('ix_borrows_to_status', ['to_store_id', 'status'], unique=False)

    op.create_table('borrow_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('borrow_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=200), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Numeric(10, 2), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['borrow_id'], ['borrows.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_borrow_items_borrow_id', 'borrow_items', ['borrow_id'], unique=False)

    # ==========================================================================
    # 5. STOCK COMPARISONS
    # ==========================================================================
    op.create_table('comparisons',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('comp_date', sa.Date(), nullable=False),
        sa.Column('product_code', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=200), nullable=True),
        sa.Column('pos_quantity', sa.Numeric(10, 2), nullable=True),
        sa.Column('manual_quantity', sa.Numeric(10, 2), nullable=True),
        sa.Column('difference', sa.Numeric(10, 2), nullable=True),
        sa.Column('diff_percent', sa.Numeric(8, 2), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('explained_by', sa.Integer(), nullable=True),
        sa.Column('explained_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('owner_notes', sa.Text(), nullable=True),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['explained_by'], ['users.id']),
        sa.ForeignKeyConstraint(['reviewed_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'comp_date', 'product_code', name='uq_comparisons_store_date_product'),
    )
    with op.batch_alter_table('comparisons', schema=None) as batch_op:
        batch_op.create_index('ix_comparisons_status', ['status'], unique=False)
        batch_op.create_index('ix_comparisons_store_date', ['store_id', 'comp_date'], unique=False)

    # ==========================================================================
    # 6. AUDIT AND NOTIFICATIONS
    # ==========================================================================
    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('action_type', sa.String(length=64), nullable=False),
        sa.Column('table_name', sa.String(length=64), nullable=False),
        sa.Column('record_id', sa.String(length=64), nullable=True),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('changed_by', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['changed_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('audit_logs', schema=None) as batch_op:
        batch_op.create_index('ix_audit_logs_action_type', ['action_type'], unique=False)
        batch_op.create_index('ix_audit_logs_store_created', ['store_id', 'created_at'], unique=False)
        batch_op.create_index('ix_audit_logs_record', ['table_name', 'record_id'], unique=False)

    op.create_table('notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('read', sa.Boolean(), nullable=False, server_default='0'),
        _created_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_read', 'notifications', ['user_id', 'read'], unique=False)


def downgrade():
    op.drop_table('notifications')
    op.drop_table('audit_logs')
    op.drop_table('comparisons')
    op.drop_table('borrow_items')
    op.drop_table('borrows')
    op.drop_table('hq_deposits')
    op.drop_table('transfers')
    op.drop_table('withdrawals')
    op.drop_table('deposits')
    op.drop_table('document_sequences')
    op.drop_table('user_stores')
    op.drop_table('users')
    op.drop_table('stores')
