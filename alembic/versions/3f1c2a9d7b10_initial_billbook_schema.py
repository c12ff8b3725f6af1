"""initial billbook schema"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic
revision = '3f1c2a9d7b10'
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        'addresses',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('street', sa.String(255), nullable=True),
        sa.Column('city', sa.String(128), nullable=True),
        sa.Column('post', sa.String(128), nullable=True),
        sa.Column('district', sa.String(128), nullable=True),
        sa.Column('state', sa.String(128), nullable=False),
        sa.Column('pincode', sa.String(6), nullable=False),
        sa.Column('st_code', sa.String(8), nullable=True),
    )
    op.create_table(
        'phones',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('office', sa.JSON(), nullable=False),
        sa.Column('mobile', sa.JSON(), nullable=False),
    )
    for table in ('suppliers', 'parties'):
        op.create_table(
            table,
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('gstin', sa.String(15), nullable=False, unique=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('address_id', sa.String(36), sa.ForeignKey('addresses.id'), nullable=False, unique=True),
            sa.Column('phone_id', sa.String(36), sa.ForeignKey('phones.id'), nullable=False, unique=True),
        )
    op.create_table(
        'bills',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('bill_number', sa.String(64), nullable=False),
        sa.Column('bill_date', sa.Date(), nullable=False),
        sa.Column('location', sa.String(255), nullable=False),
        sa.Column('total_billed_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('payment_status', sa.String(8), nullable=False),
        sa.Column('supplier_id', sa.String(36), sa.ForeignKey('suppliers.id'), nullable=False),
        sa.Column('party_id', sa.String(36), sa.ForeignKey('parties.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('bill_number', 'bill_date', name='uq_bill_number_date'),
        sa.CheckConstraint('total_billed_amount > 0', name='ck_bills_total_pos'),
        sa.CheckConstraint("payment_status IN ('paid', 'unpaid')", name='ck_bills_payment_status'),
    )
    op.create_index('ix_bills_supplier_id', 'bills', ['supplier_id'])
    op.create_index('ix_bills_party_id', 'bills', ['party_id'])
    op.create_table(
        'bill_items',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('bill_id', sa.String(36), sa.ForeignKey('bills.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('hsn', sa.String(16), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('rate', sa.Numeric(12, 2), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_bill_items_qty_pos'),
        sa.CheckConstraint('rate > 0', name='ck_bill_items_rate_pos'),
        sa.CheckConstraint('amount > 0', name='ck_bill_items_amount_pos'),
    )
    op.create_index('ix_bill_items_bill_id', 'bill_items', ['bill_id'])
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('role', sa.String(8), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_table(
        'sessions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('expires', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_sessions_session_id', 'sessions', ['session_id'], unique=True)
    op.create_index('ix_sessions_user_id', 'sessions', ['user_id'])

def downgrade() -> None:
    op.drop_table('sessions')
    op.drop_table('users')
    op.drop_table('bill_items')
    op.drop_table('bills')
    op.drop_table('parties')
    op.drop_table('suppliers')
    op.drop_table('phones')
    op.drop_table('addresses')
