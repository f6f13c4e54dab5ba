"""Initial payments schema: profiles, bookings, payments, credit ledger and payouts.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade():
    op.create_table(
        'profiles',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('role', sa.String(20), nullable=False),
        *_timestamps(),
    )
    op.create_index('idx_profile_role', 'profiles', ['role'])

    op.create_table(
        'instructors',
        sa.Column('uuid', sa.String(36), sa.ForeignKey('profiles.uuid'), primary_key=True),
        sa.Column('hourly_rate_pence', sa.Integer(), nullable=False),
        sa.Column('postcode', sa.String(10), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'bookings',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('learner_id', sa.String(36), sa.ForeignKey('profiles.uuid'), nullable=False),
        sa.Column('instructor_id', sa.String(36), sa.ForeignKey('instructors.uuid'), nullable=False),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=False),
        sa.Column('price_pence', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        *_timestamps(),
    )
    op.create_index('idx_booking_instructor_status_end', 'bookings', ['instructor_id', 'status', 'end_at'])
    op.create_index('idx_booking_learner_id', 'bookings', ['learner_id'])

    op.create_table(
        'payments',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('learner_id', sa.String(36), sa.ForeignKey('profiles.uuid'), nullable=False),
        sa.Column('instructor_id', sa.String(36), sa.ForeignKey('instructors.uuid'), nullable=False),
        sa.Column('booking_id', sa.String(36), sa.ForeignKey('bookings.uuid'), nullable=True),
        sa.Column('total_amount_pence', sa.Integer(), nullable=False),
        sa.Column('platform_fee_pence', sa.Integer(), nullable=False),
        sa.Column('instructor_amount_pence', sa.Integer(), nullable=False),
        sa.Column('discount_amount_pence', sa.Integer(), nullable=False),
        sa.Column('discount_code', sa.String(64), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('purpose', sa.String(20), nullable=False),
        sa.Column('hours', sa.Float(), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(255), nullable=False, unique=True),
        sa.Column('destination_account_id', sa.String(255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index('idx_payment_booking_id', 'payments', ['booking_id'])
    op.create_index('idx_payment_instructor_status', 'payments', ['instructor_id', 'status'])
    op.create_index('idx_payment_learner_id', 'payments', ['learner_id'])

    op.create_table(
        'refunds',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('payment_id', sa.String(36), sa.ForeignKey('payments.uuid'), nullable=False),
        sa.Column('stripe_refund_id', sa.String(255), nullable=False, unique=True),
        sa.Column('amount_pence', sa.Integer(), nullable=False),
        sa.Column('platform_fee_refund_pence', sa.Integer(), nullable=False),
        sa.Column('instructor_refund_pence', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(64), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_refund_payment_id', 'refunds', ['payment_id'])

    op.create_table(
        'credit_ledger',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('learner_id', sa.String(36), sa.ForeignKey('profiles.uuid'), nullable=False),
        sa.Column('instructor_id', sa.String(36), sa.ForeignKey('instructors.uuid'), nullable=False),
        sa.Column('delta_minutes', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('order_id', sa.String(36), sa.ForeignKey('payments.uuid'), nullable=True),
        sa.Column('lesson_id', sa.String(36), sa.ForeignKey('bookings.uuid'), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('idx_credit_ledger_pair', 'credit_ledger', ['learner_id', 'instructor_id'])
    op.create_index('idx_credit_ledger_order_id', 'credit_ledger', ['order_id'])

    op.create_table(
        'learner_credits',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('learner_id', sa.String(36), sa.ForeignKey('profiles.uuid'), nullable=False),
        sa.Column('instructor_id', sa.String(36), sa.ForeignKey('instructors.uuid'), nullable=False),
        sa.Column('minutes_purchased', sa.Integer(), nullable=False),
        sa.Column('minutes_used', sa.Integer(), nullable=False),
        sa.Column('minutes_adjusted', sa.Integer(), nullable=False),
        sa.Column('hourly_rate_pence', sa.Integer(), nullable=False),
        sa.Column('purchase_payment_id', sa.String(36), sa.ForeignKey('payments.uuid'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('learner_id', 'instructor_id', name='uq_learner_credit_pair'),
    )

    op.create_table(
        'payouts',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('instructor_id', sa.String(36), sa.ForeignKey('instructors.uuid'), nullable=False),
        sa.Column('total_amount_pence', sa.Integer(), nullable=False),
        sa.Column('platform_fee_pence', sa.Integer(), nullable=False),
        sa.Column('net_amount_pence', sa.Integer(), nullable=False),
        sa.Column('payout_date', sa.Date(), nullable=False),
        sa.Column('lesson_period_start', sa.Date(), nullable=False),
        sa.Column('lesson_period_end', sa.Date(), nullable=False),
        sa.Column('lesson_count', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('stripe_account_id', sa.String(255), nullable=True),
        sa.Column('stripe_transfer_id', sa.String(255), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('retry_after', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('instructor_id', 'payout_date', name='uq_payout_instructor_date'),
    )
    op.create_index('idx_payout_status', 'payouts', ['status'])
    op.create_index('idx_payout_stripe_transfer_id', 'payouts', ['stripe_transfer_id'])

    op.create_table(
        'payout_payments',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('payout_id', sa.String(36), sa.ForeignKey('payouts.uuid'), nullable=False),
        sa.Column('payment_id', sa.String(36), sa.ForeignKey('payments.uuid'), nullable=False),
        sa.UniqueConstraint('payout_id', 'payment_id', name='uq_payout_payment'),
    )

    op.create_table(
        'stripe_connect_accounts',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('instructor_id', sa.String(36), sa.ForeignKey('instructors.uuid'), nullable=False, unique=True),
        sa.Column('stripe_account_id', sa.String(255), nullable=False, unique=True),
        sa.Column('account_type', sa.String(20), nullable=False),
        sa.Column('charges_enabled', sa.Boolean(), nullable=False),
        sa.Column('payouts_enabled', sa.Boolean(), nullable=False),
        sa.Column('details_submitted', sa.Boolean(), nullable=False),
        sa.Column('requirements', sa.JSON(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'discount_codes',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('code', sa.String(64), nullable=False, unique=True),
        sa.Column('discount_type', sa.String(20), nullable=False),
        sa.Column('discount_value', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('uses_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )


def downgrade():
    op.drop_table('discount_codes')
    op.drop_table('stripe_connect_accounts')
    op.drop_table('payout_payments')
    op.drop_index('idx_payout_stripe_transfer_id', table_name='payouts')
    op.drop_index('idx_payout_status', table_name='payouts')
    op.drop_table('payouts')
    op.drop_table('learner_credits')
    op.drop_index('idx_credit_ledger_order_id', table_name='credit_ledger')
    op.drop_index('idx_credit_ledger_pair', table_name='credit_ledger')
    op.drop_table('credit_ledger')
    op.drop_index('idx_refund_payment_id', table_name='refunds')
    op.drop_table('refunds')
    op.drop_index('idx_payment_learner_id', table_name='payments')
    op.drop_index('idx_payment_instructor_status', table_name='payments')
    op.drop_index('idx_payment_booking_id', table_name='payments')
    op.drop_table('payments')
    op.drop_index('idx_booking_learner_id', table_name='bookings')
    op.drop_index('idx_booking_instructor_status_end', table_name='bookings')
    op.drop_table('bookings')
    op.drop_table('instructors')
    op.drop_index('idx_profile_role', table_name='profiles')
    op.drop_table('profiles')
