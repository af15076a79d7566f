"""initial rx lifecycle schema

Revision ID: 4f2a9c1e7b3d
Revises:
Create Date: 2026-10-18 09:12:40.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f2a9c1e7b3d'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


user_roles = sa.Enum('admin', 'provider', 'patient', name='user_roles')
prescription_status_enum = sa.Enum(
    'pending_payment', 'payment_received', 'submitted', 'packed', 'approved',
    'picked_up', 'delivered', 'cancelled',
    name='prescription_status_enum',
)
prescription_payment_status_enum = sa.Enum(
    'pending', 'paid', 'refunded', name='prescription_payment_status_enum'
)
prescription_type_enum = sa.Enum('prescription', 'refill', name='prescription_type_enum')
payment_status_enum = sa.Enum(
    'pending', 'completed', 'declined', 'failed', 'cancelled', 'refunded', 'expired',
    name='payment_status_enum',
)
order_progress_enum = sa.Enum(
    'payment_pending', 'payment_received', 'provider_approved', 'pharmacy_processing',
    'shipped', 'delivered',
    name='order_progress_enum',
)
payment_environment_enum = sa.Enum('sandbox', 'live', name='payment_environment_enum')
log_status_enum = sa.Enum('success', 'warning', 'error', name='log_status_enum')
cron_run_status_enum = sa.Enum('running', 'success', 'partial', 'error', name='cron_run_status_enum')
side_effect_kind_enum = sa.Enum(
    'submit_to_pharmacy', 'send_confirmation_email', 'generate_payment_link',
    name='side_effect_kind_enum',
)
side_effect_status_enum = sa.Enum('pending', 'done', 'dead', name='side_effect_status_enum')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('role', user_roles, nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('npi_number', sa.String(length=10), nullable=True),
        sa.Column('signature_url', sa.String(length=512), nullable=True),
        sa.Column('physical_address', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_role'), 'users', ['role'], unique=False)

    op.create_table(
        'patients',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('gender', sa.String(length=20), nullable=True),
        sa.Column('physical_address', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'pharmacies',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'pharmacy_backends',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('pharmacy_id', sa.Uuid(), nullable=False),
        sa.Column('system_type', sa.String(length=50), nullable=False),
        sa.Column('api_url', sa.String(length=512), nullable=True),
        sa.Column('store_id', sa.String(length=50), nullable=True),
        sa.Column('api_key_encrypted', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_pharmacy_backends_pharmacy_id'), 'pharmacy_backends', ['pharmacy_id'], unique=False)
    op.create_index(op.f('ix_pharmacy_backends_is_active'), 'pharmacy_backends', ['is_active'], unique=False)

    op.create_table(
        'prescriptions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('prescriber_id', sa.Uuid(), nullable=False),
        sa.Column('patient_id', sa.Uuid(), nullable=False),
        sa.Column('pharmacy_id', sa.Uuid(), nullable=True),
        sa.Column('medication', sa.String(length=255), nullable=False),
        sa.Column('dosage', sa.String(length=100), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('sig', sa.Text(), nullable=True),
        sa.Column('pharmacy_notes', sa.Text(), nullable=True),
        sa.Column('patient_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('profit_cents', sa.Integer(), nullable=False),
        sa.Column('shipping_fee_cents', sa.Integer(), nullable=False),
        sa.Column('status', prescription_status_enum, nullable=False),
        sa.Column('payment_status', prescription_payment_status_enum, nullable=False),
        sa.Column('payment_transaction_id', sa.Uuid(), nullable=True),
        sa.Column('queue_id', sa.String(length=50), nullable=True),
        sa.Column('tracking_number', sa.String(length=100), nullable=True),
        sa.Column('submitted_to_pharmacy_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('prescription_type', prescription_type_enum, nullable=False),
        sa.Column('parent_prescription_id', sa.Uuid(), nullable=True),
        sa.Column('refills', sa.Integer(), nullable=False),
        sa.Column('total_refills_to_date', sa.Integer(), nullable=False),
        sa.Column('refill_frequency_days', sa.Integer(), nullable=True),
        sa.Column('next_refill_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['prescriber_id'], ['users.id']),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id']),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id']),
        sa.ForeignKeyConstraint(['parent_prescription_id'], ['prescriptions.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    for column in ('prescriber_id', 'patient_id', 'pharmacy_id', 'status', 'queue_id',
                   'prescription_type', 'parent_prescription_id', 'next_refill_date'):
        op.create_index(op.f(f'ix_prescriptions_{column}'), 'prescriptions', [column], unique=False)

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('prescription_id', sa.Uuid(), nullable=True),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('consultation_fee_cents', sa.Integer(), nullable=False),
        sa.Column('medication_cost_cents', sa.Integer(), nullable=False),
        sa.Column('shipping_fee_cents', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.Uuid(), nullable=True),
        sa.Column('patient_email', sa.String(length=255), nullable=True),
        sa.Column('patient_name', sa.String(length=255), nullable=True),
        sa.Column('provider_id', sa.Uuid(), nullable=True),
        sa.Column('provider_name', sa.String(length=255), nullable=True),
        sa.Column('pharmacy_id', sa.Uuid(), nullable=True),
        sa.Column('pharmacy_name', sa.String(length=255), nullable=True),
        sa.Column('authnet_ref_id', sa.String(length=20), nullable=True),
        sa.Column('authnet_transaction_id', sa.String(length=64), nullable=True),
        sa.Column('authnet_response_code', sa.String(length=10), nullable=True),
        sa.Column('authnet_response_reason', sa.Text(), nullable=True),
        sa.Column('payment_token', sa.String(length=128), nullable=False),
        sa.Column('payment_link_url', sa.String(length=512), nullable=True),
        sa.Column('payment_link_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_link_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('card_last_four', sa.String(length=4), nullable=True),
        sa.Column('card_type', sa.String(length=50), nullable=True),
        sa.Column('payment_status', payment_status_enum, nullable=False),
        sa.Column('order_progress', order_progress_enum, nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('payment_link_email_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_confirmation_email_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('webhook_received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('webhook_payload', sa.JSON(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refund_amount_cents', sa.Integer(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['prescription_id'], ['prescriptions.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['provider_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('authnet_ref_id'),
        sa.UniqueConstraint('authnet_transaction_id'),
        sa.UniqueConstraint('payment_token'),
    )
    op.create_index(op.f('ix_payment_transactions_prescription_id'), 'payment_transactions', ['prescription_id'], unique=False)
    op.create_index(op.f('ix_payment_transactions_payment_status'), 'payment_transactions', ['payment_status'], unique=False)

    # prescriptions <-> payment_transactions reference each other
    op.create_foreign_key(
        'fk_prescriptions_payment_transaction_id',
        'prescriptions', 'payment_transactions',
        ['payment_transaction_id'], ['id'],
        ondelete='SET NULL',
    )

    op.create_table(
        'payment_credentials',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('merchant_name', sa.String(length=255), nullable=True),
        sa.Column('api_login_id', sa.String(length=64), nullable=False),
        sa.Column('transaction_key_encrypted', sa.Text(), nullable=False),
        sa.Column('signature_key_encrypted', sa.Text(), nullable=True),
        sa.Column('environment', payment_environment_enum, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'uq_payment_credentials_single_active',
        'payment_credentials',
        ['is_active'],
        unique=True,
        postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'system_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('status', log_status_enum, nullable=False),
        sa.Column('queue_id', sa.String(length=50), nullable=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_system_logs_action'), 'system_logs', ['action'], unique=False)
    op.create_index(op.f('ix_system_logs_status'), 'system_logs', ['status'], unique=False)

    op.create_table(
        'cron_runs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('job_name', sa.String(length=100), nullable=False),
        sa.Column('status', cron_run_status_enum, nullable=False),
        sa.Column('processed', sa.Integer(), nullable=False),
        sa.Column('failed', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_cron_runs_job_name'), 'cron_runs', ['job_name'], unique=False)

    op.create_table(
        'side_effects',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('kind', side_effect_kind_enum, nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('dedupe_key', sa.String(length=255), nullable=False),
        sa.Column('status', side_effect_status_enum, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dedupe_key'),
    )
    op.create_index(op.f('ix_side_effects_status'), 'side_effects', ['status'], unique=False)
    op.create_index(op.f('ix_side_effects_next_attempt_at'), 'side_effects', ['next_attempt_at'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('side_effects')
    op.drop_table('cron_runs')
    op.drop_table('system_logs')
    op.drop_table('payment_credentials')
    op.drop_constraint('fk_prescriptions_payment_transaction_id', 'prescriptions', type_='foreignkey')
    op.drop_table('payment_transactions')
    op.drop_table('prescriptions')
    op.drop_table('pharmacy_backends')
    op.drop_table('pharmacies')
    op.drop_table('patients')
    op.drop_table('users')

    bind = op.get_bind()
    for enum in (
        side_effect_status_enum, side_effect_kind_enum, cron_run_status_enum,
        log_status_enum, payment_environment_enum, order_progress_enum,
        payment_status_enum, prescription_type_enum,
        prescription_payment_status_enum, prescription_status_enum, user_roles,
    ):
        enum.drop(bind, checkfirst=True)
