"""Create booking schema: customers, services, appointments, payments, reminders

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2025-11-03 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a0b1c2d3e4f5'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


appointment_status = sa.Enum(
    'pending', 'reserved', 'confirmed', 'completed', 'canceled', name='appointment_status'
)
payment_status = sa.Enum(
    'pending', 'approved', 'failed', 'refunded', 'partially_refunded', name='payment_status'
)
payment_kind = sa.Enum('deposit', 'balance', 'full', name='payment_kind')
reminder_status = sa.Enum('pending', 'sent', 'error', name='reminder_status')


def upgrade() -> None:
    # Catalog tables
    op.create_table('customers',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_customers_phone', 'customers', ['phone'], unique=False)

    op.create_table('services',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('base_duration_min', sa.Integer(), nullable=True),
        sa.Column('base_price_cents', sa.Integer(), nullable=True),
        sa.Column('base_deposit_cents', sa.Integer(), nullable=True),
        sa.Column('base_buffer_min', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('service_assignments',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('service_id', sa.UUID(), nullable=False),
        sa.Column('context', sa.String(length=100), nullable=True),
        sa.Column('use_service_defaults', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('override_duration_min', sa.Integer(), nullable=True),
        sa.Column('override_price_cents', sa.Integer(), nullable=True),
        sa.Column('override_deposit_cents', sa.Integer(), nullable=True),
        sa.Column('override_buffer_min', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_service_assignments_service_id', 'service_assignments', ['service_id'], unique=False)

    # Transactional tables
    op.create_table('appointments',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('customer_id', sa.UUID(), nullable=False),
        sa.Column('service_id', sa.UUID(), nullable=False),
        sa.Column('assignment_id', sa.UUID(), nullable=True),
        sa.Column('staff_id', sa.UUID(), nullable=True),
        sa.Column('start_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('buffer_min', sa.Integer(), nullable=False),
        sa.Column('status', appointment_status, nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('deposit_cents', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('canceled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint('end_time > start_time', name='check_appointment_end_after_start'),
        sa.CheckConstraint('total_cents >= 0', name='check_appointment_total_non_negative'),
        sa.CheckConstraint(
            'deposit_cents >= 0 AND deposit_cents <= total_cents',
            name='check_appointment_deposit_within_total',
        ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['assignment_id'], ['service_assignments.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_appointments_customer_id', 'appointments', ['customer_id'], unique=False)
    op.create_index('ix_appointments_service_id', 'appointments', ['service_id'], unique=False)
    op.create_index('ix_appointments_staff_id', 'appointments', ['staff_id'], unique=False)
    op.create_index('ix_appointments_start_time', 'appointments', ['start_time'], unique=False)
    op.create_index('ix_appointments_status', 'appointments', ['status'], unique=False)
    op.create_index('idx_appointments_status_created', 'appointments', ['status', 'created_at'], unique=False)
    op.create_index('idx_appointments_status_start', 'appointments', ['status', 'start_time'], unique=False)
    op.create_index('idx_appointments_service_start', 'appointments', ['service_id', 'start_time'], unique=False)

    op.create_table('payments',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('appointment_id', sa.UUID(), nullable=False),
        sa.Column('provider', sa.String(length=30), nullable=False),
        sa.Column('provider_payment_id', sa.String(length=255), nullable=False),
        sa.Column('kind', payment_kind, nullable=False),
        sa.Column('covers_deposit', sa.Boolean(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', payment_status, nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='check_payment_amount_positive'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_payments_appointment_id', 'payments', ['appointment_id'], unique=False)
    op.create_index('ix_payments_provider_payment_id', 'payments', ['provider_payment_id'], unique=False)
    op.create_index('idx_payments_appointment_status', 'payments', ['appointment_id', 'status'], unique=False)

    op.create_table('webhook_events',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('provider', sa.String(length=30), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=True),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('received_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_events_provider_event')
    )

    op.create_table('reminders',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('appointment_id', sa.UUID(), nullable=False),
        sa.Column('channel', sa.String(length=20), nullable=False),
        sa.Column('template', sa.String(length=50), nullable=False),
        sa.Column('to_address', sa.String(length=100), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('scheduled_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('status', reminder_status, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('appointment_id', 'template', name='uq_reminders_appointment_template')
    )
    op.create_index('ix_reminders_appointment_id', 'reminders', ['appointment_id'], unique=False)
    op.create_index('idx_reminders_status_scheduled', 'reminders', ['status', 'scheduled_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_reminders_status_scheduled', table_name='reminders')
    op.drop_index('ix_reminders_appointment_id', table_name='reminders')
    op.drop_table('reminders')
    op.drop_table('webhook_events')
    op.drop_index('idx_payments_appointment_status', table_name='payments')
    op.drop_index('ix_payments_provider_payment_id', table_name='payments')
    op.drop_index('ix_payments_appointment_id', table_name='payments')
    op.drop_table('payments')
    op.drop_index('idx_appointments_service_start', table_name='appointments')
    op.drop_index('idx_appointments_status_start', table_name='appointments')
    op.drop_index('idx_appointments_status_created', table_name='appointments')
    op.drop_index('ix_appointments_status', table_name='appointments')
    op.drop_index('ix_appointments_start_time', table_name='appointments')
    op.drop_index('ix_appointments_staff_id', table_name='appointments')
    op.drop_index('ix_appointments_service_id', table_name='appointments')
    op.drop_index('ix_appointments_customer_id', table_name='appointments')
    op.drop_table('appointments')
    op.drop_index('ix_service_assignments_service_id', table_name='service_assignments')
    op.drop_table('service_assignments')
    op.drop_table('services')
    op.drop_index('ix_customers_phone', table_name='customers')
    op.drop_table('customers')

    # Drop enum types
    reminder_status.drop(op.get_bind(), checkfirst=True)
    payment_kind.drop(op.get_bind(), checkfirst=True)
    payment_status.drop(op.get_bind(), checkfirst=True)
    appointment_status.drop(op.get_bind(), checkfirst=True)
