"""Initial schema: tenants, plans, subscriptions, schedule, slots and reservations

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-01

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '001_initial_schema'
down_revision = None

user_role = sa.Enum('ADMIN', 'DIRECTOR', 'TRAINER', 'ATHLETE', name='userrole')
subscription_status = sa.Enum('ACTIVE', 'PAUSED', 'CANCELLED', 'EXPIRED', name='subscriptionstatus')
payment_status = sa.Enum('PENDING', 'PAID', 'OVERDUE', 'CANCELLED', name='paymentstatus')
payment_method = sa.Enum('CASH', 'CARD', 'TRANSFER', 'OTHER', name='paymentmethod')
usage_type = sa.Enum('RESERVATION', 'WALK_IN', 'SPECIAL_CLASS', name='classusagetype')
recurring_frequency = sa.Enum('WEEKLY', 'MONTHLY', name='recurringfrequency')
recurring_end_type = sa.Enum('DATE', 'COUNT', 'NEVER', name='recurringendtype')
recurring_status = sa.Enum('ACTIVE', 'PAUSED', 'CANCELLED', name='recurringstatus')


def _uuid(name, **kwargs):
    return sa.Column(name, postgresql.UUID(as_uuid=True), **kwargs)


def _tenant_fk():
    return _uuid('tenant_id', sa.ForeignKey('tenants.id'), nullable=False, index=True)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade():
    op.create_table(
        'tenants',
        _uuid('id', primary_key=True),
        sa.Column('name', sa.String(255), nullable=False, index=True),
        sa.Column('slug', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('email', sa.String(255), nullable=True, index=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true', index=True),
    )

    op.create_table(
        'users',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        sa.Column('email', sa.String(255), nullable=False, index=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('role', user_role, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true', index=True),
        *_timestamps(),
    )

    op.create_table(
        'payment_plans',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.String(2000), nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('frequency_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('classes_per_week', sa.Integer(), nullable=False),
        sa.Column('max_classes_per_period', sa.Integer(), nullable=False),
        sa.Column('grace_period_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('late_fee_percentage', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('allow_class_rollover', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('max_rollover_classes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true', index=True),
        *_timestamps(),
    )

    op.create_table(
        'subscriptions',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        _uuid('user_id', sa.ForeignKey('users.id'), nullable=False, index=True),
        _uuid('plan_id', sa.ForeignKey('payment_plans.id'), nullable=False, index=True),
        sa.Column('status', subscription_status, nullable=False, index=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('period_start_date', sa.Date(), nullable=False),
        sa.Column('period_end_date', sa.Date(), nullable=False),
        sa.Column('next_billing_date', sa.Date(), nullable=True),
        sa.Column('week_start_date', sa.Date(), nullable=False),
        sa.Column('classes_used_this_period', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('classes_remaining_this_period', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('classes_used_this_week', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('classes_remaining_this_week', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rollover_classes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('auto_renew', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('notes', sa.String(2000), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.CheckConstraint('classes_remaining_this_period >= 0', name='ck_subscription_period_remaining'),
        sa.CheckConstraint('classes_remaining_this_week >= 0', name='ck_subscription_week_remaining'),
    )

    op.create_table(
        'payments',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        _uuid('user_id', sa.ForeignKey('users.id'), nullable=False, index=True),
        _uuid('plan_id', sa.ForeignKey('payment_plans.id'), nullable=False, index=True),
        _uuid('subscription_id', sa.ForeignKey('subscriptions.id'), nullable=True, index=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('late_fee', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('discount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('status', payment_status, nullable=False, index=True),
        sa.Column('method', payment_method, nullable=True),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('paid_date', sa.Date(), nullable=True, index=True),
        sa.Column('period_start_date', sa.Date(), nullable=True),
        sa.Column('period_end_date', sa.Date(), nullable=True),
        sa.Column('transaction_id', sa.String(255), nullable=True, unique=True),
        sa.Column('notes', sa.String(2000), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'schedule_configs',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        sa.Column('day_of_week', sa.Integer(), nullable=False, index=True),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('slot_duration_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('allow_intermediate_slots', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('intermediate_capacity', sa.Integer(), nullable=True),
        sa.Column('intermediate_slot_duration_minutes', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true', index=True),
        *_timestamps(),
        sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_schedule_config_day_of_week'),
    )

    op.create_table(
        'schedule_exceptions',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        sa.Column('exception_date', sa.Date(), nullable=False, index=True),
        sa.Column('is_closed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('start_time', sa.Time(), nullable=True),
        sa.Column('end_time', sa.Time(), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reason', sa.String(200), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true', index=True),
        *_timestamps(),
    )

    op.create_table(
        'slots',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        sa.Column('slot_date', sa.Date(), nullable=False, index=True),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('reserved_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('attended_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_intermediate', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint(
            'tenant_id', 'slot_date', 'start_time', 'end_time', 'is_intermediate',
            name='uq_slot_window'
        ),
        sa.CheckConstraint(
            'reserved_count >= 0 AND reserved_count <= capacity',
            name='ck_slot_reserved_within_capacity'
        ),
    )

    op.create_table(
        'slot_generations',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('total_days', sa.Integer(), nullable=False),
        sa.Column('days_with_config', sa.Integer(), nullable=False),
        sa.Column('days_without_config', sa.Integer(), nullable=False),
        sa.Column('total_slots', sa.Integer(), nullable=False),
        sa.Column('created_slots', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
    )

    op.create_table(
        'recurring_reservations',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        _uuid('user_id', sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('frequency', recurring_frequency, nullable=False),
        sa.Column('days_of_week', sa.JSON(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_type', recurring_end_type, nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('max_occurrences', sa.Integer(), nullable=True),
        sa.Column('current_occurrences', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_generated_date', sa.Date(), nullable=True),
        sa.Column('status', recurring_status, nullable=False, index=True),
        sa.Column('notes', sa.String(2000), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'reservations',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        _uuid('user_id', sa.ForeignKey('users.id'), nullable=False, index=True),
        _uuid('slot_id', sa.ForeignKey('slots.id'), nullable=False, index=True),
        _uuid('recurring_rule_id', sa.ForeignKey('recurring_reservations.id'), nullable=True, index=True),
        sa.Column('notes', sa.String(2000), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
        sa.UniqueConstraint('user_id', 'slot_id', name='uq_reservation_user_slot'),
    )

    op.create_table(
        'class_usages',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        _uuid('user_id', sa.ForeignKey('users.id'), nullable=False, index=True),
        _uuid('subscription_id', sa.ForeignKey('subscriptions.id'), nullable=False, index=True),
        _uuid('reservation_id', sa.ForeignKey('reservations.id'), nullable=True, unique=True),
        sa.Column('type', usage_type, nullable=False),
        sa.Column('usage_date', sa.Date(), nullable=False, index=True),
        sa.Column('notes', sa.String(2000), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
    )

    op.create_table(
        'subscription_suspensions',
        _uuid('id', primary_key=True),
        _tenant_fk(),
        _uuid('user_id', sa.ForeignKey('users.id'), nullable=False, index=True),
        _uuid('subscription_id', sa.ForeignKey('subscriptions.id'), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('reason', sa.String(500), nullable=True),
        sa.Column('notes', sa.String(2000), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true', index=True),
        *_timestamps(),
    )


def downgrade():
    # Drop in reverse dependency order
    op.drop_table('subscription_suspensions')
    op.drop_table('class_usages')
    op.drop_table('reservations')
    op.drop_table('recurring_reservations')
    op.drop_table('slot_generations')
    op.drop_table('slots')
    op.drop_table('schedule_exceptions')
    op.drop_table('schedule_configs')
    op.drop_table('payments')
    op.drop_table('subscriptions')
    op.drop_table('payment_plans')
    op.drop_table('users')
    op.drop_table('tenants')

    for enum in (
        recurring_status, recurring_end_type, recurring_frequency, usage_type,
        payment_method, payment_status, subscription_status, user_role,
    ):
        enum.drop(op.get_bind(), checkfirst=True)
