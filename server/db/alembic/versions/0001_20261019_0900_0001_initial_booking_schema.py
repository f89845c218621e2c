"""Initial booking engine schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

UUID = postgresql.UUID(as_uuid=True)


def _id_column() -> sa.Column:
    return sa.Column('id', UUID, server_default=sa.text('gen_random_uuid()'), nullable=False)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)


def upgrade() -> None:
    """Upgrade database schema."""
    # Organizations and restriction tags
    op.create_table('organizations',
        _id_column(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('refund_window_hours', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.CheckConstraint('length(slug) > 0', name='ck_organization_slug_not_empty'),
        sa.CheckConstraint(
            'refund_window_hours IS NULL OR refund_window_hours >= 0',
            name='ck_organization_refund_window_non_negative'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )
    op.create_index(op.f('ix_organizations_slug'), 'organizations', ['slug'], unique=False)

    op.create_table('restriction_tags',
        _id_column(),
        sa.Column('org_id', UUID, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_restriction_tags_org_id'), 'restriction_tags', ['org_id'], unique=False)

    # Athletes and guardian links
    op.create_table('athletes',
        _id_column(),
        sa.Column('org_id', UUID, nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=True),
        sa.Column('first_name', sa.String(length=128), nullable=False),
        sa.Column('last_name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('restriction_tag_ids', sa.JSON(), server_default=sa.text("'[]'"), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )
    op.create_index(op.f('ix_athletes_org_id'), 'athletes', ['org_id'], unique=False)
    op.create_index(op.f('ix_athletes_user_id'), 'athletes', ['user_id'], unique=False)

    op.create_table('athlete_guardians',
        _id_column(),
        sa.Column('guardian_user_id', sa.String(length=128), nullable=False),
        sa.Column('athlete_id', UUID, nullable=False),
        sa.Column('relationship_label', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['athlete_id'], ['athletes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('guardian_user_id', 'athlete_id', name='uq_athlete_guardian')
    )
    op.create_index(op.f('ix_athlete_guardians_guardian_user_id'), 'athlete_guardians', ['guardian_user_id'], unique=False)
    op.create_index(op.f('ix_athlete_guardians_athlete_id'), 'athlete_guardians', ['athlete_id'], unique=False)

    # Schedule catalog
    op.create_table('scheduling_categories',
        _id_column(),
        sa.Column('org_id', UUID, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('color', sa.String(length=16), nullable=True),
        sa.Column('is_public', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_scheduling_categories_org_id'), 'scheduling_categories', ['org_id'], unique=False)

    op.create_table('event_templates',
        _id_column(),
        sa.Column('org_id', UUID, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category_id', UUID, nullable=True),
        sa.Column('required_restriction_tag_ids', sa.JSON(), server_default=sa.text("'[]'"), nullable=False),
        sa.Column('drop_in_price_cents', sa.Integer(), nullable=True),
        sa.Column('hours_before_cutoff', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('max_days_ahead_open', sa.Integer(), nullable=True),
        sa.CheckConstraint(
            'drop_in_price_cents IS NULL OR drop_in_price_cents >= 0',
            name='ck_template_drop_in_price_non_negative'
        ),
        sa.CheckConstraint('hours_before_cutoff >= 0', name='ck_template_cutoff_non_negative'),
        sa.CheckConstraint(
            'max_days_ahead_open IS NULL OR max_days_ahead_open > 0',
            name='ck_template_max_days_ahead_positive'
        ),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['category_id'], ['scheduling_categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_event_templates_org_id'), 'event_templates', ['org_id'], unique=False)

    op.create_table('scheduled_events',
        _id_column(),
        sa.Column('org_id', UUID, nullable=False),
        sa.Column('template_id', UUID, nullable=False),
        sa.Column('category_id', UUID, nullable=True),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='scheduled', nullable=False),
        _timestamp('created_at'),
        sa.CheckConstraint('capacity >= 0', name='ck_event_capacity_non_negative'),
        sa.CheckConstraint('end_time >= start_time', name='ck_event_end_after_start'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['category_id'], ['scheduling_categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_scheduled_events_org_id'), 'scheduled_events', ['org_id'], unique=False)
    op.create_index(op.f('ix_scheduled_events_template_id'), 'scheduled_events', ['template_id'], unique=False)
    op.create_index(op.f('ix_scheduled_events_start_time'), 'scheduled_events', ['start_time'], unique=False)
    op.create_index(op.f('ix_scheduled_events_status'), 'scheduled_events', ['status'], unique=False)

    # Entitlement products and rules
    op.create_table('membership_types',
        _id_column(),
        sa.Column('org_id', UUID, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_membership_types_org_id'), 'membership_types', ['org_id'], unique=False)

    op.create_table('package_types',
        _id_column(),
        sa.Column('org_id', UUID, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('uses', sa.Integer(), nullable=True),
        sa.Column('validity_days', sa.Integer(), nullable=True),
        sa.CheckConstraint('uses IS NULL OR uses > 0', name='ck_package_type_uses_positive'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_package_types_org_id'), 'package_types', ['org_id'], unique=False)

    op.create_table('entitlement_rules',
        _id_column(),
        sa.Column('membership_type_id', UUID, nullable=True),
        sa.Column('package_type_id', UUID, nullable=True),
        sa.Column('scope', sa.String(length=20), nullable=False),
        sa.Column('category_id', UUID, nullable=True),
        sa.Column('template_id', UUID, nullable=True),
        sa.CheckConstraint(
            '(membership_type_id IS NULL) <> (package_type_id IS NULL)',
            name='ck_rule_single_owner'
        ),
        sa.CheckConstraint("scope IN ('any', 'category', 'template')", name='ck_rule_scope_valid'),
        sa.ForeignKeyConstraint(['membership_type_id'], ['membership_types.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['package_type_id'], ['package_types.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_entitlement_rules_membership_type_id'), 'entitlement_rules', ['membership_type_id'], unique=False)
    op.create_index(op.f('ix_entitlement_rules_package_type_id'), 'entitlement_rules', ['package_type_id'], unique=False)

    # Athlete entitlements
    op.create_table('memberships',
        _id_column(),
        sa.Column('athlete_id', UUID, nullable=False),
        sa.Column('membership_type_id', UUID, nullable=False),
        sa.Column('status', sa.String(length=20), server_default='active', nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['athlete_id'], ['athletes.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['membership_type_id'], ['membership_types.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_memberships_athlete_id'), 'memberships', ['athlete_id'], unique=False)
    op.create_index(op.f('ix_memberships_status'), 'memberships', ['status'], unique=False)

    op.create_table('packages',
        _id_column(),
        sa.Column('athlete_id', UUID, nullable=False),
        sa.Column('package_type_id', UUID, nullable=False),
        sa.Column('status', sa.String(length=20), server_default='active', nullable=False),
        sa.Column('uses_remaining', sa.Integer(), nullable=True),
        sa.Column('uses_total', sa.Integer(), nullable=True),
        sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint(
            'uses_remaining IS NULL OR uses_remaining >= 0',
            name='ck_package_uses_remaining_non_negative'
        ),
        sa.ForeignKeyConstraint(['athlete_id'], ['athletes.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['package_type_id'], ['package_types.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_packages_athlete_id'), 'packages', ['athlete_id'], unique=False)
    op.create_index(op.f('ix_packages_status'), 'packages', ['status'], unique=False)

    # Bookings
    op.create_table('bookings',
        _id_column(),
        sa.Column('athlete_id', UUID, nullable=False),
        sa.Column('event_id', UUID, nullable=False),
        sa.Column('org_id', UUID, nullable=False),
        sa.Column('status', sa.String(length=20), server_default='confirmed', nullable=False),
        sa.Column('source_type', sa.String(length=20), nullable=False),
        sa.Column('source_id', UUID, nullable=True),
        sa.Column('package_id', UUID, nullable=True),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('amount_paid_cents', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.Column('refund_id', sa.String(length=255), nullable=True),
        sa.Column('refunded_amount_cents', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint(
            "source_type IN ('membership', 'package', 'drop_in')",
            name='ck_booking_source_type_valid'
        ),
        sa.CheckConstraint(
            "source_type <> 'drop_in' OR source_id IS NULL",
            name='ck_booking_drop_in_has_no_source'
        ),
        sa.CheckConstraint(
            'amount_paid_cents IS NULL OR amount_paid_cents >= 0',
            name='ck_booking_amount_paid_non_negative'
        ),
        sa.ForeignKeyConstraint(['athlete_id'], ['athletes.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['event_id'], ['scheduled_events.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['package_id'], ['packages.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookings_athlete_id'), 'bookings', ['athlete_id'], unique=False)
    op.create_index(op.f('ix_bookings_event_id'), 'bookings', ['event_id'], unique=False)
    op.create_index(op.f('ix_bookings_org_id'), 'bookings', ['org_id'], unique=False)
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'], unique=False)
    op.create_index('uq_booking_payment_intent', 'bookings', ['payment_intent_id'], unique=True)
    op.create_index(
        'uq_booking_confirmed_athlete_event',
        'bookings',
        ['athlete_id', 'event_id'],
        unique=True,
        postgresql_where=sa.text("status = 'confirmed'")
    )

    # Refunds for drop-in payments whose booking failed
    op.create_table('drop_in_refunds',
        _id_column(),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=False),
        sa.Column('athlete_id', UUID, nullable=False),
        sa.Column('event_id', UUID, nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('failure_code', sa.String(length=50), nullable=False),
        sa.Column('refund_id', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_intent_id')
    )
    op.create_index('ix_drop_in_refunds_athlete_event', 'drop_in_refunds', ['athlete_id', 'event_id'], unique=False)

    # Waivers
    op.create_table('waivers',
        _id_column(),
        sa.Column('org_id', UUID, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('signature_type', sa.String(length=20), server_default='checkbox', nullable=False),
        sa.Column('required_for_booking', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('required_for_signup', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('requires_guardian_signature', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('minor_age_threshold', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.CheckConstraint('version >= 1', name='ck_waiver_version_positive'),
        sa.CheckConstraint(
            "signature_type IN ('checkbox', 'typed_name', 'drawn', 'any')",
            name='ck_waiver_signature_type_valid'
        ),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_waivers_org_id'), 'waivers', ['org_id'], unique=False)

    op.create_table('waiver_signatures',
        _id_column(),
        sa.Column('waiver_id', UUID, nullable=False),
        sa.Column('athlete_id', UUID, nullable=False),
        sa.Column('waiver_version', sa.Integer(), nullable=False),
        sa.Column('signature_type', sa.String(length=20), nullable=False),
        sa.Column('signature_data', sa.JSON(), server_default=sa.text("'{}'"), nullable=False),
        sa.Column('signed_by_user_id', sa.String(length=128), nullable=False),
        sa.Column('signed_by_relationship', sa.String(length=64), nullable=True),
        _timestamp('signed_at'),
        sa.ForeignKeyConstraint(['waiver_id'], ['waivers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['athlete_id'], ['athletes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('waiver_id', 'athlete_id', 'waiver_version', name='uq_waiver_signature_version')
    )
    op.create_index(op.f('ix_waiver_signatures_waiver_id'), 'waiver_signatures', ['waiver_id'], unique=False)
    op.create_index(op.f('ix_waiver_signatures_athlete_id'), 'waiver_signatures', ['athlete_id'], unique=False)

    # Idempotency records
    op.create_table('idempotency_records',
        _id_column(),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('operation', sa.String(length=100), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('request_body_hash', sa.String(length=64), nullable=False),
        sa.Column('response_status_code', sa.Integer(), nullable=False),
        sa.Column('response_body', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        _timestamp('created_at'),
        sa.CheckConstraint('length(idempotency_key) > 0', name='ck_idempotency_key_not_empty'),
        sa.CheckConstraint('length(request_body_hash) = 64', name='ck_idempotency_hash_length'),
        sa.CheckConstraint(
            'response_status_code >= 100 AND response_status_code <= 599',
            name='ck_idempotency_status_code_valid'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', 'operation', 'user_id', name='uq_idempotency_key_operation_user')
    )
    op.create_index(op.f('ix_idempotency_records_idempotency_key'), 'idempotency_records', ['idempotency_key'], unique=False)
    op.create_index(op.f('ix_idempotency_records_expires_at'), 'idempotency_records', ['expires_at'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('idempotency_records')
    op.drop_table('waiver_signatures')
    op.drop_table('waivers')
    op.drop_table('drop_in_refunds')
    op.drop_index('uq_booking_confirmed_athlete_event', table_name='bookings')
    op.drop_table('bookings')
    op.drop_table('packages')
    op.drop_table('memberships')
    op.drop_table('entitlement_rules')
    op.drop_table('package_types')
    op.drop_table('membership_types')
    op.drop_table('scheduled_events')
    op.drop_table('event_templates')
    op.drop_table('scheduling_categories')
    op.drop_table('athlete_guardians')
    op.drop_table('athletes')
    op.drop_table('restriction_tags')
    op.drop_table('organizations')
