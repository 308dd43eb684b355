"""initial schema

Revision ID: a1f3c2d4e5b6
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a1f3c2d4e5b6'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    """Create users, stories, credit ledger, payments, creator payouts and tracking tables."""

    # 1. Users
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('subscription_tier', sa.String(), nullable=False, server_default='basic'),
        sa.Column('subscription_status', sa.String(), nullable=False, server_default='trialing'),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(), nullable=True),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('trial_ends_at', sa.DateTime(), nullable=True),
        sa.Column('credits_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credits_earned_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credits_spent_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cache_hits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cache_discount_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stories_created', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('words_generated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tokens_used_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_creator', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('creator_tier', sa.String(), nullable=True),
        sa.Column('total_earnings_usd', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('pending_payout_usd', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('stripe_connect_account_id', sa.String(), nullable=True),
        sa.Column('stripe_account_status', sa.String(), nullable=True),
        sa.Column('stripe_charges_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('stripe_payouts_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('credits_balance >= 0', name='ck_users_credits_balance_non_negative'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_is_admin'), 'users', ['is_admin'], unique=False)
    op.create_index(op.f('ix_users_subscription_tier'), 'users', ['subscription_tier'], unique=False)
    op.create_index(op.f('ix_users_subscription_status'), 'users', ['subscription_status'], unique=False)
    op.create_index(op.f('ix_users_stripe_customer_id'), 'users', ['stripe_customer_id'], unique=True)
    op.create_index(op.f('ix_users_stripe_subscription_id'), 'users', ['stripe_subscription_id'], unique=True)
    op.create_index(op.f('ix_users_is_creator'), 'users', ['is_creator'], unique=False)
    op.create_index(op.f('ix_users_stripe_connect_account_id'), 'users', ['stripe_connect_account_id'], unique=True)

    # 2. Monthly payout batches (referenced by payouts)
    op.create_table(
        'monthly_payout_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_date', sa.Date(), nullable=False),
        sa.Column('total_creators_paid', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_creators_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount_usd', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('processing_status', sa.String(), nullable=False, server_default='processing'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_monthly_payout_batches_id'), 'monthly_payout_batches', ['id'], unique=False)
    op.create_index(op.f('ix_monthly_payout_batches_batch_date'), 'monthly_payout_batches', ['batch_date'], unique=True)

    # 3. Credit packages
    op.create_table(
        'credit_packages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('credits_amount', sa.Integer(), nullable=False),
        sa.Column('price_usd', sa.Numeric(10, 2), nullable=False),
        sa.Column('bonus_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stripe_price_id', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_credit_packages_id'), 'credit_packages', ['id'], unique=False)
    op.create_index(op.f('ix_credit_packages_is_active'), 'credit_packages', ['is_active'], unique=False)

    # 4. Stories and chapters
    op.create_table(
        'stories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('genre', sa.String(50), nullable=False),
        sa.Column('premise', sa.Text(), nullable=False),
        sa.Column('foundation', JSONType, nullable=True),
        sa.Column('characters', JSONType, nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='draft'),
        sa.Column('word_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('chapter_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_tokens_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cost_usd', sa.Numeric(10, 4), nullable=False, server_default='0'),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('price_per_chapter', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('bundle_discount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('premium_unlock_price', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('price_usd', sa.Numeric(10, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_stories_id'), 'stories', ['id'], unique=False)
    op.create_index(op.f('ix_stories_user_id'), 'stories', ['user_id'], unique=False)
    op.create_index(op.f('ix_stories_genre'), 'stories', ['genre'], unique=False)
    op.create_index(op.f('ix_stories_status'), 'stories', ['status'], unique=False)
    op.create_index(op.f('ix_stories_is_published'), 'stories', ['is_published'], unique=False)
    op.create_index(op.f('ix_stories_updated_at'), 'stories', ['updated_at'], unique=False)

    op.create_table(
        'chapters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('story_id', sa.Integer(), nullable=False),
        sa.Column('chapter_number', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('content', sa.Text(), nullable=False, server_default=''),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('word_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tokens_input', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tokens_output', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('generation_cost_usd', sa.Numeric(10, 4), nullable=False, server_default='0'),
        sa.Column('prompt_type', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['story_id'], ['stories.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('story_id', 'chapter_number', name='uq_chapters_story_number')
    )
    op.create_index(op.f('ix_chapters_id'), 'chapters', ['id'], unique=False)
    op.create_index(op.f('ix_chapters_story_id'), 'chapters', ['story_id'], unique=False)

    op.create_table(
        'generation_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('story_id', sa.Integer(), nullable=True),
        sa.Column('chapter_id', sa.Integer(), nullable=True),
        sa.Column('operation_type', sa.String(), nullable=False),
        sa.Column('tokens_input', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tokens_output', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_usd', sa.Numeric(10, 6), nullable=False, server_default='0'),
        sa.Column('credits_charged', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('from_cache', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['story_id'], ['stories.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['chapter_id'], ['chapters.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_generation_logs_id'), 'generation_logs', ['id'], unique=False)
    op.create_index(op.f('ix_generation_logs_user_id'), 'generation_logs', ['user_id'], unique=False)
    op.create_index(op.f('ix_generation_logs_story_id'), 'generation_logs', ['story_id'], unique=False)
    op.create_index(op.f('ix_generation_logs_operation_type'), 'generation_logs', ['operation_type'], unique=False)
    op.create_index(op.f('ix_generation_logs_created_at'), 'generation_logs', ['created_at'], unique=False)
    op.create_index('ix_generation_logs_story_created', 'generation_logs', ['story_id', 'created_at'], unique=False)

    op.create_table(
        'story_purchases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('story_id', sa.Integer(), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        sa.Column('purchase_type', sa.String(), nullable=False),
        sa.Column('chapters_unlocked', JSONType, nullable=False),
        sa.Column('credits_spent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cache_discount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_usd', sa.Numeric(10, 2), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['story_id'], ['stories.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['creator_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_story_purchases_id'), 'story_purchases', ['id'], unique=False)
    op.create_index(op.f('ix_story_purchases_user_id'), 'story_purchases', ['user_id'], unique=False)
    op.create_index(op.f('ix_story_purchases_story_id'), 'story_purchases', ['story_id'], unique=False)
    op.create_index(op.f('ix_story_purchases_creator_id'), 'story_purchases', ['creator_id'], unique=False)
    op.create_index(op.f('ix_story_purchases_stripe_payment_intent_id'), 'story_purchases', ['stripe_payment_intent_id'], unique=False)
    op.create_index(op.f('ix_story_purchases_created_at'), 'story_purchases', ['created_at'], unique=False)

    # 5. Credit ledger and payments
    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('reference_id', sa.String(), nullable=True),
        sa.Column('reference_type', sa.String(), nullable=True),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_credit_transactions_id'), 'credit_transactions', ['id'], unique=False)
    op.create_index(op.f('ix_credit_transactions_user_id'), 'credit_transactions', ['user_id'], unique=False)
    op.create_index(op.f('ix_credit_transactions_transaction_type'), 'credit_transactions', ['transaction_type'], unique=False)
    op.create_index(op.f('ix_credit_transactions_reference_id'), 'credit_transactions', ['reference_id'], unique=False)
    op.create_index(op.f('ix_credit_transactions_created_at'), 'credit_transactions', ['created_at'], unique=False)
    op.create_index(
        'ix_credit_transactions_user_type_created',
        'credit_transactions',
        ['user_id', 'transaction_type', 'created_at'],
        unique=False
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('stripe_payment_intent_id', sa.String(), nullable=False),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.Column('package_id', sa.Integer(), nullable=True),
        sa.Column('story_id', sa.Integer(), nullable=True),
        sa.Column('amount_usd', sa.Numeric(10, 2), nullable=False),
        sa.Column('credits_purchased', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bonus_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('failure_reason', sa.String(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['package_id'], ['credit_packages.id']),
        sa.ForeignKeyConstraint(['story_id'], ['stories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payments_id'), 'payments', ['id'], unique=False)
    op.create_index(op.f('ix_payments_user_id'), 'payments', ['user_id'], unique=False)
    op.create_index(op.f('ix_payments_stripe_payment_intent_id'), 'payments', ['stripe_payment_intent_id'], unique=True)
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'], unique=False)

    # 6. Creator payouts and earnings
    op.create_table(
        'payouts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('amount_usd', sa.Numeric(10, 2), nullable=False),
        sa.Column('fee_usd', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('stripe_transfer_id', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('period_start', sa.DateTime(), nullable=True),
        sa.Column('period_end', sa.DateTime(), nullable=True),
        sa.Column('earnings_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_reason', sa.String(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['creator_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['batch_id'], ['monthly_payout_batches.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payouts_id'), 'payouts', ['id'], unique=False)
    op.create_index(op.f('ix_payouts_creator_id'), 'payouts', ['creator_id'], unique=False)
    op.create_index(op.f('ix_payouts_batch_id'), 'payouts', ['batch_id'], unique=False)
    op.create_index(op.f('ix_payouts_stripe_transfer_id'), 'payouts', ['stripe_transfer_id'], unique=True)
    op.create_index(op.f('ix_payouts_status'), 'payouts', ['status'], unique=False)
    op.create_index(op.f('ix_payouts_created_at'), 'payouts', ['created_at'], unique=False)

    op.create_table(
        'creator_earnings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        sa.Column('story_id', sa.Integer(), nullable=True),
        sa.Column('reader_id', sa.Integer(), nullable=True),
        sa.Column('credits_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('usd_equivalent', sa.Numeric(10, 2), nullable=False),
        sa.Column('source', sa.String(), nullable=False, server_default='credits'),
        sa.Column('stripe_transfer_id', sa.String(), nullable=True),
        sa.Column('payout_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['creator_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['story_id'], ['stories.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['reader_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['payout_id'], ['payouts.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_creator_earnings_id'), 'creator_earnings', ['id'], unique=False)
    op.create_index(op.f('ix_creator_earnings_creator_id'), 'creator_earnings', ['creator_id'], unique=False)
    op.create_index(op.f('ix_creator_earnings_story_id'), 'creator_earnings', ['story_id'], unique=False)
    op.create_index(op.f('ix_creator_earnings_reader_id'), 'creator_earnings', ['reader_id'], unique=False)
    op.create_index(op.f('ix_creator_earnings_payout_id'), 'creator_earnings', ['payout_id'], unique=False)
    op.create_index(op.f('ix_creator_earnings_created_at'), 'creator_earnings', ['created_at'], unique=False)

    # 7. Webhook replay protection
    op.create_table(
        'billing_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('provider_event_id', sa.String(), nullable=False),
        sa.Column('payload_json', JSONType, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_event_id', name='uq_billing_events_provider_event_id')
    )
    op.create_index(op.f('ix_billing_events_id'), 'billing_events', ['id'], unique=False)
    op.create_index(op.f('ix_billing_events_provider'), 'billing_events', ['provider'], unique=False)
    op.create_index(op.f('ix_billing_events_event_type'), 'billing_events', ['event_type'], unique=False)
    op.create_index(op.f('ix_billing_events_provider_event_id'), 'billing_events', ['provider_event_id'], unique=False)
    op.create_index(op.f('ix_billing_events_created_at'), 'billing_events', ['created_at'], unique=False)

    # 8. Request tracking and system logs
    op.create_table(
        'request_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.String(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('frontend_action', sa.String(), nullable=False),
        sa.Column('frontend_component', sa.String(), nullable=False),
        sa.Column('frontend_page', sa.String(), nullable=True),
        sa.Column('api_endpoint', sa.String(), nullable=False),
        sa.Column('expected_endpoint', sa.String(), nullable=True),
        sa.Column('http_method', sa.String(10), nullable=False),
        sa.Column('request_body_size', sa.Integer(), nullable=True),
        sa.Column('response_status', sa.Integer(), nullable=False),
        sa.Column('response_body_size', sa.Integer(), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=True),
        sa.Column('success_flag', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_category', sa.String(), nullable=True),
        sa.Column('integration_point', sa.String(), nullable=False),
        sa.Column('expected_integration', sa.String(), nullable=True),
        sa.Column('integration_success', sa.Boolean(), nullable=True),
        sa.Column('user_tier', sa.String(), nullable=True),
        sa.Column('device_info', JSONType, nullable=True),
        sa.Column('total_time_ms', sa.Integer(), nullable=True),
        sa.Column('custom_data', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_request_logs_id'), 'request_logs', ['id'], unique=False)
    op.create_index(op.f('ix_request_logs_request_id'), 'request_logs', ['request_id'], unique=True)
    op.create_index(op.f('ix_request_logs_session_id'), 'request_logs', ['session_id'], unique=False)
    op.create_index(op.f('ix_request_logs_user_id'), 'request_logs', ['user_id'], unique=False)
    op.create_index(op.f('ix_request_logs_api_endpoint'), 'request_logs', ['api_endpoint'], unique=False)
    op.create_index(op.f('ix_request_logs_success_flag'), 'request_logs', ['success_flag'], unique=False)
    op.create_index(op.f('ix_request_logs_error_category'), 'request_logs', ['error_category'], unique=False)
    op.create_index(op.f('ix_request_logs_integration_point'), 'request_logs', ['integration_point'], unique=False)
    op.create_index(op.f('ix_request_logs_created_at'), 'request_logs', ['created_at'], unique=False)
    op.create_index(
        'ix_request_logs_integration_created',
        'request_logs',
        ['integration_point', 'created_at'],
        unique=False
    )

    op.create_table(
        'system_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('log_type', sa.String(), nullable=False),
        sa.Column('message', sa.String(), nullable=False),
        sa.Column('details', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_system_logs_id'), 'system_logs', ['id'], unique=False)
    op.create_index(op.f('ix_system_logs_log_type'), 'system_logs', ['log_type'], unique=False)
    op.create_index(op.f('ix_system_logs_created_at'), 'system_logs', ['created_at'], unique=False)


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table('system_logs')
    op.drop_table('request_logs')
    op.drop_table('billing_events')
    op.drop_table('creator_earnings')
    op.drop_table('payouts')
    op.drop_table('payments')
    op.drop_table('credit_transactions')
    op.drop_table('story_purchases')
    op.drop_table('generation_logs')
    op.drop_table('chapters')
    op.drop_table('stories')
    op.drop_table('credit_packages')
    op.drop_table('monthly_payout_batches')
    op.drop_table('users')
