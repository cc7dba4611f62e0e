"""initial schema

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'a1c4e7f20b31'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated=True):
    columns = [sa.Column('created_at', sa.DateTime(), nullable=False)]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(), nullable=False))
    return columns


def upgrade():
    """Create users, models, generations, videos, billing and log tables"""
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('hashed_password', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('plan', sa.String(), nullable=False),
        sa.Column('subscription_status', sa.String(), nullable=True),
        sa.Column('subscription_id', sa.String(), nullable=True),
        sa.Column('asaas_customer_id', sa.String(), nullable=True),
        sa.Column('billing_cycle', sa.String(), nullable=True),
        sa.Column('subscription_started_at', sa.DateTime(), nullable=True),
        sa.Column('subscription_ends_at', sa.DateTime(), nullable=True),
        sa.Column('credits_limit', sa.Integer(), nullable=False),
        sa.Column('credits_used', sa.Integer(), nullable=False),
        sa.Column('credits_balance', sa.Integer(), nullable=False),
        sa.Column('cpf_cnpj', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('mobile_phone', sa.String(), nullable=True),
        sa.Column('address', sa.String(), nullable=True),
        sa.Column('address_number', sa.String(), nullable=True),
        sa.Column('complement', sa.String(), nullable=True),
        sa.Column('province', sa.String(), nullable=True),
        sa.Column('city', sa.String(), nullable=True),
        sa.Column('state', sa.String(), nullable=True),
        sa.Column('postal_code', sa.String(), nullable=True),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_plan'), 'users', ['plan'], unique=False)
    op.create_index(op.f('ix_users_subscription_status'), 'users', ['subscription_status'], unique=False)
    op.create_index(op.f('ix_users_subscription_id'), 'users', ['subscription_id'], unique=False)
    op.create_index(op.f('ix_users_asaas_customer_id'), 'users', ['asaas_customer_id'], unique=True)

    op.create_table(
        'api_keys',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('key_hash', sa.String(), nullable=False),
        sa.Column('key_prefix', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_api_keys_user_id'), 'api_keys', ['user_id'], unique=False)
    op.create_index(op.f('ix_api_keys_key_hash'), 'api_keys', ['key_hash'], unique=True)

    op.create_table(
        'user_consents',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('consent_type', sa.String(), nullable=False),
        sa.Column('version', sa.String(), nullable=False),
        sa.Column('granted', sa.Boolean(), nullable=False),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_user_consents_user_id'), 'user_consents', ['user_id'], unique=False)
    op.create_index(op.f('ix_user_consents_consent_type'), 'user_consents', ['consent_type'], unique=False)

    op.create_table(
        'ai_models',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('class', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('training_photos', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('total_photos', sa.Integer(), nullable=False),
        sa.Column('training_zip_url', sa.String(), nullable=True),
        sa.Column('trigger_word', sa.String(), nullable=True),
        sa.Column('training_config', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('training_job_id', sa.String(), nullable=True),
        sa.Column('destination', sa.String(), nullable=True),
        sa.Column('model_url', sa.String(), nullable=True),
        sa.Column('quality_score', sa.Float(), nullable=True),
        sa.Column('progress', sa.Integer(), nullable=False),
        sa.Column('estimated_time', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('training_started_at', sa.DateTime(), nullable=True),
        sa.Column('training_completed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_ai_models_user_id'), 'ai_models', ['user_id'], unique=False)
    op.create_index(op.f('ix_ai_models_status'), 'ai_models', ['status'], unique=False)
    op.create_index(op.f('ix_ai_models_training_job_id'), 'ai_models', ['training_job_id'], unique=True)
    op.create_index(op.f('ix_ai_models_created_at'), 'ai_models', ['created_at'], unique=False)
    op.create_index('idx_ai_models_user_status', 'ai_models', ['user_id', 'status'], unique=False)

    op.create_table(
        'generations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('model_id', sa.String(), nullable=True),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('negative_prompt', sa.Text(), nullable=True),
        sa.Column('aspect_ratio', sa.String(), nullable=False),
        sa.Column('resolution', sa.String(), nullable=False),
        sa.Column('variations', sa.Integer(), nullable=False),
        sa.Column('strength', sa.Float(), nullable=True),
        sa.Column('seed', sa.Integer(), nullable=True),
        sa.Column('style', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('job_id', sa.String(), nullable=True),
        sa.Column('image_urls', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('thumbnail_urls', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('storage_keys', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('processing_time', sa.Integer(), nullable=True),
        sa.Column('estimated_cost', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('extra_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['model_id'], ['ai_models.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_generations_user_id'), 'generations', ['user_id'], unique=False)
    op.create_index(op.f('ix_generations_model_id'), 'generations', ['model_id'], unique=False)
    op.create_index(op.f('ix_generations_status'), 'generations', ['status'], unique=False)
    op.create_index(op.f('ix_generations_job_id'), 'generations', ['job_id'], unique=True)
    op.create_index(op.f('ix_generations_created_at'), 'generations', ['created_at'], unique=False)
    op.create_index('idx_generations_status_created', 'generations', ['status', 'created_at'], unique=False)
    op.create_index('idx_generations_user_created', 'generations', ['user_id', 'created_at'], unique=False)

    op.create_table(
        'edit_history',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('generation_id', sa.String(), nullable=True),
        sa.Column('original_image_url', sa.String(), nullable=False),
        sa.Column('edited_image_url', sa.String(), nullable=False),
        sa.Column('thumbnail_url', sa.String(), nullable=True),
        sa.Column('operation', sa.String(), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('extra_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['generation_id'], ['generations.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_edit_history_user_id'), 'edit_history', ['user_id'], unique=False)
    op.create_index(op.f('ix_edit_history_operation'), 'edit_history', ['operation'], unique=False)
    op.create_index(op.f('ix_edit_history_created_at'), 'edit_history', ['created_at'], unique=False)

    op.create_table(
        'video_generations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('source_image_url', sa.String(), nullable=True),
        sa.Column('source_generation_id', sa.String(), nullable=True),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('negative_prompt', sa.Text(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('aspect_ratio', sa.String(), nullable=False),
        sa.Column('quality', sa.String(), nullable=False),
        sa.Column('template', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('job_id', sa.String(), nullable=True),
        sa.Column('video_url', sa.String(), nullable=True),
        sa.Column('thumbnail_url', sa.String(), nullable=True),
        sa.Column('storage_key', sa.String(), nullable=True),
        sa.Column('credits_used', sa.Integer(), nullable=False),
        sa.Column('progress', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('extra_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('processing_started_at', sa.DateTime(), nullable=True),
        sa.Column('processing_completed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['source_generation_id'], ['generations.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_video_generations_user_id'), 'video_generations', ['user_id'], unique=False)
    op.create_index(op.f('ix_video_generations_status'), 'video_generations', ['status'], unique=False)
    op.create_index(op.f('ix_video_generations_job_id'), 'video_generations', ['job_id'], unique=True)
    op.create_index(op.f('ix_video_generations_created_at'), 'video_generations', ['created_at'], unique=False)
    op.create_index('idx_video_generations_user_status', 'video_generations', ['user_id', 'status'], unique=False)

    op.create_table(
        'collections',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_public', sa.Boolean(), nullable=False),
        sa.Column('image_urls', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_collections_user_id'), 'collections', ['user_id'], unique=False)

    op.create_table(
        'photo_packages',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('prompts', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('preview_urls', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_premium', sa.Boolean(), nullable=False),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_photo_packages_category'), 'photo_packages', ['category'], unique=False)
    op.create_index(op.f('ix_photo_packages_is_active'), 'photo_packages', ['is_active'], unique=False)

    op.create_table(
        'payments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('asaas_payment_id', sa.String(), nullable=True),
        sa.Column('subscription_id', sa.String(), nullable=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('billing_type', sa.String(), nullable=False),
        sa.Column('value', sa.Numeric(10, 2), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('due_date', sa.DateTime(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('external_reference', sa.String(), nullable=True),
        sa.Column('plan', sa.String(), nullable=True),
        sa.Column('billing_cycle', sa.String(), nullable=True),
        sa.Column('credit_amount', sa.Integer(), nullable=True),
        sa.Column('pix_qr_code', sa.Text(), nullable=True),
        sa.Column('pix_payload', sa.Text(), nullable=True),
        sa.Column('boleto_identification_field', sa.String(), nullable=True),
        sa.Column('invoice_url', sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payments_user_id'), 'payments', ['user_id'], unique=False)
    op.create_index(op.f('ix_payments_asaas_payment_id'), 'payments', ['asaas_payment_id'], unique=True)
    op.create_index(op.f('ix_payments_subscription_id'), 'payments', ['subscription_id'], unique=False)
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'], unique=False)
    op.create_index(op.f('ix_payments_external_reference'), 'payments', ['external_reference'], unique=False)
    op.create_index(op.f('ix_payments_created_at'), 'payments', ['created_at'], unique=False)

    op.create_table(
        'credit_purchases',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('asaas_payment_id', sa.String(), nullable=True),
        sa.Column('package_id', sa.String(), nullable=True),
        sa.Column('package_name', sa.String(), nullable=False),
        sa.Column('credit_amount', sa.Integer(), nullable=False),
        sa.Column('bonus_credits', sa.Integer(), nullable=False),
        sa.Column('value', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('valid_until', sa.DateTime(), nullable=False),
        sa.Column('is_expired', sa.Boolean(), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_credit_purchases_user_id'), 'credit_purchases', ['user_id'], unique=False)
    op.create_index(op.f('ix_credit_purchases_asaas_payment_id'), 'credit_purchases', ['asaas_payment_id'], unique=True)
    op.create_index(op.f('ix_credit_purchases_status'), 'credit_purchases', ['status'], unique=False)

    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('source', sa.String(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('reference_id', sa.String(), nullable=True),
        sa.Column('credit_purchase_id', sa.String(), nullable=True),
        sa.Column('balance_after', sa.Integer(), nullable=True),
        sa.Column('extra_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['credit_purchase_id'], ['credit_purchases.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_credit_transactions_user_id'), 'credit_transactions', ['user_id'], unique=False)
    op.create_index(op.f('ix_credit_transactions_type'), 'credit_transactions', ['type'], unique=False)
    op.create_index(op.f('ix_credit_transactions_reference_id'), 'credit_transactions', ['reference_id'], unique=False)
    op.create_index(op.f('ix_credit_transactions_created_at'), 'credit_transactions', ['created_at'], unique=False)
    op.create_index('idx_credit_transactions_user_created', 'credit_transactions', ['user_id', 'created_at'], unique=False)

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('event', sa.String(), nullable=False),
        sa.Column('idempotency_key', sa.String(), nullable=False),
        sa.Column('asaas_payment_id', sa.String(), nullable=True),
        sa.Column('asaas_subscription_id', sa.String(), nullable=True),
        sa.Column('asaas_customer_id', sa.String(), nullable=True),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('processing_error', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', name='uq_webhook_events_idempotency_key')
    )
    op.create_index(op.f('ix_webhook_events_provider'), 'webhook_events', ['provider'], unique=False)
    op.create_index(op.f('ix_webhook_events_event'), 'webhook_events', ['event'], unique=False)
    op.create_index(op.f('ix_webhook_events_asaas_payment_id'), 'webhook_events', ['asaas_payment_id'], unique=False)
    op.create_index(op.f('ix_webhook_events_processed'), 'webhook_events', ['processed'], unique=False)
    op.create_index(op.f('ix_webhook_events_created_at'), 'webhook_events', ['created_at'], unique=False)

    op.create_table(
        'usage_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('credits_used', sa.Integer(), nullable=False),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_usage_logs_user_id'), 'usage_logs', ['user_id'], unique=False)
    op.create_index(op.f('ix_usage_logs_action'), 'usage_logs', ['action'], unique=False)
    op.create_index(op.f('ix_usage_logs_created_at'), 'usage_logs', ['created_at'], unique=False)
    op.create_index('idx_usage_logs_user_action_created', 'usage_logs', ['user_id', 'action', 'created_at'], unique=False)

    op.create_table(
        'system_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('level', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.Column('extra_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('stack', sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_system_logs_level'), 'system_logs', ['level'], unique=False)
    op.create_index(op.f('ix_system_logs_user_id'), 'system_logs', ['user_id'], unique=False)
    op.create_index(op.f('ix_system_logs_created_at'), 'system_logs', ['created_at'], unique=False)


def downgrade():
    """Drop every table in reverse dependency order"""
    for table in (
        'system_logs',
        'usage_logs',
        'webhook_events',
        'credit_transactions',
        'credit_purchases',
        'payments',
        'photo_packages',
        'collections',
        'video_generations',
        'edit_history',
        'generations',
        'ai_models',
        'user_consents',
        'api_keys',
        'users',
    ):
        op.drop_table(table)
