"""PracticePanther sync: credentials, coordination state, normalized records.

Revision ID: 0001_practicepanther_sync
Revises:
Create Date: 2026-10-19

Creates:
- oauth_tokens (one active row per provider)
- sync_timestamps, sync_logs (one running row at a time)
- contacts, exchanges, tasks, notes, invoices, expenses, staff_users
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_practicepanther_sync'
down_revision = None
branch_labels = None
depends_on = None

JSONB = postgresql.JSONB(astext_type=sa.Text())
MONEY = sa.Numeric(14, 2)


def _id_column() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False)


def _vendor_record_columns() -> list[sa.Column]:
    return [
        sa.Column('custom_fields', JSONB, nullable=True),
        sa.Column('pp_raw_data', JSONB, nullable=True),
        sa.Column('pp_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pp_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pp_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    ]


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # oauth_tokens
    # ==========================================================================
    op.create_table(
        'oauth_tokens',
        _id_column(),
        sa.Column('provider', sa.String(50), server_default=sa.text("'practicepanther'"), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_type', sa.String(20), server_default=sa.text("'Bearer'"), nullable=False),
        sa.Column('scope', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('TRUE'), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_refreshed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('provider_metadata', JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'uq_oauth_tokens_active_provider',
        'oauth_tokens',
        ['provider'],
        unique=True,
        postgresql_where=sa.text('is_active'),
    )

    # ==========================================================================
    # Sync coordination
    # ==========================================================================
    op.create_table(
        'sync_timestamps',
        _id_column(),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('resource_type'),
    )

    op.create_table(
        'sync_logs',
        _id_column(),
        sa.Column('sync_type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'running'"), nullable=False),
        sa.Column('resources', JSONB, server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('records_processed', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('records_created', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('records_updated', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('records_failed', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('triggered_by', sa.String(255), nullable=True),
        sa.Column('details', JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'uq_sync_logs_single_running',
        'sync_logs',
        ['status'],
        unique=True,
        postgresql_where=sa.text("status = 'running'"),
    )
    op.create_index('idx_sync_logs_started_at', 'sync_logs', ['started_at'])

    # ==========================================================================
    # contacts
    # ==========================================================================
    op.create_table(
        'contacts',
        _id_column(),
        sa.Column('pp_id', sa.String(64), nullable=False),
        sa.Column('first_name', sa.Text(), nullable=True),
        sa.Column('last_name', sa.Text(), nullable=True),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('phone_primary', sa.Text(), nullable=True),
        sa.Column('phone_mobile', sa.Text(), nullable=True),
        sa.Column('phone_work', sa.Text(), nullable=True),
        sa.Column('phone_home', sa.Text(), nullable=True),
        sa.Column('phone_fax', sa.Text(), nullable=True),
        sa.Column('company', sa.Text(), nullable=True),
        sa.Column('is_primary_contact', sa.Boolean(), server_default=sa.text('FALSE'), nullable=False),
        sa.Column('pp_account_ref_id', sa.String(64), nullable=True),
        sa.Column('pp_account_ref_display_name', sa.Text(), nullable=True),
        sa.Column('pp_display_name', sa.Text(), nullable=True),
        sa.Column('pp_first_name', sa.Text(), nullable=True),
        sa.Column('pp_middle_name', sa.Text(), nullable=True),
        sa.Column('pp_last_name', sa.Text(), nullable=True),
        sa.Column('pp_email', sa.Text(), nullable=True),
        sa.Column('pp_phone_mobile', sa.Text(), nullable=True),
        sa.Column('pp_phone_work', sa.Text(), nullable=True),
        sa.Column('pp_notes', sa.Text(), nullable=True),
        sa.Column('pp_custom_field_values', JSONB, nullable=True),
        *_vendor_record_columns(),
        sa.UniqueConstraint('pp_id'),
    )

    # ==========================================================================
    # exchanges (PracticePanther matters)
    # ==========================================================================
    op.create_table(
        'exchanges',
        _id_column(),
        sa.Column('pp_matter_id', sa.String(64), nullable=False),
        sa.Column('exchange_number', sa.Text(), nullable=True),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column('exchange_type', sa.Text(), nullable=True),
        sa.Column('opened_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('identification_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completion_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('statute_of_limitation_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rate', MONEY, nullable=True),
        sa.Column('proceeds', MONEY, nullable=True),
        sa.Column('bank', sa.Text(), nullable=True),
        sa.Column('client_vesting', sa.Text(), nullable=True),
        sa.Column('rel_property_address', sa.Text(), nullable=True),
        sa.Column('rel_property_city', sa.Text(), nullable=True),
        sa.Column('rel_property_state', sa.Text(), nullable=True),
        sa.Column('rel_property_zip', sa.Text(), nullable=True),
        sa.Column('rel_apn', sa.Text(), nullable=True),
        sa.Column('rel_escrow_number', sa.Text(), nullable=True),
        sa.Column('rel_value', MONEY, nullable=True),
        sa.Column('rel_contract_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('close_of_escrow_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('buyer_1_name', sa.Text(), nullable=True),
        sa.Column('buyer_2_name', sa.Text(), nullable=True),
        sa.Column('rep_1_property_address', sa.Text(), nullable=True),
        sa.Column('rep_1_city', sa.Text(), nullable=True),
        sa.Column('rep_1_state', sa.Text(), nullable=True),
        sa.Column('rep_1_zip', sa.Text(), nullable=True),
        sa.Column('rep_1_apn', sa.Text(), nullable=True),
        sa.Column('rep_1_escrow_number', sa.Text(), nullable=True),
        sa.Column('rep_1_value', MONEY, nullable=True),
        sa.Column('rep_1_contract_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rep_1_seller_name', sa.Text(), nullable=True),
        sa.Column('tags', JSONB, nullable=True),
        sa.Column('assigned_to_users', JSONB, nullable=True),
        sa.Column('pp_number', sa.Text(), nullable=True),
        sa.Column('pp_display_name', sa.Text(), nullable=True),
        sa.Column('pp_matter_status', sa.Text(), nullable=True),
        sa.Column('pp_practice_area', sa.Text(), nullable=True),
        sa.Column('pp_responsible_attorney', sa.Text(), nullable=True),
        sa.Column('pp_billing_method', sa.Text(), nullable=True),
        sa.Column('pp_opened_date', sa.Text(), nullable=True),
        sa.Column('pp_closed_date', sa.Text(), nullable=True),
        sa.Column('pp_account_ref_id', sa.String(64), nullable=True),
        sa.Column('pp_account_ref_display_name', sa.Text(), nullable=True),
        sa.Column('pp_custom_field_values', JSONB, nullable=True),
        *_vendor_record_columns(),
        sa.UniqueConstraint('pp_matter_id'),
    )
    op.create_index('idx_exchanges_status', 'exchanges', ['status'])

    # ==========================================================================
    # tasks & notes
    # ==========================================================================
    op.create_table(
        'tasks',
        _id_column(),
        sa.Column('pp_id', sa.String(64), nullable=False),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column('priority', sa.String(20), server_default=sa.text("'medium'"), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pp_status', sa.Text(), nullable=True),
        sa.Column('pp_priority', sa.Text(), nullable=True),
        sa.Column('pp_due_date', sa.Text(), nullable=True),
        sa.Column('pp_matter_ref_id', sa.String(64), nullable=True),
        sa.Column('pp_matter_ref_name', sa.Text(), nullable=True),
        sa.Column('pp_account_ref_id', sa.String(64), nullable=True),
        sa.Column('pp_assigned_to_users', JSONB, nullable=True),
        sa.Column('pp_assigned_to_contacts', JSONB, nullable=True),
        sa.Column('pp_tags', JSONB, nullable=True),
        sa.Column('pp_custom_field_values', JSONB, nullable=True),
        *_vendor_record_columns(),
        sa.UniqueConstraint('pp_id'),
    )
    op.create_index('idx_tasks_pp_matter_ref', 'tasks', ['pp_matter_ref_id'])

    op.create_table(
        'notes',
        _id_column(),
        sa.Column('pp_id', sa.String(64), nullable=False),
        sa.Column('subject', sa.Text(), nullable=True),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('note_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pp_matter_ref_id', sa.String(64), nullable=True),
        sa.Column('pp_matter_ref_name', sa.Text(), nullable=True),
        sa.Column('pp_account_ref_id', sa.String(64), nullable=True),
        sa.Column('pp_account_ref_name', sa.Text(), nullable=True),
        sa.Column('pp_assigned_to_users', JSONB, nullable=True),
        *_vendor_record_columns(),
        sa.UniqueConstraint('pp_id'),
    )

    # ==========================================================================
    # billing
    # ==========================================================================
    op.create_table(
        'invoices',
        _id_column(),
        sa.Column('pp_id', sa.String(64), nullable=False),
        sa.Column('invoice_number', sa.Text(), nullable=True),
        sa.Column('issue_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(20), nullable=True),
        sa.Column('invoice_type', sa.Text(), nullable=True),
        sa.Column('subtotal', MONEY, nullable=True),
        sa.Column('tax', MONEY, nullable=True),
        sa.Column('discount', MONEY, nullable=True),
        sa.Column('total', MONEY, nullable=True),
        sa.Column('total_paid', MONEY, nullable=True),
        sa.Column('total_outstanding', MONEY, nullable=True),
        sa.Column('items_time_entries', JSONB, nullable=True),
        sa.Column('items_expenses', JSONB, nullable=True),
        sa.Column('items_flat_fees', JSONB, nullable=True),
        sa.Column('pp_status', sa.Text(), nullable=True),
        sa.Column('pp_account_ref_id', sa.String(64), nullable=True),
        sa.Column('pp_account_ref_name', sa.Text(), nullable=True),
        sa.Column('pp_matter_ref_id', sa.String(64), nullable=True),
        sa.Column('pp_matter_ref_name', sa.Text(), nullable=True),
        *_vendor_record_columns(),
        sa.UniqueConstraint('pp_id'),
    )

    op.create_table(
        'expenses',
        _id_column(),
        sa.Column('pp_id', sa.String(64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('expense_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('quantity', MONEY, nullable=True),
        sa.Column('price', MONEY, nullable=True),
        sa.Column('amount', MONEY, nullable=True),
        sa.Column('is_billable', sa.Boolean(), server_default=sa.text('FALSE'), nullable=False),
        sa.Column('is_billed', sa.Boolean(), server_default=sa.text('FALSE'), nullable=False),
        sa.Column('private_notes', sa.Text(), nullable=True),
        sa.Column('pp_matter_ref_id', sa.String(64), nullable=True),
        sa.Column('pp_matter_ref_name', sa.Text(), nullable=True),
        sa.Column('pp_account_ref_id', sa.String(64), nullable=True),
        sa.Column('pp_expense_category_name', sa.Text(), nullable=True),
        sa.Column('pp_billed_by_user_name', sa.Text(), nullable=True),
        *_vendor_record_columns(),
        sa.UniqueConstraint('pp_id'),
    )

    # ==========================================================================
    # staff_users
    # ==========================================================================
    op.create_table(
        'staff_users',
        _id_column(),
        sa.Column('pp_id', sa.String(64), nullable=False),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('first_name', sa.Text(), nullable=True),
        sa.Column('last_name', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('TRUE'), nullable=False),
        sa.Column('pp_display_name', sa.Text(), nullable=True),
        sa.Column('pp_middle_name', sa.Text(), nullable=True),
        *_vendor_record_columns(),
        sa.UniqueConstraint('pp_id'),
    )


def downgrade() -> None:
    for table in (
        'staff_users',
        'expenses',
        'invoices',
        'notes',
        'tasks',
        'exchanges',
        'contacts',
    ):
        op.drop_table(table)
    op.drop_index('idx_sync_logs_started_at', table_name='sync_logs')
    op.drop_index('uq_sync_logs_single_running', table_name='sync_logs')
    op.drop_table('sync_logs')
    op.drop_table('sync_timestamps')
    op.drop_index('uq_oauth_tokens_active_provider', table_name='oauth_tokens')
    op.drop_table('oauth_tokens')
