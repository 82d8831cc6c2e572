"""initial schema: identity, branches, feedback, teams, billing

Revision ID: 0001_initial_schema
Revises:
Create Date: 2025-08-12 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated=True):
    cols = [sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)]
    if updated:
        cols.append(sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False))
    return cols


def upgrade():
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_accounts_email', 'accounts', ['email'], unique=True)

    # profiles <-> branches reference each other; the profiles side is added after both exist
    op.create_table(
        'profiles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=20), server_default='user', nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("role IN ('admin','manager','staff','user')", name='ck_profiles_role_valid'),
    )
    op.create_index('ix_profiles_account_id', 'profiles', ['account_id'], unique=True)
    op.create_index('ix_profiles_email', 'profiles', ['email'])
    op.create_index('ix_profiles_branch_id', 'profiles', ['branch_id'])

    op.create_table(
        'branches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('manager_id', sa.Integer(), sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_branches_manager_id', 'branches', ['manager_id'])
    op.create_foreign_key('fk_profiles_branch', 'profiles', 'branches', ['branch_id'], ['id'], ondelete='SET NULL')

    op.create_table(
        'feedback_form_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id', ondelete='CASCADE'), nullable=True, unique=True),
        sa.Column('logo_url', sa.String(length=1024), nullable=True),
        sa.Column('welcome_title', sa.String(length=200), nullable=False),
        sa.Column('welcome_description', sa.String(length=500), nullable=False),
        sa.Column('primary_color', sa.String(length=20), nullable=True),
        sa.Column('background_color', sa.String(length=20), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'feedback_categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('icon', sa.String(length=50), nullable=True),
        sa.Column('color', sa.String(length=20), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('sort_order', sa.Integer(), server_default=sa.text('0'), nullable=False),
        *_timestamps(updated=False),
    )

    op.create_table(
        'feedback',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('feedback_categories.id', ondelete='SET NULL'), nullable=True),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('subject', sa.String(length=200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('priority', sa.String(length=20), server_default='medium', nullable=False),
        sa.Column('is_anonymous', sa.Boolean(), nullable=False),
        sa.Column('assigned_to', sa.Integer(), sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('customer_name', sa.String(length=100), nullable=True),
        sa.Column('customer_email', sa.String(length=254), nullable=True),
        sa.Column('customer_phone', sa.String(length=20), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('rating >= 1 AND rating <= 5', name='ck_feedback_rating_range'),
        sa.CheckConstraint("status IN ('pending','in_progress','resolved','closed')", name='ck_feedback_status_valid'),
        sa.CheckConstraint("priority IN ('low','medium','high','urgent')", name='ck_feedback_priority_valid'),
    )
    op.create_index('ix_feedback_branch_id', 'feedback', ['branch_id'])
    op.create_index('ix_feedback_category_id', 'feedback', ['category_id'])
    op.create_index('ix_feedback_status', 'feedback', ['status'])
    op.create_index('ix_feedback_assigned_to', 'feedback', ['assigned_to'])
    op.create_index('ix_feedback_created_at', 'feedback', ['created_at'])
    op.create_index('ix_feedback_branch_created_at', 'feedback', ['branch_id', 'created_at'])

    op.create_table(
        'feedback_responses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('feedback_id', sa.Integer(), sa.ForeignKey('feedback.id', ondelete='CASCADE'), nullable=False),
        sa.Column('responder_id', sa.Integer(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_internal', sa.Boolean(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index('ix_feedback_responses_feedback_id', 'feedback_responses', ['feedback_id'])

    op.create_table(
        'qr_codes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer(), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id', ondelete='CASCADE'), nullable=True),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('feedback_categories.id', ondelete='SET NULL'), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('qr_code_url', sa.Text(), nullable=False),
        sa.Column('feedback_url', sa.String(length=1024), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_qr_codes_owner_id', 'qr_codes', ['owner_id'])
    op.create_index('ix_qr_codes_branch_id', 'qr_codes', ['branch_id'])

    op.create_table(
        'teams',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('manager_id', sa.Integer(), sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_teams_branch_id', 'teams', ['branch_id'])
    op.create_index('ix_teams_manager_id', 'teams', ['manager_id'])

    op.create_table(
        'team_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('team_id', sa.Integer(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('profile_id', sa.Integer(), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(length=20), server_default='member', nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('team_id', 'profile_id', name='uq_team_members_team_profile'),
    )
    op.create_index('ix_team_members_team_id', 'team_members', ['team_id'])
    op.create_index('ix_team_members_profile_id', 'team_members', ['profile_id'])

    op.create_table(
        'team_invitations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('team_id', sa.Integer(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), server_default='member', nullable=False),
        sa.Column('invited_by', sa.Integer(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('token', sa.String(length=255), nullable=False, unique=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('accepted_member_id', sa.Integer(), sa.ForeignKey('team_members.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('team_id', 'email', name='uq_team_invitations_team_email'),
        sa.CheckConstraint("role IN ('member','lead','admin')", name='ck_team_invitations_role_valid'),
        sa.CheckConstraint("status IN ('pending','accepted','expired')", name='ck_team_invitations_status_valid'),
    )
    op.create_index('ix_team_invitations_team_id', 'team_invitations', ['team_id'])
    op.create_index('ix_team_invitations_email', 'team_invitations', ['email'])

    op.create_table(
        'tasks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('priority', sa.String(length=20), server_default='medium', nullable=False),
        sa.Column('assigned_to', sa.Integer(), sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assigned_by', sa.Integer(), sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('team_id', sa.Integer(), sa.ForeignKey('teams.id', ondelete='SET NULL'), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('pending','in_progress','completed','cancelled')", name='ck_tasks_status_valid'),
    )
    op.create_index('ix_tasks_assigned_to', 'tasks', ['assigned_to'])
    op.create_index('ix_tasks_assigned_by', 'tasks', ['assigned_by'])
    op.create_index('ix_tasks_team_id', 'tasks', ['team_id'])

    op.create_table(
        'subscribers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=64), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=64), nullable=True),
        sa.Column('subscribed', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('subscription_tier', sa.String(length=20), nullable=True),
        sa.Column('subscription_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_subscribers_account_id', 'subscribers', ['account_id'], unique=True)
    op.create_index('ix_subscribers_email', 'subscribers', ['email'], unique=True)
    op.create_index('ix_subscribers_stripe_customer_id', 'subscribers', ['stripe_customer_id'], unique=True)
    op.create_index('ix_subscribers_stripe_subscription_id', 'subscribers', ['stripe_subscription_id'])

    op.create_table(
        'billing_event_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('stripe_event_id', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=80), nullable=False),
        sa.Column('signature_valid', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_billing_event_logs_stripe_event_id', 'billing_event_logs', ['stripe_event_id'], unique=True)
    op.create_index('ix_billing_event_logs_type', 'billing_event_logs', ['type'])

    op.create_table(
        'analytics_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('event_data', sa.JSON(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index('ix_analytics_events_event_type', 'analytics_events', ['event_type'])
    op.create_index('ix_analytics_events_account_id', 'analytics_events', ['account_id'])
    op.create_index('ix_analytics_events_created_at', 'analytics_events', ['created_at'])

    op.create_table(
        'usage_counters',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('feature', sa.String(length=64), nullable=False),
        sa.Column('period', sa.String(length=7), nullable=False),
        sa.Column('used', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('account_id', 'feature', 'period', name='uq_usage_counters_account_feature_period'),
        sa.CheckConstraint('used >= 0', name='ck_usage_counters_used_nonneg'),
    )

    op.create_table(
        'email_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('to_email', sa.String(length=320), nullable=False),
        sa.Column('template', sa.String(length=64), nullable=False),
        sa.Column('subject', sa.String(length=200), nullable=False),
        sa.Column('provider_msg_id', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_email_logs_to_email', 'email_logs', ['to_email'])
    op.create_index('ix_email_logs_provider_msg_id', 'email_logs', ['provider_msg_id'])
    op.create_index('ix_email_logs_status', 'email_logs', ['status'])


def downgrade():
    op.drop_table('email_logs')
    op.drop_table('usage_counters')
    op.drop_table('analytics_events')
    op.drop_table('billing_event_logs')
    op.drop_table('subscribers')
    op.drop_table('tasks')
    op.drop_table('team_invitations')
    op.drop_table('team_members')
    op.drop_table('teams')
    op.drop_table('qr_codes')
    op.drop_table('feedback_responses')
    op.drop_table('feedback')
    op.drop_table('feedback_categories')
    op.drop_table('feedback_form_settings')
    op.drop_constraint('fk_profiles_branch', 'profiles', type_='foreignkey')
    op.drop_table('branches')
    op.drop_table('profiles')
    op.drop_table('accounts')
