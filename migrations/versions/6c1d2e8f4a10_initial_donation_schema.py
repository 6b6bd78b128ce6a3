"""initial donation schema

Revision ID: 6c1d2e8f4a10
Revises:
Create Date: 2026-10-19 10:12:41.208315

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '6c1d2e8f4a10'
down_revision = None
branch_labels = None
depends_on = None


CAMPAIGN_PROGRESS_VIEW = """
CREATE OR REPLACE VIEW campaign_progress AS
SELECT
    campaign_id,
    COALESCE(SUM(amount), 0) AS confirmed_total,
    COUNT(*) AS confirmed_count
FROM donations
WHERE campaign_id IS NOT NULL
  AND status IN ('confirmed', 'confirmado')
GROUP BY campaign_id
"""


def upgrade():
    op.create_table('projects',
        sa.Column('id', sa.String(length=100), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('goal_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('campaigns',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('goal_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )
    op.create_table('donations',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('campaign_id', sa.String(length=36), nullable=True),
        sa.Column('project_id', sa.String(length=100), nullable=True),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=False),
        sa.Column('provider_order_id', sa.String(length=64), nullable=True),
        sa.Column('provider_capture_id', sa.String(length=64), nullable=True),
        sa.Column('donor_name', sa.String(length=255), nullable=True),
        sa.Column('donor_email', sa.String(length=255), nullable=True),
        sa.Column('is_anonymous', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_donations_campaign_id', 'donations', ['campaign_id'])
    op.create_index('ix_donations_status', 'donations', ['status'])
    op.create_index('ix_donations_provider_order_id', 'donations', ['provider_order_id'])
    op.create_index('ix_donations_provider_capture_id', 'donations', ['provider_capture_id'])

    op.create_table('webhook_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('provider_event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=255), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_event_id')
    )

    # Precomputed totals for GET /api/public/campaigns (PostgreSQL only;
    # other backends fall back to aggregating donations on the fly).
    if op.get_bind().dialect.name == 'postgresql':
        op.execute(CAMPAIGN_PROGRESS_VIEW)


def downgrade():
    if op.get_bind().dialect.name == 'postgresql':
        op.execute('DROP VIEW IF EXISTS campaign_progress')
    op.drop_table('webhook_events')
    op.drop_index('ix_donations_provider_capture_id', table_name='donations')
    op.drop_index('ix_donations_provider_order_id', table_name='donations')
    op.drop_index('ix_donations_status', table_name='donations')
    op.drop_index('ix_donations_campaign_id', table_name='donations')
    op.drop_table('donations')
    op.drop_table('campaigns')
    op.drop_table('projects')
