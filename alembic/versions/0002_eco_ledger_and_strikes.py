"""eco_ledger_strikes_reviews_and_payment_events

Revision ID: 0002_eco_ledger
Revises: 0001_init

"""
from alembic import op
import sqlalchemy as sa

revision = '0002_eco_ledger'
down_revision = '0001_init'
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'eco_ledger_entries',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, nullable=False),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('action_type', sa.String(30), nullable=False),
        sa.Column('co2_saved', sa.Numeric(10,2), nullable=False),
        sa.Column('water_saved', sa.Numeric(12,2), nullable=False),
        sa.Column('credits_earned', sa.Integer, nullable=False),
        sa.Column('credits_spent', sa.Integer, nullable=False),
        sa.Column('resulting_balance', sa.Integer, nullable=False),
        sa.Column('description', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_eco_ledger_entries_user_id', 'eco_ledger_entries', ['user_id'])
    op.create_index('ix_eco_ledger_entries_created_at', 'eco_ledger_entries', ['created_at'])
    op.create_index('idx_eco_ledger_user_created', 'eco_ledger_entries', ['user_id', 'created_at'])

    # Cached running totals per user, rebuilt from the ledger on demand
    op.create_table(
        'eco_accounts',
        sa.Column('user_id', sa.Integer, primary_key=True, autoincrement=False),
        sa.Column('total_co2_saved', sa.Numeric(12,2), nullable=False),
        sa.Column('total_water_saved', sa.Numeric(14,2), nullable=False),
        sa.Column('eco_credits', sa.Integer, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )

    op.create_table(
        'user_strikes',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, nullable=False),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('strike_type', sa.String(30), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('expires_at', sa.DateTime, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False),
        sa.Column('issued_by', sa.Integer, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_user_strikes_user_id', 'user_strikes', ['user_id'])

    op.create_table(
        'order_reviews',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('reviewer_id', sa.Integer, nullable=False),
        sa.Column('reviewed_id', sa.Integer, nullable=False),
        sa.Column('rating', sa.Integer, nullable=False),
        sa.Column('comment', sa.Text, nullable=True),
        sa.Column('is_anonymous', sa.Boolean, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('order_id', 'reviewer_id', name='uq_order_reviews_order_reviewer'),
    )
    op.create_index('ix_order_reviews_order_id', 'order_reviews', ['order_id'])
    op.create_index('ix_order_reviews_reviewed_id', 'order_reviews', ['reviewed_id'])

    op.create_table(
        'payment_events',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('event_id', sa.String(255), nullable=False, unique=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('order_id', sa.Integer, nullable=True),
        sa.Column('outcome', sa.String(30), nullable=False),
        sa.Column('received_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_payment_events_order_id', 'payment_events', ['order_id'])

def downgrade():
    op.drop_table('payment_events')
    op.drop_table('order_reviews')
    op.drop_table('user_strikes')
    op.drop_table('eco_accounts')
    op.drop_table('eco_ledger_entries')
