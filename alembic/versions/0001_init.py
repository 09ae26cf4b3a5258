from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'listings',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('seller_id', sa.Integer, nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('price', sa.Numeric(10,2), nullable=False),
        sa.Column('quantity_available', sa.Integer, nullable=False),
        sa.Column('shipping_cost', sa.Numeric(10,2), nullable=False),
        sa.Column('pickup_address', sa.String(500), nullable=True),
        sa.Column('pickup_instructions', sa.Text, nullable=True),
        sa.Column('is_dutch_auction', sa.Boolean, nullable=False),
        sa.Column('dutch_start_price', sa.Numeric(10,2), nullable=True),
        sa.Column('dutch_decrease_amount', sa.Numeric(10,2), nullable=True),
        sa.Column('dutch_decrease_hours', sa.Integer, nullable=True),
        sa.Column('dutch_min_price', sa.Numeric(10,2), nullable=True),
        sa.Column('dutch_started_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_listings_seller_id', 'listings', ['seller_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_number', sa.String(50), nullable=False),
        sa.Column('buyer_id', sa.Integer, nullable=False),
        sa.Column('seller_id', sa.Integer, nullable=False),
        sa.Column('product_id', sa.Integer, nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(10,2), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(10,2), nullable=False),
        sa.Column('total_amount', sa.Numeric(10,2), nullable=False),
        sa.Column('platform_fee', sa.Numeric(10,2), nullable=False),
        sa.Column('gateway_fee', sa.Numeric(10,2), nullable=False),
        sa.Column('seller_payout', sa.Numeric(10,2), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('delivery_type', sa.String(30), nullable=False),
        sa.Column('pickup_location_id', sa.Integer, nullable=True),
        sa.Column('pickup_address', sa.String(500), nullable=True),
        sa.Column('pickup_instructions', sa.Text, nullable=True),
        sa.Column('pickup_deadline', sa.DateTime, nullable=True),
        sa.Column('pickup_code', sa.String(64), nullable=True, unique=True),
        sa.Column('pickup_code_expires_at', sa.DateTime, nullable=True),
        sa.Column('pickup_scanned_at', sa.DateTime, nullable=True),
        sa.Column('shipping_address', sa.String(500), nullable=True),
        sa.Column('shipping_city', sa.String(100), nullable=True),
        sa.Column('shipping_province', sa.String(100), nullable=True),
        sa.Column('shipping_postal_code', sa.String(20), nullable=True),
        sa.Column('shipping_country', sa.String(2), nullable=True),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('tracking_url', sa.String(500), nullable=True),
        sa.Column('shipping_carrier', sa.String(100), nullable=True),
        sa.Column('shipped_at', sa.DateTime, nullable=True),
        sa.Column('delivered_at', sa.DateTime, nullable=True),
        sa.Column('checkout_session_id', sa.String(255), nullable=True, unique=True),
        sa.Column('payment_intent_id', sa.String(255), nullable=True),
        sa.Column('paid_at', sa.DateTime, nullable=True),
        sa.Column('payout_scheduled_at', sa.DateTime, nullable=True),
        sa.Column('payout_completed_at', sa.DateTime, nullable=True),
        sa.Column('payout_hold_reason', sa.String(50), nullable=True),
        sa.Column('co2_saved', sa.Numeric(10,2), nullable=False),
        sa.Column('water_saved', sa.Numeric(12,2), nullable=False),
        sa.Column('eco_credits_buyer', sa.Integer, nullable=False),
        sa.Column('eco_credits_seller', sa.Integer, nullable=False),
        sa.Column('impact_granted_at', sa.DateTime, nullable=True),
        sa.Column('buyer_notes', sa.Text, nullable=True),
        sa.Column('seller_notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.Column('cancelled_at', sa.DateTime, nullable=True),
        sa.Column('cancelled_by', sa.Integer, nullable=True),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
    op.create_index('ix_orders_seller_id', 'orders', ['seller_id'])
    op.create_index('ix_orders_product_id', 'orders', ['product_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])

    op.create_table(
        'disputes',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('opened_by', sa.Integer, nullable=False),
        sa.Column('reason', sa.String(30), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('evidence_urls', sa.JSON, nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('order_status_before', sa.String(30), nullable=False),
        sa.Column('seller_response', sa.Text, nullable=True),
        sa.Column('seller_evidence_urls', sa.JSON, nullable=False),
        sa.Column('seller_response_at', sa.DateTime, nullable=True),
        sa.Column('seller_response_deadline', sa.DateTime, nullable=False),
        sa.Column('admin_review_deadline', sa.DateTime, nullable=True),
        sa.Column('resolution_notes', sa.Text, nullable=True),
        sa.Column('refund_amount', sa.Numeric(10,2), nullable=True),
        sa.Column('seller_payout_amount', sa.Numeric(10,2), nullable=True),
        sa.Column('resolved_by', sa.Integer, nullable=True),
        sa.Column('resolved_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_disputes_order_id', 'disputes', ['order_id'])
    op.create_index('ix_disputes_status', 'disputes', ['status'])

def downgrade():
    op.drop_table('disputes')
    op.drop_table('orders')
    op.drop_table('listings')
