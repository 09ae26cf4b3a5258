from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from settlement.domain.enums import (
    DeliveryType,
    DisputeReason,
    DisputeStatus,
    ImpactAction,
    LeaderboardPeriod,
    OrderStatus,
    PaymentEventOutcome,
    RewardType,
    StrikeType,
)

# Orders

class OrderCreate(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)
    delivery_type: DeliveryType = DeliveryType.PICKUP
    pickup_location_id: Optional[int] = None
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_province: Optional[str] = None
    shipping_postal_code: Optional[str] = None
    shipping_country: Optional[str] = Field(None, max_length=2)
    buyer_notes: Optional[str] = None

class OrderRead(BaseModel):
    id: int
    order_number: str
    buyer_id: int
    seller_id: int
    product_id: int
    quantity: int
    unit_price: float
    shipping_cost: float
    total_amount: float
    platform_fee: float
    gateway_fee: float
    seller_payout: float
    status: OrderStatus
    delivery_type: DeliveryType
    pickup_location_id: Optional[int] = None
    # Redacted per viewer (None when hidden)
    pickup_address: Optional[str] = None
    pickup_instructions: Optional[str] = None
    pickup_code: Optional[str] = None
    pickup_code_expires_at: Optional[datetime] = None
    pickup_deadline: Optional[datetime] = None
    pickup_scanned_at: Optional[datetime] = None
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_province: Optional[str] = None
    shipping_postal_code: Optional[str] = None
    shipping_country: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    shipping_carrier: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    payout_scheduled_at: Optional[datetime] = None
    payout_hold_reason: Optional[str] = None
    co2_saved: float
    water_saved: float
    eco_credits_buyer: int
    eco_credits_seller: int
    buyer_notes: Optional[str] = None
    seller_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    cancellation_reason: Optional[str] = None

class CheckoutRead(BaseModel):
    order: OrderRead
    checkout_url: Optional[str] = None
    session_id: Optional[str] = None

class OrderPage(BaseModel):
    orders: list[OrderRead]
    total: int
    page: int
    per_page: int
    total_pages: int

class StatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    carrier: Optional[str] = None
    seller_notes: Optional[str] = None
    reason: Optional[str] = None

class TrackingUpdate(BaseModel):
    tracking_number: str
    tracking_url: Optional[str] = None
    carrier: Optional[str] = None

class PickupConfirm(BaseModel):
    code: str

class PickupPassRead(BaseModel):
    order_id: int
    order_number: str
    pickup_code: str
    expires_at: datetime
    pickup_address: Optional[str] = None
    pickup_instructions: Optional[str] = None
    pickup_deadline: Optional[datetime] = None

class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)

# Reviews

class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)
    is_anonymous: bool = False

class ReviewRead(BaseModel):
    id: int
    order_id: int
    reviewer_id: Optional[int] = None
    reviewed_id: int
    rating: int
    comment: Optional[str] = None
    is_anonymous: bool
    created_at: datetime

# Disputes

class DisputeCreate(BaseModel):
    reason: DisputeReason
    description: str
    evidence_urls: list[str] = []

class DisputeRespond(BaseModel):
    response: str
    evidence_urls: list[str] = []

class DisputeResolve(BaseModel):
    outcome: DisputeStatus
    refund_amount: Optional[Decimal] = None
    seller_payout_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    strike_party: Optional[Literal["BUYER", "SELLER"]] = None

class DisputeRead(BaseModel):
    id: int
    order_id: int
    opened_by: int
    reason: DisputeReason
    description: str
    evidence_urls: list[str] = []
    status: DisputeStatus
    order_status_before: OrderStatus
    seller_response: Optional[str] = None
    seller_evidence_urls: list[str] = []
    seller_response_at: Optional[datetime] = None
    seller_response_deadline: datetime
    admin_review_deadline: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    refund_amount: Optional[float] = None
    seller_payout_amount: Optional[float] = None
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime
    class Config:
        from_attributes = True

class OverdueDisputeRead(BaseModel):
    dispute_id: int
    order_id: int
    status: DisputeStatus
    overdue: str
    deadline: datetime
    hours_overdue: float

# Eco ledger and leaderboard

class LedgerEntryRead(BaseModel):
    id: int
    user_id: int
    order_id: Optional[int] = None
    action_type: ImpactAction
    co2_saved: float
    water_saved: float
    credits_earned: int
    credits_spent: int
    resulting_balance: int
    description: Optional[str] = None
    created_at: datetime
    class Config:
        from_attributes = True

class LedgerPage(BaseModel):
    entries: list[LedgerEntryRead]
    total: int
    page: int
    per_page: int

class BalanceRead(BaseModel):
    user_id: int
    eco_credits: int
    total_co2_saved: float
    total_water_saved: float
    class Config:
        from_attributes = True

class RedeemRequest(BaseModel):
    reward: RewardType

class RedeemRead(BaseModel):
    reward: RewardType
    cost: int
    entry: LedgerEntryRead
    balance: int

class RewardRead(BaseModel):
    reward: RewardType
    cost: int
    description: str

class LeaderboardEntryRead(BaseModel):
    rank: int
    user_id: int
    total_co2: float
    total_water: float
    total_products_sold: int
    total_orders: int

class LeaderboardRead(BaseModel):
    period: LeaderboardPeriod
    period_start: datetime
    period_end: datetime
    entries: list[LeaderboardEntryRead]

class CommunityStatsRead(BaseModel):
    total_co2_saved: float
    total_water_saved: float
    trees_planted: int
    products_saved: int
    active_users: int

# Strikes and admin

class StrikeCreate(BaseModel):
    user_id: int
    strike_type: StrikeType
    order_id: Optional[int] = None
    description: Optional[str] = None
    expires_in_days: Optional[int] = Field(None, ge=1)

class StrikeRead(BaseModel):
    id: int
    user_id: int
    order_id: Optional[int] = None
    strike_type: StrikeType
    description: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool
    created_at: datetime
    class Config:
        from_attributes = True

class EligibilityRead(BaseModel):
    user_id: int
    can_order: bool
    active_strikes: int
    threshold: int

class CreditAdjust(BaseModel):
    delta: int
    reason: str = Field(..., min_length=3)

class RestockRequest(BaseModel):
    amount: int = Field(..., ge=1)

class ListingStockRead(BaseModel):
    id: int
    quantity_available: int
    class Config:
        from_attributes = True

class LedgerCheckRead(BaseModel):
    user_id: int
    ledger_credits: int
    cached_credits: int
    ledger_co2: float
    cached_co2: float
    ledger_water: float
    cached_water: float
    consistent: bool

# Webhooks

class WebhookAck(BaseModel):
    received: bool = True
    event_type: str
    outcome: PaymentEventOutcome
