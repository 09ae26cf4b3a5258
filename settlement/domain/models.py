from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, Text, ForeignKey, Numeric, DateTime, Boolean, Integer, JSON, Enum as SAEnum, UniqueConstraint, Index
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .clock import utcnow
from .enums import (
    OrderStatus,
    DeliveryType,
    DisputeReason,
    DisputeStatus,
    ImpactAction,
    StrikeType,
    PaymentEventOutcome,
)

def _enum(enum_cls):
    return SAEnum(enum_cls, native_enum=False, length=30)

class Base(DeclarativeBase):
    pass

class Listing(Base):
    """Catalog-owned product row; the core only reads it and moves its stock counter."""
    __tablename__ = "listings"
    id: Mapped[int] = mapped_column(primary_key=True)
    # Store seller_id as integer (no FK - users live in the identity service)
    seller_id: Mapped[int] = mapped_column(index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10,2))
    quantity_available: Mapped[int] = mapped_column(Integer, default=1)
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(10,2), default=Decimal("0"))
    pickup_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    pickup_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Dutch auction parameters
    is_dutch_auction: Mapped[bool] = mapped_column(Boolean, default=False)
    dutch_start_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10,2), nullable=True)
    dutch_decrease_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10,2), nullable=True)
    dutch_decrease_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    dutch_min_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10,2), nullable=True)
    dutch_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    buyer_id: Mapped[int] = mapped_column(index=True)
    seller_id: Mapped[int] = mapped_column(index=True)
    product_id: Mapped[int] = mapped_column(index=True)
    quantity: Mapped[int]
    # Money snapshot, frozen at creation
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10,2))
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(10,2), default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10,2))
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10,2))
    gateway_fee: Mapped[Decimal] = mapped_column(Numeric(10,2))
    seller_payout: Mapped[Decimal] = mapped_column(Numeric(10,2))
    status: Mapped[OrderStatus] = mapped_column(_enum(OrderStatus), default=OrderStatus.PENDING, index=True)
    delivery_type: Mapped[DeliveryType] = mapped_column(_enum(DeliveryType))
    # Pickup
    pickup_location_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    pickup_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    pickup_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pickup_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    pickup_code: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    pickup_code_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    pickup_scanned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Shipping
    shipping_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    shipping_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipping_province: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipping_postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    shipping_country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tracking_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    shipping_carrier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Payment
    checkout_session_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    payout_scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    payout_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    payout_hold_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # Eco impact snapshot, computed once at creation
    co2_saved: Mapped[Decimal] = mapped_column(Numeric(10,2), default=Decimal("0"))
    water_saved: Mapped[Decimal] = mapped_column(Numeric(12,2), default=Decimal("0"))
    eco_credits_buyer: Mapped[int] = mapped_column(Integer, default=0)
    eco_credits_seller: Mapped[int] = mapped_column(Integer, default=0)
    impact_granted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    buyer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    seller_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_by: Mapped[Optional[int]] = mapped_column(nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    disputes: Mapped[list["Dispute"]] = relationship("Dispute", back_populates="order", cascade="all, delete-orphan")

class Dispute(Base):
    __tablename__ = "disputes"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)
    opened_by: Mapped[int]
    reason: Mapped[DisputeReason] = mapped_column(_enum(DisputeReason))
    description: Mapped[str] = mapped_column(Text)
    evidence_urls: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[DisputeStatus] = mapped_column(_enum(DisputeStatus), default=DisputeStatus.OPEN, index=True)
    # Order status at the time the dispute was opened, restored when it is closed
    order_status_before: Mapped[OrderStatus] = mapped_column(_enum(OrderStatus))
    seller_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    seller_evidence_urls: Mapped[list] = mapped_column(JSON, default=list)
    seller_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    seller_response_deadline: Mapped[datetime] = mapped_column(DateTime)
    admin_review_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10,2), nullable=True)
    seller_payout_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10,2), nullable=True)
    resolved_by: Mapped[Optional[int]] = mapped_column(nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    order: Mapped[Order] = relationship("Order", back_populates="disputes")

class EcoLedgerEntry(Base):
    """Append-only; rows are never updated or deleted."""
    __tablename__ = "eco_ledger_entries"
    __table_args__ = (
        Index("idx_eco_ledger_user_created", "user_id", "created_at"),
    )
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(index=True)
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey("orders.id"), nullable=True)
    action_type: Mapped[ImpactAction] = mapped_column(_enum(ImpactAction))
    co2_saved: Mapped[Decimal] = mapped_column(Numeric(10,2), default=Decimal("0"))
    water_saved: Mapped[Decimal] = mapped_column(Numeric(12,2), default=Decimal("0"))
    credits_earned: Mapped[int] = mapped_column(Integer, default=0)
    credits_spent: Mapped[int] = mapped_column(Integer, default=0)
    resulting_balance: Mapped[int] = mapped_column(Integer)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

class EcoAccount(Base):
    """Cached per-user totals, equal to the fold of the user's ledger entries."""
    __tablename__ = "eco_accounts"
    user_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    total_co2_saved: Mapped[Decimal] = mapped_column(Numeric(12,2), default=Decimal("0"))
    total_water_saved: Mapped[Decimal] = mapped_column(Numeric(14,2), default=Decimal("0"))
    eco_credits: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

class UserStrike(Base):
    __tablename__ = "user_strikes"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(index=True)
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey("orders.id"), nullable=True)
    strike_type: Mapped[StrikeType] = mapped_column(_enum(StrikeType))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    issued_by: Mapped[Optional[int]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

class OrderReview(Base):
    __tablename__ = "order_reviews"
    __table_args__ = (
        UniqueConstraint("order_id", "reviewer_id", name="uq_order_reviews_order_reviewer"),
    )
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)
    reviewer_id: Mapped[int]
    reviewed_id: Mapped[int] = mapped_column(index=True)
    rating: Mapped[int]
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

class PaymentEvent(Base):
    """One row per gateway webhook event id; a second delivery finds its row and is a no-op."""
    __tablename__ = "payment_events"
    id: Mapped[int] = mapped_column(primary_key=True)
    event_id: Mapped[str] = mapped_column(String(255), unique=True)
    event_type: Mapped[str] = mapped_column(String(100))
    order_id: Mapped[Optional[int]] = mapped_column(nullable=True, index=True)
    outcome: Mapped[PaymentEventOutcome] = mapped_column(_enum(PaymentEventOutcome))
    received_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
