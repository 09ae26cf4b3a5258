from datetime import timedelta
from decimal import Decimal
from math import ceil
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.core_settings import Settings
from settlement.domain.checkout import CheckoutResult
from settlement.domain.clock import Clock, utcnow
from settlement.domain.enums import (
    DeliveryType,
    LeaderboardPeriod,
    OrderStatus,
    PaymentEventOutcome,
    REWARD_CATALOG,
    RewardType,
    StrikeType,
)
from settlement.domain.errors import (
    BelowMinimumCharge,
    DuplicateReview,
    InsufficientStock,
    InvalidTransition,
    MissingShippingInfo,
    OrderingSuspended,
    SelfPurchase,
    ValidationError,
)
from settlement.domain.models import Order, OrderReview
from settlement.domain.policy import Actor, OrderAction, permitted_actions, require, require_active, require_admin
from settlement.domain.pricing import auction_for, compute_fees, current_price, estimate_impact, round_money
from settlement.infrastructure.catalog import SqlCatalog
from settlement.infrastructure.db import atomic
from shared.core import get_logger, set_request_context

from .disputes import DisputeWorkflow
from .fulfillment import FulfillmentVerifier
from .leaderboard import Leaderboard, period_window
from .ledger import EcoLedger
from .order_store import OrderPatch, OrderStore
from .payments import CallbackResult, PaymentReconciler, order_snapshot
from .schemas import OrderCreate, StatusUpdate

logger = get_logger(__name__)

REVIEWABLE = frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED})


class OrderService:
    """Entry point for the API: sequences the components inside one unit of work per call."""

    def __init__(self, db: Session, settings: Settings, *, gateway, notifier, dispatcher,
                 clock: Clock = utcnow):
        self.db = db
        self.settings = settings
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.clock = clock
        self.catalog = SqlCatalog(db)
        self.ledger = EcoLedger(db, clock)
        self.store = OrderStore(db, settings, self.catalog, self.ledger, clock)
        self.fulfillment = FulfillmentVerifier(self.store, settings, clock)
        self.disputes = DisputeWorkflow(db, self.store, settings, clock)
        self.payments = PaymentReconciler(db, self.store, settings, gateway, clock)
        self.leaderboard = Leaderboard(db, clock)

    # Views

    def view(self, actor: Actor, order: Order) -> dict:
        """Order as ``actor`` may see it."""
        allowed = permitted_actions(actor, order)
        show_address = OrderAction.VIEW_PICKUP_ADDRESS in allowed
        show_code = OrderAction.VIEW_PICKUP_CODE in allowed
        return {
            "id": order.id,
            "order_number": order.order_number,
            "buyer_id": order.buyer_id,
            "seller_id": order.seller_id,
            "product_id": order.product_id,
            "quantity": order.quantity,
            "unit_price": float(order.unit_price),
            "shipping_cost": float(order.shipping_cost),
            "total_amount": float(order.total_amount),
            "platform_fee": float(order.platform_fee),
            "gateway_fee": float(order.gateway_fee),
            "seller_payout": float(order.seller_payout),
            "status": order.status,
            "delivery_type": order.delivery_type,
            "pickup_location_id": order.pickup_location_id,
            "pickup_address": order.pickup_address if show_address else None,
            "pickup_instructions": order.pickup_instructions if show_address else None,
            "pickup_code": order.pickup_code if show_code else None,
            "pickup_code_expires_at": order.pickup_code_expires_at if show_code else None,
            "pickup_deadline": order.pickup_deadline,
            "pickup_scanned_at": order.pickup_scanned_at,
            "shipping_address": order.shipping_address,
            "shipping_city": order.shipping_city,
            "shipping_province": order.shipping_province,
            "shipping_postal_code": order.shipping_postal_code,
            "shipping_country": order.shipping_country,
            "tracking_number": order.tracking_number,
            "tracking_url": order.tracking_url,
            "shipping_carrier": order.shipping_carrier,
            "shipped_at": order.shipped_at,
            "delivered_at": order.delivered_at,
            "paid_at": order.paid_at,
            "payout_scheduled_at": order.payout_scheduled_at,
            "payout_hold_reason": order.payout_hold_reason,
            "co2_saved": float(order.co2_saved),
            "water_saved": float(order.water_saved),
            "eco_credits_buyer": order.eco_credits_buyer,
            "eco_credits_seller": order.eco_credits_seller,
            "buyer_notes": order.buyer_notes,
            "seller_notes": order.seller_notes,
            "created_at": order.created_at,
            "updated_at": order.updated_at,
            "completed_at": order.completed_at,
            "cancelled_at": order.cancelled_at,
            "cancelled_by": order.cancelled_by,
            "cancellation_reason": order.cancellation_reason,
        }

    def get_order(self, actor: Actor, order_id: int) -> dict:
        require_active(actor)
        order = self.store.get(order_id)
        require(actor, order, OrderAction.VIEW)
        return self.view(actor, order)

    def list_orders(self, actor: Actor, role: str, status: Optional[OrderStatus] = None,
                    page: int = 1, per_page: int = 20) -> dict:
        require_active(actor)
        filters = {"seller_id": actor.user_id} if role == "seller" else {"buyer_id": actor.user_id}
        orders, total, page, per_page = self.store.list_orders(status=status, page=page, per_page=per_page, **filters)
        return {
            "orders": [self.view(actor, order) for order in orders],
            "total": total,
            "page": page,
            "per_page": per_page,
            "total_pages": ceil(total / per_page) if total else 0,
        }

    # Purchase

    def create_order(self, actor: Actor, data: OrderCreate) -> dict:
        require_active(actor)
        set_request_context(user_id=str(actor.user_id))
        if data.delivery_type != DeliveryType.PICKUP and not all(
            (value or "").strip() for value in (data.shipping_address, data.shipping_city, data.shipping_postal_code)
        ):
            raise MissingShippingInfo()

        with atomic(self.db):
            listing = self.catalog.require_listing(data.product_id)
            if listing.seller_id == actor.user_id:
                raise SelfPurchase()
            if not self.disputes.can_user_order(actor.user_id):
                raise OrderingSuspended(
                    active_strikes=self.disputes.active_strike_count(actor.user_id),
                    threshold=self.settings.STRIKE_THRESHOLD,
                )
            if data.quantity > listing.quantity_available:
                raise InsufficientStock(requested=data.quantity, available=listing.quantity_available)

            now = self.clock()
            unit_price = current_price(listing.price, auction_for(listing), now)
            shipping_cost = round_money(listing.shipping_cost or 0) if data.delivery_type == DeliveryType.SELLER_SHIPS else Decimal("0.00")
            total = round_money(unit_price * data.quantity + shipping_cost)
            fees = compute_fees(total, self.settings.PLATFORM_FEE_RATE,
                                self.settings.GATEWAY_FEE_RATE, self.settings.GATEWAY_FEE_FIXED)
            if fees.seller_payout < 0:
                raise BelowMinimumCharge(total=str(fees.total),
                                         fees=str(fees.platform_fee + fees.gateway_fee))
            impact = estimate_impact(data.quantity, total, self.settings.CO2_PER_ITEM_KG,
                                     self.settings.WATER_PER_ITEM_L, self.settings.BUYER_CREDITS_PER_EURO,
                                     self.settings.SELLER_CREDITS_PER_EURO)

            order = Order(
                buyer_id=actor.user_id,
                seller_id=listing.seller_id,
                product_id=listing.id,
                quantity=data.quantity,
                unit_price=unit_price,
                shipping_cost=shipping_cost,
                total_amount=fees.total,
                platform_fee=fees.platform_fee,
                gateway_fee=fees.gateway_fee,
                seller_payout=fees.seller_payout,
                status=OrderStatus.PENDING,
                delivery_type=data.delivery_type,
                co2_saved=impact.co2_kg,
                water_saved=impact.water_l,
                eco_credits_buyer=impact.buyer_credits,
                eco_credits_seller=impact.seller_credits,
                buyer_notes=data.buyer_notes,
            )
            if data.delivery_type == DeliveryType.PICKUP:
                order.pickup_location_id = data.pickup_location_id
                order.pickup_address = listing.pickup_address
                order.pickup_instructions = listing.pickup_instructions
                self.fulfillment.issue_pickup_code(order)
            else:
                order.shipping_address = data.shipping_address
                order.shipping_city = data.shipping_city
                order.shipping_province = data.shipping_province
                order.shipping_postal_code = data.shipping_postal_code
                order.shipping_country = data.shipping_country
            self.store.add(order)

            gift = order.total_amount == 0
            if gift:
                checkout = self.payments.settle_free_order(order)

        set_request_context(order_id=str(order.id))
        logger.info(
            f"Order {order.order_number} created",
            extra={"extra_fields": {
                "order_id": order.id, "product_id": order.product_id, "quantity": order.quantity,
                "total": order.total_amount, "delivery_type": order.delivery_type.value, "gift": gift,
            }},
        )

        if gift:
            self._notify_paid(order_snapshot(order))
        else:
            checkout = self._open_checkout(order, listing)
        return {
            "order": self.view(actor, order),
            "checkout_url": checkout.redirect_url,
            "session_id": checkout.session_id,
        }

    def _open_checkout(self, order: Order, listing) -> CheckoutResult:
        checkout = self.payments.open_checkout(order, listing)
        with atomic(self.db):
            self.payments.record_session(order, checkout.session_id)
        return checkout

    def retry_checkout(self, actor: Actor, order_id: int) -> dict:
        order = self.store.get(order_id)
        require(actor, order, OrderAction.PAY)
        if order.status != OrderStatus.PENDING:
            raise InvalidTransition(order.status, OrderStatus.PAID)
        listing = self.catalog.require_listing(order.product_id)
        # Close the read transaction before calling out to the gateway
        self.db.commit()
        checkout = self._open_checkout(order, listing)
        return {
            "order": self.view(actor, order),
            "checkout_url": checkout.redirect_url,
            "session_id": checkout.session_id,
        }

    # Fulfillment

    def update_status(self, actor: Actor, order_id: int, data: StatusUpdate) -> dict:
        with atomic(self.db):
            order = self.store.get(order_id, for_update=True)
            require(actor, order, OrderAction.UPDATE_STATUS)
            target = data.status

            if order.status == OrderStatus.DISPUTED:
                raise InvalidTransition(order.status, target, "Disputed orders leave DISPUTED through a dispute resolution")
            if target == OrderStatus.CANCELLED:
                return self._cancel(actor, order, data.reason)
            if target == OrderStatus.DISPUTED:
                raise InvalidTransition(order.status, target, "Disputes are opened by the buyer")

            patch = OrderPatch().set_if("seller_notes", data.seller_notes)
            if target == OrderStatus.SHIPPED and data.tracking_number:
                patch.set("tracking_number", data.tracking_number)
                patch.set_if("tracking_url", data.tracking_url)
                patch.set_if("shipping_carrier", data.carrier)

            force = OrderAction.FORCE_STATUS in permitted_actions(actor, order)
            self.store.transition(order, target, patch=patch, force=force)
            return self.view(actor, order)

    def update_tracking(self, actor: Actor, order_id: int, tracking_number: str,
                        tracking_url: Optional[str] = None, carrier: Optional[str] = None) -> dict:
        with atomic(self.db):
            order = self.store.get(order_id, for_update=True)
            self.fulfillment.update_tracking(actor, order, tracking_number, tracking_url, carrier)
            return self.view(actor, order)

    def confirm_pickup(self, actor: Actor, code: str) -> dict:
        require_active(actor)
        with atomic(self.db):
            order = self.fulfillment.confirm_pickup(actor, code)
            return self.view(actor, order)

    def pickup_pass(self, actor: Actor, order_id: int) -> dict:
        order = self.store.get(order_id)
        return self.fulfillment.pickup_pass(actor, order)

    def cancel(self, actor: Actor, order_id: int, reason: Optional[str] = None) -> dict:
        with atomic(self.db):
            order = self.store.get(order_id, for_update=True)
            return self._cancel(actor, order, reason)

    def _cancel(self, actor: Actor, order: Order, reason: Optional[str]) -> dict:
        require(actor, order, OrderAction.CANCEL)
        self.store.cancel(order, cancelled_by=actor.user_id, reason=reason)
        return self.view(actor, order)

    # Disputes

    def open_dispute(self, actor: Actor, order_id: int, reason, description: str, evidence_urls=()):
        with atomic(self.db):
            return self.disputes.open(actor, order_id, reason, description, evidence_urls)

    def get_dispute(self, actor: Actor, dispute_id: int):
        dispute = self.disputes.get(dispute_id)
        require(actor, self.store.get(dispute.order_id), OrderAction.VIEW_DISPUTE)
        return dispute

    def respond_to_dispute(self, actor: Actor, dispute_id: int, response: str, evidence_urls=()):
        with atomic(self.db):
            return self.disputes.respond(actor, dispute_id, response, evidence_urls)

    def start_dispute_review(self, actor: Actor, dispute_id: int):
        with atomic(self.db):
            return self.disputes.start_review(actor, dispute_id)

    def resolve_dispute(self, actor: Actor, dispute_id: int, data):
        with atomic(self.db):
            return self.disputes.resolve(
                actor,
                dispute_id,
                data.outcome,
                refund_amount=data.refund_amount,
                seller_payout_amount=data.seller_payout_amount,
                notes=data.notes,
                strike_party=data.strike_party,
            )

    def overdue_disputes(self, actor: Actor) -> list:
        require_admin(actor)
        return self.disputes.overdue()

    # Reviews

    def create_review(self, actor: Actor, order_id: int, rating: int, comment: Optional[str] = None,
                      is_anonymous: bool = False) -> OrderReview:
        if rating < 1 or rating > 5:
            raise ValidationError("Rating must be between 1 and 5", rating=rating)
        try:
            with atomic(self.db):
                order = self.store.get(order_id)
                require(actor, order, OrderAction.REVIEW)
                if order.status not in REVIEWABLE:
                    raise ValidationError(
                        "Only delivered or completed orders can be reviewed",
                        order_id=order.id,
                        status=order.status.value,
                    )
                existing = self.db.execute(
                    select(OrderReview).where(OrderReview.order_id == order.id,
                                              OrderReview.reviewer_id == actor.user_id)
                ).scalar_one_or_none()
                if existing is not None:
                    raise DuplicateReview(order_id=order.id)
                review = OrderReview(
                    order_id=order.id,
                    reviewer_id=actor.user_id,
                    reviewed_id=order.seller_id if actor.user_id == order.buyer_id else order.buyer_id,
                    rating=rating,
                    comment=comment,
                    is_anonymous=is_anonymous,
                    created_at=self.clock(),
                )
                self.db.add(review)
                self.db.flush()
        except IntegrityError:
            raise DuplicateReview(order_id=order_id)
        return review

    # Payments

    def handle_payment_webhook(self, payload: bytes, signature: Optional[str]) -> CallbackResult:
        try:
            with atomic(self.db):
                result = self.payments.handle_callback(payload, signature)
        except IntegrityError:
            # A concurrent delivery of the same event committed first
            logger.info("Concurrent duplicate webhook ignored")
            return CallbackResult(None, "duplicate", PaymentEventOutcome.DUPLICATE)
        if result.paid_order is not None:
            self._notify_paid(result.paid_order)
        return result

    def _notify_paid(self, snapshot: dict) -> None:
        self.dispatcher.submit(self.notifier.notify_buyer_order_confirmed, snapshot)
        self.dispatcher.submit(self.notifier.notify_seller_new_order, snapshot)

    # Eco credits and leaderboard

    def balance(self, actor: Actor):
        require_active(actor)
        return self.ledger.account(actor.user_id)

    def impact_history(self, actor: Actor, page: int = 1, per_page: int = 20) -> dict:
        require_active(actor)
        entries, total = self.ledger.history(actor.user_id, page, per_page)
        return {"entries": entries, "total": total, "page": max(page, 1), "per_page": min(max(per_page, 1), 100)}

    def redeem(self, actor: Actor, reward: RewardType) -> dict:
        require_active(actor)
        with atomic(self.db):
            entry = self.ledger.redeem(actor.user_id, reward)
        return {"reward": reward, "cost": entry.credits_spent, "entry": entry, "balance": entry.resulting_balance}

    @staticmethod
    def rewards() -> list:
        return [
            {"reward": reward, "cost": cost, "description": label}
            for reward, (cost, _action, label) in REWARD_CATALOG.items()
        ]

    def get_leaderboard(self, period: LeaderboardPeriod, limit: int = 10) -> dict:
        start, end = period_window(period, self.clock())
        return {
            "period": period,
            "period_start": start,
            "period_end": end,
            "entries": self.leaderboard.top(period, limit),
        }

    def get_rank(self, actor: Actor, period: LeaderboardPeriod) -> Optional[dict]:
        require_active(actor)
        return self.leaderboard.rank(actor.user_id, period)

    def community_stats(self) -> dict:
        return self.leaderboard.community_stats()

    # Admin

    def issue_strike(self, actor: Actor, user_id: int, strike_type: StrikeType, *,
                     order_id: Optional[int] = None, description: Optional[str] = None,
                     expires_in_days: Optional[int] = None):
        require_admin(actor)
        expires_at = None
        if expires_in_days:
            expires_at = self.clock() + timedelta(days=expires_in_days)
        with atomic(self.db):
            return self.disputes.issue_strike(user_id, strike_type, order_id=order_id, description=description,
                                              expires_at=expires_at, issued_by=actor.user_id)

    def revoke_strike(self, actor: Actor, strike_id: int):
        require_admin(actor)
        with atomic(self.db):
            return self.disputes.revoke_strike(strike_id)

    def user_strikes(self, actor: Actor, user_id: int) -> list:
        require_admin(actor)
        return self.disputes.strikes(user_id)

    def eligibility(self, actor: Actor, user_id: int) -> dict:
        if actor.user_id != user_id:
            require_admin(actor)
        return {
            "user_id": user_id,
            "can_order": self.disputes.can_user_order(user_id),
            "active_strikes": self.disputes.active_strike_count(user_id),
            "threshold": self.settings.STRIKE_THRESHOLD,
        }

    def adjust_credits(self, actor: Actor, user_id: int, delta: int, reason: str):
        require_admin(actor)
        with atomic(self.db):
            return self.ledger.adjust(user_id, delta, f"{reason} (by admin {actor.user_id})")

    def check_ledger(self, actor: Actor, user_id: int) -> dict:
        require_admin(actor)
        return self.ledger.reconcile(user_id)

    def restock(self, actor: Actor, listing_id: int, amount: int):
        require_admin(actor)
        with atomic(self.db):
            return self.catalog.restock(listing_id, amount)
