"""Checkout construction and payment webhook reconciliation.

Webhooks are verified against the shared secret before any field is read.
Each event id is recorded in ``payment_events``; on top of that, effects are
only applied while the order is still PENDING, so a redelivered or
re-issued event is a no-op.
"""

import calendar
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement.core_settings import Settings
from settlement.domain.checkout import CheckoutRequest, CheckoutResult, LineItem, to_minor_units
from settlement.domain.clock import Clock, utcnow
from settlement.domain.enums import DeliveryType, OrderStatus, PaymentEventOutcome
from settlement.domain.errors import CheckoutUnavailable, InvalidSignature, InvalidTransition, NotFound, ValidationError
from settlement.domain.models import Listing, Order, PaymentEvent
from settlement.infrastructure.gateway import PaymentGatewayError
from shared.core import get_logger

from .order_store import OrderPatch, OrderStore

logger = get_logger(__name__)

FREE_GIFT_REFERENCE = "FREE_GIFT"

EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVENT_CHECKOUT_EXPIRED = "checkout.session.expired"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"


def sign_payload(secret: str, payload: bytes, timestamp: int) -> str:
    """Signature header value for ``payload``: ``t=<unix>,v1=<hex hmac-sha256>``."""
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _parse_signature_header(header: str):
    timestamp, signatures = None, []
    for part in (header or "").split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


@dataclass
class CallbackResult:
    event_id: Optional[str]
    event_type: str
    outcome: PaymentEventOutcome
    order_id: Optional[int] = None
    # Order snapshot to notify buyer and seller about, set when an order was just paid
    paid_order: Optional[Dict[str, Any]] = field(default=None, repr=False)


def order_snapshot(order: Order) -> Dict[str, Any]:
    """Plain data copy of an order, safe to hand to a background thread."""
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "buyer_id": order.buyer_id,
        "seller_id": order.seller_id,
        "product_id": order.product_id,
        "quantity": order.quantity,
        "total_amount": str(order.total_amount),
        "seller_payout": str(order.seller_payout),
        "delivery_type": order.delivery_type.value,
        "pickup_deadline": order.pickup_deadline.isoformat() if order.pickup_deadline else None,
    }


class PaymentReconciler:
    def __init__(self, db: Session, store: OrderStore, settings: Settings, gateway,
                 clock: Clock = utcnow):
        self.db = db
        self.store = store
        self.settings = settings
        self.gateway = gateway
        self.clock = clock

    # Checkout

    def success_url(self, order: Order) -> str:
        return f"{self.settings.FRONTEND_URL.rstrip('/')}/orders/{order.id}/success"

    def cancel_url(self, order: Order) -> str:
        return f"{self.settings.FRONTEND_URL.rstrip('/')}/orders/{order.id}/cancel"

    def build_checkout_request(self, order: Order, listing: Listing) -> CheckoutRequest:
        items = [LineItem(
            name=listing.title,
            description=(listing.description or "")[:500] or None,
            unit_amount=to_minor_units(order.unit_price),
            quantity=order.quantity,
        )]
        if order.shipping_cost and order.shipping_cost > 0:
            items.append(LineItem(name="Shipping", unit_amount=to_minor_units(order.shipping_cost), quantity=1))

        return CheckoutRequest(
            order_id=order.id,
            currency=self.settings.CURRENCY,
            line_items=tuple(items),
            success_url=self.success_url(order) + "?session_id={CHECKOUT_SESSION_ID}",
            cancel_url=self.cancel_url(order),
            expires_at=self.clock() + timedelta(minutes=self.settings.CHECKOUT_TTL_MINUTES),
            metadata={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "buyer_id": str(order.buyer_id),
                "seller_id": str(order.seller_id),
                "product_id": str(order.product_id),
            },
            collect_shipping_address=order.delivery_type == DeliveryType.SELLER_SHIPS,
        )

    def settle_free_order(self, order: Order) -> CheckoutResult:
        """Gifts skip the gateway and are paid on the spot."""
        if order.total_amount != 0:
            raise ValidationError("Only zero-total orders can be settled without payment", order_id=order.id)
        self.store.transition(
            order,
            OrderStatus.PAID,
            patch=OrderPatch(payment_intent_id=FREE_GIFT_REFERENCE),
            sources={OrderStatus.PENDING},
        )
        return CheckoutResult(order_id=order.id, redirect_url=self.success_url(order))

    def open_checkout(self, order: Order, listing: Listing) -> CheckoutResult:
        """Call the gateway for a PENDING order.

        Runs outside any transaction: the order is already committed, so a
        gateway failure leaves it PENDING and the caller can retry.
        """
        if order.status != OrderStatus.PENDING:
            raise InvalidTransition(order.status, OrderStatus.PAID)
        request = self.build_checkout_request(order, listing)
        try:
            session = self.gateway.create_checkout_session(request)
        except PaymentGatewayError as e:
            logger.error(
                f"Checkout unavailable for order {order.order_number}",
                extra={"extra_fields": {"order_id": order.id, "error": str(e)}},
            )
            raise CheckoutUnavailable(order_id=order.id) from e
        return CheckoutResult(order_id=order.id, redirect_url=session.url, session_id=session.session_id)

    def record_session(self, order: Order, session_id: str) -> None:
        self.store.apply(order, OrderPatch(checkout_session_id=session_id), expected_status=OrderStatus.PENDING)

    # Webhooks

    def verify_signature(self, payload: bytes, header: Optional[str]) -> None:
        secret = self.settings.PAYMENT_WEBHOOK_SECRET
        if not secret:
            logger.error("Webhook rejected: no webhook secret configured")
            raise InvalidSignature()
        timestamp, signatures = _parse_signature_header(header)
        if timestamp is None or not signatures:
            raise InvalidSignature("Missing or malformed signature header")
        try:
            signed_at = int(timestamp)
        except ValueError:
            raise InvalidSignature("Malformed signature timestamp")

        now = calendar.timegm(self.clock().timetuple())
        if abs(now - signed_at) > self.settings.WEBHOOK_TOLERANCE_SECONDS:
            raise InvalidSignature("Signature timestamp outside the tolerance window")

        expected = sign_payload(secret, payload, signed_at).split("v1=", 1)[1]
        if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            raise InvalidSignature()

    def handle_callback(self, payload: bytes, signature: Optional[str]) -> CallbackResult:
        self.verify_signature(payload, signature)
        try:
            event = json.loads(payload)
        except ValueError:
            raise ValidationError("Webhook payload is not valid JSON")

        if not isinstance(event, dict):
            raise ValidationError("Webhook payload must be a JSON object")

        event_id = event.get("id")
        event_type = event.get("type") or "unknown"
        if event_id:
            seen = self.db.execute(
                select(PaymentEvent).where(PaymentEvent.event_id == event_id)
            ).scalar_one_or_none()
            if seen is not None:
                logger.info(
                    f"Duplicate webhook {event_id} ignored",
                    extra={"extra_fields": {"event_id": event_id, "event_type": event_type}},
                )
                return CallbackResult(event_id, event_type, PaymentEventOutcome.DUPLICATE, seen.order_id)

        data = event.get("data") or {}
        session = (data.get("object") or {}) if isinstance(data, dict) else None
        if not isinstance(session, dict):
            raise ValidationError("Webhook event data must be a JSON object", event_id=event_id)
        if event_type == EVENT_CHECKOUT_COMPLETED:
            result = self._on_completed(event_id, session)
        elif event_type == EVENT_CHECKOUT_EXPIRED:
            result = self._on_expired(event_id, session)
        elif event_type == EVENT_PAYMENT_FAILED:
            logger.warning(
                "Payment failed at the gateway",
                extra={"extra_fields": {"event_id": event_id, "payment_intent": session.get("id")}},
            )
            result = CallbackResult(event_id, event_type, PaymentEventOutcome.IGNORED)
        else:
            result = CallbackResult(event_id, event_type, PaymentEventOutcome.IGNORED)

        if event_id:
            self.db.add(PaymentEvent(
                event_id=event_id,
                event_type=event_type,
                order_id=result.order_id,
                outcome=result.outcome,
                received_at=self.clock(),
            ))
            self.db.flush()
        return result

    def _find_order(self, session: Dict[str, Any]) -> Optional[Order]:
        metadata = session.get("metadata") or {}
        order_id = metadata.get("order_id")
        if order_id is not None:
            try:
                return self.store.get(int(order_id), for_update=True)
            except (ValueError, NotFound):
                pass
        if session.get("id"):
            return self.store.find_by_checkout_session(session["id"])
        return None

    @staticmethod
    def _is_stale_session(order: Order, session: Dict[str, Any]) -> bool:
        """True when the event names a checkout session other than the order's current one."""
        session_id = session.get("id")
        return bool(session_id and order.checkout_session_id and session_id != order.checkout_session_id)

    def _on_completed(self, event_id: Optional[str], session: Dict[str, Any]) -> CallbackResult:
        order = self._find_order(session)
        if order is None:
            logger.warning("Completed checkout for unknown order", extra={"extra_fields": {"event_id": event_id}})
            return CallbackResult(event_id, EVENT_CHECKOUT_COMPLETED, PaymentEventOutcome.IGNORED)
        if order.status != OrderStatus.PENDING:
            return CallbackResult(event_id, EVENT_CHECKOUT_COMPLETED, PaymentEventOutcome.DUPLICATE, order.id)

        patch = OrderPatch().set_if("payment_intent_id", session.get("payment_intent"))
        if self._is_stale_session(order, session):
            # Paid on an earlier session that a retry superseded; the money is real, keep it
            logger.warning(
                f"Order {order.order_number} paid on superseded checkout session",
                extra={"extra_fields": {"order_id": order.id, "session_id": session["id"],
                                        "current_session_id": order.checkout_session_id}},
            )
        if session.get("id"):
            patch.set("checkout_session_id", session["id"])
        try:
            self.store.transition(order, OrderStatus.PAID, patch=patch, sources={OrderStatus.PENDING})
        except InvalidTransition:
            # A concurrent delivery paid the order between our read and our update
            return CallbackResult(event_id, EVENT_CHECKOUT_COMPLETED, PaymentEventOutcome.DUPLICATE, order.id)
        logger.info(
            f"Order {order.order_number} paid",
            extra={"extra_fields": {"order_id": order.id, "event_id": event_id}},
        )
        return CallbackResult(event_id, EVENT_CHECKOUT_COMPLETED, PaymentEventOutcome.APPLIED,
                              order.id, paid_order=order_snapshot(order))

    def _on_expired(self, event_id: Optional[str], session: Dict[str, Any]) -> CallbackResult:
        order = self._find_order(session)
        if order is None or order.status != OrderStatus.PENDING:
            return CallbackResult(event_id, EVENT_CHECKOUT_EXPIRED, PaymentEventOutcome.IGNORED,
                                  order.id if order else None)
        if self._is_stale_session(order, session):
            logger.info(
                f"Expiry of superseded checkout session for order {order.order_number} ignored",
                extra={"extra_fields": {"order_id": order.id, "session_id": session["id"],
                                        "current_session_id": order.checkout_session_id}},
            )
            return CallbackResult(event_id, EVENT_CHECKOUT_EXPIRED, PaymentEventOutcome.IGNORED, order.id)
        self.store.cancel(order, cancelled_by=None, reason="Checkout session expired")
        return CallbackResult(event_id, EVENT_CHECKOUT_EXPIRED, PaymentEventOutcome.APPLIED, order.id)

