"""Pickup codes and shipment tracking."""

import secrets
from datetime import timedelta
from typing import Optional

from settlement.core_settings import Settings
from settlement.domain.clock import Clock, utcnow
from settlement.domain.enums import DeliveryType, OrderStatus
from settlement.domain.errors import InvalidOrExpiredCode, InvalidTransition, ValidationError
from settlement.domain.models import Order
from settlement.domain.policy import Actor, OrderAction, require
from shared.core import get_logger

from .order_store import OrderPatch, OrderStore

logger = get_logger(__name__)

CONFIRMABLE = frozenset({OrderStatus.PAID, OrderStatus.READY_FOR_PICKUP})
TRACKABLE = frozenset({OrderStatus.PAID, OrderStatus.PROCESSING})


def generate_pickup_code() -> str:
    return secrets.token_hex(32)


class FulfillmentVerifier:
    def __init__(self, store: OrderStore, settings: Settings, clock: Clock = utcnow):
        self.store = store
        self.settings = settings
        self.clock = clock

    def issue_pickup_code(self, order: Order) -> None:
        """Stamp a fresh code, its expiry and the pickup deadline on a new order."""
        now = self.clock()
        order.pickup_code = generate_pickup_code()
        order.pickup_code_expires_at = now + timedelta(days=self.settings.PICKUP_CODE_TTL_DAYS)
        order.pickup_deadline = now + timedelta(days=self.settings.PICKUP_DEADLINE_DAYS)

    def confirm_pickup(self, actor: Actor, code: str) -> Order:
        if not code:
            raise InvalidOrExpiredCode()
        order = self.store.find_by_pickup_code(code)
        if order is None:
            raise InvalidOrExpiredCode()
        require(actor, order, OrderAction.CONFIRM_PICKUP)

        now = self.clock()
        if (order.status not in CONFIRMABLE
                or order.pickup_code_expires_at is None
                or now >= order.pickup_code_expires_at):
            raise InvalidOrExpiredCode(order_id=order.id, status=order.status.value)

        self.store.transition(
            order,
            OrderStatus.DELIVERED,
            patch=OrderPatch(pickup_scanned_at=now),
            sources=CONFIRMABLE,
        )
        logger.info(
            f"Pickup confirmed for order {order.order_number}",
            extra={"extra_fields": {"order_id": order.id, "confirmed_by": actor.user_id}},
        )
        return order

    def update_tracking(self, actor: Actor, order: Order, tracking_number: str,
                        tracking_url: Optional[str] = None, carrier: Optional[str] = None) -> Order:
        require(actor, order, OrderAction.UPDATE_TRACKING)
        if order.delivery_type == DeliveryType.PICKUP:
            raise ValidationError("Pickup orders have no shipment tracking", order_id=order.id)
        if not tracking_number or not tracking_number.strip():
            raise ValidationError("Tracking number is required")
        if order.status not in TRACKABLE:
            raise InvalidTransition(order.status, OrderStatus.SHIPPED)

        patch = (
            OrderPatch(tracking_number=tracking_number.strip())
            .set_if("tracking_url", tracking_url)
            .set_if("shipping_carrier", carrier)
        )
        return self.store.transition(order, OrderStatus.SHIPPED, patch=patch, sources=TRACKABLE)

    def pickup_pass(self, actor: Actor, order: Order) -> dict:
        """The buyer's view of the code to show at pickup."""
        require(actor, order, OrderAction.VIEW_PICKUP_CODE)
        if order.delivery_type != DeliveryType.PICKUP:
            raise ValidationError("Order is not a pickup order", order_id=order.id)
        if order.status not in CONFIRMABLE:
            raise ValidationError(
                "Pickup code is only available for paid orders awaiting pickup",
                order_id=order.id,
                status=order.status.value,
            )
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "pickup_code": order.pickup_code,
            "expires_at": order.pickup_code_expires_at,
            "pickup_address": order.pickup_address,
            "pickup_instructions": order.pickup_instructions,
            "pickup_deadline": order.pickup_deadline,
        }
