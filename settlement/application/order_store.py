"""Order persistence and the order status state machine.

All writes to an existing order go through ``OrderPatch`` + ``OrderStore.apply``:
one UPDATE statement touching only the supplied columns, optionally guarded
by the status the caller expects the order to be in.
"""

from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from settlement.core_settings import Settings
from settlement.domain.clock import Clock, utcnow
from settlement.domain.enums import ImpactAction, OrderStatus
from settlement.domain.errors import InvalidTransition, NotFound
from settlement.domain.models import Order
from settlement.infrastructure.catalog import SqlCatalog
from shared.core import get_logger

from .ledger import EcoLedger

logger = get_logger(__name__)

# Seller/admin driven moves; every other non-admin move is rejected
TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PAID: frozenset({OrderStatus.PROCESSING, OrderStatus.READY_FOR_PICKUP, OrderStatus.SHIPPED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.READY_FOR_PICKUP, OrderStatus.SHIPPED}),
    OrderStatus.READY_FOR_PICKUP: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
}

CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.PAID})

PAGE_SIZE_DEFAULT = 20
PAGE_SIZE_MAX = 50

_ORDER_COLUMNS = frozenset(column.key for column in Order.__table__.columns)
_FROZEN_COLUMNS = frozenset({
    "id", "order_number", "buyer_id", "seller_id", "product_id", "quantity",
    "unit_price", "shipping_cost", "total_amount", "platform_fee", "gateway_fee",
    "seller_payout", "co2_saved", "water_saved", "eco_credits_buyer",
    "eco_credits_seller", "created_at",
})


def is_allowed(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class OrderPatch:
    """Set of column/value pairs for one partial update of an order."""

    def __init__(self, **values: Any):
        self._values: Dict[str, Any] = {}
        for field, value in values.items():
            self.set(field, value)

    def set(self, field: str, value: Any) -> "OrderPatch":
        if field not in _ORDER_COLUMNS:
            raise ValueError(f"Unknown order field: {field}")
        if field in _FROZEN_COLUMNS:
            raise ValueError(f"Order field is immutable: {field}")
        self._values[field] = value
        return self

    def set_if(self, field: str, value: Any) -> "OrderPatch":
        """Set ``field`` only when a value was supplied."""
        if value is not None:
            self.set(field, value)
        return self

    def merge(self, other: Optional["OrderPatch"]) -> "OrderPatch":
        if other is not None:
            for field, value in other.values().items():
                self.set(field, value)
        return self

    def get(self, field: str, default: Any = None) -> Any:
        return self._values.get(field, default)

    def __contains__(self, field: str) -> bool:
        return field in self._values

    def values(self) -> Dict[str, Any]:
        return dict(self._values)

    def is_empty(self) -> bool:
        return not self._values


class OrderStore:
    def __init__(self, db: Session, settings: Settings, catalog: SqlCatalog,
                 ledger: EcoLedger, clock: Clock = utcnow):
        self.db = db
        self.settings = settings
        self.catalog = catalog
        self.ledger = ledger
        self.clock = clock

    # Reads

    def get(self, order_id: int, for_update: bool = False) -> Order:
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        order = self.db.execute(stmt).scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found", order_id=order_id)
        return order

    def find_by_pickup_code(self, code: str) -> Optional[Order]:
        return self.db.execute(
            select(Order).where(Order.pickup_code == code).with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def find_by_checkout_session(self, session_id: str) -> Optional[Order]:
        return self.db.execute(
            select(Order).where(Order.checkout_session_id == session_id).with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def list_orders(self, *, buyer_id: Optional[int] = None, seller_id: Optional[int] = None,
                    status: Optional[OrderStatus] = None, page: int = 1,
                    per_page: int = PAGE_SIZE_DEFAULT) -> Tuple[List[Order], int, int, int]:
        """Newest first; returns (orders, total, page, per_page)."""
        page = page if page and page > 0 else 1
        if not per_page or per_page < 1 or per_page > PAGE_SIZE_MAX:
            per_page = PAGE_SIZE_DEFAULT

        conditions = []
        if buyer_id is not None:
            conditions.append(Order.buyer_id == buyer_id)
        if seller_id is not None:
            conditions.append(Order.seller_id == seller_id)
        if status is not None:
            conditions.append(Order.status == status)

        total = self.db.execute(
            select(func.count()).select_from(Order).where(*conditions)
        ).scalar_one()
        orders = self.db.execute(
            select(Order).where(*conditions)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * per_page).limit(per_page)
        ).scalars().all()
        return list(orders), total, page, per_page

    # Writes

    def next_order_number(self) -> str:
        """Generate an order number in format ORD-YYYY-NNNNN"""
        year = self.clock().year
        count = self.db.execute(
            select(func.count()).select_from(Order).where(Order.order_number.like(f"ORD-{year}-%"))
        ).scalar_one()
        return f"ORD-{year}-{(count + 1):05d}"

    def add(self, order: Order) -> Order:
        now = self.clock()
        order.order_number = order.order_number or self.next_order_number()
        order.created_at = now
        order.updated_at = now
        self.db.add(order)
        self.db.flush()  # assign id
        return order

    def apply(self, order: Order, patch: OrderPatch,
              expected_status: Optional[OrderStatus] = None) -> bool:
        """Write ``patch`` in one UPDATE; False when the status guard did not match."""
        if patch.is_empty():
            return True
        values = patch.values()
        values["updated_at"] = self.clock()

        stmt = update(Order).where(Order.id == order.id)
        if expected_status is not None:
            stmt = stmt.where(Order.status == expected_status)
        result = self.db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        self.db.refresh(order)
        return result.rowcount == 1

    def transition(self, order: Order, target: OrderStatus, *, patch: Optional[OrderPatch] = None,
                   sources: Optional[Iterable[OrderStatus]] = None, force: bool = False) -> Order:
        """Move ``order`` to ``target`` and run the target's side effects.

        ``sources`` replaces the transition table for workflow-specific moves
        (payment, pickup confirmation, disputes). ``force`` skips both and is
        reserved for admins.
        """
        current = order.status
        if target == current:
            raise InvalidTransition(current, target)
        if not force:
            allowed = current in frozenset(sources) if sources is not None else is_allowed(current, target)
            if not allowed:
                raise InvalidTransition(current, target)

        now = self.clock()
        was_paid = order.paid_at is not None
        change = OrderPatch(status=target).merge(patch)
        if target == OrderStatus.PAID and not was_paid:
            change.set("paid_at", now)
        elif target == OrderStatus.SHIPPED and order.shipped_at is None:
            change.set("shipped_at", now)
        elif target == OrderStatus.DELIVERED:
            if order.delivered_at is None:
                change.set("delivered_at", now)
            if order.payout_scheduled_at is None:
                change.set("payout_scheduled_at", now + timedelta(hours=self.settings.PAYOUT_DELAY_HOURS))
        elif target == OrderStatus.COMPLETED and order.completed_at is None:
            change.set("completed_at", now)
        elif target == OrderStatus.CANCELLED and "cancelled_at" not in change:
            change.set("cancelled_at", now)

        if not self.apply(order, change, expected_status=current):
            # Someone else moved the order first
            raise InvalidTransition(order.status, target)

        if target == OrderStatus.PAID and not was_paid:
            self._take_stock(order)
        if target == OrderStatus.COMPLETED:
            self._grant_impact(order)

        logger.info(
            f"Order {order.order_number} moved {current.value} -> {target.value}",
            extra={"extra_fields": {"order_id": order.id, "from": current.value, "to": target.value, "forced": force}},
        )
        return order

    def cancel(self, order: Order, *, cancelled_by: Optional[int], reason: Optional[str]) -> Order:
        if order.status not in CANCELLABLE:
            raise InvalidTransition(order.status, OrderStatus.CANCELLED)
        patch = OrderPatch(cancelled_by=cancelled_by, cancellation_reason=reason)
        return self.transition(order, OrderStatus.CANCELLED, patch=patch, sources=CANCELLABLE)

    def _take_stock(self, order: Order) -> None:
        movement = self.catalog.decrement_available(order.product_id, order.quantity)
        if movement.shortfall:
            # Paid but the catalog could not cover it, hold payout until an admin sorts it out
            self.apply(order, OrderPatch(payout_hold_reason="STOCK_SHORTFALL"))

    def _grant_impact(self, order: Order) -> None:
        if order.impact_granted_at is not None:
            return
        gift = order.total_amount == 0
        self.ledger.append(
            order.buyer_id,
            ImpactAction.GIFT_RECEIVED if gift else ImpactAction.PURCHASE,
            co2=order.co2_saved,
            water=order.water_saved,
            earned=order.eco_credits_buyer,
            order_id=order.id,
            description=f"Order {order.order_number}",
        )
        self.ledger.append(
            order.seller_id,
            ImpactAction.GIFT_GIVEN if gift else ImpactAction.SALE,
            co2=order.co2_saved,
            water=order.water_saved,
            earned=order.eco_credits_seller,
            order_id=order.id,
            description=f"Order {order.order_number}",
        )
        self.apply(order, OrderPatch(impact_granted_at=self.clock()))

