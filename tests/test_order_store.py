from datetime import timedelta
from decimal import Decimal
from itertools import product

import pytest
from sqlalchemy import func, select, update

from settlement.application.order_store import TRANSITIONS, OrderPatch
from settlement.domain.enums import DeliveryType, OrderStatus
from settlement.domain.errors import InvalidTransition
from settlement.domain.models import EcoLedgerEntry, Listing, Order


@pytest.fixture
def store(service):
    return service.store


@pytest.fixture
def raw_order(db, store, make_listing):
    listing = make_listing(quantity=10)

    def _order(status=OrderStatus.PAID, quantity=1, product_id=None):
        order = Order(
            buyer_id=1,
            seller_id=2,
            product_id=product_id or listing.id,
            quantity=quantity,
            unit_price=Decimal("10.00"),
            shipping_cost=Decimal("0.00"),
            total_amount=Decimal("10.00") * quantity,
            platform_fee=Decimal("1.00"),
            gateway_fee=Decimal("0.39"),
            seller_payout=Decimal("8.61"),
            status=status,
            delivery_type=DeliveryType.SELLER_SHIPS,
            co2_saved=Decimal("2.00"),
            water_saved=Decimal("500.00"),
            eco_credits_buyer=100,
            eco_credits_seller=150,
        )
        store.add(order)
        db.commit()
        return order
    return _order


PAIRS = [(current, target) for current, target in product(OrderStatus, OrderStatus) if current != target]


@pytest.mark.parametrize("current,target", PAIRS, ids=[f"{c.value}->{t.value}" for c, t in PAIRS])
def test_transition_table(raw_order, store, current, target):
    order = raw_order(current)
    if target in TRANSITIONS.get(current, frozenset()):
        store.transition(order, target)
        assert order.status == target
    else:
        with pytest.raises(InvalidTransition):
            store.transition(order, target)
        assert order.status == current


def test_same_status_is_rejected_even_when_forced(raw_order, store):
    order = raw_order(OrderStatus.SHIPPED)
    with pytest.raises(InvalidTransition):
        store.transition(order, OrderStatus.SHIPPED, force=True)


def test_force_skips_the_table(raw_order, store):
    order = raw_order(OrderStatus.PAID)
    store.transition(order, OrderStatus.COMPLETED, force=True)
    assert order.status == OrderStatus.COMPLETED
    assert order.completed_at is not None


def test_stale_status_loses_the_race(db, raw_order, store):
    order = raw_order(OrderStatus.PAID)
    db.execute(
        update(Order).where(Order.id == order.id).values(status=OrderStatus.SHIPPED)
        .execution_options(synchronize_session=False)
    )
    assert order.status == OrderStatus.PAID  # in-memory copy is stale
    with pytest.raises(InvalidTransition):
        store.transition(order, OrderStatus.PROCESSING)
    assert order.status == OrderStatus.SHIPPED


def test_delivered_schedules_payout(raw_order, store, clock):
    order = raw_order(OrderStatus.IN_TRANSIT)
    store.transition(order, OrderStatus.DELIVERED)
    assert order.delivered_at == clock()
    assert order.payout_scheduled_at == clock() + timedelta(hours=48)


def test_impact_is_granted_once(db, raw_order, store):
    order = raw_order(OrderStatus.DELIVERED)
    store.transition(order, OrderStatus.COMPLETED)
    store.transition(order, OrderStatus.DELIVERED, force=True)
    store.transition(order, OrderStatus.COMPLETED)

    entries = db.execute(
        select(func.count()).select_from(EcoLedgerEntry).where(EcoLedgerEntry.order_id == order.id)
    ).scalar_one()
    assert entries == 2
    assert order.impact_granted_at is not None


def test_payment_takes_stock(db, raw_order, store):
    order = raw_order(OrderStatus.PENDING, quantity=3)
    store.transition(order, OrderStatus.PAID, sources={OrderStatus.PENDING})
    assert db.get(Listing, order.product_id).quantity_available == 7
    assert order.paid_at is not None
    assert order.payout_hold_reason is None


def test_stock_shortfall_clamps_and_holds_payout(db, store, raw_order, make_listing):
    scarce = make_listing(quantity=1)
    order = raw_order(OrderStatus.PENDING, quantity=3, product_id=scarce.id)
    store.transition(order, OrderStatus.PAID, sources={OrderStatus.PENDING})
    assert db.get(Listing, scarce.id).quantity_available == 0
    assert order.payout_hold_reason == "STOCK_SHORTFALL"


@pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.PAID])
def test_cancel_before_fulfillment(raw_order, store, status):
    order = raw_order(status)
    store.cancel(order, cancelled_by=1, reason="Changed my mind")
    assert order.status == OrderStatus.CANCELLED
    assert order.cancelled_by == 1
    assert order.cancelled_at is not None


def test_cancel_after_shipping_is_rejected(raw_order, store):
    order = raw_order(OrderStatus.SHIPPED)
    with pytest.raises(InvalidTransition):
        store.cancel(order, cancelled_by=1, reason=None)


def test_order_numbers_are_sequential_per_year(raw_order):
    first, second = raw_order(), raw_order()
    assert first.order_number == "ORD-2026-00001"
    assert second.order_number == "ORD-2026-00002"


def test_list_orders_pages_newest_first(raw_order, store, clock):
    created = []
    for _ in range(3):
        created.append(raw_order().id)
        clock.advance(minutes=1)
    orders, total, page, per_page = store.list_orders(buyer_id=1, page=1, per_page=2)
    assert total == 3
    assert [o.id for o in orders] == [created[2], created[1]]

    _, _, _, per_page = store.list_orders(buyer_id=1, per_page=500)
    assert per_page == 20


def test_patch_rejects_frozen_and_unknown_fields():
    with pytest.raises(ValueError):
        OrderPatch(total_amount=Decimal("1.00"))
    with pytest.raises(ValueError):
        OrderPatch(not_a_column=1)
    assert OrderPatch().set_if("tracking_url", None).is_empty()
