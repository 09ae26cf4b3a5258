import pytest

from settlement.domain.enums import DeliveryType, OrderStatus
from settlement.domain.errors import Forbidden, InvalidOrExpiredCode, ValidationError

from conftest import BUYER, SELLER

SHIPPING = {
    "delivery_type": DeliveryType.SELLER_SHIPS,
    "shipping_address": "Calle Mayor 5",
    "shipping_city": "Madrid",
    "shipping_postal_code": "28013",
    "shipping_country": "ES",
}


@pytest.fixture
def paid_pickup(service, place_order, pay):
    order_id = place_order()
    pay(order_id)
    return service.store.get(order_id)


def test_pickup_code_is_unguessable(paid_pickup):
    assert len(paid_pickup.pickup_code) == 64
    int(paid_pickup.pickup_code, 16)


def test_confirm_pickup_delivers_once(service, paid_pickup, clock):
    code = paid_pickup.pickup_code
    view = service.confirm_pickup(SELLER, code)
    assert view["status"] == OrderStatus.DELIVERED
    assert view["pickup_scanned_at"] == clock()
    assert view["payout_scheduled_at"] is not None

    with pytest.raises(InvalidOrExpiredCode):
        service.confirm_pickup(SELLER, code)


def test_expired_code_is_rejected(service, paid_pickup, clock):
    clock.advance(days=7)
    with pytest.raises(InvalidOrExpiredCode):
        service.confirm_pickup(SELLER, paid_pickup.pickup_code)
    assert service.store.get(paid_pickup.id).status == OrderStatus.PAID


def test_unpaid_order_code_is_rejected(service, place_order):
    order = service.store.get(place_order())
    with pytest.raises(InvalidOrExpiredCode):
        service.confirm_pickup(SELLER, order.pickup_code)


def test_unknown_code_is_rejected(service):
    with pytest.raises(InvalidOrExpiredCode):
        service.confirm_pickup(SELLER, "0" * 64)


def test_buyer_cannot_confirm_own_pickup(service, paid_pickup):
    with pytest.raises(Forbidden):
        service.confirm_pickup(BUYER, paid_pickup.pickup_code)


def test_pickup_pass_is_for_the_buyer_only(service, paid_pickup):
    pass_ = service.pickup_pass(BUYER, paid_pickup.id)
    assert pass_["pickup_code"] == paid_pickup.pickup_code
    assert pass_["pickup_address"] == "Carrer de Mallorca 12, Barcelona"
    with pytest.raises(Forbidden):
        service.pickup_pass(SELLER, paid_pickup.id)


def test_views_redact_code_and_address(service, place_order, pay):
    order_id = place_order()
    pending = service.get_order(BUYER, order_id)
    assert pending["pickup_address"] is None
    assert pending["pickup_code"] is not None

    pay(order_id)
    assert service.get_order(BUYER, order_id)["pickup_address"] is not None
    seller_view = service.get_order(SELLER, order_id)
    assert seller_view["pickup_code"] is None
    assert seller_view["pickup_address"] is not None


def test_tracking_ships_the_order(service, place_order, pay, clock):
    order_id = place_order(**SHIPPING)
    pay(order_id)
    view = service.update_tracking(SELLER, order_id, " 1Z999 ", "https://track.test/1Z999", "UPS")
    assert view["status"] == OrderStatus.SHIPPED
    assert view["tracking_number"] == "1Z999"
    assert view["shipping_carrier"] == "UPS"
    assert view["shipped_at"] == clock()


def test_tracking_needs_a_number_and_a_shipped_order(service, place_order, paid_pickup, pay):
    with pytest.raises(ValidationError):
        service.update_tracking(SELLER, paid_pickup.id, "1Z999")

    order_id = place_order(**SHIPPING)
    pay(order_id)
    with pytest.raises(ValidationError):
        service.update_tracking(SELLER, order_id, "   ")
