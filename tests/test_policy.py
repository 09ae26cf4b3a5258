from types import SimpleNamespace

import pytest

from settlement.domain.enums import OrderStatus
from settlement.domain.errors import Forbidden
from settlement.domain.policy import Actor, OrderAction, permitted_actions, require, require_admin

from conftest import ADMIN, BUYER, OTHER, SELLER


def order(status=OrderStatus.PAID):
    return SimpleNamespace(id=7, buyer_id=BUYER.user_id, seller_id=SELLER.user_id, status=status)


def test_buyer_cannot_see_pickup_address_before_paying():
    assert OrderAction.VIEW_PICKUP_ADDRESS not in permitted_actions(BUYER, order(OrderStatus.PENDING))
    assert OrderAction.VIEW_PICKUP_ADDRESS in permitted_actions(BUYER, order(OrderStatus.PAID))


def test_only_buyer_sees_pickup_code():
    assert OrderAction.VIEW_PICKUP_CODE in permitted_actions(BUYER, order())
    assert OrderAction.VIEW_PICKUP_CODE not in permitted_actions(SELLER, order())
    assert OrderAction.VIEW_PICKUP_CODE not in permitted_actions(ADMIN, order())


def test_seller_confirms_pickup_and_buyer_does_not():
    assert OrderAction.CONFIRM_PICKUP in permitted_actions(SELLER, order())
    assert OrderAction.CONFIRM_PICKUP not in permitted_actions(BUYER, order())


def test_stranger_gets_nothing():
    assert permitted_actions(OTHER, order()) == frozenset()


def test_inactive_account_gets_nothing():
    inactive_buyer = Actor(user_id=BUYER.user_id, is_active=False)
    assert permitted_actions(inactive_buyer, order()) == frozenset()


def test_only_admin_forces_status_and_resolves_disputes():
    assert OrderAction.FORCE_STATUS in permitted_actions(ADMIN, order())
    assert OrderAction.RESOLVE_DISPUTE in permitted_actions(ADMIN, order())
    assert OrderAction.FORCE_STATUS not in permitted_actions(SELLER, order())


def test_require_raises_forbidden_with_context():
    with pytest.raises(Forbidden) as exc:
        require(OTHER, order(), OrderAction.VIEW)
    assert exc.value.to_dict()["action"] == "VIEW"
    assert exc.value.status_code == 403


def test_require_admin():
    require_admin(ADMIN)
    with pytest.raises(Forbidden):
        require_admin(SELLER)
