"""Who may do what to an order.

``permitted_actions`` is the single place that compares an actor with an
order's buyer and seller. Operations ask it one question and raise
``Forbidden`` when the answer is no; status validity is checked separately
by the order store.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet

from .enums import OrderStatus
from .errors import Forbidden


@dataclass(frozen=True)
class Actor:
    user_id: int
    is_admin: bool = False
    is_active: bool = True


class OrderAction(str, Enum):
    VIEW = "VIEW"
    VIEW_PICKUP_ADDRESS = "VIEW_PICKUP_ADDRESS"
    VIEW_PICKUP_CODE = "VIEW_PICKUP_CODE"
    PAY = "PAY"
    UPDATE_STATUS = "UPDATE_STATUS"
    FORCE_STATUS = "FORCE_STATUS"
    UPDATE_TRACKING = "UPDATE_TRACKING"
    CONFIRM_PICKUP = "CONFIRM_PICKUP"
    CANCEL = "CANCEL"
    OPEN_DISPUTE = "OPEN_DISPUTE"
    VIEW_DISPUTE = "VIEW_DISPUTE"
    RESPOND_DISPUTE = "RESPOND_DISPUTE"
    RESOLVE_DISPUTE = "RESOLVE_DISPUTE"
    REVIEW = "REVIEW"


BUYER_ACTIONS = frozenset({
    OrderAction.VIEW,
    OrderAction.VIEW_PICKUP_ADDRESS,
    OrderAction.VIEW_PICKUP_CODE,
    OrderAction.PAY,
    OrderAction.CANCEL,
    OrderAction.OPEN_DISPUTE,
    OrderAction.VIEW_DISPUTE,
    OrderAction.REVIEW,
})

SELLER_ACTIONS = frozenset({
    OrderAction.VIEW,
    OrderAction.VIEW_PICKUP_ADDRESS,
    OrderAction.UPDATE_STATUS,
    OrderAction.UPDATE_TRACKING,
    OrderAction.CONFIRM_PICKUP,
    OrderAction.CANCEL,
    OrderAction.VIEW_DISPUTE,
    OrderAction.RESPOND_DISPUTE,
    OrderAction.REVIEW,
})

ADMIN_ACTIONS = frozenset({
    OrderAction.VIEW,
    OrderAction.VIEW_PICKUP_ADDRESS,
    OrderAction.UPDATE_STATUS,
    OrderAction.FORCE_STATUS,
    OrderAction.UPDATE_TRACKING,
    OrderAction.CONFIRM_PICKUP,
    OrderAction.CANCEL,
    OrderAction.VIEW_DISPUTE,
    OrderAction.RESOLVE_DISPUTE,
})


def permitted_actions(actor: Actor, order) -> FrozenSet[OrderAction]:
    if not actor.is_active:
        return frozenset()

    actions = set()
    if actor.user_id == order.buyer_id:
        actions |= BUYER_ACTIONS
        # The pickup address is only revealed once the buyer has paid
        if order.status == OrderStatus.PENDING:
            actions.discard(OrderAction.VIEW_PICKUP_ADDRESS)
    if actor.user_id == order.seller_id:
        actions |= SELLER_ACTIONS
    if actor.is_admin:
        actions |= ADMIN_ACTIONS
    return frozenset(actions)


def require(actor: Actor, order, action: OrderAction) -> None:
    if action not in permitted_actions(actor, order):
        raise Forbidden(
            f"Not allowed to {action.value.lower().replace('_', ' ')} on this order",
            order_id=order.id,
            action=action.value,
        )


def require_active(actor: Actor) -> None:
    if not actor.is_active:
        raise Forbidden("Account is inactive")


def require_admin(actor: Actor) -> None:
    require_active(actor)
    if not actor.is_admin:
        raise Forbidden("Admin access required")
