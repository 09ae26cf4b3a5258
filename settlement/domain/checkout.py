import calendar
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Tuple


def to_minor_units(amount) -> int:
    """Convert a currency amount to integer cents."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class LineItem:
    name: str
    unit_amount: int
    quantity: int
    description: Optional[str] = None


@dataclass(frozen=True)
class CheckoutRequest:
    """Gateway-agnostic description of a hosted checkout session."""
    order_id: int
    currency: str
    line_items: Tuple[LineItem, ...]
    success_url: str
    cancel_url: str
    expires_at: datetime
    metadata: Dict[str, str] = field(default_factory=dict)
    collect_shipping_address: bool = False

    @property
    def amount_total(self) -> int:
        return sum(item.unit_amount * item.quantity for item in self.line_items)

    def to_payload(self) -> dict:
        return {
            "mode": "payment",
            "currency": self.currency,
            "line_items": [
                {
                    "name": item.name,
                    "description": item.description,
                    "unit_amount": item.unit_amount,
                    "quantity": item.quantity,
                }
                for item in self.line_items
            ],
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
            "expires_at": calendar.timegm(self.expires_at.timetuple()),
            "metadata": dict(self.metadata),
            "client_reference_id": str(self.order_id),
            "shipping_address_collection": self.collect_shipping_address,
        }


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


@dataclass(frozen=True)
class CheckoutResult:
    order_id: int
    redirect_url: str
    session_id: Optional[str] = None
