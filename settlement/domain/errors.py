"""Domain errors raised by the settlement core.

Every error carries a stable ``code``, the HTTP status the API layer renders
it with, and a context dict with the details a caller needs to react
(current vs. requested status, available stock, ...).
"""

from typing import Any, Dict, Optional


class SettlementError(Exception):
    code = "settlement_error"
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "detail": self.message}
        body.update(self.context)
        return body


# Validation

class ValidationError(SettlementError):
    code = "validation_error"
    status_code = 422
    default_message = "Invalid input"


class MissingShippingInfo(ValidationError):
    code = "missing_shipping_info"
    default_message = "Shipping address, city and postal code are required for shipped orders"


class BelowMinimumCharge(ValidationError):
    code = "below_minimum_charge"
    default_message = "Order total does not cover the processing fees"


class SelfPurchase(ValidationError):
    code = "self_purchase"
    default_message = "You cannot buy your own listing"


# Authorization

class Forbidden(SettlementError):
    code = "forbidden"
    status_code = 403
    default_message = "Not allowed to perform this action"


class OrderingSuspended(Forbidden):
    code = "ordering_suspended"
    default_message = "Ordering is suspended for this account"


class NotFound(SettlementError):
    code = "not_found"
    status_code = 404
    default_message = "Resource not found"


# Conflicts

class Conflict(SettlementError):
    code = "conflict"
    status_code = 409
    default_message = "Request conflicts with the current state"


class InvalidTransition(Conflict):
    code = "invalid_transition"

    def __init__(self, current, requested, message: Optional[str] = None):
        current = getattr(current, "value", current)
        requested = getattr(requested, "value", requested)
        super().__init__(
            message or f"Cannot move from {current} to {requested}",
            current=current,
            requested=requested,
        )


class InsufficientStock(Conflict):
    code = "insufficient_stock"

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Only {available} item(s) available",
            requested=requested,
            available=available,
        )


class InvalidOrExpiredCode(Conflict):
    code = "invalid_or_expired_code"
    default_message = "Pickup code is invalid or has expired"


class DisputeAlreadyOpen(Conflict):
    code = "dispute_already_open"
    default_message = "An active dispute already exists for this order"


class DuplicateReview(Conflict):
    code = "duplicate_review"
    default_message = "You have already reviewed this order"


class InsufficientBalance(Conflict):
    code = "insufficient_balance"

    def __init__(self, required: int, balance: int):
        super().__init__(
            f"Need {required} eco-credits, balance is {balance}",
            required=required,
            balance=balance,
        )


# Payment gateway

class InvalidSignature(SettlementError):
    code = "invalid_signature"
    status_code = 400
    default_message = "Webhook signature verification failed"


class CheckoutUnavailable(SettlementError):
    code = "checkout_unavailable"
    status_code = 502

    def __init__(self, order_id: int, message: Optional[str] = None):
        super().__init__(
            message or "Payment gateway unavailable, retry checkout for this order",
            order_id=order_id,
        )
