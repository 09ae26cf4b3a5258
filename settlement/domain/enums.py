from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PROCESSING = "PROCESSING"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    SHIPPED = "SHIPPED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"
    REFUNDED = "REFUNDED"


class DeliveryType(str, Enum):
    PICKUP = "PICKUP"
    SELLER_SHIPS = "SELLER_SHIPS"
    BUYER_ARRANGES = "BUYER_ARRANGES"


class DisputeReason(str, Enum):
    ITEM_NOT_RECEIVED = "ITEM_NOT_RECEIVED"
    ITEM_DAMAGED = "ITEM_DAMAGED"
    ITEM_NOT_AS_DESCRIBED = "ITEM_NOT_AS_DESCRIBED"
    SELLER_NO_SHOW = "SELLER_NO_SHOW"
    BUYER_NO_SHOW = "BUYER_NO_SHOW"
    SCAM_ATTEMPT = "SCAM_ATTEMPT"
    OTHER = "OTHER"


class DisputeStatus(str, Enum):
    OPEN = "OPEN"
    SELLER_RESPONSE = "SELLER_RESPONSE"
    ADMIN_REVIEW = "ADMIN_REVIEW"
    RESOLVED_REFUND_FULL = "RESOLVED_REFUND_FULL"
    RESOLVED_REFUND_PARTIAL = "RESOLVED_REFUND_PARTIAL"
    RESOLVED_PAYOUT_SELLER = "RESOLVED_PAYOUT_SELLER"
    RESOLVED_SPLIT = "RESOLVED_SPLIT"
    CLOSED = "CLOSED"

    @property
    def is_terminal(self) -> bool:
        return self in DISPUTE_TERMINAL


DISPUTE_TERMINAL = frozenset({
    DisputeStatus.RESOLVED_REFUND_FULL,
    DisputeStatus.RESOLVED_REFUND_PARTIAL,
    DisputeStatus.RESOLVED_PAYOUT_SELLER,
    DisputeStatus.RESOLVED_SPLIT,
    DisputeStatus.CLOSED,
})


class ImpactAction(str, Enum):
    PURCHASE = "PURCHASE"
    SALE = "SALE"
    GIFT_GIVEN = "GIFT_GIVEN"
    GIFT_RECEIVED = "GIFT_RECEIVED"
    FIRST_PURCHASE = "FIRST_PURCHASE"
    FIRST_SALE = "FIRST_SALE"
    PICKUP_BONUS = "PICKUP_BONUS"
    REVIEW_BONUS = "REVIEW_BONUS"
    REFERRAL_BONUS = "REFERRAL_BONUS"
    MILESTONE_BONUS = "MILESTONE_BONUS"
    REDEEM_BOOST = "REDEEM_BOOST"
    REDEEM_TOP_CATEGORY = "REDEEM_TOP_CATEGORY"
    REDEEM_TREE = "REDEEM_TREE"
    REDEEM_BADGE = "REDEEM_BADGE"
    POINTS_EXPIRED = "POINTS_EXPIRED"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"


class RewardType(str, Enum):
    BOOST_24H = "BOOST_24H"
    BOOST_7D = "BOOST_7D"
    TOP_CATEGORY = "TOP_CATEGORY"
    TREE = "TREE"
    BADGE = "BADGE"


# Fixed credit cost and ledger action for every redeemable reward
REWARD_CATALOG = {
    RewardType.BOOST_24H: (100, ImpactAction.REDEEM_BOOST, "Listing boost for 24 hours"),
    RewardType.BOOST_7D: (500, ImpactAction.REDEEM_BOOST, "Listing boost for 7 days"),
    RewardType.TOP_CATEGORY: (200, ImpactAction.REDEEM_TOP_CATEGORY, "Top of category placement"),
    RewardType.TREE: (300, ImpactAction.REDEEM_TREE, "Tree planting pledge"),
    RewardType.BADGE: (150, ImpactAction.REDEEM_BADGE, "Eco badge"),
}


class StrikeType(str, Enum):
    BUYER_NO_SHOW = "BUYER_NO_SHOW"
    SELLER_NO_SHOW = "SELLER_NO_SHOW"
    SCAM_ATTEMPT = "SCAM_ATTEMPT"
    ABUSE = "ABUSE"
    DISPUTE_LOST = "DISPUTE_LOST"


class LeaderboardPeriod(str, Enum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    ALLTIME = "ALLTIME"


class PaymentEventOutcome(str, Enum):
    APPLIED = "APPLIED"
    DUPLICATE = "DUPLICATE"
    IGNORED = "IGNORED"
