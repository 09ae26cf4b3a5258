"""Pricing, fee and impact arithmetic.

Pure functions only: nothing here touches the database or the clock, the
caller passes ``now`` in. Money is ``Decimal`` throughout and rounded to
cents with ROUND_HALF_UP.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")
DEFAULT_DECREASE_AMOUNT = Decimal("1.00")
DEFAULT_DECREASE_HOURS = 24
DEFAULT_FLOOR = Decimal("0")


def round_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class DutchAuction:
    start_price: Optional[Decimal]
    started_at: Optional[datetime]
    decrease_amount: Optional[Decimal] = None
    decrease_hours: Optional[int] = None
    min_price: Optional[Decimal] = None


def auction_for(listing) -> Optional[DutchAuction]:
    """Auction parameters of a listing, or None when it sells at a fixed price."""
    if not listing.is_dutch_auction:
        return None
    return DutchAuction(
        start_price=listing.dutch_start_price,
        started_at=listing.dutch_started_at,
        decrease_amount=listing.dutch_decrease_amount,
        decrease_hours=listing.dutch_decrease_hours,
        min_price=listing.dutch_min_price,
    )


def current_price(listing_price, auction: Optional[DutchAuction], now: datetime) -> Decimal:
    """Effective unit price at ``now``.

    The price drops by ``decrease_amount`` once per completed interval since
    the auction started and never goes below the floor.
    """
    listing_price = round_money(listing_price)
    if auction is None or auction.started_at is None or auction.start_price is None:
        return listing_price

    hours = auction.decrease_hours if auction.decrease_hours and auction.decrease_hours > 0 else DEFAULT_DECREASE_HOURS
    decrease = auction.decrease_amount if auction.decrease_amount is not None else DEFAULT_DECREASE_AMOUNT
    floor = auction.min_price if auction.min_price is not None else DEFAULT_FLOOR

    elapsed_hours = max(int((now - auction.started_at).total_seconds() // 3600), 0)
    intervals = elapsed_hours // hours

    price = Decimal(auction.start_price) - intervals * Decimal(decrease)
    if price < floor:
        price = Decimal(floor)
    return round_money(price)


@dataclass(frozen=True)
class FeeBreakdown:
    total: Decimal
    platform_fee: Decimal
    gateway_fee: Decimal
    seller_payout: Decimal


def compute_fees(total, platform_rate, gateway_rate, gateway_fixed) -> FeeBreakdown:
    total = round_money(total)
    platform_fee = round_money(total * Decimal(platform_rate))
    gateway_fee = round_money(total * Decimal(gateway_rate) + Decimal(gateway_fixed))
    if total == 0:
        # Gifts never reach the gateway so nothing is charged on them
        platform_fee = gateway_fee = Decimal("0.00")
    # Payout is the remainder so the three parts always add up to the total
    return FeeBreakdown(
        total=total,
        platform_fee=platform_fee,
        gateway_fee=gateway_fee,
        seller_payout=total - platform_fee - gateway_fee,
    )


@dataclass(frozen=True)
class EcoImpact:
    co2_kg: Decimal
    water_l: Decimal
    buyer_credits: int
    seller_credits: int


def estimate_impact(quantity: int, total, co2_per_item, water_per_item,
                    buyer_credits_per_unit: int, seller_credits_per_unit: int) -> EcoImpact:
    total = Decimal(total)
    return EcoImpact(
        co2_kg=round_money(Decimal(co2_per_item) * quantity),
        water_l=round_money(Decimal(water_per_item) * quantity),
        buyer_credits=int(total * buyer_credits_per_unit),
        seller_credits=int(total * seller_credits_per_unit),
    )
