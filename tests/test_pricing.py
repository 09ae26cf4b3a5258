from datetime import datetime, timedelta
from decimal import Decimal

from settlement.domain.checkout import to_minor_units
from settlement.domain.pricing import DutchAuction, compute_fees, current_price, estimate_impact, round_money

START = datetime(2026, 3, 1, 9, 0, 0)


def test_fixed_price_ignores_clock():
    assert current_price("12.5", None, START) == Decimal("12.50")


def test_dutch_price_drops_once_per_completed_interval():
    auction = DutchAuction(start_price=Decimal("30.00"), started_at=START,
                           decrease_amount=Decimal("2.50"), decrease_hours=12, min_price=Decimal("20.00"))
    assert current_price("30.00", auction, START + timedelta(hours=11, minutes=59)) == Decimal("30.00")
    assert current_price("30.00", auction, START + timedelta(hours=12)) == Decimal("27.50")
    assert current_price("30.00", auction, START + timedelta(hours=36)) == Decimal("22.50")


def test_dutch_price_never_below_floor():
    auction = DutchAuction(start_price=Decimal("30.00"), started_at=START,
                           decrease_amount=Decimal("2.50"), decrease_hours=12, min_price=Decimal("20.00"))
    assert current_price("30.00", auction, START + timedelta(days=30)) == Decimal("20.00")


def test_dutch_defaults_one_euro_per_day_down_to_zero():
    auction = DutchAuction(start_price=Decimal("3.00"), started_at=START)
    assert current_price("3.00", auction, START + timedelta(days=2)) == Decimal("1.00")
    assert current_price("3.00", auction, START + timedelta(days=10)) == Decimal("0.00")


def test_auction_not_started_uses_listing_price():
    auction = DutchAuction(start_price=Decimal("30.00"), started_at=None)
    assert current_price("25.00", auction, START) == Decimal("25.00")


def test_fee_breakdown_for_twenty_euros():
    fees = compute_fees(Decimal("20.00"), 0.10, 0.014, 0.25)
    assert fees.platform_fee == Decimal("2.00")
    assert fees.gateway_fee == Decimal("0.53")
    assert fees.seller_payout == Decimal("17.47")


def test_fee_parts_always_sum_to_total():
    for raw in ("1.00", "0.99", "7.35", "19.99", "123.45", "999.99"):
        fees = compute_fees(Decimal(raw), 0.10, 0.014, 0.25)
        assert fees.platform_fee + fees.gateway_fee + fees.seller_payout == fees.total


def test_gift_has_no_fees():
    fees = compute_fees(Decimal("0"), 0.10, 0.014, 0.25)
    assert fees.platform_fee == fees.gateway_fee == fees.seller_payout == Decimal("0.00")


def test_rounding_is_half_up():
    assert round_money("0.125") == Decimal("0.13")
    assert round_money("2.675") == Decimal("2.68")
    assert to_minor_units(Decimal("10.005")) == 1001


def test_impact_scales_with_quantity_and_total():
    impact = estimate_impact(3, Decimal("15.50"), 2.0, 500, 10, 15)
    assert impact.co2_kg == Decimal("6.00")
    assert impact.water_l == Decimal("1500.00")
    assert impact.buyer_credits == 155
    assert impact.seller_credits == 232
