from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from settlement.application.schemas import DisputeResolve, OrderCreate, StatusUpdate
from settlement.domain.enums import DisputeReason, DisputeStatus, OrderStatus, StrikeType
from settlement.domain.errors import (
    DisputeAlreadyOpen,
    Forbidden,
    InvalidTransition,
    OrderingSuspended,
    ValidationError,
)
from settlement.domain.models import EcoLedgerEntry

from conftest import ADMIN, BUYER, SELLER

LONG_TEXT = "The table arrived with a cracked leg and the seller never mentioned it."
SHORT_TEXT = "It broke on the way home, not great at all."


@pytest.fixture
def paid_order(place_order, pay):
    order_id = place_order(quantity=2)
    pay(order_id)
    return order_id


@pytest.fixture
def dispute(service, paid_order):
    return service.open_dispute(BUYER, paid_order, DisputeReason.ITEM_DAMAGED, LONG_TEXT)


def test_short_description_is_rejected(service, paid_order):
    assert len(SHORT_TEXT) < 50 <= len(LONG_TEXT)
    with pytest.raises(ValidationError):
        service.open_dispute(BUYER, paid_order, DisputeReason.ITEM_DAMAGED, SHORT_TEXT)
    assert service.store.get(paid_order).status == OrderStatus.PAID


def test_open_dispute_freezes_the_order(service, dispute, paid_order, clock):
    assert dispute.status == DisputeStatus.OPEN
    assert dispute.order_status_before == OrderStatus.PAID
    assert dispute.seller_response_deadline == clock() + timedelta(hours=48)
    assert service.store.get(paid_order).status == OrderStatus.DISPUTED


def test_only_one_active_dispute(service, dispute, paid_order):
    with pytest.raises((DisputeAlreadyOpen, InvalidTransition)):
        service.open_dispute(BUYER, paid_order, DisputeReason.OTHER, LONG_TEXT)


def test_seller_cannot_open_dispute(service, paid_order):
    with pytest.raises(Forbidden):
        service.open_dispute(SELLER, paid_order, DisputeReason.OTHER, LONG_TEXT)


def test_pending_order_cannot_be_disputed(service, place_order):
    with pytest.raises(InvalidTransition):
        service.open_dispute(BUYER, place_order(), DisputeReason.OTHER, LONG_TEXT)


def test_seller_response_sets_review_deadline(service, dispute, clock):
    clock.advance(hours=3)
    responded = service.respond_to_dispute(SELLER, dispute.id, LONG_TEXT, ["https://img.test/1.jpg"])
    assert responded.status == DisputeStatus.SELLER_RESPONSE
    assert responded.admin_review_deadline == clock() + timedelta(hours=72)
    assert responded.seller_evidence_urls == ["https://img.test/1.jpg"]

    with pytest.raises(InvalidTransition):
        service.respond_to_dispute(SELLER, dispute.id, LONG_TEXT)


def test_full_refund_refunds_the_order(service, dispute, paid_order, db):
    resolved = service.resolve_dispute(ADMIN, dispute.id, DisputeResolve(outcome=DisputeStatus.RESOLVED_REFUND_FULL))
    assert resolved.refund_amount == Decimal("20.00")
    order = service.store.get(paid_order)
    assert order.status == OrderStatus.REFUNDED
    assert order.payout_hold_reason == "REFUNDED"
    granted = db.execute(select(func.count()).select_from(EcoLedgerEntry)).scalar_one()
    assert granted == 0


def test_payout_to_seller_completes_and_grants_impact(service, dispute, paid_order, db):
    service.start_dispute_review(ADMIN, dispute.id)
    service.resolve_dispute(ADMIN, dispute.id, DisputeResolve(outcome=DisputeStatus.RESOLVED_PAYOUT_SELLER))
    order = service.store.get(paid_order)
    assert order.status == OrderStatus.COMPLETED
    assert order.impact_granted_at is not None
    assert db.execute(select(func.count()).select_from(EcoLedgerEntry)).scalar_one() == 2


def test_closing_restores_previous_status(service, dispute, paid_order):
    service.resolve_dispute(ADMIN, dispute.id, DisputeResolve(outcome=DisputeStatus.CLOSED, notes="Sorted out"))
    assert service.store.get(paid_order).status == OrderStatus.PAID


def test_amounts_cannot_exceed_total(service, dispute):
    with pytest.raises(ValidationError):
        service.resolve_dispute(ADMIN, dispute.id, DisputeResolve(
            outcome=DisputeStatus.RESOLVED_SPLIT,
            refund_amount=Decimal("15.00"),
            seller_payout_amount=Decimal("6.00"),
        ))


def test_partial_refund_needs_an_amount(service, dispute):
    with pytest.raises(ValidationError):
        service.resolve_dispute(ADMIN, dispute.id, DisputeResolve(outcome=DisputeStatus.RESOLVED_REFUND_PARTIAL))


def test_only_admin_resolves(service, dispute):
    with pytest.raises(Forbidden):
        service.resolve_dispute(BUYER, dispute.id, DisputeResolve(outcome=DisputeStatus.CLOSED))


def test_resolved_dispute_is_final(service, dispute):
    service.resolve_dispute(ADMIN, dispute.id, DisputeResolve(outcome=DisputeStatus.CLOSED))
    with pytest.raises(InvalidTransition):
        service.resolve_dispute(ADMIN, dispute.id, DisputeResolve(outcome=DisputeStatus.RESOLVED_REFUND_FULL))


def test_overdue_report(service, dispute, clock):
    assert service.overdue_disputes(ADMIN) == []
    clock.advance(hours=49)
    report = service.overdue_disputes(ADMIN)
    assert [row["dispute_id"] for row in report] == [dispute.id]
    assert report[0]["overdue"] == "SELLER_RESPONSE_OVERDUE"


def test_losing_a_dispute_can_strike(service, dispute):
    service.resolve_dispute(ADMIN, dispute.id, DisputeResolve(
        outcome=DisputeStatus.RESOLVED_REFUND_FULL, strike_party="SELLER",
    ))
    strikes = service.user_strikes(ADMIN, SELLER.user_id)
    assert [s.strike_type for s in strikes] == [StrikeType.DISPUTE_LOST]


def test_strikes_above_threshold_suspend_ordering(service, make_listing):
    for _ in range(3):
        service.issue_strike(ADMIN, BUYER.user_id, StrikeType.BUYER_NO_SHOW)
    assert service.eligibility(BUYER, BUYER.user_id)["can_order"] is False

    listing = make_listing()
    with pytest.raises(OrderingSuspended):
        service.create_order(BUYER, OrderCreate(product_id=listing.id))


def test_expired_and_revoked_strikes_do_not_count(service, clock):
    service.issue_strike(ADMIN, BUYER.user_id, StrikeType.ABUSE, expires_in_days=1)
    revoked = service.issue_strike(ADMIN, BUYER.user_id, StrikeType.ABUSE)
    service.issue_strike(ADMIN, BUYER.user_id, StrikeType.ABUSE)
    service.revoke_strike(ADMIN, revoked.id)
    assert service.eligibility(BUYER, BUYER.user_id)["active_strikes"] == 2

    clock.advance(days=2)
    assert service.eligibility(BUYER, BUYER.user_id)["active_strikes"] == 1


@pytest.mark.parametrize("target", [OrderStatus.PROCESSING, OrderStatus.COMPLETED, OrderStatus.CANCELLED])
def test_admin_cannot_force_a_disputed_order_out(service, dispute, target):
    with pytest.raises(InvalidTransition):
        service.update_status(ADMIN, dispute.order_id, StatusUpdate(status=target))
    assert service.store.get(dispute.order_id).status == OrderStatus.DISPUTED

    resolved = service.resolve_dispute(ADMIN, dispute.id, DisputeResolve(outcome=DisputeStatus.RESOLVED_REFUND_FULL))
    assert resolved.status == DisputeStatus.RESOLVED_REFUND_FULL
    assert service.store.get(dispute.order_id).status == OrderStatus.REFUNDED
