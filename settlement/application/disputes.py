"""Disputes on paid or delivered orders, and the strikes that gate ordering.

Deadlines are stored and reported through ``overdue`` but nothing resolves a
dispute automatically; resolution is always an admin action.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from settlement.core_settings import Settings
from settlement.domain.clock import Clock, utcnow
from settlement.domain.enums import DISPUTE_TERMINAL, DisputeReason, DisputeStatus, OrderStatus, StrikeType
from settlement.domain.errors import DisputeAlreadyOpen, InvalidTransition, NotFound, ValidationError
from settlement.domain.models import Dispute, Order, UserStrike
from settlement.domain.policy import Actor, OrderAction, require
from settlement.domain.pricing import round_money
from shared.core import get_logger

from .order_store import OrderPatch, OrderStore

logger = get_logger(__name__)

DISPUTABLE = frozenset({OrderStatus.PAID, OrderStatus.DELIVERED})
RESOLUTIONS = frozenset({
    DisputeStatus.RESOLVED_REFUND_FULL,
    DisputeStatus.RESOLVED_REFUND_PARTIAL,
    DisputeStatus.RESOLVED_PAYOUT_SELLER,
    DisputeStatus.RESOLVED_SPLIT,
    DisputeStatus.CLOSED,
})


class DisputeWorkflow:
    def __init__(self, db: Session, store: OrderStore, settings: Settings, clock: Clock = utcnow):
        self.db = db
        self.store = store
        self.settings = settings
        self.clock = clock

    def _check_text(self, text: Optional[str], what: str) -> str:
        text = (text or "").strip()
        minimum = self.settings.DISPUTE_MIN_DESCRIPTION
        if len(text) < minimum:
            raise ValidationError(
                f"{what} must be at least {minimum} characters",
                min_length=minimum,
                length=len(text),
            )
        return text

    def get(self, dispute_id: int, for_update: bool = False) -> Dispute:
        stmt = select(Dispute).where(Dispute.id == dispute_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        dispute = self.db.execute(stmt).scalar_one_or_none()
        if dispute is None:
            raise NotFound("Dispute not found", dispute_id=dispute_id)
        return dispute

    def active_for_order(self, order_id: int) -> Optional[Dispute]:
        return self.db.execute(
            select(Dispute).where(Dispute.order_id == order_id, Dispute.status.not_in(list(DISPUTE_TERMINAL)))
        ).scalar_one_or_none()

    def for_order(self, order_id: int) -> List[Dispute]:
        return list(self.db.execute(
            select(Dispute).where(Dispute.order_id == order_id).order_by(Dispute.created_at.desc())
        ).scalars().all())

    def open(self, actor: Actor, order_id: int, reason: DisputeReason, description: str,
             evidence_urls: Sequence[str] = ()) -> Dispute:
        description = self._check_text(description, "Description")

        order = self.store.get(order_id, for_update=True)
        require(actor, order, OrderAction.OPEN_DISPUTE)
        if order.status not in DISPUTABLE:
            raise InvalidTransition(order.status, OrderStatus.DISPUTED)
        if self.active_for_order(order.id) is not None:
            raise DisputeAlreadyOpen(order_id=order.id)

        now = self.clock()
        dispute = Dispute(
            order_id=order.id,
            opened_by=actor.user_id,
            reason=reason,
            description=description,
            evidence_urls=list(evidence_urls),
            status=DisputeStatus.OPEN,
            order_status_before=order.status,
            seller_response_deadline=now + timedelta(hours=self.settings.DISPUTE_RESPONSE_HOURS),
            created_at=now,
            updated_at=now,
        )
        self.db.add(dispute)
        self.db.flush()
        self.store.transition(order, OrderStatus.DISPUTED, sources=DISPUTABLE)

        logger.info(
            f"Dispute opened on order {order.order_number}",
            extra={"extra_fields": {"order_id": order.id, "dispute_id": dispute.id, "reason": reason.value}},
        )
        return dispute

    def respond(self, actor: Actor, dispute_id: int, response: str,
                evidence_urls: Sequence[str] = ()) -> Dispute:
        response = self._check_text(response, "Response")

        dispute = self.get(dispute_id, for_update=True)
        order = self.store.get(dispute.order_id)
        require(actor, order, OrderAction.RESPOND_DISPUTE)
        if dispute.status != DisputeStatus.OPEN:
            raise InvalidTransition(dispute.status, DisputeStatus.SELLER_RESPONSE)

        now = self.clock()
        dispute.seller_response = response
        dispute.seller_evidence_urls = list(evidence_urls)
        dispute.seller_response_at = now
        dispute.admin_review_deadline = now + timedelta(hours=self.settings.DISPUTE_REVIEW_HOURS)
        dispute.status = DisputeStatus.SELLER_RESPONSE
        dispute.updated_at = now
        self.db.flush()
        return dispute

    def start_review(self, actor: Actor, dispute_id: int) -> Dispute:
        dispute = self.get(dispute_id, for_update=True)
        order = self.store.get(dispute.order_id)
        require(actor, order, OrderAction.RESOLVE_DISPUTE)
        if dispute.status not in (DisputeStatus.OPEN, DisputeStatus.SELLER_RESPONSE):
            raise InvalidTransition(dispute.status, DisputeStatus.ADMIN_REVIEW)

        now = self.clock()
        dispute.status = DisputeStatus.ADMIN_REVIEW
        if dispute.admin_review_deadline is None:
            dispute.admin_review_deadline = now + timedelta(hours=self.settings.DISPUTE_REVIEW_HOURS)
        dispute.updated_at = now
        self.db.flush()
        return dispute

    def resolve(self, actor: Actor, dispute_id: int, outcome: DisputeStatus, *,
                refund_amount=None, seller_payout_amount=None, notes: Optional[str] = None,
                strike_party: Optional[str] = None) -> Dispute:
        if outcome not in RESOLUTIONS:
            raise ValidationError(f"{outcome.value} is not a resolution", outcome=outcome.value)

        dispute = self.get(dispute_id, for_update=True)
        order = self.store.get(dispute.order_id, for_update=True)
        require(actor, order, OrderAction.RESOLVE_DISPUTE)
        if dispute.status in DISPUTE_TERMINAL:
            raise InvalidTransition(dispute.status, outcome)

        refund, payout = self._settle_amounts(order, outcome, refund_amount, seller_payout_amount)

        now = self.clock()
        dispute.status = outcome
        dispute.refund_amount = refund
        dispute.seller_payout_amount = payout
        dispute.resolution_notes = notes
        dispute.resolved_by = actor.user_id
        dispute.resolved_at = now
        dispute.updated_at = now
        self.db.flush()

        if outcome == DisputeStatus.RESOLVED_REFUND_FULL:
            target = OrderStatus.REFUNDED
        elif outcome == DisputeStatus.CLOSED:
            target = dispute.order_status_before
        else:
            target = OrderStatus.COMPLETED
        patch = OrderPatch()
        if refund:
            patch.set("payout_hold_reason", "REFUNDED" if target == OrderStatus.REFUNDED else "PARTIAL_REFUND")
        self.store.transition(order, target, patch=patch, sources={OrderStatus.DISPUTED})

        if strike_party:
            offender = order.buyer_id if strike_party == "BUYER" else order.seller_id
            self.issue_strike(offender, StrikeType.DISPUTE_LOST, order_id=order.id,
                              description=f"Lost dispute #{dispute.id}", issued_by=actor.user_id)

        logger.info(
            f"Dispute {dispute.id} resolved as {outcome.value}",
            extra={"extra_fields": {
                "dispute_id": dispute.id, "order_id": order.id, "outcome": outcome.value,
                "refund": refund, "seller_payout": payout,
            }},
        )
        return dispute

    @staticmethod
    def _settle_amounts(order: Order, outcome: DisputeStatus, refund_amount, seller_payout_amount):
        total = Decimal(order.total_amount)
        refund = round_money(refund_amount) if refund_amount is not None else None
        payout = round_money(seller_payout_amount) if seller_payout_amount is not None else None

        if outcome == DisputeStatus.RESOLVED_REFUND_FULL and refund is None:
            refund = total
        if outcome == DisputeStatus.RESOLVED_PAYOUT_SELLER and payout is None:
            payout = Decimal(order.seller_payout)
        if outcome in (DisputeStatus.RESOLVED_REFUND_PARTIAL, DisputeStatus.RESOLVED_SPLIT) and refund is None:
            raise ValidationError("A refund amount is required for this resolution")

        if (refund is not None and refund < 0) or (payout is not None and payout < 0):
            raise ValidationError("Amounts must not be negative")
        if (refund or Decimal("0")) + (payout or Decimal("0")) > total:
            raise ValidationError(
                "Refund and seller payout together exceed the order total",
                total=float(total),
                refund=float(refund or 0),
                seller_payout=float(payout or 0),
            )
        return refund, payout

    def overdue(self, now: Optional[datetime] = None) -> List[dict]:
        """Non-terminal disputes whose response or review deadline has passed."""
        now = now or self.clock()
        disputes = self.db.execute(
            select(Dispute).where(
                Dispute.status.not_in(list(DISPUTE_TERMINAL)),
                or_(
                    and_(Dispute.seller_response_at.is_(None), Dispute.seller_response_deadline < now),
                    and_(Dispute.admin_review_deadline.is_not(None), Dispute.admin_review_deadline < now),
                ),
            ).order_by(Dispute.created_at)
        ).scalars().all()
        report = []
        for dispute in disputes:
            if dispute.seller_response_at is None and dispute.seller_response_deadline < now:
                kind, deadline = "SELLER_RESPONSE_OVERDUE", dispute.seller_response_deadline
            else:
                kind, deadline = "ADMIN_REVIEW_OVERDUE", dispute.admin_review_deadline
            report.append({
                "dispute_id": dispute.id,
                "order_id": dispute.order_id,
                "status": dispute.status,
                "overdue": kind,
                "deadline": deadline,
                "hours_overdue": round((now - deadline).total_seconds() / 3600, 1),
            })
        return report

    # Strikes

    def issue_strike(self, user_id: int, strike_type: StrikeType, *, order_id: Optional[int] = None,
                     description: Optional[str] = None, expires_at: Optional[datetime] = None,
                     issued_by: Optional[int] = None) -> UserStrike:
        strike = UserStrike(
            user_id=user_id,
            order_id=order_id,
            strike_type=strike_type,
            description=description,
            expires_at=expires_at,
            is_active=True,
            issued_by=issued_by,
            created_at=self.clock(),
        )
        self.db.add(strike)
        self.db.flush()
        logger.warning(
            f"Strike {strike_type.value} issued to user {user_id}",
            extra={"extra_fields": {"user_id": user_id, "strike_id": strike.id, "order_id": order_id}},
        )
        return strike

    def revoke_strike(self, strike_id: int) -> UserStrike:
        strike = self.db.get(UserStrike, strike_id)
        if strike is None:
            raise NotFound("Strike not found", strike_id=strike_id)
        strike.is_active = False
        self.db.flush()
        return strike

    def _active_clause(self, user_id: int):
        now = self.clock()
        return and_(
            UserStrike.user_id == user_id,
            UserStrike.is_active.is_(True),
            or_(UserStrike.expires_at.is_(None), UserStrike.expires_at > now),
        )

    def strikes(self, user_id: int) -> List[UserStrike]:
        return list(self.db.execute(
            select(UserStrike).where(UserStrike.user_id == user_id).order_by(UserStrike.created_at.desc())
        ).scalars().all())

    def active_strike_count(self, user_id: int) -> int:
        return self.db.execute(
            select(func.count()).select_from(UserStrike).where(self._active_clause(user_id))
        ).scalar_one()

    def can_user_order(self, user_id: int) -> bool:
        return self.active_strike_count(user_id) <= self.settings.STRIKE_THRESHOLD
