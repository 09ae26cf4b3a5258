"""Eco-credit ledger.

Entries are append-only. ``EcoAccount`` caches each user's totals and is only
ever written by ``append``, inside the caller's transaction and under a row
lock, so the cache always equals the fold of the user's entries.
"""

from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from settlement.domain.clock import Clock, utcnow
from settlement.domain.enums import ImpactAction, RewardType, REWARD_CATALOG
from settlement.domain.errors import InsufficientBalance, ValidationError
from settlement.domain.models import EcoAccount, EcoLedgerEntry
from shared.core import get_logger

logger = get_logger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class EcoLedger:
    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def _lock_account(self, user_id: int) -> EcoAccount:
        """Return the user's account row locked for update, creating it if missing."""
        insert = _INSERT_BY_DIALECT.get(self.db.get_bind().dialect.name)
        if insert is not None:
            self.db.execute(
                insert(EcoAccount)
                .values(user_id=user_id, total_co2_saved=0, total_water_saved=0,
                        eco_credits=0, updated_at=self.clock())
                .on_conflict_do_nothing(index_elements=[EcoAccount.user_id])
            )
        account = self.db.execute(
            select(EcoAccount).where(EcoAccount.user_id == user_id).with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if account is None:
            account = EcoAccount(user_id=user_id, total_co2_saved=Decimal("0"),
                                 total_water_saved=Decimal("0"), eco_credits=0, updated_at=self.clock())
            self.db.add(account)
            self.db.flush()
        return account

    def append(self, user_id: int, action: ImpactAction, *, co2=Decimal("0"), water=Decimal("0"),
               earned: int = 0, spent: int = 0, order_id: Optional[int] = None,
               description: Optional[str] = None) -> EcoLedgerEntry:
        if earned < 0 or spent < 0:
            raise ValidationError("Credits earned and spent must not be negative")
        account = self._lock_account(user_id)
        return self._write(account, action, Decimal(co2), Decimal(water), earned, spent, order_id, description)

    def _write(self, account: EcoAccount, action: ImpactAction, co2: Decimal, water: Decimal,
               earned: int, spent: int, order_id: Optional[int], description: Optional[str]) -> EcoLedgerEntry:
        now = self.clock()
        new_balance = account.eco_credits + earned - spent
        entry = EcoLedgerEntry(
            user_id=account.user_id,
            order_id=order_id,
            action_type=action,
            co2_saved=co2,
            water_saved=water,
            credits_earned=earned,
            credits_spent=spent,
            resulting_balance=new_balance,
            description=description,
            created_at=now,
        )
        account.total_co2_saved = account.total_co2_saved + co2
        account.total_water_saved = account.total_water_saved + water
        account.eco_credits = new_balance
        account.updated_at = now
        self.db.add(entry)
        self.db.flush()

        logger.info(
            f"Ledger entry {action.value} for user {account.user_id}",
            extra={"extra_fields": {
                "user_id": account.user_id, "order_id": order_id, "action": action.value,
                "earned": earned, "spent": spent, "balance": new_balance,
            }},
        )
        return entry

    def redeem(self, user_id: int, reward: RewardType) -> EcoLedgerEntry:
        cost, action, label = REWARD_CATALOG[reward]
        account = self._lock_account(user_id)
        if cost > account.eco_credits:
            raise InsufficientBalance(required=cost, balance=account.eco_credits)
        return self._write(account, action, Decimal("0"), Decimal("0"), 0, cost, None, f"Redeemed: {label}")

    def adjust(self, user_id: int, delta: int, reason: str) -> EcoLedgerEntry:
        if delta == 0:
            raise ValidationError("Adjustment must not be zero")
        account = self._lock_account(user_id)
        if delta < 0 and -delta > account.eco_credits:
            raise InsufficientBalance(required=-delta, balance=account.eco_credits)
        earned, spent = (delta, 0) if delta > 0 else (0, -delta)
        return self._write(account, ImpactAction.ADMIN_ADJUSTMENT, Decimal("0"), Decimal("0"),
                           earned, spent, None, reason)

    # Reads

    def account(self, user_id: int) -> EcoAccount:
        account = self.db.get(EcoAccount, user_id)
        if account is None:
            return EcoAccount(user_id=user_id, total_co2_saved=Decimal("0"),
                              total_water_saved=Decimal("0"), eco_credits=0)
        return account

    def history(self, user_id: int, page: int = 1, per_page: int = 20) -> Tuple[List[EcoLedgerEntry], int]:
        page = max(page, 1)
        per_page = min(max(per_page, 1), 100)
        total = self.db.execute(
            select(func.count()).select_from(EcoLedgerEntry).where(EcoLedgerEntry.user_id == user_id)
        ).scalar_one()
        entries = self.db.execute(
            select(EcoLedgerEntry).where(EcoLedgerEntry.user_id == user_id)
            .order_by(EcoLedgerEntry.created_at.desc(), EcoLedgerEntry.id.desc())
            .offset((page - 1) * per_page).limit(per_page)
        ).scalars().all()
        return list(entries), total

    def reconcile(self, user_id: int) -> dict:
        """Compare the cached account with the fold of the user's entries."""
        row = self.db.execute(
            select(
                func.coalesce(func.sum(EcoLedgerEntry.credits_earned - EcoLedgerEntry.credits_spent), 0),
                func.coalesce(func.sum(EcoLedgerEntry.co2_saved), 0),
                func.coalesce(func.sum(EcoLedgerEntry.water_saved), 0),
            ).where(EcoLedgerEntry.user_id == user_id)
        ).one()
        account = self.account(user_id)
        credits, co2, water = int(row[0]), Decimal(str(row[1])), Decimal(str(row[2]))
        return {
            "user_id": user_id,
            "ledger_credits": credits,
            "cached_credits": account.eco_credits,
            "ledger_co2": float(co2),
            "cached_co2": float(account.total_co2_saved),
            "ledger_water": float(water),
            "cached_water": float(account.total_water_saved),
            "consistent": (
                credits == account.eco_credits
                and co2 == Decimal(account.total_co2_saved)
                and water == Decimal(account.total_water_saved)
            ),
        }
