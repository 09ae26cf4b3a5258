"""Leaderboard and community impact figures, read from the eco ledger."""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, case, distinct, func, or_, select
from sqlalchemy.orm import Session

from settlement.domain.clock import Clock, utcnow
from settlement.domain.enums import ImpactAction, LeaderboardPeriod, OrderStatus
from settlement.domain.models import EcoAccount, EcoLedgerEntry, Order

EPOCH = datetime(1970, 1, 1)
FAR_FUTURE = datetime(9999, 12, 31)


def period_window(period: LeaderboardPeriod, now: datetime) -> Tuple[datetime, datetime]:
    """Half-open [start, end) window containing ``now``."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == LeaderboardPeriod.WEEKLY:
        start = midnight - timedelta(days=midnight.weekday())
        return start, start + timedelta(days=7)
    if period == LeaderboardPeriod.MONTHLY:
        start = midnight.replace(day=1)
        if start.month == 12:
            return start, start.replace(year=start.year + 1, month=1)
        return start, start.replace(month=start.month + 1)
    if period == LeaderboardPeriod.YEARLY:
        start = midnight.replace(month=1, day=1)
        return start, start.replace(year=start.year + 1)
    return EPOCH, FAR_FUTURE


class Leaderboard:
    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def _totals(self, period: LeaderboardPeriod):
        start, end = period_window(period, self.clock())
        co2 = func.sum(EcoLedgerEntry.co2_saved)
        return (
            select(
                EcoLedgerEntry.user_id.label("user_id"),
                co2.label("total_co2"),
                func.coalesce(func.sum(EcoLedgerEntry.water_saved), 0).label("total_water"),
                func.count(case((EcoLedgerEntry.action_type == ImpactAction.SALE, 1))).label("products_sold"),
                func.count(distinct(case(
                    (EcoLedgerEntry.action_type.in_([ImpactAction.SALE, ImpactAction.PURCHASE]),
                     EcoLedgerEntry.order_id),
                ))).label("total_orders"),
            )
            .where(EcoLedgerEntry.created_at >= start, EcoLedgerEntry.created_at < end)
            .group_by(EcoLedgerEntry.user_id)
            .having(co2 > 0)
        )

    @staticmethod
    def _row(rank: int, row) -> Dict:
        return {
            "rank": rank,
            "user_id": row.user_id,
            "total_co2": float(row.total_co2),
            "total_water": float(row.total_water),
            "total_products_sold": row.products_sold,
            "total_orders": row.total_orders,
        }

    def top(self, period: LeaderboardPeriod, limit: int = 10) -> List[Dict]:
        limit = min(max(limit, 1), 100)
        totals = self._totals(period).subquery()
        rows = self.db.execute(
            select(totals)
            .order_by(totals.c.total_co2.desc(), totals.c.user_id.asc())
            .limit(limit)
        ).all()
        return [self._row(index + 1, row) for index, row in enumerate(rows)]

    def rank(self, user_id: int, period: LeaderboardPeriod) -> Optional[Dict]:
        totals = self._totals(period).subquery()
        row = self.db.execute(select(totals).where(totals.c.user_id == user_id)).one_or_none()
        if row is None:
            return None
        ahead = self.db.execute(
            select(func.count()).select_from(totals).where(or_(
                totals.c.total_co2 > row.total_co2,
                and_(totals.c.total_co2 == row.total_co2, totals.c.user_id < user_id),
            ))
        ).scalar_one()
        return self._row(ahead + 1, row)

    def community_stats(self) -> Dict:
        co2, water = self.db.execute(
            select(
                func.coalesce(func.sum(EcoAccount.total_co2_saved), 0),
                func.coalesce(func.sum(EcoAccount.total_water_saved), 0),
            )
        ).one()
        trees = self.db.execute(
            select(func.count()).select_from(EcoLedgerEntry)
            .where(EcoLedgerEntry.action_type == ImpactAction.REDEEM_TREE)
        ).scalar_one()
        products = self.db.execute(
            select(func.coalesce(func.sum(Order.quantity), 0)).where(Order.status == OrderStatus.COMPLETED)
        ).scalar_one()
        users = self.db.execute(select(func.count()).select_from(EcoAccount)).scalar_one()
        return {
            "total_co2_saved": float(co2),
            "total_water_saved": float(water),
            "trees_planted": trees,
            "products_saved": int(products),
            "active_users": users,
        }
