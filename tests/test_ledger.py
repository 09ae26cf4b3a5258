import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from settlement.application.leaderboard import period_window
from settlement.application.ledger import EcoLedger
from settlement.domain.enums import ImpactAction, LeaderboardPeriod, RewardType
from settlement.domain.errors import InsufficientBalance, ValidationError
from settlement.infrastructure.db import atomic


@pytest.fixture
def ledger(db, clock):
    return EcoLedger(db, clock)


def test_cached_account_equals_fold_of_entries(ledger):
    ledger.append(5, ImpactAction.PURCHASE, co2="2.00", water="500", earned=200, order_id=None)
    ledger.append(5, ImpactAction.SALE, co2="4.00", water="1000", earned=300)
    ledger.redeem(5, RewardType.TREE)
    ledger.adjust(5, -50, "Correction")

    account = ledger.account(5)
    assert account.eco_credits == 200 + 300 - 300 - 50
    assert account.total_co2_saved == Decimal("6.00")

    check = ledger.reconcile(5)
    assert check["consistent"] is True
    assert check["ledger_credits"] == check["cached_credits"] == 150


def test_resulting_balance_tracks_each_entry(ledger):
    first = ledger.append(6, ImpactAction.PURCHASE, earned=120)
    second = ledger.redeem(6, RewardType.BOOST_24H)
    assert first.resulting_balance == 120
    assert second.resulting_balance == 20
    assert second.credits_spent == 100
    assert second.action_type == ImpactAction.REDEEM_BOOST


def test_redeem_beyond_balance_is_rejected(ledger):
    ledger.append(7, ImpactAction.PURCHASE, earned=99)
    with pytest.raises(InsufficientBalance) as exc:
        ledger.redeem(7, RewardType.BOOST_24H)
    assert exc.value.context == {"required": 100, "balance": 99}
    assert ledger.account(7).eco_credits == 99


def test_adjustments_cannot_overdraw_or_be_zero(ledger):
    ledger.append(8, ImpactAction.PURCHASE, earned=10)
    with pytest.raises(InsufficientBalance):
        ledger.adjust(8, -11, "Too much")
    with pytest.raises(ValidationError):
        ledger.adjust(8, 0, "Nothing")


def test_negative_credits_are_rejected(ledger):
    with pytest.raises(ValidationError):
        ledger.append(9, ImpactAction.PURCHASE, earned=-5)


def test_missing_account_reads_as_zero(ledger):
    account = ledger.account(404)
    assert account.eco_credits == 0
    assert ledger.reconcile(404)["consistent"] is True


def test_history_is_newest_first(ledger, clock):
    ledger.append(10, ImpactAction.PURCHASE, earned=1)
    clock.advance(hours=1)
    ledger.append(10, ImpactAction.SALE, earned=2)
    entries, total = ledger.history(10, page=1, per_page=1)
    assert total == 2
    assert entries[0].action_type == ImpactAction.SALE


def test_leaderboard_ranks_by_co2(service, clock):
    service.ledger.append(1, ImpactAction.PURCHASE, co2="2.00", water="500", earned=10)
    service.ledger.append(2, ImpactAction.SALE, co2="6.00", water="1500", earned=10, order_id=None)
    service.ledger.append(3, ImpactAction.PURCHASE, co2="4.00", water="1000", earned=10)

    board = service.leaderboard.top(LeaderboardPeriod.WEEKLY)
    assert [entry["user_id"] for entry in board] == [2, 3, 1]
    assert board[0]["rank"] == 1
    assert service.leaderboard.rank(1, LeaderboardPeriod.WEEKLY)["rank"] == 3
    assert service.leaderboard.rank(42, LeaderboardPeriod.WEEKLY) is None


def test_community_stats_sum_accounts(service):
    service.ledger.append(1, ImpactAction.PURCHASE, co2="2.00", water="500", earned=400)
    service.ledger.append(2, ImpactAction.SALE, co2="2.00", water="500", earned=10)
    service.ledger.redeem(1, RewardType.TREE)

    stats = service.community_stats()
    assert stats["total_co2_saved"] == 4.0
    assert stats["total_water_saved"] == 1000.0
    assert stats["trees_planted"] == 1
    assert stats["active_users"] == 2


def test_period_windows():
    now = datetime(2026, 12, 17, 15, 30)  # Thursday
    assert period_window(LeaderboardPeriod.WEEKLY, now) == (datetime(2026, 12, 14), datetime(2026, 12, 21))
    assert period_window(LeaderboardPeriod.MONTHLY, now) == (datetime(2026, 12, 1), datetime(2027, 1, 1))
    assert period_window(LeaderboardPeriod.YEARLY, now) == (datetime(2026, 1, 1), datetime(2027, 1, 1))


def test_concurrent_appends_keep_cache_equal_to_fold(file_engine, clock):
    factory = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    workers = 8
    barrier = threading.Barrier(workers)

    def earn(n):
        session = factory()
        try:
            barrier.wait()
            with atomic(session):
                EcoLedger(session, clock).append(11, ImpactAction.PURCHASE, co2="1.50", water="100",
                                                 earned=10 + n)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        list(pool.map(earn, range(workers)))

    session = factory()
    try:
        check = EcoLedger(session, clock).reconcile(11)
        assert check["consistent"] is True
        assert check["cached_credits"] == sum(10 + n for n in range(workers))
        entries, total = EcoLedger(session, clock).history(11, per_page=100)
        assert total == workers
        assert sorted(entry.resulting_balance for entry in entries)[-1] == check["cached_credits"]
    finally:
        session.close()
