from fastapi import APIRouter, Depends, HTTPException, Query

from settlement.api.deps import get_current_actor, get_order_service
from settlement.application.schemas import (
    BalanceRead,
    CommunityStatsRead,
    LeaderboardEntryRead,
    LeaderboardRead,
    LedgerPage,
    RedeemRead,
    RedeemRequest,
    RewardRead,
)
from settlement.application.service import OrderService
from settlement.domain.enums import LeaderboardPeriod
from settlement.domain.policy import Actor

router = APIRouter(prefix="/impact", tags=["impact"])

@router.get("/leaderboard", response_model=LeaderboardRead)
def leaderboard(period: LeaderboardPeriod = LeaderboardPeriod.MONTHLY, limit: int = Query(10, ge=1, le=100),
                service: OrderService = Depends(get_order_service)):
    return service.get_leaderboard(period, limit)

@router.get("/leaderboard/me", response_model=LeaderboardEntryRead)
def my_rank(period: LeaderboardPeriod = LeaderboardPeriod.MONTHLY, actor: Actor = Depends(get_current_actor),
            service: OrderService = Depends(get_order_service)):
    rank = service.get_rank(actor, period)
    if rank is None:
        raise HTTPException(status_code=404, detail="No impact recorded for this period")
    return rank

@router.get("/community", response_model=CommunityStatsRead)
def community_stats(service: OrderService = Depends(get_order_service)):
    return service.community_stats()

@router.get("/history", response_model=LedgerPage)
def history(page: int = Query(1, ge=1), per_page: int = Query(20, ge=1, le=100),
            actor: Actor = Depends(get_current_actor),
            service: OrderService = Depends(get_order_service)):
    return service.impact_history(actor, page, per_page)

@router.get("/balance", response_model=BalanceRead)
def balance(actor: Actor = Depends(get_current_actor), service: OrderService = Depends(get_order_service)):
    return service.balance(actor)

@router.get("/rewards", response_model=list[RewardRead])
def rewards():
    return OrderService.rewards()

@router.post("/redeem", response_model=RedeemRead, status_code=201)
def redeem(payload: RedeemRequest, actor: Actor = Depends(get_current_actor),
           service: OrderService = Depends(get_order_service)):
    return service.redeem(actor, payload.reward)
