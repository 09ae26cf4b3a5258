from fastapi import APIRouter, Depends

from settlement.api.deps import get_current_actor, get_order_service
from settlement.application.schemas import (
    CreditAdjust,
    EligibilityRead,
    LedgerCheckRead,
    LedgerEntryRead,
    ListingStockRead,
    RestockRequest,
    StrikeCreate,
    StrikeRead,
)
from settlement.application.service import OrderService
from settlement.domain.policy import Actor

router = APIRouter(prefix="/admin", tags=["admin"])

@router.post("/strikes", response_model=StrikeRead, status_code=201)
def issue_strike(payload: StrikeCreate, actor: Actor = Depends(get_current_actor),
                 service: OrderService = Depends(get_order_service)):
    return service.issue_strike(
        actor,
        payload.user_id,
        payload.strike_type,
        order_id=payload.order_id,
        description=payload.description,
        expires_in_days=payload.expires_in_days,
    )

@router.post("/strikes/{strike_id}/revoke", response_model=StrikeRead)
def revoke_strike(strike_id: int, actor: Actor = Depends(get_current_actor),
                  service: OrderService = Depends(get_order_service)):
    return service.revoke_strike(actor, strike_id)

@router.get("/users/{user_id}/strikes", response_model=list[StrikeRead])
def user_strikes(user_id: int, actor: Actor = Depends(get_current_actor),
                 service: OrderService = Depends(get_order_service)):
    return service.user_strikes(actor, user_id)

@router.get("/users/{user_id}/eligibility", response_model=EligibilityRead)
def eligibility(user_id: int, actor: Actor = Depends(get_current_actor),
                service: OrderService = Depends(get_order_service)):
    """Whether the user may place orders; users may query themselves."""
    return service.eligibility(actor, user_id)

@router.post("/users/{user_id}/credits", response_model=LedgerEntryRead, status_code=201)
def adjust_credits(user_id: int, payload: CreditAdjust, actor: Actor = Depends(get_current_actor),
                   service: OrderService = Depends(get_order_service)):
    return service.adjust_credits(actor, user_id, payload.delta, payload.reason)

@router.get("/users/{user_id}/ledger-check", response_model=LedgerCheckRead)
def ledger_check(user_id: int, actor: Actor = Depends(get_current_actor),
                 service: OrderService = Depends(get_order_service)):
    return service.check_ledger(actor, user_id)

@router.post("/listings/{listing_id}/restock", response_model=ListingStockRead)
def restock(listing_id: int, payload: RestockRequest, actor: Actor = Depends(get_current_actor),
            service: OrderService = Depends(get_order_service)):
    return service.restock(actor, listing_id, payload.amount)
