from fastapi import APIRouter, Depends

from settlement.api.deps import get_current_actor, get_order_service
from settlement.application.schemas import DisputeRead, DisputeResolve, DisputeRespond, OverdueDisputeRead
from settlement.application.service import OrderService
from settlement.domain.policy import Actor

router = APIRouter(prefix="/disputes", tags=["disputes"])

@router.get("/overdue", response_model=list[OverdueDisputeRead])
def overdue_disputes(actor: Actor = Depends(get_current_actor),
                     service: OrderService = Depends(get_order_service)):
    """Disputes past their seller response or admin review deadline (admin only)."""
    return service.overdue_disputes(actor)

@router.get("/{dispute_id}", response_model=DisputeRead)
def get_dispute(dispute_id: int, actor: Actor = Depends(get_current_actor),
                service: OrderService = Depends(get_order_service)):
    return service.get_dispute(actor, dispute_id)

@router.post("/{dispute_id}/response", response_model=DisputeRead)
def respond_to_dispute(dispute_id: int, payload: DisputeRespond, actor: Actor = Depends(get_current_actor),
                       service: OrderService = Depends(get_order_service)):
    return service.respond_to_dispute(actor, dispute_id, payload.response, payload.evidence_urls)

@router.post("/{dispute_id}/review", response_model=DisputeRead)
def start_review(dispute_id: int, actor: Actor = Depends(get_current_actor),
                 service: OrderService = Depends(get_order_service)):
    return service.start_dispute_review(actor, dispute_id)

@router.post("/{dispute_id}/resolution", response_model=DisputeRead)
def resolve_dispute(dispute_id: int, payload: DisputeResolve, actor: Actor = Depends(get_current_actor),
                    service: OrderService = Depends(get_order_service)):
    return service.resolve_dispute(actor, dispute_id, payload)
