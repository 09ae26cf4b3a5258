from typing import Optional

from fastapi import APIRouter, Depends, Query

from settlement.api.deps import get_current_actor, get_order_service
from settlement.application.schemas import (
    CancelRequest,
    CheckoutRead,
    DisputeCreate,
    DisputeRead,
    OrderCreate,
    OrderPage,
    OrderRead,
    PickupConfirm,
    PickupPassRead,
    ReviewCreate,
    ReviewRead,
    StatusUpdate,
    TrackingUpdate,
)
from settlement.application.service import OrderService
from settlement.domain.enums import OrderStatus
from settlement.domain.policy import Actor

router = APIRouter(prefix="/orders", tags=["orders"])

@router.post("/", response_model=CheckoutRead, status_code=201)
def create_order(payload: OrderCreate, actor: Actor = Depends(get_current_actor),
                 service: OrderService = Depends(get_order_service)):
    """Place an order; returns the checkout redirect (or the success page for gifts)."""
    return service.create_order(actor, payload)

@router.get("/mine", response_model=OrderPage)
def list_my_orders(status: Optional[OrderStatus] = None, page: int = Query(1, ge=1),
                   per_page: int = Query(20, ge=1),
                   actor: Actor = Depends(get_current_actor),
                   service: OrderService = Depends(get_order_service)):
    return service.list_orders(actor, "buyer", status, page, per_page)

@router.get("/selling", response_model=OrderPage)
def list_seller_orders(status: Optional[OrderStatus] = None, page: int = Query(1, ge=1),
                       per_page: int = Query(20, ge=1),
                       actor: Actor = Depends(get_current_actor),
                       service: OrderService = Depends(get_order_service)):
    return service.list_orders(actor, "seller", status, page, per_page)

@router.post("/pickup/confirm", response_model=OrderRead)
def confirm_pickup(payload: PickupConfirm, actor: Actor = Depends(get_current_actor),
                   service: OrderService = Depends(get_order_service)):
    """Seller scans the buyer's code at handover."""
    return service.confirm_pickup(actor, payload.code)

@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: int, actor: Actor = Depends(get_current_actor),
              service: OrderService = Depends(get_order_service)):
    return service.get_order(actor, order_id)

@router.post("/{order_id}/checkout", response_model=CheckoutRead)
def retry_checkout(order_id: int, actor: Actor = Depends(get_current_actor),
                   service: OrderService = Depends(get_order_service)):
    return service.retry_checkout(actor, order_id)

@router.patch("/{order_id}/status", response_model=OrderRead)
def update_status(order_id: int, payload: StatusUpdate, actor: Actor = Depends(get_current_actor),
                  service: OrderService = Depends(get_order_service)):
    return service.update_status(actor, order_id, payload)

@router.post("/{order_id}/tracking", response_model=OrderRead)
def update_tracking(order_id: int, payload: TrackingUpdate, actor: Actor = Depends(get_current_actor),
                    service: OrderService = Depends(get_order_service)):
    return service.update_tracking(actor, order_id, payload.tracking_number, payload.tracking_url, payload.carrier)

@router.get("/{order_id}/pickup-pass", response_model=PickupPassRead)
def pickup_pass(order_id: int, actor: Actor = Depends(get_current_actor),
                service: OrderService = Depends(get_order_service)):
    return service.pickup_pass(actor, order_id)

@router.post("/{order_id}/cancel", response_model=OrderRead)
def cancel_order(order_id: int, payload: Optional[CancelRequest] = None,
                 actor: Actor = Depends(get_current_actor),
                 service: OrderService = Depends(get_order_service)):
    return service.cancel(actor, order_id, payload.reason if payload else None)

@router.post("/{order_id}/disputes", response_model=DisputeRead, status_code=201)
def open_dispute(order_id: int, payload: DisputeCreate, actor: Actor = Depends(get_current_actor),
                 service: OrderService = Depends(get_order_service)):
    return service.open_dispute(actor, order_id, payload.reason, payload.description, payload.evidence_urls)

@router.post("/{order_id}/reviews", response_model=ReviewRead, status_code=201)
def create_review(order_id: int, payload: ReviewCreate, actor: Actor = Depends(get_current_actor),
                  service: OrderService = Depends(get_order_service)):
    review = service.create_review(actor, order_id, payload.rating, payload.comment, payload.is_anonymous)
    return {
        "id": review.id,
        "order_id": review.order_id,
        "reviewer_id": None if review.is_anonymous else review.reviewer_id,
        "reviewed_id": review.reviewed_id,
        "rating": review.rating,
        "comment": review.comment,
        "is_anonymous": review.is_anonymous,
        "created_at": review.created_at,
    }
