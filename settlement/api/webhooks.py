from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from settlement.api.deps import get_order_service
from settlement.application.schemas import WebhookAck
from settlement.application.service import OrderService

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

@router.post("/payments", response_model=WebhookAck)
async def payment_webhook(request: Request,
                          payment_signature: Optional[str] = Header(None, alias="Payment-Signature"),
                          service: OrderService = Depends(get_order_service)):
    """Gateway callback. The signature is checked against the raw body, so it is read unparsed."""
    payload = await request.body()
    result = await run_in_threadpool(service.handle_payment_webhook, payload, payment_signature)
    return {"received": True, "event_type": result.event_type, "outcome": result.outcome}
