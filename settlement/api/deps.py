from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from settlement.api.auth import decode_access_token
from settlement.application.service import OrderService
from settlement.core_settings import Settings, get_settings
from settlement.domain.policy import Actor
from settlement.infrastructure.db import get_db
from settlement.infrastructure.gateway import HttpPaymentGateway
from settlement.infrastructure.notifications import NotificationClient, NotificationDispatcher
from shared.core import set_request_context

bearer_scheme = HTTPBearer(auto_error=False)

def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Actor:
    """Authenticated caller from the identity service's bearer token."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    claims = decode_access_token(settings, credentials.credentials)
    if not claims or "sub" not in claims:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject")
    set_request_context(user_id=str(user_id))
    return Actor(
        user_id=user_id,
        is_admin=bool(claims.get("is_admin", False)),
        is_active=bool(claims.get("is_active", True)),
    )

@lru_cache
def get_gateway() -> HttpPaymentGateway:
    settings = get_settings()
    return HttpPaymentGateway(settings.PAYMENT_GATEWAY_URL, settings.PAYMENT_GATEWAY_API_KEY)

@lru_cache
def get_notifier() -> NotificationClient:
    settings = get_settings()
    return NotificationClient(settings.NOTIFICATIONS_SERVICE_URL, timeout=settings.NOTIFICATIONS_TIMEOUT)

@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(max_workers=get_settings().NOTIFICATION_WORKERS)

def get_order_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
    dispatcher=Depends(get_dispatcher),
) -> OrderService:
    return OrderService(db, settings, gateway=gateway, notifier=notifier, dispatcher=dispatcher)
