import calendar
import json
import os

# The app module builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta
from decimal import Decimal
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from settlement.api.auth import create_access_token
from settlement.api.deps import get_order_service
from settlement.application.payments import sign_payload
from settlement.application.schemas import OrderCreate
from settlement.application.service import OrderService
from settlement.core_settings import Settings, get_settings
from settlement.domain.checkout import CheckoutSession
from settlement.domain.models import Base, Listing
from settlement.domain.policy import Actor
from settlement.infrastructure.gateway import PaymentGatewayError
from settlement.main import app

BUYER = Actor(user_id=1)
SELLER = Actor(user_id=2)
OTHER = Actor(user_id=3)
ADMIN = Actor(user_id=99, is_admin=True)


class FakeClock:
    """Settable clock, starts on a fixed Wednesday."""

    def __init__(self, now: datetime = datetime(2026, 3, 11, 12, 0, 0)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGateway:
    def __init__(self):
        self.requests = []
        self.fail = False
        self._ids = count(1)

    def create_checkout_session(self, request):
        if self.fail:
            raise PaymentGatewayError("gateway down")
        self.requests.append(request)
        session_id = f"cs_test_{next(self._ids)}"
        return CheckoutSession(session_id=session_id, url=f"https://pay.test/{session_id}")


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify_buyer_order_confirmed(self, order):
        self.sent.append(("buyer", order["order_id"]))

    def notify_seller_new_order(self, order):
        self.sent.append(("seller", order["order_id"]))


class InlineDispatcher:
    """Runs notification tasks on the calling thread."""

    def submit(self, fn, *args):
        fn(*args)

    def shutdown(self, wait=True):
        pass


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        PAYMENT_WEBHOOK_SECRET="whsec_test",
        JWT_SECRET="test-secret",
        FRONTEND_URL="https://shop.test",
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(db, settings, gateway, notifier, clock):
    return OrderService(db, settings, gateway=gateway, notifier=notifier,
                        dispatcher=InlineDispatcher(), clock=clock)


@pytest.fixture
def make_listing(db, clock):
    def _make(price="10.00", quantity=5, seller_id=SELLER.user_id, **fields):
        listing = Listing(
            seller_id=seller_id,
            title=fields.pop("title", "Oak side table"),
            description=fields.pop("description", "Solid oak, minor scratches"),
            price=Decimal(price),
            quantity_available=quantity,
            shipping_cost=Decimal(fields.pop("shipping_cost", "4.50")),
            pickup_address=fields.pop("pickup_address", "Carrer de Mallorca 12, Barcelona"),
            pickup_instructions=fields.pop("pickup_instructions", "Ring twice"),
            is_dutch_auction=fields.pop("is_dutch_auction", False),
            created_at=clock(),
            **fields,
        )
        db.add(listing)
        db.commit()
        return listing
    return _make


@pytest.fixture
def file_engine(tmp_path):
    """File-backed database so separate sessions really run concurrently."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'settlement.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_service(file_engine, settings, gateway, notifier, clock):
    """Builds an OrderService on its own session, one per simulated worker."""
    factory = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    sessions = []

    def _service():
        session = factory()
        sessions.append(session)
        return OrderService(session, settings, gateway=gateway, notifier=notifier,
                            dispatcher=InlineDispatcher(), clock=clock)
    yield _service
    for session in sessions:
        session.close()


@pytest.fixture
def client(service, settings):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_order_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_header(settings):
    def _header(actor: Actor):
        token = create_access_token(settings, actor.user_id, is_admin=actor.is_admin, is_active=actor.is_active)
        return {"Authorization": f"Bearer {token}"}
    return _header


@pytest.fixture
def signed_event(settings, clock):
    ids = count(1)

    def _event(event_type, session, event_id=None):
        body = json.dumps({
            "id": event_id or f"evt_test_{next(ids)}",
            "type": event_type,
            "data": {"object": session},
        }).encode("utf-8")
        header = sign_payload(settings.PAYMENT_WEBHOOK_SECRET, body, calendar.timegm(clock().timetuple()))
        return body, header
    return _event


@pytest.fixture
def place_order(service, make_listing):
    def _place(actor=BUYER, listing=None, **fields):
        listing = listing or make_listing()
        fields.setdefault("quantity", 1)
        result = service.create_order(actor, OrderCreate(product_id=listing.id, **fields))
        return result["order"]["id"]
    return _place


@pytest.fixture
def pay(service, signed_event):
    def _pay(order_id, event_id=None):
        body, header = signed_event(
            "checkout.session.completed",
            {"id": f"cs_paid_{order_id}", "payment_intent": f"pi_{order_id}",
             "metadata": {"order_id": str(order_id)}},
            event_id,
        )
        return service.handle_payment_webhook(body, header)
    return _pay
