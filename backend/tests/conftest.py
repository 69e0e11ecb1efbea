"""Pytest configuration and fixtures."""

import os

# Settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("GATEWAY_INTEGRITY_SECRET", "test_integrity_secret")
os.environ.setdefault("GATEWAY_EVENTS_SECRET", "test_events_secret")

import pytest
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.cache import CheckoutSessionStore, RedisCacheClient
from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import get_db
from app.main import app
# Import all models to ensure they're registered with Base.metadata
from app.models import *
from app.services import cart_lock_service
from app.services.cart_lock_service import CartIdentity, CartLockManager, InMemoryCartLockStore
from app.services.cart_service import CartService
from app.services.checkout_service import CheckoutService, get_checkout_service
from app.services.payment_gateway_service import (
    GatewayStatus,
    GatewayTransaction,
    PaymentGateway,
    sign_integrity,
)
from app.services.pricing.clock import VENUE_TZ, WEEKDAYS

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

# Friday 6 March 2026; the club opens Thursday to Saturday 22:00-03:00
FRIDAY = date(2026, 3, 6)
SATURDAY = date(2026, 3, 7)


def venue_time(day: date, hour: int, minute: int = 0) -> datetime:
    """Venue wall-clock time as an aware UTC instant."""
    return datetime.combine(day, time(hour, minute), tzinfo=VENUE_TZ).astimezone(timezone.utc)


NOW = venue_time(FRIDAY, 12)


class FakeClock:
    """Settable clock for services that take a ``clock`` callable."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGateway(PaymentGateway):
    """In-process gateway with scripted statuses.

    ``statuses`` is consumed one per status call; the last one repeats.
    Setting ``gate`` makes status calls wait until the event is set.
    """

    name = "fake"

    def __init__(self, create_status=GatewayStatus.PENDING, statuses=None):
        self.create_status = create_status
        self.statuses = list(statuses or [GatewayStatus.APPROVED])
        self.created = []
        self.status_calls = 0
        self.fail_create = None
        self.gate = None
        self._amounts = {}
        self._references = {}

    async def create_transaction(self, payload):
        if self.fail_create is not None:
            raise self.fail_create
        self.created.append(payload)
        tx_id = f"tx-{len(self.created)}"
        self._amounts[tx_id] = payload["amount_in_cents"]
        self._references[tx_id] = payload["reference"]
        return GatewayTransaction(
            id=tx_id,
            status=self.create_status,
            amount_in_cents=payload["amount_in_cents"],
            reference=payload["reference"],
            redirect_url="https://bank.test/redirect" if payload["payment_method"]["type"] == "PSE" else None,
        )

    async def get_transaction_status(self, transaction_id):
        self.status_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return GatewayTransaction(
            id=transaction_id,
            status=status,
            amount_in_cents=self._amounts.get(transaction_id),
            reference=self._references.get(transaction_id),
        )

    async def get_acceptance_token(self):
        return "acceptance-token-test"

    def sign(self, reference, amount_in_cents, currency):
        return sign_integrity(reference, amount_in_cents, currency, "test_integrity_secret")

    async def tokenize_card(self, card):
        return "tok_test_4242"


async def no_sleep(_seconds):
    return None


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ============================================================================
# Catalog
# ============================================================================


@pytest.fixture
def club(db_session: Session) -> Club:
    """Club open Thursday to Saturday, 22:00 to 03:00."""
    open_days = ["Thursday", "Friday", "Saturday"]
    club = Club(
        name="La Terraza",
        city="Medellin",
        open_days=open_days,
        open_hours=[{"day": day, "open": "22:00", "close": "03:00"} for day in open_days],
        is_active=True,
    )
    db_session.add(club)
    db_session.commit()
    db_session.refresh(club)
    return club


@pytest.fixture
def general_ticket(db_session: Session, club: Club) -> Ticket:
    ticket = Ticket(
        club_id=club.id,
        name="General cover",
        category=TicketCategory.GENERAL,
        price=Decimal("50000"),
        dynamic_pricing_enabled=True,
        max_per_person=10,
        is_active=True,
    )
    db_session.add(ticket)
    db_session.commit()
    db_session.refresh(ticket)
    return ticket


@pytest.fixture
def limited_ticket(db_session: Session, club: Club) -> Ticket:
    """General ticket with three units of stock."""
    ticket = Ticket(
        club_id=club.id,
        name="Early bird",
        category=TicketCategory.GENERAL,
        price=Decimal("40000"),
        dynamic_pricing_enabled=True,
        max_per_person=10,
        quantity=3,
        is_active=True,
    )
    db_session.add(ticket)
    db_session.commit()
    db_session.refresh(ticket)
    return ticket


@pytest.fixture
def free_ticket(db_session: Session, club: Club) -> Ticket:
    ticket = Ticket(
        club_id=club.id,
        name="Ladies night guest list",
        category=TicketCategory.FREE,
        price=Decimal("0"),
        dynamic_pricing_enabled=True,
        max_per_person=4,
        available_date=FRIDAY,
        is_active=True,
    )
    db_session.add(ticket)
    db_session.commit()
    db_session.refresh(ticket)
    return ticket


@pytest.fixture
def event(db_session: Session, club: Club) -> Event:
    """Saturday event, doors at 21:00."""
    event = Event(
        club_id=club.id,
        name="Techno Night",
        available_date=SATURDAY,
        open_hours={"open": "21:00", "close": "04:00"},
        is_active=True,
    )
    db_session.add(event)
    db_session.commit()
    db_session.refresh(event)
    return event


@pytest.fixture
def event_ticket(db_session: Session, club: Club, event: Event) -> Ticket:
    ticket = Ticket(
        club_id=club.id,
        event_id=event.id,
        name="Techno Night entry",
        category=TicketCategory.EVENT,
        price=Decimal("80000"),
        dynamic_pricing_enabled=True,
        max_per_person=6,
        quantity=100,
        is_active=True,
    )
    db_session.add(ticket)
    db_session.commit()
    db_session.refresh(ticket)
    return ticket


@pytest.fixture
def menu_item(db_session: Session, club: Club) -> MenuItem:
    item = MenuItem(
        club_id=club.id,
        name="Aguardiente shot",
        price=Decimal("12000"),
        has_variants=False,
        dynamic_pricing_enabled=True,
        max_per_person=20,
        is_active=True,
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def bottle_item(db_session: Session, club: Club) -> MenuItem:
    """Menu item sold only through its variants."""
    item = MenuItem(
        club_id=club.id,
        name="Old Parr",
        price=None,
        has_variants=True,
        dynamic_pricing_enabled=True,
        max_per_person=5,
        is_active=True,
    )
    item.variants = [
        MenuItemVariant(name="Bottle", price=Decimal("300000"), dynamic_pricing_enabled=True, is_active=True),
        MenuItemVariant(name="Half bottle", price=Decimal("160000"), dynamic_pricing_enabled=False, is_active=True),
    ]
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def buyer() -> CartIdentity:
    return CartIdentity(session_id="sess-test-0001")


@pytest.fixture
def lock_manager(clock: FakeClock) -> CartLockManager:
    return CartLockManager(InMemoryCartLockStore(), clock=clock)


@pytest.fixture
def cart_service(db_session: Session, lock_manager: CartLockManager, clock: FakeClock) -> CartService:
    return CartService(db_session, lock_manager, clock=clock)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> MagicMock:
    notifier = MagicMock()
    notifier.send_purchase_email = AsyncMock()
    notifier.send_invoice_email = AsyncMock()
    return notifier


@pytest.fixture
def session_store() -> CheckoutSessionStore:
    return CheckoutSessionStore(RedisCacheClient(), ttl_minutes=30)


@pytest.fixture
def checkout_service(session_factory, gateway, lock_manager, session_store, notifier, clock) -> CheckoutService:
    return CheckoutService(
        db_factory=session_factory,
        gateway=gateway,
        lock_manager=lock_manager,
        session_store=session_store,
        notifier=notifier,
        clock=clock,
        sleep=no_sleep,
    )


# ============================================================================
# API
# ============================================================================


@pytest.fixture
def route_gateway() -> FakeGateway:
    """Gateway used behind the API; approves on creation."""
    return FakeGateway(create_status=GatewayStatus.APPROVED)


@pytest.fixture(scope="function")
def client(db_session: Session, session_factory, route_gateway, notifier) -> Generator[TestClient, None, None]:
    """Create a test client with database and checkout overrides."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    # Fresh process-wide lock manager per test
    cart_lock_service._manager = CartLockManager(InMemoryCartLockStore())
    checkout = CheckoutService(
        db_factory=session_factory,
        gateway=route_gateway,
        lock_manager=cart_lock_service._manager,
        session_store=CheckoutSessionStore(RedisCacheClient()),
        notifier=notifier,
        sleep=no_sleep,
    )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_checkout_service] = lambda: checkout
    # Disable rate limiters during tests to avoid flaky failures
    from app.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    global_limiter.enabled = True
    app.dependency_overrides.clear()
    cart_lock_service._manager = None


@pytest.fixture
def open_club(db_session: Session) -> Club:
    """Club open every night, for API tests that run on the real clock."""
    club = Club(
        name="Siempre Abierto",
        city="Bogota",
        open_days=list(WEEKDAYS),
        open_hours=[{"day": day, "open": "22:00", "close": "04:00"} for day in WEEKDAYS],
        is_active=True,
    )
    db_session.add(club)
    db_session.commit()
    db_session.refresh(club)
    return club


@pytest.fixture
def open_club_ticket(db_session: Session, open_club: Club) -> Ticket:
    ticket = Ticket(
        club_id=open_club.id,
        name="Cover",
        category=TicketCategory.GENERAL,
        price=Decimal("30000"),
        dynamic_pricing_enabled=True,
        max_per_person=10,
        is_active=True,
    )
    db_session.add(ticket)
    db_session.commit()
    db_session.refresh(ticket)
    return ticket


@pytest.fixture
def session_headers() -> dict:
    return {"X-Session-Id": "sess-api-test-0001"}


@pytest.fixture
def auth_headers() -> dict:
    """Bearer token for a signed-in buyer."""
    token = create_access_token(data={"sub": "user-42"})
    return {"Authorization": f"Bearer {token}"}
