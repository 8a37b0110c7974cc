# backend/tests/conftest.py
"""
Pytest configuration for the booking engine.

Every test gets its own file-backed SQLite database so that two sessions
can see each other's committed rows, which the slot-conflict tests need.
The payment processor is always the in-memory fake below; nothing here
talks to Stripe.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import os
from typing import Any, Dict, List, Optional

# Set before any shooty import so the module-level engine never points at a real database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from sqlalchemy.orm import Session, sessionmaker

from shooty.core.config import settings
from shooty.core.enums import CancellationTier, LineItemKind, PaymentEventType, PaymentLeg
from shooty.database import Base, create_db_engine
import shooty.models  # noqa: F401
from shooty.models.reservation import Reservation
from shooty.schemas.quote import LineItemIn, QuoteCreate
from shooty.services.payment_orchestrator import PaymentOrchestrator
from shooty.services.payment_processor import CheckoutHandle, PaymentEvent, RefundReceipt
from shooty.services.quote_service import QuoteService
from shooty.services.reservation_service import ReservationService

PROVIDER_ID = "prov_lena"
CLIENT_ID = "client_marc"


class FakePaymentProcessor:
    """
    PaymentProcessor stand-in that records every call.

    Queue exceptions on ``checkout_errors`` / ``refund_errors`` to make the
    next calls fail in order.
    """

    def __init__(self) -> None:
        self.checkouts: List[Dict[str, Any]] = []
        self.refunds: List[Dict[str, Any]] = []
        self.checkout_errors: List[Exception] = []
        self.refund_errors: List[Exception] = []

    def create_checkout_session(self, amount, currency, metadata, idempotency_key) -> CheckoutHandle:
        self.checkouts.append(
            {
                "amount": amount,
                "currency": currency,
                "metadata": dict(metadata),
                "idempotency_key": idempotency_key,
            }
        )
        if self.checkout_errors:
            raise self.checkout_errors.pop(0)
        session_id = f"cs_test_{len(self.checkouts)}"
        return CheckoutHandle(
            session_id=session_id, redirect_url=f"https://checkout.test/{session_id}"
        )

    def refund(self, charge_id, amount, idempotency_key) -> RefundReceipt:
        self.refunds.append(
            {"charge_id": charge_id, "amount": amount, "idempotency_key": idempotency_key}
        )
        if self.refund_errors:
            raise self.refund_errors.pop(0)
        return RefundReceipt(
            refund_id=f"re_test_{len(self.refunds)}", status="succeeded", amount=amount
        )


@pytest.fixture(autouse=True)
def _fast_processor_retries(monkeypatch):
    """Keep backoff sleeps negligible."""
    monkeypatch.setattr(settings, "processor_backoff_base", 0.0)
    monkeypatch.setattr(settings, "processor_max_attempts", 3)


@pytest.fixture
def engine(tmp_path):
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'shooty_test.db'}")
    Base.metadata.create_all(db_engine)
    yield db_engine
    Base.metadata.drop_all(db_engine)
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def processor() -> FakePaymentProcessor:
    return FakePaymentProcessor()


@pytest.fixture
def quote_service(db) -> QuoteService:
    return QuoteService(db)


@pytest.fixture
def orchestrator(db, processor) -> PaymentOrchestrator:
    return PaymentOrchestrator(db, processor, currency="eur")


@pytest.fixture
def reservation_service(db, orchestrator) -> ReservationService:
    return ReservationService(db, orchestrator)


def build_quote_create(
    now: datetime,
    *,
    provider_id: str = PROVIDER_ID,
    client_id: str = CLIENT_ID,
    demand_id: Optional[str] = "demand_wedding",
    base_rate: str = "800.00",
    options: tuple = (("Second shooter", "150.00"),),
    travel_fee: Optional[str] = "50.00",
    starts_in: timedelta = timedelta(days=10),
    slot_window_minutes: int = 240,
    tier: CancellationTier = CancellationTier.MODERATE,
    valid_for: timedelta = timedelta(days=3),
) -> QuoteCreate:
    """Quote payload; the defaults add up to 1000.00."""
    items = [LineItemIn(kind=LineItemKind.BASE_RATE, label="Full day coverage", amount=Decimal(base_rate))]
    items += [
        LineItemIn(kind=LineItemKind.OPTION, label=label, amount=Decimal(amount))
        for label, amount in options
    ]
    if travel_fee is not None:
        items.append(LineItemIn(kind=LineItemKind.TRAVEL_FEE, label="Travel", amount=Decimal(travel_fee)))
    return QuoteCreate(
        demand_id=demand_id,
        provider_id=provider_id,
        client_id=client_id,
        line_items=items,
        service_start=now + starts_in,
        slot_window_minutes=slot_window_minutes,
        cancellation_tier=tier,
        message="Happy to cover your day",
        valid_until=now + valid_for,
    )


@pytest.fixture
def make_quote(quote_service, now):
    def _make(**overrides):
        return quote_service.create_quote(build_quote_create(now, **overrides), now=now)

    return _make


@pytest.fixture
def make_reservation(make_quote, quote_service, now):
    """Accepted quote -> reservation in awaiting_payment."""

    def _make(**overrides) -> Reservation:
        quote = make_quote(**overrides)
        return quote_service.accept_quote(quote.id, now=now)

    return _make


def _payment_event(
    reservation: Reservation,
    *,
    leg: PaymentLeg = PaymentLeg.DEPOSIT,
    event_id: str = "evt_deposit_1",
    amount: Optional[Decimal] = None,
    reference: str = "pi_test_deposit",
) -> PaymentEvent:
    if amount is None:
        amount = reservation.deposit_amount if leg == PaymentLeg.DEPOSIT else reservation.balance_amount
    return PaymentEvent(
        event_id=event_id,
        type=PaymentEventType.PAYMENT_SUCCEEDED,
        reservation_id=reservation.id,
        amount=Decimal(amount),
        leg=leg,
        processor_reference=reference,
        raw_type="checkout.session.completed",
    )


@pytest.fixture
def make_payment_event():
    """Build a normalized payment_succeeded event for a reservation leg."""
    return _payment_event


@pytest.fixture
def paid_reservation(make_reservation, orchestrator, db):
    """Reservation whose 300.00 deposit has been captured."""

    def _make(**overrides) -> Reservation:
        reservation = make_reservation(**overrides)
        orchestrator.on_payment_confirmed(_payment_event(reservation, event_id=f"evt_dep_{reservation.id}"))
        db.refresh(reservation)
        return reservation

    return _make
