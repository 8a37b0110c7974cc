# backend/shooty/models/reservation.py
"""
Reservation model for the Shooty booking engine.

A Reservation is created from exactly one accepted Quote and snapshots the
money split at acceptance time. The provider's time slot is guarded by the
partial unique index ``uq_reservations_active_slot``: among reservations
in an active status, (provider_id, service_start, slot_window_minutes)
appears at most once. Leaving the active set releases the slot.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import ReservationStatus
from ..database import Base

ACTIVE_SLOT_INDEX = "uq_reservations_active_slot"
ACTIVE_SLOT_COLUMNS = ("provider_id", "service_start", "slot_window_minutes")

_ACTIVE_STATUS_FILTER = text("status IN ('awaiting_payment', 'deposit_paid', 'confirmed')")


class Reservation(Base):
    """Paid (or payable) engagement between a client and a provider."""

    __tablename__ = "reservations"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    reservation_number = Column(String(32), nullable=False, unique=True)

    quote_id = Column(String(26), ForeignKey("quotes.id"), nullable=True, unique=True)
    provider_id = Column(String(26), nullable=False, index=True)
    client_id = Column(String(26), nullable=False, index=True)

    service_start = Column(DateTime(timezone=True), nullable=False, index=True)
    slot_window_minutes = Column(Integer, nullable=False)

    # Money snapshot taken at acceptance
    total = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=False)
    balance_amount = Column(Numeric(10, 2), nullable=False)

    cancellation_tier = Column(String(20), nullable=False)
    status = Column(
        String(20), nullable=False, default=ReservationStatus.AWAITING_PAYMENT.value, index=True
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    deposit_paid_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    quote = relationship("Quote")
    transactions = relationship(
        "SettlementTransaction",
        back_populates="reservation",
        order_by="SettlementTransaction.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('awaiting_payment', 'deposit_paid', 'confirmed', "
            "'completed', 'cancelled', 'refunded')",
            name="ck_reservations_status",
        ),
        CheckConstraint("deposit_amount >= 0 AND balance_amount >= 0", name="check_split_non_negative"),
        CheckConstraint("slot_window_minutes > 0", name="check_reservation_window_positive"),
        Index(
            ACTIVE_SLOT_INDEX,
            *ACTIVE_SLOT_COLUMNS,
            unique=True,
            postgresql_where=_ACTIVE_STATUS_FILTER,
            sqlite_where=_ACTIVE_STATUS_FILTER,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Reservation {self.reservation_number}: provider={self.provider_id}, "
            f"client={self.client_id}, start={self.service_start}, status={self.status}>"
        )
