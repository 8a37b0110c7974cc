"""
Settlement ledger model.

Rows are append-only. ``external_event_id`` is the idempotency key of the
processor event (or refund) that produced the row; its unique index is what
makes duplicate webhook deliveries collapse into a single money movement.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import ulid
from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shooty.database import Base

if TYPE_CHECKING:
    from shooty.models.reservation import Reservation


class SettlementTransaction(Base):
    """A single signed money movement for a reservation."""

    __tablename__ = "settlement_transactions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    reservation_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("reservations.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, comment="Signed; refunds are negative"
    )
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    external_event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    processor_reference: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True, comment="Charge, payment intent or refund id"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    reservation: Mapped["Reservation"] = relationship("Reservation", back_populates="transactions")

    __table_args__ = (
        CheckConstraint(
            "type IN ('deposit_transfer', 'balance_transfer', 'refund')",
            name="ck_settlement_transactions_type",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<SettlementTransaction(reservation_id={self.reservation_id}, type={self.type}, "
            f"gross={self.gross_amount}, event={self.external_event_id})>"
        )
