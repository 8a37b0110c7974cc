# backend/shooty/models/quote.py
"""
Quote models for the Shooty booking engine.

A provider answers a client's demand with a Quote made of typed line
items. The quote total is always the sum of its line items and is
recomputed whenever the items change; once accepted the quote is frozen
and the resulting Reservation carries its own snapshot of the money.
"""

from datetime import datetime, timezone
from typing import Optional

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
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import QuoteStatus
from ..core.timezone_utils import ensure_utc
from ..database import Base


class Quote(Base):
    """Priced offer from a provider for a client's demand."""

    __tablename__ = "quotes"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    demand_id = Column(String(26), nullable=True, index=True)
    provider_id = Column(String(26), nullable=False, index=True)
    client_id = Column(String(26), nullable=False, index=True)

    total = Column(Numeric(10, 2), nullable=False)
    service_start = Column(DateTime(timezone=True), nullable=False)
    slot_window_minutes = Column(Integer, nullable=False)
    cancellation_tier = Column(String(20), nullable=False)
    message = Column(Text, nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=False)

    status = Column(String(20), nullable=False, default=QuoteStatus.PENDING.value, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    line_items = relationship(
        "QuoteLineItem",
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="QuoteLineItem.position",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'cancelled', 'expired')",
            name="ck_quotes_status",
        ),
        CheckConstraint("total >= 0", name="check_quote_total_non_negative"),
        CheckConstraint("slot_window_minutes > 0", name="check_quote_window_positive"),
        Index("ix_quotes_provider_status", "provider_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Quote {self.id}: provider={self.provider_id}, client={self.client_id}, "
            f"total={self.total}, status={self.status}>"
        )

    @property
    def is_pending(self) -> bool:
        return self.status == QuoteStatus.PENDING.value

    def is_past_validity(self, now: Optional[datetime] = None) -> bool:
        """True once ``now`` has reached ``valid_until``."""
        current = now or datetime.now(timezone.utc)
        return ensure_utc(current) >= ensure_utc(self.valid_until)


class QuoteLineItem(Base):
    """One priced entry on a quote (base rate, option or travel fee)."""

    __tablename__ = "quote_line_items"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    quote_id = Column(
        String(26), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind = Column(String(20), nullable=False)
    label = Column(String(200), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    quote = relationship("Quote", back_populates="line_items")

    __table_args__ = (
        CheckConstraint(
            "kind IN ('base_rate', 'option', 'travel_fee')",
            name="ck_quote_line_items_kind",
        ),
        CheckConstraint("amount >= 0", name="check_line_item_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<QuoteLineItem {self.kind} {self.label}={self.amount}>"
