# backend/shooty/schemas/quote.py
"""
Quote schemas for the Shooty booking engine.

Request models validate shape only (types, ranges, required fields). Rules
that depend on other line items or on the current time live in
QuoteService so they apply to every caller, not only HTTP.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from ..core.enums import CancellationTier, LineItemKind, QuoteStatus
from ..core.timezone_utils import ensure_utc, ensure_utc_optional
from .base import Money, StandardizedModel, StrictRequestModel


class LineItemIn(StrictRequestModel):
    kind: LineItemKind
    label: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)

    @field_validator("label")
    @classmethod
    def clean_label(cls, v: str) -> str:
        return v.strip()


class QuoteCreate(StrictRequestModel):
    """Provider's offer for a client demand."""

    demand_id: Optional[str] = Field(None, description="Client demand this quote answers")
    provider_id: str = Field(..., description="Provider issuing the quote")
    client_id: str = Field(..., description="Client the quote is addressed to")
    line_items: List[LineItemIn] = Field(..., min_length=1)
    service_start: datetime
    slot_window_minutes: int = Field(..., gt=0, le=24 * 60)
    cancellation_tier: CancellationTier = CancellationTier.MODERATE
    message: Optional[str] = Field(None, max_length=2000)
    valid_until: datetime

    @field_validator("service_start", "valid_until")
    @classmethod
    def normalize_to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class QuoteUpdate(StrictRequestModel):
    """Changes allowed while a quote is pending."""

    line_items: Optional[List[LineItemIn]] = Field(None, min_length=1)
    message: Optional[str] = Field(None, max_length=2000)
    valid_until: Optional[datetime] = None

    @field_validator("valid_until")
    @classmethod
    def normalize_to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc_optional(v)


class QuoteDecision(StrictRequestModel):
    """Reason attached to a rejection or cancellation."""

    reason: Optional[str] = Field(None, max_length=1000)


class LineItemResponse(StandardizedModel):
    kind: LineItemKind
    label: str
    amount: Money


class QuoteResponse(StandardizedModel):
    id: str
    demand_id: Optional[str] = None
    provider_id: str
    client_id: str
    line_items: List[LineItemResponse]
    total: Money
    service_start: datetime
    slot_window_minutes: int
    cancellation_tier: str
    message: Optional[str] = None
    valid_until: datetime
    status: QuoteStatus
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None


class QuoteStatsResponse(StandardizedModel):
    provider_id: str
    total: int
    by_status: Dict[str, int]
    accepted_revenue: Money
    conversion_rate: float = Field(..., description="Accepted share of all quotes, in percent")
