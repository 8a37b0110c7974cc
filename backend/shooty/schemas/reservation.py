# backend/shooty/schemas/reservation.py
"""Reservation and settlement schemas."""

from datetime import datetime
from typing import Dict, Optional

from pydantic import Field

from ..core.enums import PaymentLeg, ReservationStatus
from .base import Money, StandardizedModel, StrictRequestModel


class ReservationResponse(StandardizedModel):
    id: str
    reservation_number: str
    quote_id: Optional[str] = None
    provider_id: str
    client_id: str
    service_start: datetime
    slot_window_minutes: int
    total: Money
    deposit_amount: Money
    balance_amount: Money
    cancellation_tier: str
    status: ReservationStatus
    deposit_paid_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class TransactionResponse(StandardizedModel):
    id: str
    reservation_id: str
    type: str
    gross_amount: Money
    platform_fee: Money
    net_amount: Money
    external_event_id: str
    processor_reference: Optional[str] = None
    created_at: datetime


class CheckoutRequest(StrictRequestModel):
    leg: PaymentLeg = PaymentLeg.DEPOSIT


class CheckoutResponse(StandardizedModel):
    reservation_id: str
    leg: PaymentLeg
    session_id: str
    redirect_url: str


class CancellationRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=1000)


class CancellationResponse(StandardizedModel):
    reservation_id: str
    status: ReservationStatus
    days_before: int
    refund_percent: float
    refund_amount: Money
    refund_id: Optional[str] = None
    policy_basis: str


class ReservationStatsResponse(StandardizedModel):
    user_id: str
    role: str
    total: int
    by_status: Dict[str, int]
    upcoming: int
    completed_revenue: Money


class EarningsResponse(StandardizedModel):
    provider_id: str
    gross: Money
    platform_fees: Money
    net: Money
    refunded: Money
    reservation_count: int
