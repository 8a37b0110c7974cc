"""
Pydantic schemas for the Shooty booking engine.
"""

from .payment import WebhookResponse
from .quote import (
    LineItemIn,
    LineItemResponse,
    QuoteCreate,
    QuoteDecision,
    QuoteResponse,
    QuoteStatsResponse,
    QuoteUpdate,
)
from .reservation import (
    CancellationRequest,
    CancellationResponse,
    CheckoutRequest,
    CheckoutResponse,
    EarningsResponse,
    ReservationResponse,
    ReservationStatsResponse,
    TransactionResponse,
)

__all__ = [
    "CancellationRequest",
    "CancellationResponse",
    "CheckoutRequest",
    "CheckoutResponse",
    "EarningsResponse",
    "LineItemIn",
    "LineItemResponse",
    "QuoteCreate",
    "QuoteDecision",
    "QuoteResponse",
    "QuoteStatsResponse",
    "QuoteUpdate",
    "ReservationResponse",
    "ReservationStatsResponse",
    "TransactionResponse",
    "WebhookResponse",
]
