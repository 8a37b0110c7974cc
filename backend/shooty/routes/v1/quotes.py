# backend/shooty/routes/v1/quotes.py
"""
Quote routes - API v1

Versioned quote endpoints under /api/v1.
All business logic delegated to QuoteService.

Endpoints:
    POST /quotes - Provider issues a quote
    GET /quotes/{quote_id} - Quote details (expires it if lapsed)
    PATCH /quotes/{quote_id} - Edit a pending quote
    POST /quotes/{quote_id}/accept - Client accepts; creates the reservation
    POST /quotes/{quote_id}/reject - Client declines
    POST /quotes/{quote_id}/cancel - Provider withdraws
    GET /demands/{demand_id}/quotes - Quotes answering a demand, cheapest first
    GET /users/{user_id}/quotes - Quotes sent by a provider or received by a client
    GET /providers/{provider_id}/quote-stats - Provider conversion dashboard
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status

from ...api.dependencies import get_quote_service
from ...core.enums import QuoteStatus, UserRole
from ...core.exceptions import DomainException
from ...schemas.quote import (
    QuoteCreate,
    QuoteDecision,
    QuoteResponse,
    QuoteStatsResponse,
    QuoteUpdate,
)
from ...schemas.reservation import ReservationResponse
from ...services.quote_service import QuoteService
from .errors import ULID_PATH_PATTERN, handle_domain_exception

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["quotes-v1"])


@router.post(
    "/quotes",
    response_model=QuoteResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"description": "Invalid line items or schedule"}},
)
def create_quote(
    payload: QuoteCreate = Body(...),
    quote_service: QuoteService = Depends(get_quote_service),
) -> QuoteResponse:
    """Create a pending quote for a client demand."""
    try:
        quote = quote_service.create_quote(payload)
        return QuoteResponse.model_validate(quote)
    except DomainException as e:
        handle_domain_exception(e)


@router.get(
    "/quotes/{quote_id}",
    response_model=QuoteResponse,
    responses={404: {"description": "Quote not found"}},
)
def get_quote(
    quote_id: str = Path(
        ...,
        description="Quote ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    quote_service: QuoteService = Depends(get_quote_service),
) -> QuoteResponse:
    try:
        return QuoteResponse.model_validate(quote_service.get_quote(quote_id))
    except DomainException as e:
        handle_domain_exception(e)


@router.patch(
    "/quotes/{quote_id}",
    response_model=QuoteResponse,
    responses={404: {"description": "Quote not found"}, 409: {"description": "Quote not pending"}},
)
def update_quote(
    quote_id: str = Path(
        ...,
        description="Quote ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    payload: QuoteUpdate = Body(...),
    quote_service: QuoteService = Depends(get_quote_service),
) -> QuoteResponse:
    """Edit line items, message or validity of a pending quote."""
    try:
        quote = quote_service.update_quote(quote_id, payload)
        return QuoteResponse.model_validate(quote)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/quotes/{quote_id}/accept",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Quote expired"},
        404: {"description": "Quote not found"},
        409: {"description": "Quote not pending or slot already booked"},
    },
)
def accept_quote(
    quote_id: str = Path(
        ...,
        description="Quote ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    quote_service: QuoteService = Depends(get_quote_service),
) -> ReservationResponse:
    """
    Accept a quote.

    Creates a reservation in awaiting_payment with its deposit/balance split.
    A 409 with code SLOT_CONFLICT means another reservation holds the
    provider's slot; the quote stays pending.
    """
    try:
        reservation = quote_service.accept_quote(quote_id)
        return ReservationResponse.model_validate(reservation)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/quotes/{quote_id}/reject",
    response_model=QuoteResponse,
    responses={404: {"description": "Quote not found"}, 409: {"description": "Quote not pending"}},
)
def reject_quote(
    quote_id: str = Path(
        ...,
        description="Quote ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    decision: Optional[QuoteDecision] = Body(None),
    quote_service: QuoteService = Depends(get_quote_service),
) -> QuoteResponse:
    try:
        quote = quote_service.reject_quote(quote_id, reason=decision.reason if decision else None)
        return QuoteResponse.model_validate(quote)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/quotes/{quote_id}/cancel",
    response_model=QuoteResponse,
    responses={404: {"description": "Quote not found"}, 409: {"description": "Quote not pending"}},
)
def cancel_quote(
    quote_id: str = Path(
        ...,
        description="Quote ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    decision: Optional[QuoteDecision] = Body(None),
    quote_service: QuoteService = Depends(get_quote_service),
) -> QuoteResponse:
    try:
        quote = quote_service.cancel_quote(quote_id, reason=decision.reason if decision else None)
        return QuoteResponse.model_validate(quote)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/demands/{demand_id}/quotes", response_model=List[QuoteResponse])
def list_quotes_for_demand(
    demand_id: str = Path(..., description="Client demand id"),
    quote_service: QuoteService = Depends(get_quote_service),
) -> List[QuoteResponse]:
    quotes = quote_service.list_quotes_for_demand(demand_id)
    return [QuoteResponse.model_validate(quote) for quote in quotes]


@router.get("/users/{user_id}/quotes", response_model=List[QuoteResponse])
def list_user_quotes(
    user_id: str = Path(..., description="Client or provider id"),
    role: UserRole = Query(UserRole.CLIENT, description="Side of the marketplace"),
    quote_status: Optional[QuoteStatus] = Query(None, alias="status"),
    quote_service: QuoteService = Depends(get_quote_service),
) -> List[QuoteResponse]:
    """Quotes a provider sent or a client received, newest first."""
    try:
        if role == UserRole.PROVIDER:
            quotes = quote_service.list_quotes_for_provider(user_id, status=quote_status)
        else:
            quotes = quote_service.list_quotes_for_client(user_id, status=quote_status)
        return [QuoteResponse.model_validate(quote) for quote in quotes]
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/providers/{provider_id}/quote-stats", response_model=QuoteStatsResponse)
def get_provider_quote_stats(
    provider_id: str = Path(..., description="Provider id"),
    quote_service: QuoteService = Depends(get_quote_service),
) -> QuoteStatsResponse:
    """Quote counts per status, accepted revenue and conversion rate."""
    try:
        return QuoteStatsResponse(**quote_service.get_provider_quote_stats(provider_id))
    except DomainException as e:
        handle_domain_exception(e)
