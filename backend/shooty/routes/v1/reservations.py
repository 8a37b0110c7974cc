# backend/shooty/routes/v1/reservations.py
"""
Reservation routes - API v1

Versioned reservation endpoints under /api/v1.
All business logic delegated to ReservationService.

Endpoints:
    GET /reservations/{reservation_id} - Reservation details
    GET /reservations/{reservation_id}/transactions - Settlement ledger rows
    POST /reservations/{reservation_id}/checkout - Open checkout for a payment leg
    POST /reservations/{reservation_id}/deliver - Provider marks the service delivered
    POST /reservations/{reservation_id}/cancel - Cancel and refund per policy tier
    GET /users/{user_id}/reservations - Reservations of a client or provider
    GET /users/{user_id}/reservations/upcoming - Active reservations not started yet
    GET /users/{user_id}/reservation-stats - Counts per status and completed revenue
    GET /providers/{provider_id}/earnings - Ledger totals for a provider
    GET /providers/{provider_id}/calendar - Non-cancelled reservations in a date range
"""

from datetime import datetime
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query

from ...api.dependencies import get_reservation_service
from ...core.enums import ReservationStatus, UserRole
from ...core.exceptions import DomainException
from ...schemas.reservation import (
    CancellationRequest,
    CancellationResponse,
    CheckoutRequest,
    CheckoutResponse,
    EarningsResponse,
    ReservationResponse,
    ReservationStatsResponse,
    TransactionResponse,
)
from ...services.reservation_service import ReservationService
from .errors import ULID_PATH_PATTERN, handle_domain_exception

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["reservations-v1"])


@router.get(
    "/reservations/{reservation_id}",
    response_model=ReservationResponse,
    responses={404: {"description": "Reservation not found"}},
)
def get_reservation(
    reservation_id: str = Path(
        ...,
        description="Reservation ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = reservation_service.get_reservation(reservation_id)
        return ReservationResponse.model_validate(reservation)
    except DomainException as e:
        handle_domain_exception(e)


@router.get(
    "/reservations/{reservation_id}/transactions",
    response_model=List[TransactionResponse],
    responses={404: {"description": "Reservation not found"}},
)
def list_reservation_transactions(
    reservation_id: str = Path(
        ...,
        description="Reservation ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> List[TransactionResponse]:
    """Ledger rows for a reservation, oldest first. Refunds carry negative amounts."""
    try:
        transactions = reservation_service.list_transactions(reservation_id)
        return [TransactionResponse.model_validate(tx) for tx in transactions]
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/reservations/{reservation_id}/checkout",
    response_model=CheckoutResponse,
    responses={
        404: {"description": "Reservation not found"},
        409: {"description": "Leg not payable in the current status"},
        502: {"description": "Payment processor rejected the request"},
        503: {"description": "Payment processor unavailable"},
    },
)
def create_checkout(
    reservation_id: str = Path(
        ...,
        description="Reservation ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    payload: Optional[CheckoutRequest] = Body(None),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> CheckoutResponse:
    """
    Open a hosted checkout for the deposit or the balance.

    The reservation only moves when the processor confirms the payment
    through the webhook.
    """
    request = payload or CheckoutRequest()
    try:
        handle = reservation_service.initiate_checkout(reservation_id, request.leg)
        return CheckoutResponse(
            reservation_id=reservation_id,
            leg=request.leg,
            session_id=handle.session_id,
            redirect_url=handle.redirect_url,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/reservations/{reservation_id}/deliver",
    response_model=ReservationResponse,
    responses={404: {"description": "Reservation not found"}, 409: {"description": "Invalid transition"}},
)
def mark_service_delivered(
    reservation_id: str = Path(
        ...,
        description="Reservation ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = reservation_service.mark_service_delivered(reservation_id)
        return ReservationResponse.model_validate(reservation)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/reservations/{reservation_id}/cancel",
    response_model=CancellationResponse,
    responses={
        404: {"description": "Reservation not found"},
        409: {"description": "Reservation already closed"},
        502: {"description": "Refund rejected by the payment processor"},
        503: {"description": "Payment processor unavailable"},
    },
)
def cancel_reservation(
    reservation_id: str = Path(
        ...,
        description="Reservation ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    payload: Optional[CancellationRequest] = Body(None),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> CancellationResponse:
    """Cancel a reservation; the refund follows its cancellation tier."""
    try:
        outcome = reservation_service.request_cancellation(
            reservation_id, reason=payload.reason if payload else None
        )
        return CancellationResponse(
            reservation_id=outcome.reservation_id,
            status=outcome.status,
            days_before=outcome.refund.days_before,
            refund_percent=float(outcome.refund.percent * 100),
            refund_amount=outcome.refund.refund_amount,
            refund_id=outcome.refund_id,
            policy_basis=outcome.refund.policy_basis,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/users/{user_id}/reservations", response_model=List[ReservationResponse])
def list_user_reservations(
    user_id: str = Path(..., description="Client or provider id"),
    role: UserRole = Query(UserRole.CLIENT, description="Side of the marketplace"),
    statuses: Optional[List[ReservationStatus]] = Query(None, alias="status"),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> List[ReservationResponse]:
    if role == UserRole.PROVIDER:
        reservations = reservation_service.list_for_provider(user_id, statuses)
    else:
        reservations = reservation_service.list_for_client(user_id, statuses)
    return [ReservationResponse.model_validate(r) for r in reservations]


@router.get("/users/{user_id}/reservations/upcoming", response_model=List[ReservationResponse])
def list_upcoming_reservations(
    user_id: str = Path(..., description="Client or provider id"),
    role: UserRole = Query(UserRole.CLIENT, description="Side of the marketplace"),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> List[ReservationResponse]:
    """Dashboard widget: active reservations that have not started, soonest first."""
    reservations = reservation_service.list_upcoming(user_id, role)
    return [ReservationResponse.model_validate(r) for r in reservations]


@router.get("/users/{user_id}/reservation-stats", response_model=ReservationStatsResponse)
def get_reservation_stats(
    user_id: str = Path(..., description="Client or provider id"),
    role: UserRole = Query(UserRole.CLIENT, description="Side of the marketplace"),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> ReservationStatsResponse:
    return ReservationStatsResponse(**reservation_service.get_reservation_stats(user_id, role))


@router.get("/providers/{provider_id}/earnings", response_model=EarningsResponse)
def get_provider_earnings(
    provider_id: str = Path(..., description="Provider id"),
    since: Optional[datetime] = Query(None, description="Only count ledger rows from this time"),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> EarningsResponse:
    """Gross, platform fees, net and refunded amounts from the settlement ledger."""
    try:
        earnings = reservation_service.get_provider_earnings(provider_id, since)
        return EarningsResponse(**earnings)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/providers/{provider_id}/calendar", response_model=List[ReservationResponse])
def get_provider_calendar(
    provider_id: str = Path(..., description="Provider id"),
    start: datetime = Query(..., description="Range start (inclusive)"),
    end: datetime = Query(..., description="Range end (inclusive)"),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> List[ReservationResponse]:
    """Reservations shown on the provider calendar, in time order."""
    try:
        reservations = reservation_service.get_calendar(provider_id, start, end)
        return [ReservationResponse.model_validate(r) for r in reservations]
    except DomainException as e:
        handle_domain_exception(e)
