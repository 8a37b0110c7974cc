# backend/shooty/services/reservation_service.py
"""
Reservation Service for the Shooty booking engine.

Entry points that act on an existing reservation (delivery, cancellation,
checkout) plus the read models used by client and provider dashboards.
Money movement itself is delegated to PaymentOrchestrator.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.enums import PaymentLeg, ReservationStatus, UserRole
from ..core.exceptions import InvalidTransition, NotFoundException, ValidationException
from ..core.timezone_utils import ensure_utc, utc_now
from ..domain import cancellation_policy
from ..domain import reservation_state_machine as state_machine
from ..domain.cancellation_policy import RefundQuote
from ..models.reservation import Reservation
from ..models.transaction import SettlementTransaction
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .payment_orchestrator import PaymentOrchestrator
from .payment_processor import CheckoutHandle, with_processor_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancellationOutcome:
    reservation_id: str
    status: ReservationStatus
    refund: RefundQuote
    refund_id: Optional[str] = None


class ReservationService(BaseService):
    """Service layer for reservation operations."""

    def __init__(self, db: Session, payment_orchestrator: PaymentOrchestrator):
        super().__init__(db)
        self.repository = RepositoryFactory.create_reservation_repository(db)
        self.payment_orchestrator = payment_orchestrator
        self.ledger = payment_orchestrator.ledger

    # ========== Reads ==========

    def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = self.repository.get_by_id(reservation_id)
        if not reservation:
            raise NotFoundException(
                "Reservation not found",
                code="RESERVATION_NOT_FOUND",
                details={"reservation_id": reservation_id},
            )
        return reservation

    def list_transactions(self, reservation_id: str) -> List[SettlementTransaction]:
        self.get_reservation(reservation_id)
        return self.ledger.list_for_reservation(reservation_id)

    def list_for_client(
        self, client_id: str, statuses: Optional[Sequence[ReservationStatus]] = None
    ) -> List[Reservation]:
        return self.repository.list_for_client(client_id, statuses)

    def list_for_provider(
        self, provider_id: str, statuses: Optional[Sequence[ReservationStatus]] = None
    ) -> List[Reservation]:
        return self.repository.list_for_provider(provider_id, statuses)

    def list_upcoming(
        self, user_id: str, role: UserRole, now: Optional[datetime] = None
    ) -> List[Reservation]:
        """Active reservations that have not started yet, soonest first."""
        current = ensure_utc(now or utc_now())
        return self.repository.list_upcoming(user_id, role, current, state_machine.ACTIVE_STATES)

    def get_calendar(self, provider_id: str, start: datetime, end: datetime) -> List[Reservation]:
        """
        Provider calendar: reservations starting between ``start`` and ``end``
        (both inclusive) that were not cancelled.

        Raises:
            ValidationException: ``end`` before ``start``
        """
        start, end = ensure_utc(start), ensure_utc(end)
        if end < start:
            raise ValidationException(
                "Calendar range end must not be before its start",
                code="INVALID_DATE_RANGE",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )
        return self.repository.list_for_provider_between(
            provider_id,
            start,
            end,
            excluded=(ReservationStatus.CANCELLED, ReservationStatus.REFUNDED),
        )

    @BaseService.measure_operation("reservation_stats")
    def get_reservation_stats(
        self, user_id: str, role: UserRole, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        counts = self.repository.count_by_status(user_id, role)
        by_status = {status.value: counts.get(status.value, 0) for status in ReservationStatus}
        return {
            "user_id": user_id,
            "role": role.value,
            "total": sum(by_status.values()),
            "by_status": by_status,
            "upcoming": len(self.list_upcoming(user_id, role, now)),
            "completed_revenue": self.repository.completed_total(user_id, role),
        }

    def get_provider_earnings(
        self, provider_id: str, since: Optional[datetime] = None
    ) -> Dict[str, Any]:
        earnings = self.ledger.earnings_for_provider(provider_id, since)
        return {"provider_id": provider_id, **earnings}

    # ========== Actions ==========

    @BaseService.measure_operation("mark_service_delivered")
    def mark_service_delivered(
        self, reservation_id: str, now: Optional[datetime] = None
    ) -> Reservation:
        """Provider confirms the shoot happened; opens the balance leg."""
        reservation = self.get_reservation(reservation_id)
        current = ReservationStatus(reservation.status)
        target = ReservationStatus.CONFIRMED
        if current != ReservationStatus.DEPOSIT_PAID:
            raise InvalidTransition(current.value, target.value)
        state_machine.transition(current, target)

        with self.transaction():
            if not self.repository.compare_and_set_status(
                reservation.id,
                current,
                target,
                confirmed_at=ensure_utc(now or utc_now()),
            ):
                self.db.refresh(reservation)
                raise InvalidTransition(reservation.status, target.value)

        self.log_operation("mark_service_delivered", reservation_id=reservation.id)
        return reservation

    def initiate_checkout(self, reservation_id: str, leg: PaymentLeg) -> CheckoutHandle:
        reservation = self.get_reservation(reservation_id)
        if leg == PaymentLeg.BALANCE:
            return self.payment_orchestrator.initiate_balance_checkout(reservation)
        return self.payment_orchestrator.initiate_deposit_checkout(reservation)

    @BaseService.measure_operation("request_cancellation")
    def request_cancellation(
        self,
        reservation_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CancellationOutcome:
        """
        Cancel a non-terminal reservation and refund per its policy tier.

        The refund is computed from what the ledger currently holds for the
        reservation. Transient processor failures are retried with backoff;
        if every attempt fails the reservation is left unchanged.

        Raises:
            InvalidTransition: reservation already terminal
            PaymentProcessorError: refund could not be issued
        """
        reservation = self.get_reservation(reservation_id)
        if state_machine.is_terminal(reservation.status):
            raise InvalidTransition(reservation.status, ReservationStatus.CANCELLED.value)

        paid: Decimal = self.ledger.sum_by_reservation(reservation.id)
        refund = cancellation_policy.evaluate(
            reservation.cancellation_tier,
            reservation.service_start,
            paid,
            now=ensure_utc(now or utc_now()),
        )

        outcome = with_processor_retry(
            "refund",
            lambda: self.payment_orchestrator.initiate_refund(
                reservation, refund.refund_amount, reason=reason
            ),
        )

        self.log_operation(
            "request_cancellation",
            reservation_id=reservation.id,
            days_before=refund.days_before,
            refund_amount=str(refund.refund_amount),
            final_status=outcome.status.value,
        )
        return CancellationOutcome(
            reservation_id=reservation.id,
            status=outcome.status,
            refund=refund,
            refund_id=outcome.refund_id,
        )
