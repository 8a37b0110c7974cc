# backend/shooty/services/payment_orchestrator.py
"""
Payment orchestration for reservations.

Owns every money flow of a reservation:
- the deposit/balance split (delegated to pricing_service.compute_split)
- checkout sessions for each leg
- applying processor payment confirmations exactly once
- refunds against the captured deposit

Processor calls never happen inside ``self.transaction()``; the ledger row
and the status change that a confirmed payment or refund implies are
committed together afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import PaymentEventType, PaymentLeg, ReservationStatus, TransactionType
from ..core.exceptions import (
    BusinessRuleException,
    IdempotencyViolation,
    InvalidTransition,
    NotFoundException,
    PaymentProcessorError,
    RefundExceedsPaid,
    RepositoryException,
    ValidationException,
)
from ..core.metrics import PAYMENT_EVENTS_TOTAL, REFUNDS_TOTAL
from ..core.timezone_utils import utc_now
from ..domain import reservation_state_machine as state_machine
from ..domain.money import round_half_up
from ..models.reservation import Reservation
from ..models.transaction import SettlementTransaction
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .payment_processor import CheckoutHandle, PaymentEvent, PaymentProcessor, with_processor_retry
from .pricing_service import SplitResult, compute_split, platform_fee_for
from .settlement_ledger import SettlementLedger

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# leg -> (required status, status after payment, ledger type, timestamp column)
_LEG_RULES = {
    PaymentLeg.DEPOSIT: (
        ReservationStatus.AWAITING_PAYMENT,
        ReservationStatus.DEPOSIT_PAID,
        TransactionType.DEPOSIT_TRANSFER,
        "deposit_paid_at",
    ),
    PaymentLeg.BALANCE: (
        ReservationStatus.CONFIRMED,
        ReservationStatus.COMPLETED,
        TransactionType.BALANCE_TRANSFER,
        "completed_at",
    ),
}


# A payment for a reservation in one of these is refunded, not applied
_CLOSED_STATUSES = frozenset({ReservationStatus.CANCELLED.value, ReservationStatus.REFUNDED.value})

@dataclass(frozen=True)
class PaymentOutcome:
    reservation_id: str
    event_id: str
    status: ReservationStatus
    transaction_id: str
    amount: Decimal
    replayed: bool = False
    refunded: bool = False


@dataclass(frozen=True)
class RefundOutcome:
    reservation_id: str
    refund_amount: Decimal
    status: ReservationStatus
    refund_id: Optional[str] = None
    transaction_id: Optional[str] = None


class PaymentOrchestrator(BaseService):
    """Coordinates the processor, the settlement ledger and reservation status."""

    def __init__(self, db: Session, processor: PaymentProcessor, currency: Optional[str] = None):
        super().__init__(db)
        self.processor = processor
        self.currency = currency or settings.stripe_currency
        self.ledger = SettlementLedger(db)
        self.reservation_repository = RepositoryFactory.create_reservation_repository(db)

    @staticmethod
    def compute_split(
        total: Decimal,
        deposit_rate: Optional[Decimal] = None,
        platform_fee_rate: Optional[Decimal] = None,
    ) -> SplitResult:
        return compute_split(total, deposit_rate, platform_fee_rate)

    # ========== Checkout ==========

    @BaseService.measure_operation("initiate_deposit_checkout")
    def initiate_deposit_checkout(self, reservation: Reservation) -> CheckoutHandle:
        """Open a checkout for the deposit. The reservation is not modified."""
        return self._initiate_checkout(reservation, PaymentLeg.DEPOSIT)

    @BaseService.measure_operation("initiate_balance_checkout")
    def initiate_balance_checkout(self, reservation: Reservation) -> CheckoutHandle:
        """Open a checkout for the balance once the service was delivered."""
        return self._initiate_checkout(reservation, PaymentLeg.BALANCE)

    def _initiate_checkout(self, reservation: Reservation, leg: PaymentLeg) -> CheckoutHandle:
        required, target, _, _ = _LEG_RULES[leg]
        if reservation.status != required.value:
            raise InvalidTransition(reservation.status, target.value)

        amount = reservation.deposit_amount if leg == PaymentLeg.DEPOSIT else reservation.balance_amount
        metadata = {
            "reservation_id": reservation.id,
            "reservation_number": reservation.reservation_number,
            "leg": leg.value,
        }
        handle = with_processor_retry(
            f"checkout_{leg.value}",
            lambda: self.processor.create_checkout_session(
                amount=Decimal(amount),
                currency=self.currency,
                metadata=metadata,
                idempotency_key=f"checkout:{reservation.id}:{leg.value}",
            ),
        )
        self.log_operation(
            "checkout_created",
            reservation_id=reservation.id,
            leg=leg.value,
            amount=str(amount),
            session_id=handle.session_id,
        )
        return handle

    # ========== Webhook application ==========

    @BaseService.measure_operation("on_payment_confirmed")
    def on_payment_confirmed(self, event: PaymentEvent) -> PaymentOutcome:
        """
        Apply a payment_succeeded event exactly once.

        A redelivered event returns the recorded outcome with
        ``replayed=True``. Two deliveries racing past the replay check are
        separated by the unique ``external_event_id``; the loser rolls back
        and reports the winner's row.

        Money that arrives after the reservation was cancelled (a checkout
        left open and paid later) is refunded straight away, see
        ``_refund_late_payment``.

        Raises:
            ValidationException: event is not a payment with a leg
            NotFoundException: unknown reservation
            IdempotencyViolation: amount differs from the recorded or expected one
            InvalidTransition: event arrived for a reservation in the wrong status
        """
        if event.type != PaymentEventType.PAYMENT_SUCCEEDED or event.leg is None:
            raise ValidationException(
                "Only payment_succeeded events with a leg can be applied",
                code="INVALID_PAYMENT_EVENT",
                details={"event_id": event.event_id, "type": str(event.type)},
            )

        amount = round_half_up(event.amount)
        recorded = self.ledger.get_by_event(event.event_id)
        if recorded is not None:
            return self._replayed(event, recorded, amount)

        try:
            with self.transaction():
                reservation = self.reservation_repository.get_for_update(event.reservation_id)
                if reservation is None:
                    raise NotFoundException(
                        "Reservation not found",
                        code="RESERVATION_NOT_FOUND",
                        details={"reservation_id": event.reservation_id},
                    )

                recorded = self.ledger.get_by_event(event.event_id)
                late = recorded is None and reservation.status in _CLOSED_STATUSES
                if recorded is None and not late:
                    entry = self._apply_payment(reservation, event, amount)
        except RepositoryException as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            winner = self.ledger.get_by_event(event.event_id)
            if winner is None:
                raise
            return self._replayed(event, winner, amount)
        except (InvalidTransition, IdempotencyViolation):
            PAYMENT_EVENTS_TOTAL.labels(leg=event.leg.value, outcome="rejected").inc()
            raise

        if recorded is not None:
            return self._replayed(event, recorded, amount)
        if late:
            return self._refund_late_payment(reservation, event, amount)

        entry_status = _LEG_RULES[event.leg][1]
        PAYMENT_EVENTS_TOTAL.labels(leg=event.leg.value, outcome="applied").inc()
        self.log_operation(
            "payment_applied",
            reservation_id=event.reservation_id,
            event_id=event.event_id,
            leg=event.leg.value,
            amount=str(amount),
        )
        return PaymentOutcome(
            reservation_id=event.reservation_id,
            event_id=event.event_id,
            status=entry_status,
            transaction_id=entry.id,
            amount=amount,
        )

    def _apply_payment(
        self, reservation: Reservation, event: PaymentEvent, amount: Decimal
    ) -> SettlementTransaction:
        """Ledger append plus status move for one leg; runs inside the caller's transaction."""
        required, target, transaction_type, timestamp_field = _LEG_RULES[event.leg]

        current = ReservationStatus(reservation.status)
        if current != required:
            raise InvalidTransition(current.value, target.value)
        state_machine.transition(current, target)

        expected = round_half_up(
            reservation.deposit_amount
            if event.leg == PaymentLeg.DEPOSIT
            else reservation.balance_amount
        )
        if amount != expected:
            raise IdempotencyViolation(event.event_id, expected, amount)

        entry = self.ledger.append(
            reservation_id=reservation.id,
            transaction_type=transaction_type,
            gross_amount=amount,
            platform_fee=platform_fee_for(amount),
            external_event_id=event.event_id,
            processor_reference=event.processor_reference,
        )
        if not self.reservation_repository.compare_and_set_status(
            reservation.id, required, target, **{timestamp_field: utc_now()}
        ):
            raise InvalidTransition(current.value, target.value)
        return entry

    def _refund_late_payment(
        self, reservation: Reservation, event: PaymentEvent, amount: Decimal
    ) -> PaymentOutcome:
        """
        Give back a payment captured for a closed reservation.

        The incoming payment and its refund are written together, the
        payment row under the event id, so a redelivery replays instead of
        refunding twice. The reservation status is left as it is.
        """
        if not event.processor_reference:
            raise BusinessRuleException(
                "Late payment carries no processor reference to refund",
                code="NO_CAPTURED_PAYMENT",
                details={"reservation_id": reservation.id, "event_id": event.event_id},
            )

        receipt = with_processor_retry(
            "late_payment_refund",
            lambda: self.processor.refund(
                charge_id=event.processor_reference,
                amount=amount,
                idempotency_key=f"refund:late:{event.event_id}",
            ),
        )

        _, _, transaction_type, _ = _LEG_RULES[event.leg]
        try:
            with self.transaction():
                entry = self.ledger.append(
                    reservation_id=reservation.id,
                    transaction_type=transaction_type,
                    gross_amount=amount,
                    platform_fee=ZERO,
                    external_event_id=event.event_id,
                    processor_reference=event.processor_reference,
                )
                self.ledger.append(
                    reservation_id=reservation.id,
                    transaction_type=TransactionType.REFUND,
                    gross_amount=-amount,
                    platform_fee=ZERO,
                    external_event_id=f"refund:{receipt.refund_id}",
                    processor_reference=receipt.refund_id,
                )
        except RepositoryException as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            winner = self.ledger.get_by_event(event.event_id)
            if winner is None:
                raise
            return self._replayed(event, winner, amount)

        PAYMENT_EVENTS_TOTAL.labels(leg=event.leg.value, outcome="refunded").inc()
        REFUNDS_TOTAL.labels(outcome="succeeded").inc()
        self.logger.warning(
            f"Payment for closed reservation {reservation.id} refunded",
            extra={
                "event_id": event.event_id,
                "reservation_id": reservation.id,
                "refund_id": receipt.refund_id,
                "amount": str(amount),
            },
        )
        return PaymentOutcome(
            reservation_id=reservation.id,
            event_id=event.event_id,
            status=ReservationStatus(reservation.status),
            transaction_id=entry.id,
            amount=amount,
            refunded=True,
        )

    def _replayed(
        self, event: PaymentEvent, recorded: SettlementTransaction, amount: Decimal
    ) -> PaymentOutcome:
        recorded_amount = round_half_up(recorded.gross_amount)
        if recorded_amount != amount:
            raise IdempotencyViolation(event.event_id, recorded_amount, amount)

        reservation = self.reservation_repository.get_by_id(recorded.reservation_id)
        PAYMENT_EVENTS_TOTAL.labels(
            leg=event.leg.value if event.leg else "unknown", outcome="replayed"
        ).inc()
        self.logger.info(
            "Payment event already applied",
            extra={"event_id": event.event_id, "reservation_id": recorded.reservation_id},
        )
        return PaymentOutcome(
            reservation_id=recorded.reservation_id,
            event_id=event.event_id,
            status=ReservationStatus(reservation.status),
            transaction_id=recorded.id,
            amount=recorded_amount,
            replayed=True,
        )

    def acknowledge_refund(self, event: PaymentEvent) -> bool:
        """
        Handle a refund_succeeded event.

        Refunds are recorded when ``initiate_refund`` gets the processor's
        answer, so the webhook only confirms a row already exists.
        """
        reference = event.processor_reference
        known = bool(reference) and self.ledger.get_by_processor_reference(reference) is not None
        if not known:
            self.logger.warning(
                "Refund event without matching ledger entry",
                extra={
                    "event_id": event.event_id,
                    "reservation_id": event.reservation_id,
                    "processor_reference": reference,
                },
            )
        return known

    # ========== Refunds ==========

    @BaseService.measure_operation("initiate_refund")
    def initiate_refund(
        self,
        reservation: Reservation,
        refund_amount: Decimal,
        reason: Optional[str] = None,
    ) -> RefundOutcome:
        """
        Refund part of what was collected and close the reservation.

        A zero refund cancels without contacting the processor. Otherwise the
        captured deposit is refunded and, only after the processor accepted
        it, a negative ledger row is written together with the move to
        ``refunded``.

        Raises:
            ValidationException: negative amount
            RefundExceedsPaid: amount above what the ledger holds
            InvalidTransition: reservation already terminal
            PaymentProcessorError: processor refused; nothing was changed
        """
        amount = round_half_up(Decimal(refund_amount))
        if amount < 0:
            raise ValidationException(
                "Refund amount cannot be negative",
                code="INVALID_REFUND_AMOUNT",
                details={"refund_amount": str(amount)},
            )

        current = ReservationStatus(reservation.status)
        target = ReservationStatus.CANCELLED if amount == 0 else ReservationStatus.REFUNDED
        state_machine.transition(current, target)

        paid = self.ledger.sum_by_reservation(reservation.id)
        if amount > paid:
            REFUNDS_TOTAL.labels(outcome="rejected").inc()
            raise RefundExceedsPaid(reservation.id, amount, paid)

        closing_fields = {"cancelled_at": utc_now(), "cancellation_reason": reason}

        if amount == 0:
            with self.transaction():
                if not self.reservation_repository.compare_and_set_status(
                    reservation.id, current, target, **closing_fields
                ):
                    raise InvalidTransition(current.value, target.value)
            REFUNDS_TOTAL.labels(outcome="no_refund").inc()
            self.log_operation("reservation_cancelled", reservation_id=reservation.id)
            return RefundOutcome(reservation_id=reservation.id, refund_amount=ZERO, status=target)

        deposit = self.ledger.get_deposit_transaction(reservation.id)
        if deposit is None or not deposit.processor_reference:
            raise BusinessRuleException(
                "No captured payment to refund for this reservation",
                code="NO_CAPTURED_PAYMENT",
                details={"reservation_id": reservation.id},
            )

        try:
            receipt = self.processor.refund(
                charge_id=deposit.processor_reference,
                amount=amount,
                idempotency_key=f"refund:{reservation.id}:{amount}",
            )
        except PaymentProcessorError as exc:
            REFUNDS_TOTAL.labels(outcome="transient" if exc.retryable else "failed").inc()
            self.logger.error(
                f"Refund failed for reservation {reservation.id}: {exc.message}",
                extra={"reservation_id": reservation.id, "retryable": exc.retryable},
            )
            raise

        with self.transaction():
            entry = self.ledger.append(
                reservation_id=reservation.id,
                transaction_type=TransactionType.REFUND,
                gross_amount=-amount,
                platform_fee=ZERO,
                external_event_id=f"refund:{receipt.refund_id}",
                processor_reference=receipt.refund_id,
            )
            if not self.reservation_repository.compare_and_set_status(
                reservation.id, current, target, **closing_fields
            ):
                raise InvalidTransition(current.value, target.value)

        REFUNDS_TOTAL.labels(outcome="succeeded").inc()
        self.log_operation(
            "refund_recorded",
            reservation_id=reservation.id,
            refund_id=receipt.refund_id,
            amount=str(amount),
        )
        return RefundOutcome(
            reservation_id=reservation.id,
            refund_amount=amount,
            status=target,
            refund_id=receipt.refund_id,
            transaction_id=entry.id,
        )
