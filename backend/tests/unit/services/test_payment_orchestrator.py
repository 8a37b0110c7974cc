"""Tests for PaymentOrchestrator: checkouts, webhook application and refunds."""

from decimal import Decimal

import pytest

from shooty.core.enums import PaymentEventType, PaymentLeg, ReservationStatus, TransactionType
from shooty.core.exceptions import (
    IdempotencyViolation,
    InvalidTransition,
    NotFoundException,
    PermanentPaymentProcessorError,
    RefundExceedsPaid,
    TransientPaymentProcessorError,
    ValidationException,
)
from shooty.models.transaction import SettlementTransaction
from shooty.services.payment_orchestrator import PaymentOrchestrator
from shooty.services.payment_processor import PaymentEvent


def _ledger_rows(db, reservation_id):
    return (
        db.query(SettlementTransaction)
        .filter(SettlementTransaction.reservation_id == reservation_id)
        .all()
    )


@pytest.mark.unit
class TestCheckout:
    def test_deposit_checkout(self, make_reservation, orchestrator, processor, db) -> None:
        reservation = make_reservation()
        handle = orchestrator.initiate_deposit_checkout(reservation)

        assert handle.session_id == "cs_test_1"
        call = processor.checkouts[0]
        assert call["amount"] == Decimal("300.00")
        assert call["currency"] == "eur"
        assert call["metadata"]["reservation_id"] == reservation.id
        assert call["metadata"]["leg"] == "deposit"
        assert call["idempotency_key"] == f"checkout:{reservation.id}:deposit"

        db.refresh(reservation)
        assert reservation.status == ReservationStatus.AWAITING_PAYMENT.value

    def test_balance_checkout_requires_confirmed(self, paid_reservation, orchestrator, processor) -> None:
        reservation = paid_reservation()
        with pytest.raises(InvalidTransition):
            orchestrator.initiate_balance_checkout(reservation)
        assert processor.checkouts == []

    def test_transient_failure_is_retried(self, make_reservation, orchestrator, processor) -> None:
        reservation = make_reservation()
        processor.checkout_errors.append(TransientPaymentProcessorError("connection reset"))

        handle = orchestrator.initiate_deposit_checkout(reservation)

        assert handle.session_id == "cs_test_2"
        assert len(processor.checkouts) == 2
        assert {c["idempotency_key"] for c in processor.checkouts} == {
            f"checkout:{reservation.id}:deposit"
        }

    def test_permanent_failure_is_not_retried(self, make_reservation, orchestrator, processor) -> None:
        reservation = make_reservation()
        processor.checkout_errors.append(PermanentPaymentProcessorError("card_declined"))

        with pytest.raises(PermanentPaymentProcessorError):
            orchestrator.initiate_deposit_checkout(reservation)
        assert len(processor.checkouts) == 1


@pytest.mark.unit
class TestOnPaymentConfirmed:
    def test_deposit_moves_to_deposit_paid(self, make_reservation, make_payment_event, orchestrator, db) -> None:
        reservation = make_reservation()
        outcome = orchestrator.on_payment_confirmed(make_payment_event(reservation))

        assert outcome.status == ReservationStatus.DEPOSIT_PAID
        assert outcome.replayed is False
        db.refresh(reservation)
        assert reservation.status == ReservationStatus.DEPOSIT_PAID.value
        assert reservation.deposit_paid_at is not None

        [row] = _ledger_rows(db, reservation.id)
        assert row.type == TransactionType.DEPOSIT_TRANSFER.value
        assert row.gross_amount == Decimal("300.00")
        assert row.platform_fee == Decimal("45.00")
        assert row.net_amount == Decimal("255.00")
        assert row.external_event_id == "evt_deposit_1"
        assert row.processor_reference == "pi_test_deposit"

    def test_duplicate_event_counted_once(self, make_reservation, make_payment_event, orchestrator, db) -> None:
        reservation = make_reservation()
        event = make_payment_event(reservation, event_id="E1")

        first = orchestrator.on_payment_confirmed(event)
        second = orchestrator.on_payment_confirmed(event)

        assert second.replayed is True
        assert second.transaction_id == first.transaction_id
        assert second.status == ReservationStatus.DEPOSIT_PAID
        assert len(_ledger_rows(db, reservation.id)) == 1
        assert orchestrator.ledger.sum_by_reservation(reservation.id) == Decimal("300.00")

    def test_amount_mismatch_is_rejected(self, make_reservation, make_payment_event, orchestrator, db) -> None:
        reservation = make_reservation()
        with pytest.raises(IdempotencyViolation):
            orchestrator.on_payment_confirmed(make_payment_event(reservation, amount=Decimal("299.99")))

        db.refresh(reservation)
        assert reservation.status == ReservationStatus.AWAITING_PAYMENT.value
        assert _ledger_rows(db, reservation.id) == []

    def test_replay_with_different_amount(self, make_reservation, make_payment_event, orchestrator) -> None:
        reservation = make_reservation()
        orchestrator.on_payment_confirmed(make_payment_event(reservation, event_id="E1"))
        with pytest.raises(IdempotencyViolation):
            orchestrator.on_payment_confirmed(
                make_payment_event(reservation, event_id="E1", amount=Decimal("700.00"))
            )

    def test_racing_duplicate_reports_the_winning_row(
        self, make_reservation, make_payment_event, orchestrator, processor, session_factory, db, monkeypatch
    ) -> None:
        reservation = make_reservation()
        event = make_payment_event(reservation, event_id="E_race")

        # Another worker applies the same delivery and commits first
        other = session_factory()
        try:
            winner = PaymentOrchestrator(other, processor, currency="eur").on_payment_confirmed(event)
        finally:
            other.close()

        # This worker passed both replay checks before the winner committed
        lookups = []
        recorded_lookup = orchestrator.ledger.get_by_event

        def lookup_after_race(external_event_id):
            lookups.append(external_event_id)
            return None if len(lookups) <= 2 else recorded_lookup(external_event_id)

        monkeypatch.setattr(orchestrator.ledger, "get_by_event", lookup_after_race)

        outcome = orchestrator.on_payment_confirmed(event)

        assert len(lookups) == 3
        assert outcome.replayed is True
        assert outcome.transaction_id == winner.transaction_id
        assert outcome.status == ReservationStatus.DEPOSIT_PAID
        assert len(_ledger_rows(db, reservation.id)) == 1
        assert orchestrator.ledger.sum_by_reservation(reservation.id) == Decimal("300.00")

    def test_out_of_order_balance_is_left_for_redelivery(
        self, paid_reservation, make_payment_event, orchestrator, reservation_service, db
    ) -> None:
        reservation = paid_reservation()
        balance = make_payment_event(
            reservation, leg=PaymentLeg.BALANCE, event_id="E2", reference="pi_test_balance"
        )

        with pytest.raises(InvalidTransition):
            orchestrator.on_payment_confirmed(balance)
        assert len(_ledger_rows(db, reservation.id)) == 1

        reservation_service.mark_service_delivered(reservation.id)
        outcome = orchestrator.on_payment_confirmed(balance)

        assert outcome.status == ReservationStatus.COMPLETED
        db.refresh(reservation)
        assert reservation.completed_at is not None
        assert orchestrator.ledger.sum_by_reservation(reservation.id) == Decimal("1000.00")

    def test_unknown_reservation(self, orchestrator) -> None:
        event = PaymentEvent(
            event_id="E404",
            type=PaymentEventType.PAYMENT_SUCCEEDED,
            reservation_id="01HF4G12ABCDEF3456789XYZAB",
            amount=Decimal("300.00"),
            leg=PaymentLeg.DEPOSIT,
        )
        with pytest.raises(NotFoundException):
            orchestrator.on_payment_confirmed(event)

    def test_refund_event_is_not_a_payment(self, make_reservation, orchestrator) -> None:
        reservation = make_reservation()
        event = PaymentEvent(
            event_id="E9",
            type=PaymentEventType.REFUND_SUCCEEDED,
            reservation_id=reservation.id,
            amount=Decimal("10.00"),
        )
        with pytest.raises(ValidationException):
            orchestrator.on_payment_confirmed(event)


@pytest.mark.unit
class TestLatePayment:
    def test_payment_after_cancellation_is_refunded(
        self, make_reservation, make_payment_event, orchestrator, processor, db
    ) -> None:
        reservation = make_reservation()
        orchestrator.initiate_refund(reservation, Decimal("0"))

        outcome = orchestrator.on_payment_confirmed(
            make_payment_event(reservation, event_id="E_late", reference="pi_late")
        )

        assert outcome.refunded is True
        assert outcome.replayed is False
        assert outcome.status == ReservationStatus.CANCELLED
        assert processor.refunds == [
            {
                "charge_id": "pi_late",
                "amount": Decimal("300.00"),
                "idempotency_key": "refund:late:E_late",
            }
        ]
        rows = _ledger_rows(db, reservation.id)
        assert sorted(row.type for row in rows) == ["deposit_transfer", "refund"]
        assert all(row.platform_fee == Decimal("0.00") for row in rows)
        assert orchestrator.ledger.sum_by_reservation(reservation.id) == Decimal("0.00")
        db.refresh(reservation)
        assert reservation.status == ReservationStatus.CANCELLED.value

    def test_redelivered_late_payment_is_refunded_once(
        self, make_reservation, make_payment_event, orchestrator, processor, db
    ) -> None:
        reservation = make_reservation()
        orchestrator.initiate_refund(reservation, Decimal("0"))
        event = make_payment_event(reservation, event_id="E_late")

        orchestrator.on_payment_confirmed(event)
        again = orchestrator.on_payment_confirmed(event)

        assert again.replayed is True
        assert len(processor.refunds) == 1
        assert len(_ledger_rows(db, reservation.id)) == 2

    def test_failed_refund_of_late_payment_records_nothing(
        self, make_reservation, make_payment_event, orchestrator, processor, db
    ) -> None:
        reservation = make_reservation()
        orchestrator.initiate_refund(reservation, Decimal("0"))
        processor.refund_errors.append(PermanentPaymentProcessorError("charge disputed"))

        with pytest.raises(PermanentPaymentProcessorError):
            orchestrator.on_payment_confirmed(make_payment_event(reservation, event_id="E_late"))

        assert _ledger_rows(db, reservation.id) == []


@pytest.mark.unit
class TestInitiateRefund:
    def test_refund_above_paid(self, paid_reservation, orchestrator, processor, db) -> None:
        reservation = paid_reservation()
        with pytest.raises(RefundExceedsPaid) as exc_info:
            orchestrator.initiate_refund(reservation, Decimal("300.01"))

        assert exc_info.value.details["amount_paid"] == "300.00"
        assert processor.refunds == []
        assert len(_ledger_rows(db, reservation.id)) == 1
        db.refresh(reservation)
        assert reservation.status == ReservationStatus.DEPOSIT_PAID.value

    def test_partial_refund(self, paid_reservation, orchestrator, processor, db) -> None:
        reservation = paid_reservation()
        outcome = orchestrator.initiate_refund(reservation, Decimal("150.00"), reason="Client ill")

        assert outcome.status == ReservationStatus.REFUNDED
        assert outcome.refund_id == "re_test_1"
        assert processor.refunds == [
            {
                "charge_id": "pi_test_deposit",
                "amount": Decimal("150.00"),
                "idempotency_key": f"refund:{reservation.id}:150.00",
            }
        ]

        refund_row = db.get(SettlementTransaction, outcome.transaction_id)
        assert refund_row.type == TransactionType.REFUND.value
        assert refund_row.gross_amount == Decimal("-150.00")
        assert refund_row.platform_fee == Decimal("0.00")
        assert refund_row.external_event_id == "refund:re_test_1"
        assert orchestrator.ledger.sum_by_reservation(reservation.id) == Decimal("150.00")

        db.refresh(reservation)
        assert reservation.status == ReservationStatus.REFUNDED.value
        assert reservation.cancellation_reason == "Client ill"
        assert reservation.cancelled_at is not None

    def test_zero_refund_cancels_without_processor(self, make_reservation, orchestrator, processor, db) -> None:
        reservation = make_reservation()
        outcome = orchestrator.initiate_refund(reservation, Decimal("0"))

        assert outcome.status == ReservationStatus.CANCELLED
        assert outcome.refund_amount == Decimal("0.00")
        assert processor.refunds == []
        db.refresh(reservation)
        assert reservation.status == ReservationStatus.CANCELLED.value

    def test_negative_amount(self, paid_reservation, orchestrator) -> None:
        with pytest.raises(ValidationException):
            orchestrator.initiate_refund(paid_reservation(), Decimal("-1.00"))

    def test_processor_failure_changes_nothing(self, paid_reservation, orchestrator, processor, db) -> None:
        reservation = paid_reservation()
        processor.refund_errors.append(PermanentPaymentProcessorError("charge_disputed"))

        with pytest.raises(PermanentPaymentProcessorError):
            orchestrator.initiate_refund(reservation, Decimal("100.00"))

        db.refresh(reservation)
        assert reservation.status == ReservationStatus.DEPOSIT_PAID.value
        assert len(_ledger_rows(db, reservation.id)) == 1

    def test_terminal_reservation(self, paid_reservation, orchestrator) -> None:
        reservation = paid_reservation()
        orchestrator.initiate_refund(reservation, Decimal("300.00"))
        with pytest.raises(InvalidTransition):
            orchestrator.initiate_refund(reservation, Decimal("0"))


@pytest.mark.unit
class TestAcknowledgeRefund:
    def test_known_and_unknown_refund_ids(self, paid_reservation, orchestrator) -> None:
        reservation = paid_reservation()
        orchestrator.initiate_refund(reservation, Decimal("300.00"))

        def refund_event(reference):
            return PaymentEvent(
                event_id=f"evt_{reference}",
                type=PaymentEventType.REFUND_SUCCEEDED,
                reservation_id=reservation.id,
                amount=Decimal("300.00"),
                processor_reference=reference,
            )

        assert orchestrator.acknowledge_refund(refund_event("re_test_1")) is True
        assert orchestrator.acknowledge_refund(refund_event("re_missing")) is False


@pytest.mark.unit
def test_compute_split_delegates_to_pricing(orchestrator) -> None:
    split = orchestrator.compute_split(Decimal("1000.00"), Decimal("0.30"))
    assert (split.deposit, split.balance) == (Decimal("300.00"), Decimal("700.00"))
