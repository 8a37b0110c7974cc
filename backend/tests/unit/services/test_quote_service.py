"""Tests for QuoteService: quote lifecycle and conversion into reservations."""

from datetime import timedelta
from decimal import Decimal
import re

import pytest

from shooty.core.enums import LineItemKind, QuoteStatus, ReservationStatus
from shooty.core.exceptions import (
    NotFoundException,
    QuoteExpired,
    QuoteStateError,
    SlotConflict,
    ValidationException,
)
from shooty.models.quote import Quote
from shooty.models.reservation import Reservation
from shooty.schemas.quote import LineItemIn, QuoteCreate, QuoteUpdate


@pytest.mark.unit
class TestCreateQuote:
    def test_total_is_sum_of_line_items(self, make_quote) -> None:
        quote = make_quote()
        assert quote.status == QuoteStatus.PENDING.value
        assert quote.total == Decimal("1000.00")
        assert [item.kind for item in quote.line_items] == ["base_rate", "option", "travel_fee"]
        assert [item.position for item in quote.line_items] == [0, 1, 2]

    def test_service_start_in_past(self, make_quote) -> None:
        with pytest.raises(ValidationException) as exc_info:
            make_quote(starts_in=timedelta(hours=-1))
        assert exc_info.value.code == "INVALID_SERVICE_START"

    def test_validity_in_past(self, make_quote) -> None:
        with pytest.raises(ValidationException) as exc_info:
            make_quote(valid_for=timedelta(seconds=0))
        assert exc_info.value.code == "INVALID_VALID_UNTIL"

    def test_two_base_rates_rejected(self, quote_service, db, now) -> None:
        data = QuoteCreate(
            provider_id="prov_lena",
            client_id="client_marc",
            line_items=[
                LineItemIn(kind=LineItemKind.BASE_RATE, label="Morning", amount=Decimal("300.00")),
                LineItemIn(kind=LineItemKind.BASE_RATE, label="Evening", amount=Decimal("300.00")),
            ],
            service_start=now + timedelta(days=10),
            slot_window_minutes=120,
            valid_until=now + timedelta(days=2),
        )
        with pytest.raises(ValidationException) as exc_info:
            quote_service.create_quote(data, now=now)
        assert exc_info.value.details == {"base_rate_count": 2}
        assert db.query(Quote).count() == 0


@pytest.mark.unit
class TestUpdateQuote:
    def test_line_item_change_recomputes_total(self, make_quote, quote_service, now) -> None:
        quote = make_quote()
        update = QuoteUpdate(
            line_items=[
                LineItemIn(kind=LineItemKind.BASE_RATE, label="Half day", amount=Decimal("400.00")),
                LineItemIn(kind=LineItemKind.OPTION, label="Prints", amount=Decimal("25.50")),
            ],
            message="Updated offer",
        )
        updated = quote_service.update_quote(quote.id, update, now=now)

        assert updated.total == Decimal("425.50")
        assert updated.message == "Updated offer"
        assert len(updated.line_items) == 2

    def test_extending_validity(self, make_quote, quote_service, now) -> None:
        quote = make_quote()
        updated = quote_service.update_quote(
            quote.id, QuoteUpdate(valid_until=now + timedelta(days=7)), now=now
        )
        assert updated.is_past_validity(now + timedelta(days=5)) is False

    def test_non_pending_quote_cannot_change(self, make_quote, quote_service, now) -> None:
        quote = make_quote()
        quote_service.reject_quote(quote.id, now=now)
        with pytest.raises(QuoteStateError):
            quote_service.update_quote(quote.id, QuoteUpdate(message="late"), now=now)


@pytest.mark.unit
class TestAcceptQuote:
    def test_creates_reservation_with_split(self, make_quote, quote_service, db, now) -> None:
        quote = make_quote()
        reservation = quote_service.accept_quote(quote.id, now=now)

        assert reservation.status == ReservationStatus.AWAITING_PAYMENT.value
        assert reservation.total == Decimal("1000.00")
        assert reservation.deposit_amount == Decimal("300.00")
        assert reservation.balance_amount == Decimal("700.00")
        assert reservation.quote_id == quote.id
        assert reservation.provider_id == quote.provider_id
        assert reservation.cancellation_tier == "moderate"
        assert re.fullmatch(r"RES-\d{8}-[0-9A-Z]{6}", reservation.reservation_number)

        db.refresh(quote)
        assert quote.status == QuoteStatus.ACCEPTED.value
        assert quote.accepted_at is not None

    def test_accepting_twice_fails(self, make_quote, quote_service, now) -> None:
        quote = make_quote()
        quote_service.accept_quote(quote.id, now=now)
        with pytest.raises(QuoteStateError) as exc_info:
            quote_service.accept_quote(quote.id, now=now)
        assert exc_info.value.details["status"] == QuoteStatus.ACCEPTED.value

    def test_expired_quote_is_marked_and_rejected(self, make_quote, quote_service, db, now) -> None:
        quote = make_quote(valid_for=timedelta(days=1))
        with pytest.raises(QuoteExpired):
            quote_service.accept_quote(quote.id, now=now + timedelta(days=2))

        db.refresh(quote)
        assert quote.status == QuoteStatus.EXPIRED.value
        assert db.query(Reservation).count() == 0

    def test_slot_conflict_keeps_quote_pending(self, make_quote, quote_service, db, now) -> None:
        winner = make_quote(client_id="client_a")
        loser = make_quote(client_id="client_b")
        quote_service.accept_quote(winner.id, now=now)

        with pytest.raises(SlotConflict):
            quote_service.accept_quote(loser.id, now=now)

        db.refresh(loser)
        assert loser.status == QuoteStatus.PENDING.value
        assert loser.accepted_at is None
        assert db.query(Reservation).count() == 1

    def test_sibling_quotes_stay_pending(self, make_quote, quote_service, db, now) -> None:
        chosen = make_quote(provider_id="prov_lena")
        other = make_quote(provider_id="prov_tom")
        quote_service.accept_quote(chosen.id, now=now)

        db.refresh(other)
        assert other.status == QuoteStatus.PENDING.value

    def test_slot_freed_by_cancellation_can_be_rebooked(
        self, make_quote, quote_service, reservation_service, now
    ) -> None:
        first = make_quote(client_id="client_a")
        reservation = quote_service.accept_quote(first.id, now=now)
        reservation_service.request_cancellation(reservation.id, now=now)

        second = make_quote(client_id="client_b")
        rebooked = quote_service.accept_quote(second.id, now=now)
        assert rebooked.status == ReservationStatus.AWAITING_PAYMENT.value

    def test_unknown_quote(self, quote_service) -> None:
        with pytest.raises(NotFoundException):
            quote_service.accept_quote("01HF4G12ABCDEF3456789XYZAB")


@pytest.mark.unit
class TestCloseQuote:
    def test_reject_records_reason(self, make_quote, quote_service, now) -> None:
        quote = make_quote()
        rejected = quote_service.reject_quote(quote.id, reason="Found someone closer", now=now)
        assert rejected.status == QuoteStatus.REJECTED.value
        assert rejected.rejection_reason == "Found someone closer"
        assert rejected.rejected_at is not None

    def test_cancel_records_reason(self, make_quote, quote_service, now) -> None:
        quote = make_quote()
        cancelled = quote_service.cancel_quote(quote.id, reason="Double booked", now=now)
        assert cancelled.status == QuoteStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "Double booked"

    def test_rejected_quote_cannot_be_accepted(self, make_quote, quote_service, now) -> None:
        quote = make_quote()
        quote_service.reject_quote(quote.id, now=now)
        with pytest.raises(QuoteStateError):
            quote_service.accept_quote(quote.id, now=now)


@pytest.mark.unit
class TestReads:
    def test_get_quote_expires_lazily(self, make_quote, quote_service, now) -> None:
        quote = make_quote(valid_for=timedelta(hours=1))
        assert quote_service.get_quote(quote.id, now=now).status == QuoteStatus.PENDING.value
        later = quote_service.get_quote(quote.id, now=now + timedelta(hours=2))
        assert later.status == QuoteStatus.EXPIRED.value

    def test_list_for_demand_cheapest_first(self, make_quote, quote_service) -> None:
        make_quote(provider_id="prov_a", base_rate="900.00")
        make_quote(provider_id="prov_b", base_rate="500.00")
        make_quote(provider_id="prov_c", base_rate="700.00", demand_id="demand_other")

        quotes = quote_service.list_quotes_for_demand("demand_wedding")
        assert [q.provider_id for q in quotes] == ["prov_b", "prov_a"]

    def test_provider_stats(self, make_quote, quote_service, now) -> None:
        accepted = make_quote(starts_in=timedelta(days=10))
        rejected = make_quote(starts_in=timedelta(days=11))
        make_quote(starts_in=timedelta(days=12))
        make_quote(starts_in=timedelta(days=13))
        quote_service.accept_quote(accepted.id, now=now)
        quote_service.reject_quote(rejected.id, now=now)

        stats = quote_service.get_provider_quote_stats("prov_lena")

        assert stats["total"] == 4
        assert stats["by_status"] == {
            "pending": 2,
            "accepted": 1,
            "rejected": 1,
            "cancelled": 0,
            "expired": 0,
        }
        assert stats["accepted_revenue"] == Decimal("1000.00")
        assert stats["conversion_rate"] == 25.0

    def test_stats_without_quotes(self, quote_service) -> None:
        stats = quote_service.get_provider_quote_stats("prov_nobody")
        assert stats["total"] == 0
        assert stats["conversion_rate"] == 0.0

    def test_lists_by_party_with_status_filter(self, make_quote, quote_service, now) -> None:
        sent = make_quote(starts_in=timedelta(days=10))
        rejected = make_quote(starts_in=timedelta(days=11))
        other_client = make_quote(client_id="client_ines", starts_in=timedelta(days=12))
        make_quote(provider_id="prov_other", starts_in=timedelta(days=13))
        quote_service.reject_quote(rejected.id, now=now)

        provider_ids = {q.id for q in quote_service.list_quotes_for_provider("prov_lena", now=now)}
        assert provider_ids == {sent.id, rejected.id, other_client.id}

        pending = quote_service.list_quotes_for_provider("prov_lena", QuoteStatus.PENDING, now=now)
        assert {q.id for q in pending} == {sent.id, other_client.id}

        client_quotes = quote_service.list_quotes_for_client("client_ines", now=now)
        assert [q.id for q in client_quotes] == [other_client.id]

    def test_listing_expires_lapsed_quotes(self, make_quote, quote_service, now) -> None:
        lapsed = make_quote(valid_for=timedelta(hours=1))
        fresh = make_quote(starts_in=timedelta(days=11), valid_for=timedelta(days=5))
        later = now + timedelta(hours=2)

        pending = quote_service.list_quotes_for_client("client_marc", QuoteStatus.PENDING, now=later)
        assert [q.id for q in pending] == [fresh.id]

        expired = quote_service.list_quotes_for_provider("prov_lena", QuoteStatus.EXPIRED, now=later)
        assert [q.id for q in expired] == [lapsed.id]
