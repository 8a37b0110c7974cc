# backend/shooty/services/quote_service.py
"""
Quote Service for the Shooty booking engine.

Handles the provider side of a quote's lifecycle and its conversion into
a reservation:

    pending -> accepted | rejected | cancelled | expired

Expiry is lazy: a pending quote past ``valid_until`` is marked expired the
next time anything reads or acts on it.

Acceptance is a single unit of work: the quote is compare-and-set to
accepted, the reservation total is split, and the provider slot is claimed
by inserting the reservation. If the slot is taken the whole unit rolls
back and the quote stays pending. Other pending quotes for the same demand
are left untouched.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import CancellationTier, QuoteStatus, ReservationStatus
from ..core.exceptions import (
    NotFoundException,
    QuoteExpired,
    QuoteStateError,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..core.ulid_helper import generate_ulid
from ..models.quote import Quote
from ..models.reservation import Reservation
from ..repositories.factory import RepositoryFactory
from ..schemas.quote import LineItemIn, QuoteCreate, QuoteUpdate
from .availability_guard import AvailabilityGuard
from .base import BaseService
from .pricing_service import compute_split, sum_line_items, validate_line_items

logger = logging.getLogger(__name__)


def generate_reservation_number(now: datetime) -> str:
    """Human-facing reference, e.g. RES-20261019-7K2Q9D."""
    return f"RES-{ensure_utc(now):%Y%m%d}-{generate_ulid()[-6:]}"


def _line_item_rows(items: List[LineItemIn]) -> List[Dict[str, Any]]:
    return [{"kind": item.kind.value, "label": item.label, "amount": item.amount} for item in items]


class QuoteService(BaseService):
    """Service layer for quote operations."""

    def __init__(self, db: Session, availability_guard: Optional[AvailabilityGuard] = None):
        super().__init__(db)
        self.repository = RepositoryFactory.create_quote_repository(db)
        self.availability_guard = availability_guard or AvailabilityGuard(db)

    # ========== Provider actions ==========

    @BaseService.measure_operation("create_quote")
    def create_quote(self, data: QuoteCreate, now: Optional[datetime] = None) -> Quote:
        """
        Create a pending quote.

        Raises:
            ValidationException: line item structure, past service start,
                past validity or unknown tier
        """
        current = ensure_utc(now or utc_now())
        validate_line_items(data.line_items)
        self._validate_schedule(data.service_start, data.valid_until, current)

        total = sum_line_items(data.line_items)
        with self.transaction():
            quote = self.repository.create_with_line_items(
                _line_item_rows(data.line_items),
                demand_id=data.demand_id,
                provider_id=data.provider_id,
                client_id=data.client_id,
                total=total,
                service_start=ensure_utc(data.service_start),
                slot_window_minutes=data.slot_window_minutes,
                cancellation_tier=CancellationTier(data.cancellation_tier).value,
                message=data.message,
                valid_until=ensure_utc(data.valid_until),
                status=QuoteStatus.PENDING.value,
            )

        self.log_operation(
            "create_quote",
            quote_id=quote.id,
            provider_id=quote.provider_id,
            total=str(total),
        )
        return quote

    @BaseService.measure_operation("update_quote")
    def update_quote(
        self, quote_id: str, data: QuoteUpdate, now: Optional[datetime] = None
    ) -> Quote:
        """Edit a pending quote; line item changes recompute the total."""
        current = ensure_utc(now or utc_now())
        quote = self._get_pending(quote_id, "update", current)

        if data.valid_until is not None and ensure_utc(data.valid_until) <= current:
            raise ValidationException(
                "Quote validity must end in the future",
                code="INVALID_VALID_UNTIL",
                details={"valid_until": data.valid_until.isoformat()},
            )

        with self.transaction():
            if data.line_items is not None:
                validate_line_items(data.line_items)
                self.repository.replace_line_items(
                    quote, _line_item_rows(data.line_items), sum_line_items(data.line_items)
                )
            if data.message is not None:
                quote.message = data.message
            if data.valid_until is not None:
                quote.valid_until = ensure_utc(data.valid_until)

        self.log_operation("update_quote", quote_id=quote.id, total=str(quote.total))
        return quote

    @BaseService.measure_operation("cancel_quote")
    def cancel_quote(
        self, quote_id: str, reason: Optional[str] = None, now: Optional[datetime] = None
    ) -> Quote:
        """Provider withdraws a pending quote."""
        return self._close(
            quote_id, QuoteStatus.CANCELLED, "cancel", now, cancellation_reason=reason
        )

    # ========== Client actions ==========

    @BaseService.measure_operation("reject_quote")
    def reject_quote(
        self, quote_id: str, reason: Optional[str] = None, now: Optional[datetime] = None
    ) -> Quote:
        """Client declines a pending quote."""
        current = ensure_utc(now or utc_now())
        return self._close(
            quote_id,
            QuoteStatus.REJECTED,
            "reject",
            current,
            rejected_at=current,
            rejection_reason=reason,
        )

    @BaseService.measure_operation("accept_quote")
    def accept_quote(self, quote_id: str, now: Optional[datetime] = None) -> Reservation:
        """
        Accept a pending quote and create its reservation.

        Returns:
            The new reservation, in awaiting_payment

        Raises:
            NotFoundException: unknown quote
            QuoteStateError: quote is not pending
            QuoteExpired: validity window closed (the quote is marked expired)
            SlotConflict: provider slot already held; the quote stays pending
        """
        current = ensure_utc(now or utc_now())
        quote = self._get_pending(quote_id, "accept", current)
        split = compute_split(quote.total)

        with self.transaction():
            if not self.repository.compare_and_set_status(
                quote.id, QuoteStatus.PENDING, QuoteStatus.ACCEPTED, accepted_at=current
            ):
                self.db.refresh(quote)
                raise QuoteStateError(quote.id, quote.status, "accept")

            reservation = self.availability_guard.claim_slot(
                quote.provider_id,
                quote.service_start,
                quote.slot_window_minutes,
                reservation_number=generate_reservation_number(current),
                quote_id=quote.id,
                client_id=quote.client_id,
                total=split.total,
                deposit_amount=split.deposit,
                balance_amount=split.balance,
                cancellation_tier=quote.cancellation_tier,
                status=ReservationStatus.AWAITING_PAYMENT.value,
            )

        self.log_operation(
            "accept_quote",
            quote_id=quote.id,
            reservation_id=reservation.id,
            deposit=str(split.deposit),
            balance=str(split.balance),
        )
        return reservation

    # ========== Reads ==========

    def get_quote(self, quote_id: str, now: Optional[datetime] = None) -> Quote:
        """Load a quote, expiring it first if its validity has lapsed."""
        quote = self._load(quote_id)
        current = ensure_utc(now or utc_now())
        if quote.is_pending and quote.is_past_validity(current):
            self._expire(quote)
        return quote

    def list_quotes_for_demand(self, demand_id: str) -> List[Quote]:
        """All quotes for a demand, cheapest first."""
        return self.repository.list_for_demand(demand_id)

    def list_quotes_for_provider(
        self,
        provider_id: str,
        status: Optional[QuoteStatus] = None,
        now: Optional[datetime] = None,
    ) -> List[Quote]:
        """Quotes a provider sent, newest first, optionally only one status."""
        self._expire_lapsed(self.repository.list_for_provider(provider_id, QuoteStatus.PENDING), now)
        return self.repository.list_for_provider(provider_id, status)

    def list_quotes_for_client(
        self,
        client_id: str,
        status: Optional[QuoteStatus] = None,
        now: Optional[datetime] = None,
    ) -> List[Quote]:
        """Quotes a client received, newest first, optionally only one status."""
        self._expire_lapsed(self.repository.list_for_client(client_id, QuoteStatus.PENDING), now)
        return self.repository.list_for_client(client_id, status)

    @BaseService.measure_operation("provider_quote_stats")
    def get_provider_quote_stats(self, provider_id: str) -> Dict[str, Any]:
        """
        Quote counts and conversion for a provider dashboard.

        Returns:
            Dictionary with total, by_status, accepted_revenue and
            conversion_rate (accepted / total in percent, one decimal)
        """
        counts = self.repository.count_by_status_for_provider(provider_id)
        by_status = {status.value: counts.get(status.value, 0) for status in QuoteStatus}
        total = sum(by_status.values())
        accepted = by_status[QuoteStatus.ACCEPTED.value]
        conversion = (
            (Decimal(accepted) * 100 / Decimal(total)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
            if total
            else Decimal("0.0")
        )
        return {
            "provider_id": provider_id,
            "total": total,
            "by_status": by_status,
            "accepted_revenue": self.repository.accepted_revenue_for_provider(provider_id),
            "conversion_rate": float(conversion),
        }

    # ========== Helpers ==========

    def _load(self, quote_id: str) -> Quote:
        quote = self.repository.get_by_id(quote_id)
        if not quote:
            raise NotFoundException(
                "Quote not found", code="QUOTE_NOT_FOUND", details={"quote_id": quote_id}
            )
        return quote

    def _get_pending(self, quote_id: str, action: str, now: datetime) -> Quote:
        quote = self._load(quote_id)
        if not quote.is_pending:
            raise QuoteStateError(quote.id, quote.status, action)
        if quote.is_past_validity(now):
            self._expire(quote)
            raise QuoteExpired(quote.id, quote.valid_until)
        return quote

    def _expire_lapsed(self, pending: List[Quote], now: Optional[datetime]) -> None:
        current = ensure_utc(now or utc_now())
        for quote in pending:
            if quote.is_past_validity(current):
                self._expire(quote)

    def _expire(self, quote: Quote) -> None:
        with self.transaction():
            self.repository.compare_and_set_status(
                quote.id, QuoteStatus.PENDING, QuoteStatus.EXPIRED
            )
        self.log_operation("expire_quote", quote_id=quote.id)

    def _close(
        self,
        quote_id: str,
        new_status: QuoteStatus,
        action: str,
        now: Optional[datetime],
        **fields: Any,
    ) -> Quote:
        current = ensure_utc(now or utc_now())
        quote = self._get_pending(quote_id, action, current)
        with self.transaction():
            if not self.repository.compare_and_set_status(
                quote.id, QuoteStatus.PENDING, new_status, **fields
            ):
                self.db.refresh(quote)
                raise QuoteStateError(quote.id, quote.status, action)
        self.log_operation(f"{action}_quote", quote_id=quote.id)
        return quote

    @staticmethod
    def _validate_schedule(service_start: datetime, valid_until: datetime, now: datetime) -> None:
        if ensure_utc(service_start) <= now:
            raise ValidationException(
                "Service start must be in the future",
                code="INVALID_SERVICE_START",
                details={"service_start": service_start.isoformat()},
            )
        if ensure_utc(valid_until) <= now:
            raise ValidationException(
                "Quote validity must end in the future",
                code="INVALID_VALID_UNTIL",
                details={"valid_until": valid_until.isoformat()},
            )
