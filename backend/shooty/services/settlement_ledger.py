"""
Settlement ledger service.

Append-only record of every money movement for a reservation. Appends
flush inside the caller's transaction; callers commit the append together
with the reservation status change it accounts for.
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import TransactionType
from ..core.timezone_utils import ensure_utc, utc_now
from ..domain.money import round_half_up
from ..models.transaction import SettlementTransaction
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class SettlementLedger(BaseService):
    """Append-only settlement ledger keyed by processor event id."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_settlement_repository(db)

    def append(
        self,
        *,
        reservation_id: str,
        transaction_type: TransactionType,
        gross_amount: Decimal,
        platform_fee: Decimal,
        external_event_id: str,
        processor_reference: Optional[str] = None,
    ) -> SettlementTransaction:
        """
        Add a ledger row. ``net_amount`` is always gross minus fee.

        Raises:
            RepositoryException: chained from IntegrityError when
                ``external_event_id`` was already recorded
        """
        gross = round_half_up(gross_amount)
        fee = round_half_up(platform_fee)
        entry = self.repository.create(
            reservation_id=reservation_id,
            type=transaction_type.value,
            gross_amount=gross,
            platform_fee=fee,
            net_amount=gross - fee,
            external_event_id=external_event_id,
            processor_reference=processor_reference,
            created_at=utc_now(),
        )
        self.log_operation(
            "ledger_append",
            reservation_id=reservation_id,
            transaction_type=transaction_type.value,
            gross_amount=str(gross),
            external_event_id=external_event_id,
        )
        return entry

    def has_event(self, external_event_id: str) -> bool:
        return self.repository.exists(external_event_id=external_event_id)

    def get_by_event(self, external_event_id: str) -> Optional[SettlementTransaction]:
        return self.repository.get_by_event_id(external_event_id)

    def get_by_processor_reference(self, reference: str) -> Optional[SettlementTransaction]:
        return self.repository.get_by_processor_reference(reference)

    def get_deposit_transaction(self, reservation_id: str) -> Optional[SettlementTransaction]:
        return self.repository.get_first_of_type(reservation_id, TransactionType.DEPOSIT_TRANSFER)

    def sum_by_reservation(self, reservation_id: str) -> Decimal:
        """Signed total still held for a reservation (collections minus refunds)."""
        return self.repository.sum_gross(reservation_id)

    def amount_paid(self, reservation_id: str) -> Decimal:
        """Total ever collected for a reservation, ignoring refunds."""
        return self.repository.sum_gross(reservation_id, positive_only=True)

    def list_for_reservation(self, reservation_id: str) -> List[SettlementTransaction]:
        return self.repository.list_for_reservation(reservation_id)

    @BaseService.measure_operation("provider_earnings")
    def earnings_for_provider(
        self, provider_id: str, since: Optional[datetime] = None
    ) -> Dict[str, Any]:
        return self.repository.earnings_for_provider(
            provider_id, since=ensure_utc(since) if since else None
        )
