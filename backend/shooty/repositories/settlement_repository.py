# backend/shooty/repositories/settlement_repository.py
"""
Settlement Repository for the Shooty booking engine.

Read/append access to the settlement ledger. There are deliberately no
update or delete methods: corrections are new rows.
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import TransactionType
from ..core.exceptions import RepositoryException
from ..models.reservation import Reservation
from ..models.transaction import SettlementTransaction
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_ZERO = Decimal("0.00")


def _to_decimal(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


class SettlementRepository(BaseRepository[SettlementTransaction]):
    """Repository for ledger rows."""

    def __init__(self, db: Session):
        super().__init__(db, SettlementTransaction)
        self.logger = logging.getLogger(__name__)

    def update(self, id: str, **kwargs) -> Optional[SettlementTransaction]:
        raise RepositoryException("Settlement transactions are append-only")

    def get_by_event_id(self, external_event_id: str) -> Optional[SettlementTransaction]:
        return self.find_one_by(external_event_id=external_event_id)

    def get_by_processor_reference(self, reference: str) -> Optional[SettlementTransaction]:
        return self.find_one_by(processor_reference=reference)

    def get_first_of_type(
        self, reservation_id: str, transaction_type: TransactionType
    ) -> Optional[SettlementTransaction]:
        query = (
            self._build_query()
            .filter(
                SettlementTransaction.reservation_id == reservation_id,
                SettlementTransaction.type == transaction_type.value,
            )
            .order_by(SettlementTransaction.created_at.asc())
        )
        try:
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to load {transaction_type.value} for {reservation_id}: {str(e)}")
            raise RepositoryException(f"Failed to load transaction: {str(e)}")

    def list_for_reservation(self, reservation_id: str) -> List[SettlementTransaction]:
        query = (
            self._build_query()
            .filter(SettlementTransaction.reservation_id == reservation_id)
            .order_by(SettlementTransaction.created_at.asc(), SettlementTransaction.id.asc())
        )
        return self._execute_query(query)

    def sum_gross(self, reservation_id: str, positive_only: bool = False) -> Decimal:
        """Signed sum of gross amounts; ``positive_only`` ignores refunds."""
        query = self.db.query(func.sum(SettlementTransaction.gross_amount)).filter(
            SettlementTransaction.reservation_id == reservation_id
        )
        if positive_only:
            query = query.filter(SettlementTransaction.type != TransactionType.REFUND.value)
        return _to_decimal(self._execute_scalar(query))

    def earnings_for_provider(
        self, provider_id: str, since: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Aggregate ledger rows for all reservations of a provider.

        Returns:
            Dictionary with gross, platform_fees, net, refunded and
            reservation_count
        """
        try:
            query = (
                self.db.query(
                    func.sum(SettlementTransaction.gross_amount).label("gross"),
                    func.sum(SettlementTransaction.platform_fee).label("platform_fees"),
                    func.sum(SettlementTransaction.net_amount).label("net"),
                    func.count(func.distinct(SettlementTransaction.reservation_id)).label(
                        "reservation_count"
                    ),
                )
                .join(Reservation, SettlementTransaction.reservation_id == Reservation.id)
                .filter(Reservation.provider_id == provider_id)
            )
            refunded_query = (
                self.db.query(func.sum(SettlementTransaction.gross_amount))
                .join(Reservation, SettlementTransaction.reservation_id == Reservation.id)
                .filter(
                    Reservation.provider_id == provider_id,
                    SettlementTransaction.type == TransactionType.REFUND.value,
                )
            )
            if since is not None:
                query = query.filter(SettlementTransaction.created_at >= since)
                refunded_query = refunded_query.filter(SettlementTransaction.created_at >= since)

            result = query.first()
            refunded = refunded_query.scalar()
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get provider earnings: {str(e)}")
            raise RepositoryException(f"Failed to get provider earnings: {str(e)}")

        if result is None:
            return {
                "gross": _ZERO,
                "platform_fees": _ZERO,
                "net": _ZERO,
                "refunded": _ZERO,
                "reservation_count": 0,
            }
        return {
            "gross": _to_decimal(result.gross),
            "platform_fees": _to_decimal(result.platform_fees),
            "net": _to_decimal(result.net),
            "refunded": _to_decimal(refunded).copy_abs(),
            "reservation_count": result.reservation_count or 0,
        }
