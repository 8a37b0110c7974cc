# backend/shooty/repositories/reservation_repository.py
"""
Reservation Repository for the Shooty booking engine.

Besides the usual lookups this repository owns the two writes that
concurrency depends on:

- ``insert_claiming_slot`` adds a reservation inside a SAVEPOINT so a
  violation of the active-slot unique index rolls back only the insert.
- ``compare_and_set_status`` moves a reservation between statuses with a
  single conditional UPDATE.
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import ReservationStatus, UserRole
from ..core.exceptions import RepositoryException
from ..models.reservation import Reservation
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ReservationRepository(BaseRepository[Reservation]):
    """Repository for reservation data access."""

    def __init__(self, db: Session):
        super().__init__(db, Reservation)
        self.logger = logging.getLogger(__name__)

    def insert_claiming_slot(self, **fields: Any) -> Reservation:
        """
        Insert a reservation in a nested transaction.

        Raises:
            IntegrityError: Unchanged, after rolling back the savepoint, so
                the caller can tell which constraint was hit
        """
        savepoint = self.db.begin_nested()
        reservation = Reservation(**fields)
        self.db.add(reservation)
        try:
            self.db.flush()
        except IntegrityError:
            savepoint.rollback()
            raise
        savepoint.commit()
        return reservation

    def get_for_update(self, reservation_id: str) -> Optional[Reservation]:
        """Load a reservation, row-locked where the dialect supports it."""
        try:
            query = self._build_query().filter(Reservation.id == reservation_id)
            if self.dialect_name == "postgresql":
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to lock reservation {reservation_id}: {str(e)}")
            raise RepositoryException(f"Failed to load reservation: {str(e)}")

    def compare_and_set_status(
        self,
        reservation_id: str,
        expected: ReservationStatus,
        new_status: ReservationStatus,
        **fields: Any,
    ) -> bool:
        """
        Move a reservation from ``expected`` to ``new_status``.

        Returns:
            True if the row was in ``expected`` status and got updated
        """
        try:
            values = {"status": new_status.value, **fields}
            updated = (
                self.db.query(Reservation)
                .filter(
                    Reservation.id == reservation_id,
                    Reservation.status == expected.value,
                )
                .update(values, synchronize_session="fetch")
            )
            return updated == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to update reservation {reservation_id}: {str(e)}")
            raise RepositoryException(f"Failed to update reservation status: {str(e)}")

    def list_for_client(
        self, client_id: str, statuses: Optional[Iterable[ReservationStatus]] = None
    ) -> List[Reservation]:
        return self._list_for_party(Reservation.client_id, client_id, statuses)

    def list_for_provider(
        self, provider_id: str, statuses: Optional[Iterable[ReservationStatus]] = None
    ) -> List[Reservation]:
        return self._list_for_party(Reservation.provider_id, provider_id, statuses)

    def list_upcoming(
        self,
        user_id: str,
        role: UserRole,
        now: datetime,
        statuses: Iterable[ReservationStatus],
    ) -> List[Reservation]:
        """Reservations starting at or after ``now``, soonest first."""
        party_column = self._party_column(role)
        query = (
            self._build_query()
            .filter(
                party_column == user_id,
                Reservation.service_start >= now,
                Reservation.status.in_([status.value for status in statuses]),
            )
            .order_by(Reservation.service_start.asc())
        )
        return self._execute_query(query)

    def list_for_provider_between(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        excluded: Iterable[ReservationStatus],
    ) -> List[Reservation]:
        """Reservations of a provider starting within [start, end], in time order."""
        query = (
            self._build_query()
            .filter(
                Reservation.provider_id == provider_id,
                Reservation.service_start >= start,
                Reservation.service_start <= end,
                Reservation.status.notin_([status.value for status in excluded]),
            )
            .order_by(Reservation.service_start.asc())
        )
        return self._execute_query(query)

    def count_by_status(self, user_id: str, role: UserRole) -> Dict[str, int]:
        try:
            rows = (
                self.db.query(Reservation.status, func.count(Reservation.id))
                .filter(self._party_column(role) == user_id)
                .group_by(Reservation.status)
                .all()
            )
            return {status: count for status, count in rows}
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to count reservations for {role.value} {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to count reservations: {str(e)}")

    def completed_total(self, user_id: str, role: UserRole) -> Decimal:
        query = self.db.query(func.coalesce(func.sum(Reservation.total), 0)).filter(
            self._party_column(role) == user_id,
            Reservation.status == ReservationStatus.COMPLETED.value,
        )
        return Decimal(str(self._execute_scalar(query)))

    def find_slot_holder(
        self,
        provider_id: str,
        service_start: datetime,
        slot_window_minutes: int,
        statuses: Iterable[ReservationStatus],
    ) -> Optional[Reservation]:
        """Reservation holding a slot. Only used to describe a conflict, never to decide one."""
        query = self._build_query().filter(
            Reservation.provider_id == provider_id,
            Reservation.service_start == service_start,
            Reservation.slot_window_minutes == slot_window_minutes,
            Reservation.status.in_([status.value for status in statuses]),
        )
        return query.first()

    def _list_for_party(
        self,
        column: Any,
        user_id: str,
        statuses: Optional[Iterable[ReservationStatus]],
    ) -> List[Reservation]:
        query = self._build_query().filter(column == user_id)
        if statuses:
            query = query.filter(Reservation.status.in_([status.value for status in statuses]))
        return self._execute_query(query.order_by(Reservation.service_start.desc()))

    @staticmethod
    def _party_column(role: UserRole) -> Any:
        if role == UserRole.PROVIDER:
            return Reservation.provider_id
        return Reservation.client_id
