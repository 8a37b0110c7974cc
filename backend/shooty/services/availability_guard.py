"""
Slot claiming for provider calendars.

A slot is (provider_id, service_start, slot_window_minutes). At most one
reservation in an active status may hold it, and the database enforces
that through the partial unique index on reservations. Claiming is a
single INSERT; there is no availability read beforehand, so two handlers
racing for the same slot are serialized by the index alone.
"""

from datetime import datetime
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException, SlotConflict
from ..core.metrics import SLOT_CONFLICTS_TOTAL
from ..core.timezone_utils import ensure_utc
from ..database.session_utils import violates_unique_constraint
from ..domain.reservation_state_machine import ACTIVE_STATES
from ..models.reservation import ACTIVE_SLOT_COLUMNS, ACTIVE_SLOT_INDEX, Reservation
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class AvailabilityGuard(BaseService):
    """Claims provider slots by inserting reservations against the slot index."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.reservation_repository = RepositoryFactory.create_reservation_repository(db)

    @BaseService.measure_operation("claim_slot")
    def claim_slot(
        self,
        provider_id: str,
        service_start: datetime,
        slot_window_minutes: int,
        **reservation_fields: Any,
    ) -> Reservation:
        """
        Insert a reservation holding the given slot.

        Runs inside the caller's transaction and does not commit. The
        returned Reservation row is the claim; it is released implicitly
        once the reservation leaves the active statuses.

        Raises:
            SlotConflict: an active reservation already holds the slot
            RepositoryException: any other integrity failure
        """
        start = ensure_utc(service_start)
        try:
            reservation = self.reservation_repository.insert_claiming_slot(
                provider_id=provider_id,
                service_start=start,
                slot_window_minutes=slot_window_minutes,
                **reservation_fields,
            )
        except IntegrityError as exc:
            if not violates_unique_constraint(exc, ACTIVE_SLOT_INDEX, ACTIVE_SLOT_COLUMNS):
                self.logger.error(f"Reservation insert failed for provider {provider_id}: {exc}")
                raise RepositoryException(f"Integrity constraint violated: {exc}") from exc

            SLOT_CONFLICTS_TOTAL.inc()
            holder = self.reservation_repository.find_slot_holder(
                provider_id, start, slot_window_minutes, ACTIVE_STATES
            )
            self.logger.info(
                "Slot already claimed",
                extra={
                    "provider_id": provider_id,
                    "service_start": start.isoformat(),
                    "slot_window_minutes": slot_window_minutes,
                },
            )
            raise SlotConflict(
                details={
                    "provider_id": provider_id,
                    "service_start": start.isoformat(),
                    "slot_window_minutes": slot_window_minutes,
                    "held_by_reservation": holder.reservation_number if holder else None,
                }
            ) from exc

        self.log_operation(
            "claim_slot",
            reservation_id=reservation.id,
            provider_id=provider_id,
            service_start=start.isoformat(),
        )
        return reservation
