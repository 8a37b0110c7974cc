# backend/shooty/repositories/factory.py
"""
Repository Factory for the Shooty booking engine

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .quote_repository import QuoteRepository
    from .reservation_repository import ReservationRepository
    from .settlement_repository import SettlementRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_quote_repository(db: Session) -> "QuoteRepository":
        """Create repository for quote operations."""
        from .quote_repository import QuoteRepository

        return QuoteRepository(db)

    @staticmethod
    def create_reservation_repository(db: Session) -> "ReservationRepository":
        """Create repository for reservation operations."""
        from .reservation_repository import ReservationRepository

        return ReservationRepository(db)

    @staticmethod
    def create_settlement_repository(db: Session) -> "SettlementRepository":
        """Create repository for settlement ledger operations."""
        from .settlement_repository import SettlementRepository

        return SettlementRepository(db)
