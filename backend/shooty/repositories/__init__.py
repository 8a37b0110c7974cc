"""
Repository layer for the Shooty booking engine.

Repositories encapsulate data access; services own transactions.
"""

from .base_repository import BaseRepository, IRepository
from .factory import RepositoryFactory
from .quote_repository import QuoteRepository
from .reservation_repository import ReservationRepository
from .settlement_repository import SettlementRepository

__all__ = [
    "BaseRepository",
    "IRepository",
    "QuoteRepository",
    "RepositoryFactory",
    "ReservationRepository",
    "SettlementRepository",
]
