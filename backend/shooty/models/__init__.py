"""
Database models for the Shooty booking engine.

- Quote / QuoteLineItem: provider offers and their typed price lines
- Reservation: the engagement created from an accepted quote
- SettlementTransaction: append-only ledger of money movements
"""

from .quote import Quote, QuoteLineItem
from .reservation import Reservation
from .transaction import SettlementTransaction

__all__ = [
    "Quote",
    "QuoteLineItem",
    "Reservation",
    "SettlementTransaction",
]
