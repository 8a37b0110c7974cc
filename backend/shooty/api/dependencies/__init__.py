# backend/shooty/api/dependencies/__init__.py
"""
Central export point for all dependencies.
"""

from .database import get_db
from .services import (
    get_payment_orchestrator,
    get_payment_processor,
    get_quote_service,
    get_reservation_service,
    get_stripe_processor,
)

__all__ = [
    # Database
    "get_db",
    # Services
    "get_payment_orchestrator",
    "get_payment_processor",
    "get_quote_service",
    "get_reservation_service",
    "get_stripe_processor",
]
