# backend/shooty/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. The payment processor
is its own dependency so tests can override it with a fake.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.payment_orchestrator import PaymentOrchestrator
from ...services.payment_processor import PaymentProcessor, StripePaymentProcessor
from ...services.quote_service import QuoteService
from ...services.reservation_service import ReservationService
from .database import get_db


@lru_cache
def _stripe_processor() -> StripePaymentProcessor:
    return StripePaymentProcessor.from_settings()


def get_payment_processor() -> PaymentProcessor:
    """Get the configured payment processor."""
    return _stripe_processor()


def get_stripe_processor() -> StripePaymentProcessor:
    """Stripe adapter used for webhook verification and event parsing."""
    return _stripe_processor()


def get_quote_service(db: Session = Depends(get_db)) -> QuoteService:
    """
    Get quote service instance.

    Args:
        db: Database session

    Returns:
        QuoteService instance
    """
    return QuoteService(db)


def get_payment_orchestrator(
    db: Session = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> PaymentOrchestrator:
    return PaymentOrchestrator(db, processor)


def get_reservation_service(
    db: Session = Depends(get_db),
    payment_orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> ReservationService:
    """
    Get reservation service instance with its payment orchestrator.

    Returns:
        ReservationService instance
    """
    return ReservationService(db, payment_orchestrator)
