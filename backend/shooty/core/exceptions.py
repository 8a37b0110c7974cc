# backend/shooty/core/exceptions.py
"""
Domain-specific exceptions for the Shooty booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException using the class status code."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


# Specific business exceptions


class QuoteExpired(ValidationException):
    """Raised when a quote is used after its validity window closed."""

    def __init__(self, quote_id: str, valid_until: Any):
        super().__init__(
            message="This quote has expired",
            code="QUOTE_EXPIRED",
            details={"quote_id": quote_id, "valid_until": str(valid_until)},
        )


class QuoteStateError(ConflictException):
    """Raised when accept/reject/update is attempted on a non-pending quote."""

    def __init__(self, quote_id: str, current_status: str, action: str):
        super().__init__(
            message=f"Cannot {action} a quote that is {current_status}",
            code="QUOTE_NOT_PENDING",
            details={"quote_id": quote_id, "status": current_status, "action": action},
        )


class SlotConflict(ConflictException):
    """Raised when a provider slot is already claimed by an active reservation."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot is already booked for the provider",
            code="SLOT_CONFLICT",
            details=details or {},
        )


class InvalidTransition(ConflictException):
    """Raised when a reservation state change is not allowed."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"Reservation cannot move from {current} to {requested}",
            code="INVALID_TRANSITION",
            details={"current_status": current, "requested_status": requested},
        )


class IdempotencyViolation(ConflictException):
    """Raised when a payment event disagrees with what is expected or recorded."""

    def __init__(self, event_id: str, expected: Decimal, received: Decimal):
        super().__init__(
            message=f"Payment event {event_id} amount {received} does not match expected {expected}",
            code="IDEMPOTENCY_VIOLATION",
            details={
                "event_id": event_id,
                "expected_amount": str(expected),
                "received_amount": str(received),
            },
        )


class RefundExceedsPaid(BusinessRuleException):
    """Raised when a refund would return more than was collected."""

    def __init__(self, reservation_id: str, requested: Decimal, paid: Decimal):
        super().__init__(
            message=f"Refund of {requested} exceeds the {paid} collected for this reservation",
            code="REFUND_EXCEEDS_PAID",
            details={
                "reservation_id": reservation_id,
                "requested_amount": str(requested),
                "amount_paid": str(paid),
            },
        )


class PaymentProcessorError(DomainException):
    """
    Raised when the external payment processor fails.

    ``retryable`` tells callers whether the same request may be retried
    with backoff (network/5xx) or must be surfaced for intervention (4xx).
    """

    retryable: bool = False
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        processor_code: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(
            message=message,
            code="PAYMENT_PROCESSOR_ERROR",
            details={
                "processor_code": processor_code,
                "http_status": http_status,
                "retryable": self.retryable,
            },
        )


class TransientPaymentProcessorError(PaymentProcessorError):
    """Network failure, rate limit or 5xx from the processor."""

    retryable = True
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class PermanentPaymentProcessorError(PaymentProcessorError):
    """Business rejection from the processor; retrying will not help."""

    retryable = False


class ServiceException(DomainException):
    """Raised when a service operation fails for infrastructure reasons."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
            },
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
