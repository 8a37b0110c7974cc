# backend/shooty/core/enums.py
"""
Core enums for the Shooty booking engine.

These values are persisted as plain strings, so renaming a member is a
data migration.
"""

from enum import Enum


class QuoteStatus(str, Enum):
    """Quote lifecycle statuses."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class LineItemKind(str, Enum):
    """Kinds of priced entries on a quote."""

    BASE_RATE = "base_rate"
    OPTION = "option"
    TRAVEL_FEE = "travel_fee"


class ReservationStatus(str, Enum):
    """Reservation lifecycle statuses."""

    AWAITING_PAYMENT = "awaiting_payment"
    DEPOSIT_PAID = "deposit_paid"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class TransactionType(str, Enum):
    """Money movements recorded in the settlement ledger."""

    DEPOSIT_TRANSFER = "deposit_transfer"
    BALANCE_TRANSFER = "balance_transfer"
    REFUND = "refund"


class PaymentLeg(str, Enum):
    """The two installments a reservation total is split into."""

    DEPOSIT = "deposit"
    BALANCE = "balance"


class PaymentEventType(str, Enum):
    """Normalized processor webhook outcomes."""

    PAYMENT_SUCCEEDED = "payment_succeeded"
    REFUND_SUCCEEDED = "refund_succeeded"


class CancellationTier(str, Enum):
    """Named refund schedules attached to a reservation."""

    FLEXIBLE = "flexible"
    MODERATE = "moderate"
    STRICT = "strict"


class UserRole(str, Enum):
    """Side of the marketplace a user acts on."""

    CLIENT = "client"
    PROVIDER = "provider"
