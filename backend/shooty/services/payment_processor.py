# backend/shooty/services/payment_processor.py
"""
Payment processor boundary.

``StripePaymentProcessor`` is the only module that talks to Stripe. It
turns Stripe objects into plain value types (CheckoutHandle, RefundReceipt,
PaymentEvent) and Stripe errors into PaymentProcessorError subclasses whose
``retryable`` flag drives ``with_processor_retry``.

Each processor owns a ``stripe.StripeClient`` with its own key, network
timeout and retry count; nothing is stored on the stripe module, so several
processors with different keys can coexist.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
import json
import logging
import random
import time
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, TypeVar

import stripe

from ..core.config import settings
from ..core.enums import PaymentEventType, PaymentLeg
from ..core.exceptions import (
    PaymentProcessorError,
    PermanentPaymentProcessorError,
    TransientPaymentProcessorError,
    ValidationException,
)
from ..core.ulid_helper import is_valid_ulid
from ..domain.money import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_STRIPE_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)

_FAILED_REFUND_STATUSES = {"failed", "canceled"}

# Delayed methods complete the session unpaid and confirm it later
_PAID_CHECKOUT_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")


@dataclass(frozen=True)
class CheckoutHandle:
    session_id: str
    redirect_url: str


@dataclass(frozen=True)
class RefundReceipt:
    refund_id: str
    status: str
    amount: Decimal


@dataclass(frozen=True)
class PaymentEvent:
    """Processor webhook normalized to what the orchestrator needs."""

    event_id: str
    type: PaymentEventType
    reservation_id: str
    amount: Decimal
    leg: Optional[PaymentLeg] = None
    processor_reference: Optional[str] = None
    raw_type: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)


class PaymentProcessor(Protocol):
    """Interface the orchestrator depends on; Stripe in production, fakes in tests."""

    def create_checkout_session(
        self,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> CheckoutHandle:
        ...

    def refund(self, charge_id: str, amount: Decimal, idempotency_key: str) -> RefundReceipt:
        ...


def classify_stripe_error(exc: stripe.StripeError) -> PaymentProcessorError:
    """Map a Stripe exception onto the transient/permanent taxonomy."""
    http_status = getattr(exc, "http_status", None)
    processor_code = getattr(exc, "code", None)
    message = getattr(exc, "user_message", None) or str(exc) or type(exc).__name__

    if isinstance(exc, _TRANSIENT_STRIPE_ERRORS) or (http_status is not None and http_status >= 500):
        return TransientPaymentProcessorError(
            message, processor_code=processor_code, http_status=http_status
        )
    return PermanentPaymentProcessorError(
        message, processor_code=processor_code, http_status=http_status
    )


def _retry_delay(attempt: int, base_delay: float) -> float:
    base = base_delay * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.05 * attempt)


def with_processor_retry(
    op_name: str,
    func: Callable[[], T],
    *,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute a processor call, retrying transient failures with exponential backoff.

    Permanent failures and anything that is not a PaymentProcessorError are
    raised on the first occurrence.
    """
    attempts = max_attempts if max_attempts is not None else settings.processor_max_attempts
    delay_base = base_delay if base_delay is not None else settings.processor_backoff_base

    attempt = 1
    while True:
        try:
            return func()
        except PaymentProcessorError as exc:
            if not exc.retryable or attempt >= attempts:
                raise

            delay = _retry_delay(attempt, delay_base)
            logger.warning(
                "Transient payment processor failure, retrying",
                extra={
                    "event": "processor_retry",
                    "op": op_name,
                    "attempt": attempt,
                    "delay": delay,
                    "error": exc.message,
                },
            )
            sleep(delay)
            attempt += 1


class StripePaymentProcessor:
    """Stripe-backed PaymentProcessor."""

    def __init__(
        self,
        api_key: str,
        *,
        currency: str = "eur",
        success_url: str = "",
        cancel_url: str = "",
        webhook_secret: str = "",
        timeout_seconds: Optional[float] = None,
        max_network_retries: Optional[int] = None,
        client: Optional[stripe.StripeClient] = None,
    ):
        self.api_key = api_key
        self.currency = currency
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.webhook_secret = webhook_secret
        self.timeout_seconds = (
            settings.stripe_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self.max_network_retries = (
            settings.stripe_max_network_retries
            if max_network_retries is None
            else max_network_retries
        )
        self._client = client
        self.logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_settings(cls) -> "StripePaymentProcessor":
        return cls(
            settings.stripe_secret_key.get_secret_value(),
            currency=settings.stripe_currency,
            success_url=settings.checkout_success_url,
            cancel_url=settings.checkout_cancel_url,
            webhook_secret=settings.stripe_webhook_secret.get_secret_value(),
        )

    @property
    def client(self) -> stripe.StripeClient:
        """Stripe client bounded by the configured timeout, built on first use."""
        if self._client is None:
            self._client = stripe.StripeClient(
                self.api_key,
                http_client=stripe.RequestsClient(timeout=self.timeout_seconds),
                max_network_retries=self.max_network_retries,
            )
        return self._client

    def create_checkout_session(
        self,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> CheckoutHandle:
        """
        Create a hosted Checkout Session for one payment leg.

        Metadata is copied onto the PaymentIntent as well so charge events
        carry the reservation reference.
        """
        leg = metadata.get("leg", "payment")
        try:
            session = self.client.checkout.sessions.create(
                params={
                    "mode": "payment",
                    "line_items": [
                        {
                            "price_data": {
                                "currency": currency or self.currency,
                                "unit_amount": to_minor_units(amount),
                                "product_data": {"name": f"Reservation {leg}"},
                            },
                            "quantity": 1,
                        }
                    ],
                    "success_url": self.success_url,
                    "cancel_url": self.cancel_url,
                    "metadata": dict(metadata),
                    "payment_intent_data": {"metadata": dict(metadata)},
                },
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating checkout session: {str(e)}")
            raise classify_stripe_error(e) from e

        return CheckoutHandle(session_id=session.id, redirect_url=session.url)

    def refund(self, charge_id: str, amount: Decimal, idempotency_key: str) -> RefundReceipt:
        """
        Refund part or all of a captured payment.

        ``charge_id`` may be a PaymentIntent id (``pi_``) or a Charge id.
        """
        target = {"payment_intent": charge_id} if charge_id.startswith("pi_") else {"charge": charge_id}
        try:
            refund = self.client.refunds.create(
                params={"amount": to_minor_units(amount), **target},
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error refunding {charge_id}: {str(e)}")
            raise classify_stripe_error(e) from e

        status = str(getattr(refund, "status", "") or "")
        if status in _FAILED_REFUND_STATUSES:
            raise PermanentPaymentProcessorError(
                f"Refund {refund.id} was {status}",
                processor_code=f"refund_{status}",
            )
        return RefundReceipt(
            refund_id=refund.id,
            status=status,
            amount=from_minor_units(getattr(refund, "amount", to_minor_units(amount))),
        )

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify a webhook signature and parse the event.

        The verified body is parsed as plain JSON so callers get ordinary
        dicts regardless of the stripe object model.

        Raises:
            ValidationException: missing secret, bad signature or bad payload
        """
        if not self.webhook_secret:
            raise ValidationException(
                "Webhook secret not configured", code="WEBHOOK_NOT_CONFIGURED"
            )
        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            self.logger.warning(f"Invalid webhook signature: {str(e)}")
            raise ValidationException(
                "Invalid webhook signature", code="INVALID_WEBHOOK_SIGNATURE"
            ) from e
        except ValueError as e:
            self.logger.warning(f"Invalid webhook payload: {str(e)}")
            raise ValidationException(
                "Invalid webhook payload", code="INVALID_WEBHOOK_PAYLOAD"
            ) from e
        if not isinstance(event, dict):
            raise ValidationException("Invalid webhook payload", code="INVALID_WEBHOOK_PAYLOAD")
        return event

    @staticmethod
    def to_payment_event(event: Mapping[str, Any]) -> Optional[PaymentEvent]:
        """
        Normalize a Stripe event.

        Returns:
            PaymentEvent for paid checkout sessions (``completed``, or
            ``async_payment_succeeded`` for delayed methods such as SEPA
            debit) and charge.refunded events that reference a reservation,
            None for anything else
        """
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        metadata = {str(k): str(v) for k, v in (obj.get("metadata") or {}).items()}
        reservation_id = metadata.get("reservation_id")
        if not reservation_id or not is_valid_ulid(reservation_id):
            return None

        if event_type in _PAID_CHECKOUT_EVENTS:
            if obj.get("payment_status") not in (None, "paid"):
                return None
            leg_value = metadata.get("leg")
            try:
                leg = PaymentLeg(leg_value) if leg_value else None
            except ValueError:
                leg = None
            if leg is None:
                return None
            return PaymentEvent(
                event_id=str(event.get("id")),
                type=PaymentEventType.PAYMENT_SUCCEEDED,
                reservation_id=reservation_id,
                amount=from_minor_units(obj.get("amount_total") or 0),
                leg=leg,
                processor_reference=obj.get("payment_intent") or obj.get("id"),
                raw_type=event_type,
                metadata=metadata,
            )

        if event_type == "charge.refunded":
            refunds = ((obj.get("refunds") or {}).get("data")) or []
            reference = refunds[0].get("id") if refunds else obj.get("payment_intent")
            return PaymentEvent(
                event_id=str(event.get("id")),
                type=PaymentEventType.REFUND_SUCCEEDED,
                reservation_id=reservation_id,
                amount=from_minor_units(obj.get("amount_refunded") or 0),
                processor_reference=reference,
                raw_type=event_type,
                metadata=metadata,
            )

        return None
