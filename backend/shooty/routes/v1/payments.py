# backend/shooty/routes/v1/payments.py
"""
Payment routes - API v1

Endpoints:
    POST /payments/webhooks/stripe → Handle Stripe webhooks

Stripe delivers at least once and in any order. A non-2xx answer makes
Stripe redeliver later, which is what an out-of-order balance event needs;
duplicates are answered 200 with ``replayed=True``.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ...api.dependencies import get_payment_orchestrator, get_stripe_processor
from ...core.enums import PaymentEventType
from ...core.exceptions import DomainException
from ...schemas.payment import WebhookResponse
from ...services.payment_orchestrator import PaymentOrchestrator, PaymentOutcome
from ...services.payment_processor import StripePaymentProcessor
from .errors import handle_domain_exception

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["payments-v1"])


def _payment_status(outcome: PaymentOutcome) -> str:
    if outcome.replayed:
        return "replayed"
    if outcome.refunded:
        return "refunded"
    return "processed"


@router.post("/payments/webhooks/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    stripe_processor: StripePaymentProcessor = Depends(get_stripe_processor),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> WebhookResponse:
    """
    Handle Stripe webhook events.

    Returns:
        ``processed`` / ``replayed`` for payments (``refunded`` when the
        reservation was already closed), ``acknowledged`` /
        ``unmatched`` for refunds, ``ignored`` for anything else

    Note:
        This endpoint has no authentication as it uses webhook signature verification
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.warning("Webhook received without signature")
        raise HTTPException(status_code=400, detail="No signature")

    try:
        event = stripe_processor.construct_event(payload, sig_header)
        event_type = event.get("type", "unknown")
        payment_event = stripe_processor.to_payment_event(event)

        if payment_event is None:
            logger.info(f"Ignoring webhook event: {event_type}")
            return WebhookResponse(status="ignored", event_id=event.get("id"), event_type=event_type)

        if payment_event.type == PaymentEventType.PAYMENT_SUCCEEDED:
            outcome = await asyncio.to_thread(orchestrator.on_payment_confirmed, payment_event)
            return WebhookResponse(
                status=_payment_status(outcome),
                event_id=payment_event.event_id,
                event_type=event_type,
                reservation_id=outcome.reservation_id,
                replayed=outcome.replayed,
            )

        matched = await asyncio.to_thread(orchestrator.acknowledge_refund, payment_event)
        return WebhookResponse(
            status="acknowledged" if matched else "unmatched",
            event_id=payment_event.event_id,
            event_type=event_type,
            reservation_id=payment_event.reservation_id,
        )
    except DomainException as e:
        logger.warning(f"Webhook rejected: {e.code} {e.message}")
        handle_domain_exception(e)
