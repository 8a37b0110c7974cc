"""Fixtures for exercising the v1 routers through FastAPI's TestClient."""

from datetime import datetime, timedelta
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional

from fastapi.testclient import TestClient
import pytest

from shooty.api.dependencies import get_db, get_payment_processor, get_stripe_processor
from shooty.main import create_app
from shooty.services.payment_processor import StripePaymentProcessor

WEBHOOK_SECRET = "whsec_route_tests"


@pytest.fixture
def client(session_factory, processor):
    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_processor] = lambda: processor
    app.dependency_overrides[get_stripe_processor] = lambda: StripePaymentProcessor(
        "sk_test_routes", webhook_secret=WEBHOOK_SECRET
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def quote_payload(
    now: datetime,
    *,
    provider_id: str = "prov_lena",
    client_id: str = "client_marc",
    starts_in: timedelta = timedelta(days=10),
    base_rate: str = "800.00",
) -> Dict[str, Any]:
    return {
        "demand_id": "demand_wedding",
        "provider_id": provider_id,
        "client_id": client_id,
        "line_items": [
            {"kind": "base_rate", "label": "Full day coverage", "amount": base_rate},
            {"kind": "option", "label": "Second shooter", "amount": "150.00"},
            {"kind": "travel_fee", "label": "Travel", "amount": "50.00"},
        ],
        "service_start": (now + starts_in).isoformat(),
        "slot_window_minutes": 240,
        "cancellation_tier": "moderate",
        "valid_until": (now + timedelta(days=3)).isoformat(),
    }


@pytest.fixture
def create_quote(client, now):
    def _create(**overrides) -> Dict[str, Any]:
        response = client.post("/api/v1/quotes", json=quote_payload(now, **overrides))
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def create_reservation(client, create_quote):
    def _create(**overrides) -> Dict[str, Any]:
        quote = create_quote(**overrides)
        response = client.post(f"/api/v1/quotes/{quote['id']}/accept")
        assert response.status_code == 201, response.text
        return response.json()

    return _create


def stripe_event(
    event_id: str,
    reservation_id: str,
    *,
    leg: str = "deposit",
    amount_total: int = 30000,
    event_type: str = "checkout.session.completed",
    payment_intent: str = "pi_route_1",
) -> Dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": f"cs_{event_id}",
                "object": "checkout.session",
                "payment_status": "paid",
                "amount_total": amount_total,
                "payment_intent": payment_intent,
                "metadata": {"reservation_id": reservation_id, "leg": leg},
            }
        },
    }


@pytest.fixture
def post_webhook(client):
    def _post(event: Dict[str, Any], secret: Optional[str] = WEBHOOK_SECRET):
        body = json.dumps(event)
        headers = {"content-type": "application/json"}
        if secret is not None:
            timestamp = int(time.time())
            signature = hmac.new(
                secret.encode("utf-8"), f"{timestamp}.{body}".encode("utf-8"), hashlib.sha256
            ).hexdigest()
            headers["stripe-signature"] = f"t={timestamp},v1={signature}"
        return client.post("/api/v1/payments/webhooks/stripe", content=body, headers=headers)

    return _post


@pytest.fixture
def stripe_event_factory():
    return stripe_event


@pytest.fixture
def quote_body(now):
    """Request body for POST /quotes; the defaults add up to 1000.00."""

    def _body(**overrides) -> Dict[str, Any]:
        return quote_payload(now, **overrides)

    return _body
