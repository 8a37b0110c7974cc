"""Webhook response schema."""

from typing import Optional

from .base import StandardizedModel


class WebhookResponse(StandardizedModel):
    status: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    reservation_id: Optional[str] = None
    replayed: bool = False
