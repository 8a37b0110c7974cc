"""Prometheus counters and histograms for booking and settlement flows."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram

REGISTRY = CollectorRegistry(auto_describe=True)

# Service operation latency, recorded by BaseService.measure_operation.
SERVICE_OPERATION_SECONDS = Histogram(
    "shooty_service_operation_seconds",
    "Service operation latency",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

# Slot claims rejected by the active-slot unique index.
SLOT_CONFLICTS_TOTAL = Counter(
    "shooty_slot_conflicts_total",
    "Slot claims rejected because the slot is already held",
    registry=REGISTRY,
)

# Payment webhook handling segmented by leg and outcome (applied/replayed/rejected/refunded).
PAYMENT_EVENTS_TOTAL = Counter(
    "shooty_payment_events_total",
    "Payment confirmation events processed",
    ["leg", "outcome"],
    registry=REGISTRY,
)

REFUNDS_TOTAL = Counter(
    "shooty_refunds_total",
    "Refund attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)
