"""Tiered cancellation refunds.

Each tier is a table of (minimum whole days before service, refund share),
checked from the most generous row down. Unknown tiers fall back to a flat
50% refund.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import math
from typing import Dict, Optional, Tuple, Union

from ..core.enums import CancellationTier
from ..core.timezone_utils import ensure_utc, utc_now
from .money import round_half_up

FULL = Decimal("1")
HALF = Decimal("0.5")
NONE = Decimal("0")

UNKNOWN_TIER_PERCENT = HALF

# Rows are ordered by threshold descending; the first row whose threshold
# is <= days_before wins. A threshold of None matches everything left.
POLICY_TABLE: Dict[CancellationTier, Tuple[Tuple[Optional[int], Decimal], ...]] = {
    CancellationTier.FLEXIBLE: ((1, FULL), (None, HALF)),
    CancellationTier.MODERATE: ((5, FULL), (1, HALF), (None, NONE)),
    CancellationTier.STRICT: ((7, HALF), (None, NONE)),
}

_DAY_SECONDS = timedelta(days=1).total_seconds()


@dataclass(frozen=True)
class RefundQuote:
    days_before: int
    percent: Decimal
    refund_amount: Decimal
    policy_basis: str


def _resolve_tier(tier: Union[CancellationTier, str]) -> Optional[CancellationTier]:
    if isinstance(tier, CancellationTier):
        return tier
    try:
        return CancellationTier(str(tier).lower())
    except ValueError:
        return None


def days_before_service(service_start: datetime, now: datetime) -> int:
    """Whole days until the service starts, rounded up (partial days count)."""
    delta = ensure_utc(service_start) - ensure_utc(now)
    return math.ceil(delta.total_seconds() / _DAY_SECONDS)


def compute_refund_percent(tier: Union[CancellationTier, str], days_before: int) -> Decimal:
    """Refund share in [0, 1] for a tier cancelled ``days_before`` days ahead."""
    resolved = _resolve_tier(tier)
    if resolved is None:
        return UNKNOWN_TIER_PERCENT
    for threshold, percent in POLICY_TABLE[resolved]:
        if threshold is None or days_before >= threshold:
            return percent
    return NONE


def compute_refund_amount(amount_paid: Decimal, percent: Decimal) -> Decimal:
    """Refund owed for ``percent`` of ``amount_paid``; never negative, never above paid."""
    paid = max(Decimal(amount_paid), NONE)
    share = min(max(Decimal(percent), NONE), FULL)
    return min(round_half_up(paid), round_half_up(paid * share))


def _describe(tier: Union[CancellationTier, str], days_before: int, percent: Decimal) -> str:
    resolved = _resolve_tier(tier)
    label = resolved.value if resolved else f"unknown tier '{tier}'"
    return f"{label}: {days_before} day(s) before service refunds {int(percent * 100)}%"


def evaluate(
    tier: Union[CancellationTier, str],
    service_start: datetime,
    amount_paid: Decimal,
    now: Optional[datetime] = None,
) -> RefundQuote:
    days_before = days_before_service(service_start, now or utc_now())
    percent = compute_refund_percent(tier, days_before)
    return RefundQuote(
        days_before=days_before,
        percent=percent,
        refund_amount=compute_refund_amount(amount_paid, percent),
        policy_basis=_describe(tier, days_before, percent),
    )
