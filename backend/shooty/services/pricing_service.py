"""Centralized pricing calculations for quotes and reservations.

``sum_line_items`` is the only place a quote total is computed, and
``compute_split`` the only place a total is divided into deposit and
balance. Everything that stores money goes through one of them.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional, Union

from ..core.config import settings
from ..core.enums import LineItemKind
from ..core.exceptions import ValidationException
from ..domain.money import round_half_up

ZERO = Decimal("0.00")
ONE = Decimal("1")


@dataclass(frozen=True)
class SplitResult:
    """How a reservation total is collected."""

    total: Decimal
    deposit: Decimal
    balance: Decimal
    platform_fee_on_deposit: Decimal
    platform_fee_on_balance: Decimal


def _field(item: Union[Mapping[str, Any], Any], name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _as_decimal(value: Any, field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationException(
            f"{field_name} must be a decimal amount",
            code="INVALID_AMOUNT",
            details={field_name: value},
        ) from exc


def _kind_of(item: Union[Mapping[str, Any], Any]) -> LineItemKind:
    raw = _field(item, "kind")
    try:
        return raw if isinstance(raw, LineItemKind) else LineItemKind(raw)
    except ValueError as exc:
        raise ValidationException(
            f"Unknown line item kind: {raw}",
            code="INVALID_LINE_ITEM",
            details={"kind": raw},
        ) from exc


def validate_line_items(items: Iterable[Union[Mapping[str, Any], Any]]) -> List[Any]:
    """
    Check the structure of a quote's line items.

    A quote has exactly one base rate, any number of options and at most one
    travel fee. Every amount is a non-negative decimal.

    Raises:
        ValidationException: describing the first rule broken
    """
    materialized = list(items)
    kinds = [_kind_of(item) for item in materialized]

    base_count = kinds.count(LineItemKind.BASE_RATE)
    if base_count != 1:
        raise ValidationException(
            "A quote needs exactly one base rate line item",
            code="INVALID_LINE_ITEMS",
            details={"base_rate_count": base_count},
        )
    travel_count = kinds.count(LineItemKind.TRAVEL_FEE)
    if travel_count > 1:
        raise ValidationException(
            "A quote can have at most one travel fee",
            code="INVALID_LINE_ITEMS",
            details={"travel_fee_count": travel_count},
        )

    for item in materialized:
        amount = _as_decimal(_field(item, "amount"), "amount")
        if amount < 0:
            raise ValidationException(
                "Line item amounts cannot be negative",
                code="INVALID_LINE_ITEMS",
                details={"label": _field(item, "label"), "amount": str(amount)},
            )
    return materialized


def sum_line_items(items: Iterable[Union[Mapping[str, Any], Any]]) -> Decimal:
    """Quote total: the sum of all line item amounts, rounded to cents."""
    total = ZERO
    for item in items:
        total += _as_decimal(_field(item, "amount"), "amount")
    return round_half_up(total)


def _validate_rate(rate: Decimal, name: str) -> Decimal:
    if rate < 0 or rate > ONE:
        raise ValidationException(
            f"{name} must be between 0 and 1",
            code="INVALID_RATE",
            details={name: str(rate)},
        )
    return rate


def platform_fee_for(amount: Decimal, platform_fee_rate: Optional[Decimal] = None) -> Decimal:
    """Platform fee retained on one collected leg."""
    rate = settings.platform_fee_rate if platform_fee_rate is None else Decimal(str(platform_fee_rate))
    _validate_rate(rate, "platform_fee_rate")
    return round_half_up(Decimal(amount) * rate)


def compute_split(
    total: Decimal,
    deposit_rate: Optional[Decimal] = None,
    platform_fee_rate: Optional[Decimal] = None,
) -> SplitResult:
    """
    Split a reservation total into deposit and balance.

    The deposit is rounded half-up to cents and the balance is whatever is
    left, so ``deposit + balance == total`` holds exactly. Platform fees are
    informational here; they are retained per leg when money is collected.

    Raises:
        ValidationException: for a negative total or a rate outside [0, 1]
    """
    amount = _as_decimal(total, "total")
    if amount < 0:
        raise ValidationException(
            "Total cannot be negative",
            code="INVALID_AMOUNT",
            details={"total": str(amount)},
        )
    amount = round_half_up(amount)
    d_rate = settings.deposit_rate if deposit_rate is None else Decimal(str(deposit_rate))
    f_rate = (
        settings.platform_fee_rate if platform_fee_rate is None else Decimal(str(platform_fee_rate))
    )
    _validate_rate(d_rate, "deposit_rate")
    _validate_rate(f_rate, "platform_fee_rate")

    deposit = round_half_up(amount * d_rate)
    balance = amount - deposit
    return SplitResult(
        total=amount,
        deposit=deposit,
        balance=balance,
        platform_fee_on_deposit=platform_fee_for(deposit, f_rate),
        platform_fee_on_balance=platform_fee_for(balance, f_rate),
    )
