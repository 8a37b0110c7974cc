"""Reservation lifecycle rules.

Pure functions over ``ReservationStatus``; nothing here touches storage.

    awaiting_payment -> deposit_paid -> confirmed -> completed
    any of the first three -> cancelled | refunded
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Union

from ..core.enums import ReservationStatus
from ..core.exceptions import InvalidTransition

ACTIVE_STATES: FrozenSet[ReservationStatus] = frozenset(
    {
        ReservationStatus.AWAITING_PAYMENT,
        ReservationStatus.DEPOSIT_PAID,
        ReservationStatus.CONFIRMED,
    }
)

TERMINAL_STATES: FrozenSet[ReservationStatus] = frozenset(
    {
        ReservationStatus.COMPLETED,
        ReservationStatus.CANCELLED,
        ReservationStatus.REFUNDED,
    }
)

_EXIT_STATES = frozenset({ReservationStatus.CANCELLED, ReservationStatus.REFUNDED})

_FORWARD: Dict[ReservationStatus, ReservationStatus] = {
    ReservationStatus.AWAITING_PAYMENT: ReservationStatus.DEPOSIT_PAID,
    ReservationStatus.DEPOSIT_PAID: ReservationStatus.CONFIRMED,
    ReservationStatus.CONFIRMED: ReservationStatus.COMPLETED,
}

StatusLike = Union[ReservationStatus, str]


def _coerce(status: StatusLike) -> ReservationStatus:
    return status if isinstance(status, ReservationStatus) else ReservationStatus(status)


def allowed_transitions(current: StatusLike) -> FrozenSet[ReservationStatus]:
    state = _coerce(current)
    if state in TERMINAL_STATES:
        return frozenset()
    return frozenset({_FORWARD[state]}) | _EXIT_STATES


def is_terminal(status: StatusLike) -> bool:
    return _coerce(status) in TERMINAL_STATES


def is_active(status: StatusLike) -> bool:
    return _coerce(status) in ACTIVE_STATES


def transition(current: StatusLike, requested: StatusLike) -> ReservationStatus:
    """
    Validate a requested status change.

    Returns:
        The requested status when the move is legal

    Raises:
        InvalidTransition: for any move not in the lifecycle graph,
            including self-transitions and moves out of terminal states
    """
    state = _coerce(current)
    try:
        target = _coerce(requested)
    except ValueError as exc:
        raise InvalidTransition(state.value, str(requested)) from exc
    if target not in allowed_transitions(state):
        raise InvalidTransition(state.value, target.value)
    return target
