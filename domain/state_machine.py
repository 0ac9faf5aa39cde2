"""Reservation lifecycle transition table"""
from typing import Dict, FrozenSet

from domain.enums import ReservationStatus
from domain.exceptions import InvalidStateError

TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    ReservationStatus.ACTIVE: frozenset({ReservationStatus.CANCELLED, ReservationStatus.COMPLETED}),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.COMPLETED: frozenset(),
}

TERMINAL_STATES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: ReservationStatus, target: ReservationStatus) -> None:
    """Raise InvalidStateError unless current -> target is in the table"""
    if not can_transition(current, target):
        raise InvalidStateError(
            f"Cannot change reservation from {current.value} to {target.value}: "
            f"only ACTIVE reservations can be cancelled or completed"
        )


def ensure_active(status: ReservationStatus, action: str) -> None:
    """Guard for edits that keep the state but require an open reservation"""
    if status != ReservationStatus.ACTIVE:
        raise InvalidStateError(
            f"Only ACTIVE reservations can be {action} (current status: {status.value})"
        )


def is_terminal(status: ReservationStatus) -> bool:
    return status in TERMINAL_STATES
