"""Domain Exceptions"""
from datetime import date
from typing import List, Optional


class ReservationError(Exception):
    """Base class for reservation business errors"""


class ValidationError(ReservationError, ValueError):
    """Malformed or out-of-range input"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(ReservationError):
    """Referenced customer, court or reservation does not exist"""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidStateError(ReservationError, ValueError):
    """Transition not allowed from the current state"""


class ConflictError(ReservationError):
    """Requested slot is already taken by an active reservation"""

    def __init__(self, message: str, dates: Optional[List[date]] = None):
        super().__init__(message)
        self.dates = list(dates or [])


class SlotAlreadyBookedError(Exception):
    """Raised by storage when the active-slot uniqueness constraint is violated"""

    def __init__(self, court_id: int, reservation_date: date, hour: int):
        super().__init__(
            f"Court {court_id} already has an active reservation on "
            f"{reservation_date.isoformat()} at {hour}h"
        )
        self.court_id = court_id
        self.reservation_date = reservation_date
        self.hour = hour


class StaleReservationError(ConflictError):
    """Stored reservation changed since it was read; the write was refused"""

    def __init__(self, reservation_id: int):
        super().__init__(
            f"Reservation {reservation_id} was modified by another operation; reload and retry"
        )
        self.reservation_id = reservation_id
