"""Domain Entities - Aggregates"""
from datetime import date, datetime, timezone
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from domain.enums import PaymentMethod, PaymentStatus, ReservationStatus
from domain.state_machine import ensure_active, ensure_transition
from domain.value_objects import PaymentInfo, TimeSlot, occupied_hours

EXPIRY_MARKER = "Automatically marked as completed after expiry"
NOTES_SEPARATOR = " | "


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Court(BaseModel):
    """Bookable court (read-only for the reservation context)"""
    model_config = ConfigDict(from_attributes=True)

    court_id: int
    name: str
    active: bool = True


class Customer(BaseModel):
    """Customer reference (read-only for the reservation context)"""
    model_config = ConfigDict(from_attributes=True)

    customer_id: int
    full_name: str
    phone: Optional[str] = None


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity"""
    model_config = ConfigDict(from_attributes=True)

    # Identity (assigned by storage)
    reservation_id: Optional[int] = None

    # References to other contexts
    customer_id: int
    court_id: int
    parent_id: Optional[int] = None

    # Schedule
    reservation_date: date
    hour: int
    duration_minutes: int = 60

    # Billing
    price_cents: int
    payment_method: Optional[PaymentMethod] = None
    paid_percentage: int = 0
    amount_paid_cents: int = 0

    # Status
    status: ReservationStatus = ReservationStatus.ACTIVE

    # Recurrence (meaningful on the series parent)
    is_recurring: bool = False
    weekday: Optional[int] = None
    recurrence_end: Optional[date] = None

    notes: Optional[str] = None

    # Metadata
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    version: int = 1

    # Version as last read from storage; writes are refused if storage moved on
    _stored_version: Optional[int] = PrivateAttr(default=None)

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        customer_id: int,
        court_id: int,
        reservation_date: date,
        slot: TimeSlot,
        price_cents: int,
        payment: PaymentInfo,
        notes: Optional[str] = None,
        parent_id: Optional[int] = None,
        is_recurring: bool = False,
        weekday: Optional[int] = None,
        recurrence_end: Optional[date] = None,
    ) -> "Reservation":
        """Build a new ACTIVE reservation"""
        return Reservation(
            customer_id=customer_id,
            court_id=court_id,
            parent_id=parent_id,
            reservation_date=reservation_date,
            hour=slot.hour,
            duration_minutes=slot.duration_minutes,
            price_cents=price_cents,
            payment_method=payment.method,
            paid_percentage=payment.paid_percentage,
            amount_paid_cents=payment.amount_paid(price_cents),
            status=ReservationStatus.ACTIVE,
            is_recurring=is_recurring,
            weekday=weekday if is_recurring else None,
            recurrence_end=recurrence_end if is_recurring else None,
            notes=notes or None,
        )

    # ==================== QUERY METHODS ====================
    @property
    def occupied_hours(self) -> FrozenSet[int]:
        return occupied_hours(self.hour, self.duration_minutes)

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentInfo(method=self.payment_method, paid_percentage=self.paid_percentage).status

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE

    @property
    def is_series_parent(self) -> bool:
        return self.is_recurring and self.parent_id is None

    @property
    def stored_version(self) -> Optional[int]:
        return self._stored_version

    def mark_stored(self) -> "Reservation":
        """Record the current version as the one held by storage"""
        self._stored_version = self.version
        return self

    def occupies(self, court_id: int, on: date, hours: FrozenSet[int]) -> bool:
        """True when this reservation is active and blocks any of `hours`"""
        return (
            self.is_active
            and self.court_id == court_id
            and self.reservation_date == on
            and bool(self.occupied_hours & hours)
        )

    # ==================== STATE TRANSITION METHODS ====================
    def cancel(self) -> None:
        ensure_transition(self.status, ReservationStatus.CANCELLED)
        self.status = ReservationStatus.CANCELLED
        self._touch()

    def complete(self) -> None:
        ensure_transition(self.status, ReservationStatus.COMPLETED)
        self.status = ReservationStatus.COMPLETED
        self._touch()

    def complete_expired(self) -> None:
        """Completion performed by the expiry sweep; keeps prior notes"""
        ensure_transition(self.status, ReservationStatus.COMPLETED)
        self.notes = (
            f"{self.notes}{NOTES_SEPARATOR}{EXPIRY_MARKER}" if self.notes else EXPIRY_MARKER
        )
        self.status = ReservationStatus.COMPLETED
        self._touch()

    # ==================== MODIFICATION METHODS ====================
    def reschedule(
        self,
        new_date: date,
        new_hour: int,
        new_price_cents: int,
        notes: Optional[str] = None,
    ) -> None:
        """Move to a new date/hour; recurrence linkage is left as is"""
        ensure_active(self.status, "rescheduled")
        self.reservation_date = new_date
        self.hour = new_hour
        self.price_cents = new_price_cents
        if notes:
            self.notes = notes
        self._touch()

    def _touch(self) -> None:
        self.updated_at = _utcnow()
        self.version += 1
