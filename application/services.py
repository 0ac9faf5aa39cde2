"""Application Services - Business use cases"""
import logging
from datetime import date
from typing import Callable, List, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from application.conflicts import ConflictChecker
from domain import calendar
from domain.entities import Reservation
from domain.enums import PaymentMethod, Weekday
from domain.exceptions import (
    ConflictError, InvalidStateError, NotFoundError, SlotAlreadyBookedError, ValidationError
)
from domain.pricing import price_for, reschedule_price, validate_duration
from domain.recurrence import generate_occurrences
from domain.repositories import (
    CourtRepository, CustomerRepository, ReservationFilter, ReservationRepository
)
from domain.state_machine import ensure_active
from domain.value_objects import CLOSING_HOUR, OPENING_HOUR, PaymentInfo, TimeSlot, occupied_hours

logger = logging.getLogger(__name__)

DateInput = Union[date, str]


class CreationResult(BaseModel):
    """Outcome of a create call: the parent (or single) reservation plus any children"""
    parent: Reservation
    children: List[Reservation] = []

    @property
    def total_created(self) -> int:
        return 1 + len(self.children)

    @property
    def reservations(self) -> List[Reservation]:
        return [self.parent] + self.children


class SeriesCancellation(BaseModel):
    parent_id: int
    cancelled_count: int
    cancelled_ids: List[int]


class SeriesView(BaseModel):
    parent: Reservation
    children: List[Reservation]


def _validate_hour(hour: int) -> None:
    if hour is None or hour < OPENING_HOUR or hour > CLOSING_HOUR:
        raise ValidationError(
            f"Hour must be between {OPENING_HOUR} and {CLOSING_HOUR}", field="hour"
        )


def _format_dates(dates: List[date]) -> str:
    return ", ".join(d.isoformat() for d in dates)


class ReservationService:
    """Service for reservation lifecycle use cases"""

    def __init__(self,
                 repository: ReservationRepository,
                 customer_repo: CustomerRepository,
                 court_repo: CourtRepository,
                 max_recurrence_months: int = 12,
                 reschedule_applies_duration: bool = False,
                 clock: Callable[[], date] = calendar.today):
        self.repository = repository
        self.customer_repo = customer_repo
        self.court_repo = court_repo
        self.conflicts = ConflictChecker(repository)
        self.max_recurrence_months = max_recurrence_months
        self.reschedule_applies_duration = reschedule_applies_duration
        self.clock = clock

    def _not_in_past(self, value: date, message: str) -> None:
        if value < self.clock():
            raise ValidationError(message, field="date")

    async def _load(self, reservation_id: int) -> Reservation:
        reservation = await self.repository.find_by_id(reservation_id)
        if not reservation:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    @staticmethod
    def _require_recurrence_fields(weekday: Optional[int], recurrence_end: Optional[DateInput]) -> None:
        if weekday is None or weekday not in [day.value for day in Weekday]:
            days = ", ".join(f"{day.value}={day.name.title()}" for day in Weekday)
            raise ValidationError(
                f"weekday is required for recurring reservations ({days})", field="weekday"
            )
        if recurrence_end is None or recurrence_end == "":
            raise ValidationError(
                "recurrence_end is required for recurring reservations", field="recurrence_end"
            )

    def _recurrence_end(self, start: date, recurrence_end: DateInput) -> date:
        end = calendar.coerce_date(recurrence_end, "recurrence_end")
        latest = calendar.months_after(start, self.max_recurrence_months)
        if end > latest:
            raise ValidationError(
                f"Recurrence end cannot be more than {self.max_recurrence_months} months "
                f"after the start date (latest {latest.isoformat()})",
                field="recurrence_end"
            )
        if end <= start:
            raise ValidationError(
                "Recurrence end must be after the start date", field="recurrence_end"
            )
        return end

    async def create_reservation(
        self,
        customer_id: int,
        court_id: int,
        reservation_date: DateInput,
        hour: int,
        duration_minutes: int = 60,
        notes: Optional[str] = None,
        recurring: bool = False,
        weekday: Optional[int] = None,
        recurrence_end: Optional[DateInput] = None,
        payment_method: Optional[PaymentMethod] = None,
        paid_percentage: int = 0
    ) -> CreationResult:
        """Create a single reservation or a weekly series; nothing is stored unless every check passes"""
        _validate_hour(hour)
        validate_duration(duration_minutes)
        if recurring:
            self._require_recurrence_fields(weekday, recurrence_end)

        start = calendar.coerce_date(reservation_date, "date")
        self._not_in_past(start, "Cannot book dates in the past")

        end = self._recurrence_end(start, recurrence_end) if recurring else None

        try:
            payment = PaymentInfo(method=payment_method, paid_percentage=paid_percentage)
        except PydanticValidationError:
            raise ValidationError("Paid percentage must be 0, 50 or 100", field="paid_percentage")

        customer = await self.customer_repo.find_by_id(customer_id)
        if not customer:
            raise NotFoundError("Customer", customer_id)
        court = await self.court_repo.find_by_id(court_id)
        if not court:
            raise NotFoundError("Court", court_id)
        if not court.active:
            raise ValidationError(f"Court {court_id} is inactive", field="court_id")

        slot = TimeSlot(hour=hour, duration_minutes=duration_minutes)
        price_cents = price_for(hour, duration_minutes)

        if recurring:
            return await self._create_series(
                customer_id, court_id, start, end, weekday, slot, price_cents, payment, notes
            )

        if await self.conflicts.has_conflict(court_id, start, slot.occupied_hours):
            raise ConflictError("Time slot is already booked", dates=[start])

        reservation = Reservation.create(
            customer_id=customer_id,
            court_id=court_id,
            reservation_date=start,
            slot=slot,
            price_cents=price_cents,
            payment=payment,
            notes=notes,
        )
        try:
            saved = await self.repository.add(reservation)
        except SlotAlreadyBookedError as e:
            raise ConflictError("Time slot is already booked", dates=[start]) from e

        logger.info(
            "Reservation %s created: court %s on %s at %sh (%s min, %s cents)",
            saved.reservation_id, court_id, start.isoformat(), hour, duration_minutes, price_cents
        )
        return CreationResult(parent=saved)

    async def _create_series(
        self,
        customer_id: int,
        court_id: int,
        start: date,
        end: date,
        weekday: int,
        slot: TimeSlot,
        price_cents: int,
        payment: PaymentInfo,
        notes: Optional[str]
    ) -> CreationResult:
        occurrences = generate_occurrences(start, weekday, end)
        if not occurrences:
            raise ValidationError(
                "No occurrence of the requested weekday within the recurrence period",
                field="weekday"
            )

        conflicting = await self.conflicts.conflicting_dates(court_id, occurrences, slot.occupied_hours)
        if conflicting:
            raise ConflictError(
                f"Schedule conflict on the following dates: {_format_dates(conflicting)}",
                dates=conflicting
            )

        def build(on: date, is_parent: bool) -> Reservation:
            return Reservation.create(
                customer_id=customer_id,
                court_id=court_id,
                reservation_date=on,
                slot=slot,
                price_cents=price_cents,
                payment=payment,
                notes=notes,
                is_recurring=is_parent,
                weekday=weekday,
                recurrence_end=end,
            )

        parent = build(occurrences[0], is_parent=True)
        children = [build(on, is_parent=False) for on in occurrences[1:]]
        try:
            saved = await self.repository.add_series(parent, children)
        except SlotAlreadyBookedError as e:
            raise ConflictError(
                f"Schedule conflict while saving the series: {e}", dates=[e.reservation_date]
            ) from e

        logger.info(
            "Recurring series %s created: court %s, %s reservations from %s to %s",
            saved[0].reservation_id, court_id, len(saved),
            occurrences[0].isoformat(), occurrences[-1].isoformat()
        )
        return CreationResult(parent=saved[0], children=saved[1:])

    async def reschedule_reservation(
        self,
        reservation_id: int,
        new_date: DateInput,
        new_hour: int,
        notes: Optional[str] = None
    ) -> Reservation:
        """Move an ACTIVE reservation to another date/hour and reprice it"""
        _validate_hour(new_hour)
        target = calendar.coerce_date(new_date, "new_date")
        self._not_in_past(target, "Cannot reschedule to a past date")

        reservation = await self._load(reservation_id)
        ensure_active(reservation.status, "rescheduled")

        hours = occupied_hours(new_hour, reservation.duration_minutes)
        if await self.conflicts.has_conflict(
            reservation.court_id, target, hours, exclude_id=reservation.reservation_id
        ):
            raise ConflictError("New time slot is already booked", dates=[target])

        new_price = reschedule_price(
            new_hour, reservation.duration_minutes, apply_duration=self.reschedule_applies_duration
        )
        reservation.reschedule(target, new_hour, new_price, notes=notes)
        try:
            updated = await self.repository.update(reservation)
        except SlotAlreadyBookedError as e:
            raise ConflictError("New time slot is already booked", dates=[target]) from e

        logger.info(
            "Reservation %s rescheduled to %s at %sh", reservation_id, target.isoformat(), new_hour
        )
        return updated

    async def cancel_reservation(self, reservation_id: int) -> Reservation:
        reservation = await self._load(reservation_id)
        reservation.cancel()
        updated = await self.repository.update(reservation)
        logger.info("Reservation %s cancelled", reservation_id)
        return updated

    async def complete_reservation(self, reservation_id: int) -> Reservation:
        reservation = await self._load(reservation_id)
        reservation.complete()
        updated = await self.repository.update(reservation)
        logger.info("Reservation %s completed", reservation_id)
        return updated

    async def cancel_series(self, parent_id: int) -> SeriesCancellation:
        """Cancel the parent and every ACTIVE child; closed members are left alone"""
        parent = await self._load(parent_id)
        if not parent.is_series_parent:
            raise InvalidStateError(f"Reservation {parent_id} is not a recurring series")

        children = await self.repository.find_children(parent_id)
        to_cancel = [r for r in [parent] + children if r.is_active]
        for reservation in to_cancel:
            reservation.cancel()
        if to_cancel:
            await self.repository.update_many(to_cancel)

        cancelled_ids = [r.reservation_id for r in to_cancel]
        logger.info("Recurring series %s cancelled: %s reservations", parent_id, len(cancelled_ids))
        return SeriesCancellation(
            parent_id=parent_id,
            cancelled_count=len(cancelled_ids),
            cancelled_ids=cancelled_ids
        )

    async def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        """Get reservation by ID"""
        return await self.repository.find_by_id(reservation_id)

    async def get_series(self, reservation_id: int) -> SeriesView:
        """Series containing `reservation_id` (either the parent or one of its children)"""
        reservation = await self._load(reservation_id)
        if reservation.parent_id is not None:
            reservation = await self._load(reservation.parent_id)
        if not reservation.is_series_parent:
            raise InvalidStateError(f"Reservation {reservation_id} is not part of a recurring series")
        children = await self.repository.find_children(reservation.reservation_id)
        return SeriesView(parent=reservation, children=children)

    async def list_reservations(self, criteria: Optional[ReservationFilter] = None) -> List[Reservation]:
        return await self.repository.search(criteria or ReservationFilter())
