"""In-Memory Repository Implementations"""
from datetime import date
from itertools import count
from typing import Dict, Iterable, List, Optional

from domain.entities import Court, Customer, Reservation
from domain.exceptions import SlotAlreadyBookedError, StaleReservationError
from domain.repositories import (
    CourtRepository, CustomerRepository, ReservationFilter, ReservationRepository
)


def _sort_key(reservation: Reservation):
    return (reservation.reservation_date, reservation.hour, reservation.reservation_id or 0)


def _copy_out(reservation: Reservation) -> Reservation:
    return reservation.model_copy(deep=True).mark_stored()


class InMemoryReservationRepository(ReservationRepository):
    """In-memory implementation of ReservationRepository.

    Entities are copied on the way in and out so a caller mutating a
    returned object never changes stored state without calling update().
    """

    def __init__(self):
        self._storage: Dict[int, Reservation] = {}
        self._ids = count(1)

    def _check_slot_free(self, candidate: Reservation, pending: Iterable[Reservation] = ()) -> None:
        if not candidate.is_active:
            return
        for other in list(self._storage.values()) + list(pending):
            if other is candidate or other.reservation_id == candidate.reservation_id:
                continue
            if (
                other.is_active
                and other.court_id == candidate.court_id
                and other.reservation_date == candidate.reservation_date
                and other.hour == candidate.hour
            ):
                raise SlotAlreadyBookedError(
                    candidate.court_id, candidate.reservation_date, candidate.hour
                )

    def _check_current(self, reservation: Reservation) -> None:
        stored = self._storage.get(reservation.reservation_id)
        if stored is None:
            raise ValueError("Reservation not found")
        expected = reservation.stored_version
        if not stored.is_active or (expected is not None and stored.version != expected):
            raise StaleReservationError(reservation.reservation_id)

    def _store(self, reservation: Reservation) -> Reservation:
        self._storage[reservation.reservation_id] = reservation.model_copy(deep=True)
        return _copy_out(reservation)

    async def add(self, reservation: Reservation) -> Reservation:
        """Insert reservation and assign an id"""
        self._check_slot_free(reservation)
        stored = reservation.model_copy(update={"reservation_id": next(self._ids)})
        return self._store(stored)

    async def add_series(self, parent: Reservation, children: List[Reservation]) -> List[Reservation]:
        """Validate every member first, then commit all of them"""
        parent_id = next(self._ids)
        staged = [parent.model_copy(update={"reservation_id": parent_id, "parent_id": None})]
        for child in children:
            staged.append(child.model_copy(update={
                "reservation_id": next(self._ids),
                "parent_id": parent_id,
            }))

        for index, member in enumerate(staged):
            self._check_slot_free(member, pending=staged[:index])

        return [self._store(member) for member in staged]

    async def find_by_id(self, reservation_id: int) -> Optional[Reservation]:
        """Find reservation by ID"""
        reservation = self._storage.get(reservation_id)
        return _copy_out(reservation) if reservation else None

    async def find_active_on_dates(
        self,
        court_id: int,
        dates: Iterable[date],
        exclude_id: Optional[int] = None
    ) -> List[Reservation]:
        wanted = set(dates)
        return sorted(
            (
                _copy_out(r) for r in self._storage.values()
                if r.is_active
                and r.court_id == court_id
                and r.reservation_date in wanted
                and r.reservation_id != exclude_id
            ),
            key=_sort_key
        )

    async def find_children(self, parent_id: int) -> List[Reservation]:
        return sorted(
            (_copy_out(r) for r in self._storage.values() if r.parent_id == parent_id),
            key=_sort_key
        )

    async def find_overdue(self, before: date) -> List[Reservation]:
        return sorted(
            (
                _copy_out(r) for r in self._storage.values()
                if r.is_active and r.reservation_date < before
            ),
            key=_sort_key
        )

    async def search(self, criteria: ReservationFilter) -> List[Reservation]:
        return sorted(
            (_copy_out(r) for r in self._storage.values() if criteria.matches(r)),
            key=_sort_key
        )

    async def update(self, reservation: Reservation) -> Reservation:
        """Update reservation"""
        self._check_current(reservation)
        self._check_slot_free(reservation)
        return self._store(reservation)

    async def update_many(self, reservations: List[Reservation]) -> List[Reservation]:
        missing = [r.reservation_id for r in reservations if r.reservation_id not in self._storage]
        if missing:
            raise ValueError(f"Reservations not found: {missing}")
        for reservation in reservations:
            self._check_current(reservation)
            self._check_slot_free(reservation, pending=[r for r in reservations if r is not reservation])
        return [self._store(r) for r in reservations]


class InMemoryCustomerRepository(CustomerRepository):
    """In-memory implementation of CustomerRepository"""

    def __init__(self):
        self._storage: Dict[int, Customer] = {}

    async def find_by_id(self, customer_id: int) -> Optional[Customer]:
        return self._storage.get(customer_id)

    async def add(self, customer: Customer) -> Customer:
        self._storage[customer.customer_id] = customer
        return customer


class InMemoryCourtRepository(CourtRepository):
    """In-memory implementation of CourtRepository"""

    def __init__(self):
        self._storage: Dict[int, Court] = {}

    async def find_by_id(self, court_id: int) -> Optional[Court]:
        return self._storage.get(court_id)

    async def add(self, court: Court) -> Court:
        self._storage[court.court_id] = court
        return court
