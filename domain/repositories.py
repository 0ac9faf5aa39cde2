"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from datetime import date
from typing import Iterable, List, Optional

from pydantic import BaseModel

from domain.entities import Court, Customer, Reservation
from domain.enums import ReservationStatus


class ReservationFilter(BaseModel):
    """Listing criteria; unset fields do not filter"""
    status: Optional[ReservationStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    recurring: Optional[bool] = None
    parents_only: bool = False

    def matches(self, reservation: Reservation) -> bool:
        if self.status is not None and reservation.status != self.status:
            return False
        if self.date_from is not None and reservation.reservation_date < self.date_from:
            return False
        if self.date_to is not None and reservation.reservation_date > self.date_to:
            return False
        if self.recurring is not None and reservation.is_recurring != self.recurring:
            return False
        if self.parents_only and reservation.parent_id is not None:
            return False
        return True


class ReservationRepository(ABC):
    """Repository interface for Reservation Aggregate.

    Implementations must refuse to store two ACTIVE reservations sharing
    (court_id, reservation_date, hour) and raise SlotAlreadyBookedError.
    Returned entities are marked with the version they were read at.
    """

    @abstractmethod
    async def add(self, reservation: Reservation) -> Reservation:
        """Insert a reservation and assign its id"""
        pass

    @abstractmethod
    async def add_series(self, parent: Reservation, children: List[Reservation]) -> List[Reservation]:
        """Insert a parent and its children atomically; children get the parent's id"""
        pass

    @abstractmethod
    async def find_by_id(self, reservation_id: int) -> Optional[Reservation]:
        """Find reservation by ID"""
        pass

    @abstractmethod
    async def find_active_on_dates(
        self,
        court_id: int,
        dates: Iterable[date],
        exclude_id: Optional[int] = None
    ) -> List[Reservation]:
        """ACTIVE reservations of a court on any of the given dates"""
        pass

    @abstractmethod
    async def find_children(self, parent_id: int) -> List[Reservation]:
        """Reservations referencing parent_id, ordered by date"""
        pass

    @abstractmethod
    async def find_overdue(self, before: date) -> List[Reservation]:
        """ACTIVE reservations dated strictly before `before`"""
        pass

    @abstractmethod
    async def search(self, criteria: ReservationFilter) -> List[Reservation]:
        """Filtered listing ordered by date then hour"""
        pass

    @abstractmethod
    async def update(self, reservation: Reservation) -> Reservation:
        """Write back a reservation read from this repository.

        Only ACTIVE rows still at `reservation.stored_version` are written;
        otherwise StaleReservationError is raised and nothing changes.
        """
        pass

    @abstractmethod
    async def update_many(self, reservations: List[Reservation]) -> List[Reservation]:
        """Guarded update of several reservations; all are written or none"""
        pass


class CustomerRepository(ABC):
    """Repository interface for customer lookups"""

    @abstractmethod
    async def find_by_id(self, customer_id: int) -> Optional[Customer]:
        pass

    @abstractmethod
    async def add(self, customer: Customer) -> Customer:
        pass


class CourtRepository(ABC):
    """Repository interface for court lookups"""

    @abstractmethod
    async def find_by_id(self, court_id: int) -> Optional[Court]:
        pass

    @abstractmethod
    async def add(self, court: Court) -> Court:
        pass
