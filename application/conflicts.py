"""Double-booking detection"""
from datetime import date
from typing import FrozenSet, Iterable, List, Optional

from domain.repositories import ReservationRepository


class ConflictChecker:
    """Checks requested hours against ACTIVE reservations of the same court and date"""

    def __init__(self, repository: ReservationRepository):
        self.repository = repository

    async def has_conflict(
        self,
        court_id: int,
        on: date,
        hours: FrozenSet[int],
        exclude_id: Optional[int] = None
    ) -> bool:
        existing = await self.repository.find_active_on_dates(court_id, [on], exclude_id=exclude_id)
        return any(r.occupies(court_id, on, hours) for r in existing)

    async def conflicting_dates(
        self,
        court_id: int,
        dates: Iterable[date],
        hours: FrozenSet[int]
    ) -> List[date]:
        """Dates among `dates` where any of `hours` is already taken"""
        dates = list(dates)
        existing = await self.repository.find_active_on_dates(court_id, dates)
        taken = {
            r.reservation_date for r in existing
            if r.occupies(court_id, r.reservation_date, hours)
        }
        return [d for d in dates if d in taken]
