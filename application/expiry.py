"""Expiry sweep: completes ACTIVE reservations whose date has passed"""
import logging
from datetime import date
from typing import Callable, List, Optional

from pydantic import BaseModel

from domain import calendar
from domain.entities import Reservation
from domain.exceptions import StaleReservationError
from domain.repositories import CourtRepository, CustomerRepository, ReservationRepository

logger = logging.getLogger(__name__)


class OverdueReservation(BaseModel):
    """Summary line for a reservation picked up by the sweep"""
    reservation_id: int
    customer_id: int
    customer: Optional[str] = None
    court_id: int
    court: Optional[str] = None
    reservation_date: date
    hour: int
    price_cents: int


class SweepResult(BaseModel):
    processed_count: int
    failed_count: int = 0
    skipped_count: int = 0
    records: List[OverdueReservation] = []
    message: str


class ExpiredCheck(BaseModel):
    count: int
    records: List[OverdueReservation] = []


class ExpirySweepService:
    """Finds overdue ACTIVE reservations and marks them COMPLETED one by one.

    Each record is updated on its own: a failure is logged and the record is
    left ACTIVE so the next run picks it up again.
    """

    def __init__(self,
                 repository: ReservationRepository,
                 customer_repo: Optional[CustomerRepository] = None,
                 court_repo: Optional[CourtRepository] = None,
                 clock: Callable[[], date] = calendar.today):
        self.repository = repository
        self.customer_repo = customer_repo
        self.court_repo = court_repo
        self.clock = clock

    async def _summarize(self, reservation: Reservation) -> OverdueReservation:
        """Summary line; customer and court names are best effort"""
        customer = court = None
        try:
            if self.customer_repo:
                customer = await self.customer_repo.find_by_id(reservation.customer_id)
            if self.court_repo:
                court = await self.court_repo.find_by_id(reservation.court_id)
        except Exception:
            logger.warning(
                "Could not look up customer/court names for reservation %s",
                reservation.reservation_id, exc_info=True
            )
        return OverdueReservation(
            reservation_id=reservation.reservation_id,
            customer_id=reservation.customer_id,
            customer=customer.full_name if customer else None,
            court_id=reservation.court_id,
            court=court.name if court else None,
            reservation_date=reservation.reservation_date,
            hour=reservation.hour,
            price_cents=reservation.price_cents,
        )

    async def check_expired(self) -> ExpiredCheck:
        """List overdue reservations without changing them"""
        overdue = await self.repository.find_overdue(self.clock())
        records = [await self._summarize(r) for r in overdue]
        return ExpiredCheck(count=len(records), records=records)

    async def sweep_expired(self) -> SweepResult:
        reference = self.clock()
        logger.info("Starting expiry sweep (reference date %s)", reference.isoformat())

        overdue = await self.repository.find_overdue(reference)
        if not overdue:
            logger.info("No overdue reservations found")
            return SweepResult(processed_count=0, message="No overdue reservations found")

        logger.info("Found %s overdue reservations", len(overdue))
        processed: List[OverdueReservation] = []
        failed = skipped = 0
        for reservation in overdue:
            try:
                reservation.complete_expired()
                await self.repository.update(reservation)
            except StaleReservationError:
                skipped += 1
                logger.warning(
                    "Reservation %s changed since it was read; left as stored",
                    reservation.reservation_id
                )
                continue
            except Exception:
                failed += 1
                logger.exception(
                    "Failed to complete overdue reservation %s; will retry on next run",
                    reservation.reservation_id
                )
                continue
            logger.debug(
                "Reservation %s (%s at %sh) marked as completed",
                reservation.reservation_id, reservation.reservation_date.isoformat(), reservation.hour
            )
            processed.append(await self._summarize(reservation))

        logger.info(
            "Expiry sweep finished: %s completed, %s failed, %s skipped",
            len(processed), failed, skipped
        )
        return SweepResult(
            processed_count=len(processed),
            failed_count=failed,
            skipped_count=skipped,
            records=processed,
            message=f"{len(processed)} reservations processed successfully"
        )
