"""SQLAlchemy Repository Implementations

Sessions are synchronous; every call runs in a worker thread through
asyncio.to_thread so database round-trips never block the event loop.
"""
import asyncio
import logging
from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from domain.entities import Court, Customer, Reservation
from domain.exceptions import SlotAlreadyBookedError, StaleReservationError
from domain.repositories import (
    CourtRepository, CustomerRepository, ReservationFilter, ReservationRepository
)
from infrastructure.database import CourtRow, CustomerRow, ReservationRow

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = (
    "customer_id", "court_id", "parent_id", "reservation_date", "hour",
    "duration_minutes", "price_cents", "paid_percentage", "amount_paid_cents",
    "is_recurring", "weekday", "recurrence_end", "notes", "created_at",
    "updated_at", "version",
)


def _row_values(reservation: Reservation) -> dict:
    values = {field: getattr(reservation, field) for field in _MUTABLE_FIELDS}
    values["status"] = reservation.status.value
    values["payment_method"] = reservation.payment_method.value if reservation.payment_method else None
    return values


def _to_row(reservation: Reservation) -> ReservationRow:
    return ReservationRow(**_row_values(reservation))


def _to_entity(row: ReservationRow) -> Reservation:
    return Reservation.model_validate(row).mark_stored()


class SqlAlchemyReservationRepository(ReservationRepository):
    """Reservation storage backed by a relational database.

    Every write runs in its own session transaction; add_series and
    update_many commit all rows or none. Updates are conditional on the
    row still being ACTIVE at the version the entity was read at.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _commit(self, session: Session, reservation: Reservation) -> None:
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            logger.warning("Active slot constraint rejected write: %s", e.orig)
            raise SlotAlreadyBookedError(
                reservation.court_id, reservation.reservation_date, reservation.hour
            ) from e
        except Exception:
            session.rollback()
            raise

    def _guarded_update(self, session: Session, reservation: Reservation) -> None:
        conditions = [
            ReservationRow.reservation_id == reservation.reservation_id,
            ReservationRow.status == "ACTIVE",
        ]
        if reservation.stored_version is not None:
            conditions.append(ReservationRow.version == reservation.stored_version)
        stmt = (
            update(ReservationRow)
            .where(*conditions)
            .values(**_row_values(reservation))
            .execution_options(synchronize_session=False)
        )
        try:
            result = session.execute(stmt)
        except IntegrityError as e:
            session.rollback()
            raise SlotAlreadyBookedError(
                reservation.court_id, reservation.reservation_date, reservation.hour
            ) from e
        if result.rowcount == 0:
            exists = session.get(ReservationRow, reservation.reservation_id) is not None
            session.rollback()
            if not exists:
                raise ValueError(f"Reservation {reservation.reservation_id} not found")
            raise StaleReservationError(reservation.reservation_id)

    # ==================== SYNC SESSION WORK ====================
    def _add(self, reservation: Reservation) -> Reservation:
        with self._session_factory() as session:
            row = _to_row(reservation)
            session.add(row)
            self._commit(session, reservation)
            return _to_entity(row)

    def _add_series(self, parent: Reservation, children: List[Reservation]) -> List[Reservation]:
        with self._session_factory() as session:
            try:
                parent_row = _to_row(parent)
                parent_row.parent_id = None
                session.add(parent_row)
                session.flush()

                child_rows = []
                for child in children:
                    child_row = _to_row(child)
                    child_row.parent_id = parent_row.reservation_id
                    child_rows.append(child_row)
                session.add_all(child_rows)
                session.flush()
            except IntegrityError as e:
                session.rollback()
                raise SlotAlreadyBookedError(
                    parent.court_id, parent.reservation_date, parent.hour
                ) from e
            except Exception:
                session.rollback()
                raise
            self._commit(session, parent)
            return [_to_entity(parent_row)] + [_to_entity(r) for r in child_rows]

    def _find_by_id(self, reservation_id: int) -> Optional[Reservation]:
        with self._session_factory() as session:
            row = session.get(ReservationRow, reservation_id)
            return _to_entity(row) if row else None

    def _select(self, stmt) -> List[Reservation]:
        with self._session_factory() as session:
            return [_to_entity(row) for row in session.scalars(stmt)]

    def _update_many(self, reservations: List[Reservation]) -> List[Reservation]:
        with self._session_factory() as session:
            for reservation in reservations:
                self._guarded_update(session, reservation)
            self._commit(session, reservations[0])
            ids = [r.reservation_id for r in reservations]
            rows = {
                row.reservation_id: row
                for row in session.scalars(
                    select(ReservationRow).where(ReservationRow.reservation_id.in_(ids))
                )
            }
            return [_to_entity(rows[reservation_id]) for reservation_id in ids]

    # ==================== ASYNC INTERFACE ====================
    async def add(self, reservation: Reservation) -> Reservation:
        return await asyncio.to_thread(self._add, reservation)

    async def add_series(self, parent: Reservation, children: List[Reservation]) -> List[Reservation]:
        return await asyncio.to_thread(self._add_series, parent, children)

    async def find_by_id(self, reservation_id: int) -> Optional[Reservation]:
        return await asyncio.to_thread(self._find_by_id, reservation_id)

    async def find_active_on_dates(
        self,
        court_id: int,
        dates: Iterable[date],
        exclude_id: Optional[int] = None
    ) -> List[Reservation]:
        dates = list(dates)
        if not dates:
            return []
        stmt = select(ReservationRow).where(
            ReservationRow.court_id == court_id,
            ReservationRow.reservation_date.in_(dates),
            ReservationRow.status == "ACTIVE",
        )
        if exclude_id is not None:
            stmt = stmt.where(ReservationRow.reservation_id != exclude_id)
        stmt = stmt.order_by(ReservationRow.reservation_date, ReservationRow.hour)
        return await asyncio.to_thread(self._select, stmt)

    async def find_children(self, parent_id: int) -> List[Reservation]:
        stmt = (
            select(ReservationRow)
            .where(ReservationRow.parent_id == parent_id)
            .order_by(ReservationRow.reservation_date, ReservationRow.hour)
        )
        return await asyncio.to_thread(self._select, stmt)

    async def find_overdue(self, before: date) -> List[Reservation]:
        stmt = (
            select(ReservationRow)
            .where(ReservationRow.status == "ACTIVE", ReservationRow.reservation_date < before)
            .order_by(ReservationRow.reservation_date, ReservationRow.hour)
        )
        return await asyncio.to_thread(self._select, stmt)

    async def search(self, criteria: ReservationFilter) -> List[Reservation]:
        stmt = select(ReservationRow)
        if criteria.status is not None:
            stmt = stmt.where(ReservationRow.status == criteria.status.value)
        if criteria.date_from is not None:
            stmt = stmt.where(ReservationRow.reservation_date >= criteria.date_from)
        if criteria.date_to is not None:
            stmt = stmt.where(ReservationRow.reservation_date <= criteria.date_to)
        if criteria.recurring is not None:
            stmt = stmt.where(ReservationRow.is_recurring == criteria.recurring)
        if criteria.parents_only:
            stmt = stmt.where(ReservationRow.parent_id.is_(None))
        stmt = stmt.order_by(
            ReservationRow.reservation_date, ReservationRow.hour, ReservationRow.reservation_id
        )
        return await asyncio.to_thread(self._select, stmt)

    async def update(self, reservation: Reservation) -> Reservation:
        updated = await self.update_many([reservation])
        return updated[0]

    async def update_many(self, reservations: List[Reservation]) -> List[Reservation]:
        if not reservations:
            return []
        return await asyncio.to_thread(self._update_many, reservations)


class SqlAlchemyCustomerRepository(CustomerRepository):
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _find_by_id(self, customer_id: int) -> Optional[Customer]:
        with self._session_factory() as session:
            row = session.get(CustomerRow, customer_id)
            return Customer.model_validate(row) if row else None

    def _add(self, customer: Customer) -> Customer:
        with self._session_factory() as session:
            session.merge(CustomerRow(
                customer_id=customer.customer_id,
                full_name=customer.full_name,
                phone=customer.phone,
            ))
            session.commit()
        return customer

    async def find_by_id(self, customer_id: int) -> Optional[Customer]:
        return await asyncio.to_thread(self._find_by_id, customer_id)

    async def add(self, customer: Customer) -> Customer:
        return await asyncio.to_thread(self._add, customer)


class SqlAlchemyCourtRepository(CourtRepository):
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _find_by_id(self, court_id: int) -> Optional[Court]:
        with self._session_factory() as session:
            row = session.get(CourtRow, court_id)
            return Court.model_validate(row) if row else None

    def _add(self, court: Court) -> Court:
        with self._session_factory() as session:
            session.merge(CourtRow(court_id=court.court_id, name=court.name, active=court.active))
            session.commit()
        return court

    async def find_by_id(self, court_id: int) -> Optional[Court]:
        return await asyncio.to_thread(self._find_by_id, court_id)

    async def add(self, court: Court) -> Court:
        return await asyncio.to_thread(self._add, court)
