#!/usr/bin/env python3
"""
Infrastructure Testing for the Court Reservation API
Tests repositories, scheduler, configuration, logging and security
"""

import asyncio
import logging
import pytest
import pytz
import time
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock
from fastapi import HTTPException
from jose import JWTError

from api.dependencies import fake_users_db, get_current_user, get_user, require_admin
from application.expiry import ExpirySweepService, SweepResult
from application.services import ReservationService
from domain.entities import Court, Customer, Reservation
from domain.enums import PaymentMethod, ReservationStatus, Role
from domain.exceptions import ConflictError, SlotAlreadyBookedError, StaleReservationError
from domain.repositories import ReservationFilter
from domain.value_objects import PaymentInfo, TimeSlot
from infrastructure.config import load_settings
from infrastructure.database import create_db_engine, create_session_factory
from infrastructure.logging_config import setup_logging
from infrastructure.repositories.in_memory_repositories import InMemoryReservationRepository
from infrastructure.repositories.sqlalchemy_repositories import (
    SqlAlchemyCourtRepository, SqlAlchemyCustomerRepository, SqlAlchemyReservationRepository
)
from infrastructure.scheduler import DailySchedule, SweepScheduler
from infrastructure.security import (
    create_access_token, decode_access_token, get_password_hash, verify_password
)

SAO_PAULO = pytz.timezone("America/Sao_Paulo")


def _reservation(on=date(2025, 3, 10), hour=18, court_id=1, **kwargs):
    return Reservation.create(
        customer_id=1,
        court_id=court_id,
        reservation_date=on,
        slot=TimeSlot(hour=hour, duration_minutes=kwargs.pop("duration_minutes", 60)),
        price_cents=11000,
        payment=PaymentInfo(method=PaymentMethod.CASH, paid_percentage=100),
        **kwargs
    )


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def session_factory():
    return create_session_factory(create_db_engine("sqlite://"))


@pytest.fixture
def sql_repository(session_factory):
    return SqlAlchemyReservationRepository(session_factory)


@pytest.fixture(params=["memory", "sql"])
def any_repository(request, session_factory):
    """Both storage backends must honour the same contract"""
    if request.param == "memory":
        return InMemoryReservationRepository()
    return SqlAlchemyReservationRepository(session_factory)


@pytest.fixture
async def sql_service(session_factory, sql_repository):
    customers = SqlAlchemyCustomerRepository(session_factory)
    courts = SqlAlchemyCourtRepository(session_factory)
    await customers.add(Customer(customer_id=1, full_name="Ana Souza"))
    await courts.add(Court(court_id=1, name="Court 1"))
    return ReservationService(sql_repository, customers, courts, clock=lambda: date(2025, 3, 1))


# ============================================================================
# REPOSITORY CONTRACT TESTS
# ============================================================================

class TestReservationRepositoryContract:
    """Behaviour shared by the in-memory and SQLAlchemy repositories"""

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_add_assigns_id_and_find(self, any_repository):
        saved = await any_repository.add(_reservation(notes="net 2"))
        assert saved.reservation_id is not None

        found = await any_repository.find_by_id(saved.reservation_id)
        assert found.reservation_date == date(2025, 3, 10)
        assert found.hour == 18
        assert found.status == ReservationStatus.ACTIVE
        assert found.payment_method == PaymentMethod.CASH
        assert found.notes == "net 2"
        assert await any_repository.find_by_id(9999) is None

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_returned_entities_are_detached(self, any_repository):
        saved = await any_repository.add(_reservation())
        saved.cancel()
        stored = await any_repository.find_by_id(saved.reservation_id)
        assert stored.status == ReservationStatus.ACTIVE

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_active_slot_is_unique(self, any_repository):
        await any_repository.add(_reservation())
        with pytest.raises(SlotAlreadyBookedError):
            await any_repository.add(_reservation())

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_closed_slot_can_be_reused(self, any_repository):
        first = await any_repository.add(_reservation())
        first.cancel()
        await any_repository.update(first)
        second = await any_repository.add(_reservation())
        assert second.reservation_id != first.reservation_id

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_add_series_links_children(self, any_repository):
        parent = _reservation(on=date(2025, 3, 3), is_recurring=True, weekday=1,
                              recurrence_end=date(2025, 3, 17))
        children = [_reservation(on=date(2025, 3, 10)), _reservation(on=date(2025, 3, 17))]

        saved = await any_repository.add_series(parent, children)
        parent_id = saved[0].reservation_id
        assert len(saved) == 3
        assert saved[0].parent_id is None
        assert all(child.parent_id == parent_id for child in saved[1:])

        stored_children = await any_repository.find_children(parent_id)
        assert [c.reservation_date for c in stored_children] == [date(2025, 3, 10), date(2025, 3, 17)]

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_add_series_is_atomic(self, any_repository):
        await any_repository.add(_reservation(on=date(2025, 3, 17)))
        parent = _reservation(on=date(2025, 3, 3), is_recurring=True, weekday=1,
                              recurrence_end=date(2025, 3, 17))
        children = [_reservation(on=date(2025, 3, 10)), _reservation(on=date(2025, 3, 17))]

        with pytest.raises(SlotAlreadyBookedError):
            await any_repository.add_series(parent, children)
        assert len(await any_repository.search(ReservationFilter())) == 1

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_find_active_on_dates(self, any_repository):
        kept = await any_repository.add(_reservation(on=date(2025, 3, 10)))
        await any_repository.add(_reservation(on=date(2025, 3, 10), court_id=2))
        await any_repository.add(_reservation(on=date(2025, 3, 11)))
        closed = await any_repository.add(_reservation(on=date(2025, 3, 10), hour=10))
        closed.complete()
        await any_repository.update(closed)

        found = await any_repository.find_active_on_dates(1, [date(2025, 3, 10), date(2025, 3, 12)])
        assert [r.reservation_id for r in found] == [kept.reservation_id]
        assert await any_repository.find_active_on_dates(
            1, [date(2025, 3, 10)], exclude_id=kept.reservation_id
        ) == []
        assert await any_repository.find_active_on_dates(1, []) == []

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_find_overdue(self, any_repository):
        old = await any_repository.add(_reservation(on=date(2025, 3, 3)))
        await any_repository.add(_reservation(on=date(2025, 3, 10)))
        cancelled = await any_repository.add(_reservation(on=date(2025, 3, 4)))
        cancelled.cancel()
        await any_repository.update(cancelled)

        overdue = await any_repository.find_overdue(date(2025, 3, 10))
        assert [r.reservation_id for r in overdue] == [old.reservation_id]

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_search_orders_by_date_then_hour(self, any_repository):
        await any_repository.add(_reservation(on=date(2025, 3, 11), hour=9))
        await any_repository.add(_reservation(on=date(2025, 3, 10), hour=20))
        await any_repository.add(_reservation(on=date(2025, 3, 10), hour=8))

        listed = await any_repository.search(ReservationFilter())
        assert [(r.reservation_date.day, r.hour) for r in listed] == [(10, 8), (10, 20), (11, 9)]

        window = await any_repository.search(ReservationFilter(date_to=date(2025, 3, 10)))
        assert len(window) == 2

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_update_persists_changes(self, any_repository):
        saved = await any_repository.add(_reservation())
        saved.reschedule(date(2025, 3, 12), 9, 10000, notes="moved")
        updated = await any_repository.update(saved)
        assert updated.version == 2

        stored = await any_repository.find_by_id(saved.reservation_id)
        assert stored.reservation_date == date(2025, 3, 12)
        assert stored.hour == 9
        assert stored.price_cents == 10000
        assert stored.notes == "moved"

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_update_missing(self, any_repository):
        ghost = _reservation().model_copy(update={"reservation_id": 4242})
        with pytest.raises(ValueError):
            await any_repository.update(ghost)
        with pytest.raises(ValueError):
            await any_repository.update_many([ghost])

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_update_many(self, any_repository):
        first = await any_repository.add(_reservation(hour=10))
        second = await any_repository.add(_reservation(hour=11))
        for reservation in (first, second):
            reservation.cancel()
        await any_repository.update_many([first, second])

        cancelled = await any_repository.search(ReservationFilter(status=ReservationStatus.CANCELLED))
        assert len(cancelled) == 2

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_closed_row_is_not_overwritten_by_earlier_read(self, any_repository):
        saved = await any_repository.add(_reservation(on=date(2025, 3, 10)))
        overdue = (await any_repository.find_overdue(date(2025, 3, 20)))[0]

        current = await any_repository.find_by_id(saved.reservation_id)
        current.cancel()
        await any_repository.update(current)

        overdue.complete_expired()
        with pytest.raises(StaleReservationError):
            await any_repository.update(overdue)

        stored = await any_repository.find_by_id(saved.reservation_id)
        assert stored.status == ReservationStatus.CANCELLED
        assert stored.version == 2

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_second_writer_of_same_version_is_refused(self, any_repository):
        saved = await any_repository.add(_reservation())
        first = await any_repository.find_by_id(saved.reservation_id)
        second = await any_repository.find_by_id(saved.reservation_id)

        first.reschedule(date(2025, 3, 12), 9, 10000)
        await any_repository.update(first)

        second.cancel()
        with pytest.raises(StaleReservationError) as exc_info:
            await any_repository.update(second)
        assert isinstance(exc_info.value, ConflictError)
        assert exc_info.value.reservation_id == saved.reservation_id

        stored = await any_repository.find_by_id(saved.reservation_id)
        assert stored.status == ReservationStatus.ACTIVE
        assert stored.hour == 9

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_update_many_with_stale_member_writes_nothing(self, any_repository):
        first = await any_repository.add(_reservation(hour=10))
        second = await any_repository.add(_reservation(hour=11))
        elsewhere = await any_repository.find_by_id(second.reservation_id)
        elsewhere.cancel()
        await any_repository.update(elsewhere)

        first.cancel()
        second.cancel()
        with pytest.raises(StaleReservationError):
            await any_repository.update_many([first, second])

        stored_first = await any_repository.find_by_id(first.reservation_id)
        assert stored_first.status == ReservationStatus.ACTIVE
        assert stored_first.version == 1


class TestSqlAlchemyService:
    """End-to-end use cases on relational storage"""

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_booking_and_conflict(self, sql_service):
        result = await sql_service.create_reservation(
            customer_id=1, court_id=1, reservation_date="2025-03-10", hour=18
        )
        assert result.parent.price_cents == 11000
        with pytest.raises(ConflictError):
            await sql_service.create_reservation(
                customer_id=1, court_id=1, reservation_date="2025-03-10", hour=18
            )

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_series_lifecycle(self, sql_service, sql_repository):
        series = await sql_service.create_reservation(
            customer_id=1, court_id=1, reservation_date="2025-03-03", hour=18,
            recurring=True, weekday=1, recurrence_end="2025-03-24"
        )
        assert series.total_created == 4

        view = await sql_service.get_series(series.children[-1].reservation_id)
        assert view.parent.reservation_id == series.parent.reservation_id

        cancelled = await sql_service.cancel_series(series.parent.reservation_id)
        assert cancelled.cancelled_count == 4
        assert await sql_repository.search(ReservationFilter(status=ReservationStatus.ACTIVE)) == []

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_expiry_sweep(self, sql_service, sql_repository):
        await sql_service.create_reservation(
            customer_id=1, court_id=1, reservation_date="2025-03-03", hour=18, notes="league"
        )
        sweep = ExpirySweepService(sql_repository, clock=lambda: date(2025, 3, 5))

        result = await sweep.sweep_expired()
        assert result.processed_count == 1
        assert result.records[0].customer is None
        assert (await sweep.sweep_expired()).processed_count == 0

        stored = await sql_repository.search(ReservationFilter())
        assert stored[0].status == ReservationStatus.COMPLETED
        assert stored[0].notes.startswith("league | ")

    @pytest.mark.integration
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_sweep_leaves_reservation_cancelled_mid_run(self, sql_service, sql_repository, monkeypatch):
        booked = await sql_service.create_reservation(
            customer_id=1, court_id=1, reservation_date="2025-03-03", hour=18
        )
        find_overdue = sql_repository.find_overdue

        async def overdue_then_cancelled(before):
            found = await find_overdue(before)
            await sql_service.cancel_reservation(booked.parent.reservation_id)
            return found

        monkeypatch.setattr(sql_repository, "find_overdue", overdue_then_cancelled)
        sweep = ExpirySweepService(sql_repository, clock=lambda: date(2025, 3, 5))

        result = await sweep.sweep_expired()
        assert result.processed_count == 0
        assert result.skipped_count == 1
        assert result.failed_count == 0

        stored = await sql_repository.find_by_id(booked.parent.reservation_id)
        assert stored.status == ReservationStatus.CANCELLED
        assert stored.notes is None


class TestSqlAlchemyEventLoop:
    """Database round-trips run off the event loop"""

    @pytest.mark.integration
    @pytest.mark.infrastructure
    async def test_loop_keeps_running_during_slow_query(self, session_factory):
        def slow_session():
            time.sleep(0.3)
            return session_factory()

        repository = SqlAlchemyReservationRepository(slow_session)
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.02)
                ticks += 1

        task = asyncio.create_task(ticker())
        try:
            assert await repository.find_overdue(date(2025, 3, 15)) == []
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        assert ticks >= 5


# ============================================================================
# SCHEDULER TESTS
# ============================================================================

def _sweep_mock(**kwargs):
    service = AsyncMock()
    service.sweep_expired.return_value = SweepResult(
        processed_count=2, records=[], message="2 reservations processed successfully"
    )
    for key, value in kwargs.items():
        setattr(service.sweep_expired, key, value)
    return service


class TestDailySchedule:
    """Test cron parsing and next-run computation"""

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_parse(self):
        schedule = DailySchedule.parse("30 2 * * *")
        assert (schedule.hour, schedule.minute) == (2, 30)

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    @pytest.mark.parametrize("expression", [
        "*/5 * * * *", "0 2 * * 1", "0 2 1 * *", "61 2 * * *", "0 24 * * *", "a b * * *", "0 2"
    ])
    def test_parse_rejects_unsupported(self, expression):
        with pytest.raises(ValueError):
            DailySchedule.parse(expression)

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_next_run_same_day(self):
        schedule = DailySchedule.parse("0 2 * * *")
        now = SAO_PAULO.localize(datetime(2025, 3, 10, 1, 0))
        assert schedule.next_run(now, SAO_PAULO) == SAO_PAULO.localize(datetime(2025, 3, 10, 2, 0))

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    def test_next_run_rolls_to_next_day(self):
        schedule = DailySchedule.parse("0 2 * * *")
        at_run = SAO_PAULO.localize(datetime(2025, 3, 10, 2, 0))
        later = SAO_PAULO.localize(datetime(2025, 3, 10, 15, 0))
        expected = SAO_PAULO.localize(datetime(2025, 3, 11, 2, 0))
        assert schedule.next_run(at_run, SAO_PAULO) == expected
        assert schedule.next_run(later, SAO_PAULO) == expected

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_next_run_converts_timezone(self):
        schedule = DailySchedule.parse("0 2 * * *")
        # 04:30 UTC is 01:30 in Sao Paulo
        now = datetime(2025, 3, 10, 4, 30, tzinfo=timezone.utc)
        assert schedule.next_run(now, SAO_PAULO) == SAO_PAULO.localize(datetime(2025, 3, 10, 2, 0))


class TestSweepScheduler:
    """Test job start/stop, status and manual runs"""

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_status_when_idle(self):
        scheduler = SweepScheduler(_sweep_mock())
        status = scheduler.status()
        assert status.is_running is False
        assert status.schedule == "0 2 * * *"
        assert status.timezone == "America/Sao_Paulo"
        assert "02:00" in status.description
        assert status.next_run is None
        assert status.last_run is None

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_start_and_stop(self):
        scheduler = SweepScheduler(_sweep_mock())
        assert scheduler.start() is True
        assert scheduler.start() is False
        await asyncio.sleep(0)

        status = scheduler.status()
        assert status.is_running is True
        assert status.next_run is not None

        assert await scheduler.stop() is True
        assert scheduler.is_running is False
        assert await scheduler.stop() is False

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_run_manual(self):
        service = _sweep_mock()
        scheduler = SweepScheduler(service)
        result = await scheduler.run_manual()
        assert result.processed_count == 2
        service.sweep_expired.assert_awaited_once()
        assert scheduler.status().last_processed == 2
        assert scheduler.status().last_run is not None

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_run_manual_propagates_errors(self):
        scheduler = SweepScheduler(_sweep_mock(side_effect=RuntimeError("db down")))
        with pytest.raises(RuntimeError):
            await scheduler.run_manual()

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_loop_fires_at_scheduled_time(self):
        service = _sweep_mock()
        just_before = SAO_PAULO.localize(datetime(2025, 3, 10, 1, 59, 59, 995000))
        scheduler = SweepScheduler(service, now=lambda: just_before)

        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()
        assert service.sweep_expired.await_count >= 1
        assert scheduler.last_result.processed_count == 2

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_loop_survives_failures(self):
        service = _sweep_mock(side_effect=RuntimeError("db down"))
        just_before = SAO_PAULO.localize(datetime(2025, 3, 10, 1, 59, 59, 995000))
        scheduler = SweepScheduler(service, now=lambda: just_before)

        scheduler.start()
        await asyncio.sleep(0.05)
        assert scheduler.is_running
        assert service.sweep_expired.await_count >= 2
        await scheduler.stop()

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_invalid_cron_rejected_at_construction(self):
        with pytest.raises(ValueError):
            SweepScheduler(_sweep_mock(), cron_expression="*/10 * * * *")


# ============================================================================
# CONFIGURATION & LOGGING TESTS
# ============================================================================

class TestSettings:
    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_defaults(self, monkeypatch, tmp_path):
        for name in ("DATABASE_URL", "MAX_RECURRENCE_MONTHS", "RESCHEDULE_APPLIES_DURATION",
                     "SWEEP_ENABLED", "SWEEP_CRON", "SWEEP_TIMEZONE", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        empty_env = tmp_path / ".env"
        empty_env.write_text("")
        settings = load_settings(str(empty_env))
        assert settings.database_url is None
        assert settings.max_recurrence_months == 12
        assert settings.reschedule_applies_duration is False
        assert settings.sweep_enabled is True
        assert settings.sweep_cron == "0 2 * * *"
        assert settings.sweep_timezone == "America/Sao_Paulo"
        assert settings.log_level == "INFO"

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@db:5432/courts")
        monkeypatch.setenv("MAX_RECURRENCE_MONTHS", "6")
        monkeypatch.setenv("RESCHEDULE_APPLIES_DURATION", "true")
        monkeypatch.setenv("SWEEP_ENABLED", "0")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        settings = load_settings()
        assert settings.database_url == "postgresql://user:pw@db:5432/courts"
        assert settings.max_recurrence_months == 6
        assert settings.reschedule_applies_duration is True
        assert settings.sweep_enabled is False
        assert settings.log_level == "DEBUG"

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_env_file_fills_unset_values(self, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text('SWEEP_CRON="30 3 * * *"\nMAX_RECURRENCE_MONTHS=6\n')
        for name in ("SWEEP_CRON", "MAX_RECURRENCE_MONTHS"):
            # registers the variable so monkeypatch removes what the file sets
            monkeypatch.setenv(name, "unset")
            monkeypatch.delenv(name)

        settings = load_settings(str(env_file))
        assert settings.sweep_cron == "30 3 * * *"
        assert settings.max_recurrence_months == 6

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_process_environment_beats_env_file(self, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("SWEEP_TIMEZONE=UTC\n")
        monkeypatch.setenv("SWEEP_TIMEZONE", "America/Manaus")

        assert load_settings(str(env_file)).sweep_timezone == "America/Manaus"


class TestLoggingSetup:
    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_setup_is_idempotent(self):
        root_logger = logging.getLogger()
        previous_level = root_logger.level
        try:
            setup_logging("DEBUG")
            setup_logging("WARNING")
            ours = [h for h in root_logger.handlers if getattr(h, "_court_api_handler", False)]
            assert len(ours) == 1
            assert root_logger.level == logging.WARNING
            assert logging.getLogger("passlib").level == logging.WARNING
        finally:
            for handler in [h for h in root_logger.handlers if getattr(h, "_court_api_handler", False)]:
                root_logger.removeHandler(handler)
            root_logger.setLevel(previous_level)


# ============================================================================
# SECURITY & DEPENDENCY TESTS
# ============================================================================

class TestSecurity:
    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_password_hashing(self):
        hashed = get_password_hash("court-secret")
        assert verify_password("court-secret", hashed)
        assert not verify_password("wrong", hashed)

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    def test_long_password(self):
        long_password = "x" * 100
        hashed = get_password_hash(long_password)
        assert verify_password(long_password, hashed)
        assert not verify_password("x" * 99 + "y", hashed)

    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_token_carries_role(self):
        token = create_access_token({"sub": "admin", "role": "ADMIN"}, timedelta(minutes=5))
        payload = decode_access_token(token)
        assert payload["sub"] == "admin"
        assert payload["role"] == "ADMIN"

    @pytest.mark.unit
    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    def test_expired_and_tampered_tokens(self):
        expired = create_access_token({"sub": "admin", "role": "ADMIN"}, timedelta(minutes=-1))
        with pytest.raises(JWTError):
            decode_access_token(expired)
        valid = create_access_token({"sub": "admin", "role": "ADMIN"})
        with pytest.raises(JWTError):
            decode_access_token(valid[:-4] + "abcd")


class TestDependencies:
    @pytest.mark.unit
    @pytest.mark.infrastructure
    def test_get_user(self):
        staff = get_user(fake_users_db, "staff")
        assert staff.role == Role.USER
        assert not staff.is_admin
        assert verify_password("staff123", staff.hashed_password)
        assert get_user(fake_users_db, "nobody") is None

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_token_without_role_is_rejected(self):
        token = create_access_token({"sub": "admin"})
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(token)
        assert exc_info.value.status_code == 401

    @pytest.mark.unit
    @pytest.mark.infrastructure
    async def test_require_admin(self):
        admin = get_user(fake_users_db, "admin")
        staff = get_user(fake_users_db, "staff")
        assert await require_admin(admin) is admin
        with pytest.raises(HTTPException) as exc_info:
            await require_admin(staff)
        assert exc_info.value.status_code == 403
