"""
Background scheduler for the reservation expiry sweep.

Runs the sweep as an asyncio task on a daily cron-style schedule
("M H * * *") evaluated in a fixed timezone.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import pytz
from pydantic import BaseModel

from application.expiry import ExpirySweepService, SweepResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DailySchedule:
    """Parsed daily cron expression"""
    minute: int
    hour: int
    expression: str

    @classmethod
    def parse(cls, expression: str) -> "DailySchedule":
        fields = expression.split()
        if len(fields) != 5 or fields[2:] != ["*", "*", "*"]:
            raise ValueError(
                f"Unsupported cron expression '{expression}': only daily 'M H * * *' schedules are supported"
            )
        try:
            minute, hour = int(fields[0]), int(fields[1])
        except ValueError:
            raise ValueError(f"Cron minute and hour must be numbers: '{expression}'")
        if not 0 <= minute <= 59 or not 0 <= hour <= 23:
            raise ValueError(f"Cron minute/hour out of range: '{expression}'")
        return cls(minute=minute, hour=hour, expression=expression)

    def next_run(self, now: datetime, tz) -> datetime:
        """First run strictly after `now` (aware), as an aware datetime in `tz`"""
        local_now = now.astimezone(tz).replace(tzinfo=None)
        candidate = local_now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= local_now:
            candidate += timedelta(days=1)
        return tz.localize(candidate)


class JobStatus(BaseModel):
    is_running: bool
    schedule: str
    timezone: str
    description: str
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_processed: Optional[int] = None


class SweepScheduler:
    """Owns the recurring sweep trigger: start/stop/status plus a manual run"""

    def __init__(self,
                 sweep_service: ExpirySweepService,
                 cron_expression: str = "0 2 * * *",
                 timezone_name: str = "America/Sao_Paulo",
                 now: Optional[Callable[[], datetime]] = None):
        self.sweep_service = sweep_service
        self.schedule = DailySchedule.parse(cron_expression)
        self.timezone = pytz.timezone(timezone_name)
        self._now = now or (lambda: datetime.now(self.timezone))
        self._task: Optional[asyncio.Task] = None
        self._next_run: Optional[datetime] = None
        self.last_run: Optional[datetime] = None
        self.last_result: Optional[SweepResult] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def description(self) -> str:
        return (
            f"Daily processing of overdue reservations at "
            f"{self.schedule.hour:02d}:{self.schedule.minute:02d} ({self.timezone.zone})"
        )

    def start(self) -> bool:
        """Arm the recurring trigger; must be called from a running event loop"""
        if self.is_running:
            logger.warning("Reservation sweep job is already running")
            return False
        self._task = asyncio.get_running_loop().create_task(self._run_loop())
        logger.info("Reservation sweep job started (%s)", self.description)
        return True

    async def stop(self) -> bool:
        if not self.is_running:
            return False
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._next_run = None
        logger.info("Reservation sweep job stopped")
        return True

    async def run_manual(self) -> SweepResult:
        """Run the sweep now; errors propagate to the caller"""
        logger.info("Running reservation sweep manually")
        return await self._execute()

    def status(self) -> JobStatus:
        return JobStatus(
            is_running=self.is_running,
            schedule=self.schedule.expression,
            timezone=self.timezone.zone,
            description=self.description,
            next_run=self._next_run if self.is_running else None,
            last_run=self.last_run,
            last_processed=self.last_result.processed_count if self.last_result else None,
        )

    async def _execute(self) -> SweepResult:
        result = await self.sweep_service.sweep_expired()
        self.last_run = self._now()
        self.last_result = result
        return result

    async def _run_loop(self) -> None:
        while True:
            now = self._now()
            self._next_run = self.schedule.next_run(now, self.timezone)
            delay = (self._next_run - now).total_seconds()
            logger.debug("Next reservation sweep at %s", self._next_run.isoformat())
            await asyncio.sleep(max(delay, 0))
            try:
                result = await self._execute()
                logger.info("Scheduled reservation sweep finished: %s", result.message)
            except Exception:
                logger.exception("Scheduled reservation sweep failed")
