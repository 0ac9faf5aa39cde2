"""Domain Value Objects"""
import math
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from domain.enums import PaymentMethod, PaymentStatus
from domain.pricing import DURATION_MULTIPLIERS

OPENING_HOUR = 8
CLOSING_HOUR = 23

PAID_PERCENTAGES = (0, 50, 100)


def occupied_hours(hour: int, duration_minutes: int) -> FrozenSet[int]:
    """Hour slots blocked by a booking starting at `hour`"""
    slots = math.ceil(duration_minutes / 60)
    return frozenset(range(hour, hour + slots))


class TimeSlot(BaseModel):
    """Value Object for a start hour and duration on a court"""
    model_config = ConfigDict(frozen=True)

    hour: int = Field(ge=OPENING_HOUR, le=CLOSING_HOUR)
    duration_minutes: int = 60

    @field_validator("duration_minutes")
    @classmethod
    def supported_duration(cls, v):
        if v not in DURATION_MULTIPLIERS:
            raise ValueError("Duration must be 60, 90 or 120 minutes")
        return v

    @property
    def occupied_hours(self) -> FrozenSet[int]:
        return occupied_hours(self.hour, self.duration_minutes)

    def overlaps(self, other: "TimeSlot") -> bool:
        return bool(self.occupied_hours & other.occupied_hours)


class PaymentInfo(BaseModel):
    """Value Object for payment bookkeeping (no gateway involved)"""
    model_config = ConfigDict(frozen=True)

    method: Optional[PaymentMethod] = None
    paid_percentage: int = 0

    @field_validator("paid_percentage")
    @classmethod
    def supported_percentage(cls, v):
        if v not in PAID_PERCENTAGES:
            raise ValueError("Paid percentage must be 0, 50 or 100")
        return v

    @property
    def status(self) -> PaymentStatus:
        if self.paid_percentage == 100:
            return PaymentStatus.FULL
        if self.paid_percentage == 50:
            return PaymentStatus.PARTIAL
        return PaymentStatus.PENDING

    def amount_paid(self, price_cents: int) -> int:
        return price_cents * self.paid_percentage // 100
