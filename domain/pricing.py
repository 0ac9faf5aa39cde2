"""Court pricing rule (integer currency subunits)"""
from decimal import Decimal, ROUND_HALF_UP

from domain.exceptions import ValidationError

EVENING_THRESHOLD_HOUR = 17
DAYTIME_RATE_CENTS = 10000
EVENING_RATE_CENTS = 11000

DURATION_MULTIPLIERS = {
    60: Decimal("1"),
    90: Decimal("1.5"),
    120: Decimal("2"),
}


def base_rate(hour: int) -> int:
    """Hourly rate for a booking starting at `hour`"""
    return DAYTIME_RATE_CENTS if hour < EVENING_THRESHOLD_HOUR else EVENING_RATE_CENTS


def validate_duration(duration_minutes: int) -> None:
    if duration_minutes not in DURATION_MULTIPLIERS:
        allowed = ", ".join(str(d) for d in DURATION_MULTIPLIERS)
        raise ValidationError(
            f"Duration must be one of {allowed} minutes", field="duration_minutes"
        )


def price_for(hour: int, duration_minutes: int) -> int:
    """Price of a slot: base rate by hour times the duration multiplier"""
    validate_duration(duration_minutes)
    amount = Decimal(base_rate(hour)) * DURATION_MULTIPLIERS[duration_minutes]
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def reschedule_price(hour: int, duration_minutes: int, apply_duration: bool = False) -> int:
    # Rescheduling historically reprices with the hourly rate only.
    if apply_duration:
        return price_for(hour, duration_minutes)
    return base_rate(hour)
