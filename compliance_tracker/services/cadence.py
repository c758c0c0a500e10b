"""
Cadence calculator - maps a recurrence policy and an anchor date to the next anchor.

Month and year steps clamp to the last valid day of the target month
(Jan 31 + 1 month = Feb 28/29), which is what ``relativedelta`` does.
Each step is derived from the anchor it is given, so chained recurrences
re-clamp every cycle instead of carrying a fixed offset.
"""
from datetime import date, timedelta
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from compliance_tracker.models.enums import Cadence
from compliance_tracker.services.errors import InvalidCadenceError

# Current policy: a task is due one week after the date it covers
DEFAULT_DUE_GRACE_DAYS = 7

_CALENDAR_STEPS = {
    Cadence.QUARTERLY: relativedelta(months=3),
    Cadence.SEMI_ANNUAL: relativedelta(months=6),
    Cadence.ANNUAL: relativedelta(years=1),
}


def validate_cadence(cadence: Union[Cadence, str], custom_interval_days: Optional[int]) -> Cadence:
    """Return the cadence as an enum, or raise InvalidCadenceError."""
    try:
        cadence = Cadence(cadence)
    except ValueError:
        raise InvalidCadenceError(f"Unknown cadence: {cadence!r}", cadence=str(cadence)) from None

    if cadence == Cadence.CUSTOM and (custom_interval_days is None or custom_interval_days <= 0):
        raise InvalidCadenceError(
            "CUSTOM cadence requires a positive custom_interval_days",
            cadence=cadence.value,
            custom_interval_days=custom_interval_days,
        )
    return cadence


def next_anchor_date(
    cadence: Union[Cadence, str],
    custom_interval_days: Optional[int],
    current_anchor_date: date,
) -> date:
    """
    Compute the anchor date of the next occurrence.

    QUARTERLY/SEMI_ANNUAL add 3/6 calendar months, ANNUAL adds one year,
    CUSTOM adds custom_interval_days days.
    """
    cadence = validate_cadence(cadence, custom_interval_days)

    step = timedelta(days=custom_interval_days) if cadence == Cadence.CUSTOM else _CALENDAR_STEPS[cadence]
    try:
        return current_anchor_date + step
    except (ValueError, OverflowError):
        raise InvalidCadenceError(
            f"Next {cadence.value} occurrence after {current_anchor_date.isoformat()} is out of range",
            cadence=cadence.value,
            custom_interval_days=custom_interval_days,
        ) from None


def due_date_from_anchor(anchor_date: date, grace_days: int = DEFAULT_DUE_GRACE_DAYS) -> date:
    """The deadline for a task anchored on anchor_date."""
    return anchor_date + timedelta(days=grace_days)
