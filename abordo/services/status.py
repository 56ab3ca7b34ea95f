"""
Deadline status classification.

Single source of the day-delta and threshold rules used by the notification
projection, the live listing/stats and the reminder email stages.
"""
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple, Union
import pytz

from ..config import settings


class Status(str, Enum):
    """Urgency of a deadline. Declared from most to least urgent."""

    expired = "expired"
    critical = "critical"
    warning = "warning"
    safe = "safe"


class EmailStage(str, Enum):
    """Reminder email stage. Declared in send order."""

    warning = "warning"
    critical = "critical"
    final = "final"


STATUS_VALUES = tuple(s.value for s in Status)

CRITICAL_DAYS = 7
WARNING_DAYS = 30

CRITICAL_KM = 250
WARNING_KM = 600

DateLike = Union[date, datetime, str]


def local_today(timezone_str: Optional[str] = None) -> date:
    """Today's calendar date in the configured timezone."""
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return datetime.now(tz).date()


def current_day() -> date:
    """Zero-argument clock; routes depend on it so tests can pin the date."""
    return local_today()


def to_local_date(value: DateLike, timezone_str: Optional[str] = None) -> date:
    """
    Truncate a date-ish value to its local calendar day (midnight).

    Aware datetimes are converted to the configured timezone first, naive
    ones are taken as already local. ISO strings are accepted.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value) if "T" in value or " " in value else date.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(pytz.timezone(timezone_str or settings.tz_default))
        return value.date()
    return value


def days_until(expiry: DateLike, today: Optional[DateLike] = None) -> int:
    """Signed whole days from today to expiry; negative once past due."""
    expiry_day = to_local_date(expiry)
    today_day = to_local_date(today) if today is not None else local_today()
    return (expiry_day - today_day).days


def classify_days(days: int) -> Status:
    if days < 0:
        return Status.expired
    if days <= CRITICAL_DAYS:
        return Status.critical
    if days <= WARNING_DAYS:
        return Status.warning
    return Status.safe


def classify_mileage(remaining_km: int) -> Status:
    """Mileage thresholds differ from time: reaching 0 km left is already expired."""
    if remaining_km <= 0:
        return Status.expired
    if remaining_km <= CRITICAL_KM:
        return Status.critical
    if remaining_km <= WARNING_KM:
        return Status.warning
    return Status.safe


def classify_expiry(expiry: DateLike, today: Optional[DateLike] = None) -> Tuple[int, Status]:
    days = days_until(expiry, today)
    return days, classify_days(days)


def stage_for_days(days: int) -> Optional[EmailStage]:
    """Reminder stage for a day delta; None while the deadline is more than a month away."""
    if days <= 0:
        return EmailStage.final
    if days <= CRITICAL_DAYS:
        return EmailStage.critical
    if days <= WARNING_DAYS:
        return EmailStage.warning
    return None


def stage_rank(stage: Optional[Union[EmailStage, str]]) -> int:
    """0 for no stage sent, then 1..3 in send order."""
    if stage is None:
        return 0
    return list(EmailStage).index(EmailStage(stage)) + 1
