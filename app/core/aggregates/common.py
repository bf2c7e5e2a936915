from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional, Union

MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def utc_now() -> datetime:
    """Naive UTC 'now', the form every aggregate compares against."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes are converted to UTC and stripped; naive ones are assumed UTC already.

    Postgres hands back aware values for timestamptz columns, SQLite hands back naive ones.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def start_of_month(day: date) -> date:
    return day.replace(day=1)


def enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def utc_today() -> date:
    return utc_now().date()


def round_half_up(value: float, places: int = 0) -> Union[int, float]:
    """Round .5 away from zero for the positive values used here (12.5 -> 13), not to even.

    Whole numbers come back as int, anything with places as float.
    """
    quantum = Decimal(1).scaleb(-places)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if places == 0 else float(rounded)
