"""
Booking time rules: prime-time classification, expiry and quota reset dates.

Everything here is a pure function of its arguments. Callers pass ``now``
explicitly so results never depend on a hidden clock.
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Optional

import pytz

# Pending bookings expire this long after creation
BOOKING_EXPIRATION_MINUTES = 30

# Bookings starting within this many hours count as last-minute
LAST_MINUTE_THRESHOLD_HOURS = 12

# Quota resets happen every other Monday at 03:00 UTC, counted from this anchor
RESET_ANCHOR = datetime(2024, 1, 1, 3, 0, tzinfo=pytz.UTC)
RESET_INTERVAL_DAYS = 14


def parse_clock_time(value: str) -> time:
    """
    Parse an "HH:MM" clock string.

    Raises:
        ValueError: If the string is not a valid 24-hour clock time
    """
    if not isinstance(value, str):
        raise ValueError(f"Invalid clock time: {value!r}")
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid clock time: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid clock time: {value!r}")
    return time(hour, minute)


@dataclass(frozen=True)
class PrimeTimeWindow:
    """Prime-time clock windows for weekdays and weekends (start inclusive, end exclusive)."""

    weekday_start: time = time(17, 0)
    weekday_end: time = time(21, 0)
    weekend_start: time = time(8, 0)
    weekend_end: time = time(20, 0)

    @classmethod
    def from_hoa(cls, hoa: Any) -> "PrimeTimeWindow":
        """Build the window from an HOA row or dict, falling back to defaults per field."""

        def _get(name):
            if isinstance(hoa, dict):
                return hoa.get(name)
            return getattr(hoa, name, None)

        defaults = cls()
        return cls(
            weekday_start=_clock_or(_get("prime_time_start"), defaults.weekday_start),
            weekday_end=_clock_or(_get("prime_time_end"), defaults.weekday_end),
            weekend_start=_clock_or(_get("weekend_prime_time_start"), defaults.weekend_start),
            weekend_end=_clock_or(_get("weekend_prime_time_end"), defaults.weekend_end),
        )


def _clock_or(value: Optional[str], default: time) -> time:
    if not value:
        return default
    return parse_clock_time(value)


DEFAULT_PRIME_TIME_WINDOW = PrimeTimeWindow()


def is_prime_time(
    timestamp: datetime,
    window: PrimeTimeWindow = DEFAULT_PRIME_TIME_WINDOW,
    tz: Optional[str] = None,
) -> bool:
    """
    Classify a booking start time as prime time.

    Saturdays and Sundays use the weekend window; all other days use the
    weekday window. Naive timestamps are read as local wall-clock time; aware
    timestamps are converted to ``tz`` first when one is given.

    Args:
        timestamp: Booking start time
        window: Prime-time windows to apply
        tz: IANA timezone name of the HOA

    Returns:
        True if the start time falls inside the applicable window
    """
    local = timestamp
    if tz and timestamp.tzinfo is not None:
        local = timestamp.astimezone(pytz.timezone(tz))

    clock = time(local.hour, local.minute)
    if local.weekday() >= 5:
        return window.weekend_start <= clock < window.weekend_end
    return window.weekday_start <= clock < window.weekday_end


def calculate_expiration_time(created_at: datetime) -> datetime:
    """Expiry timestamp for a pending booking created at ``created_at``."""
    return created_at + timedelta(minutes=BOOKING_EXPIRATION_MINUTES)


def is_booking_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    if expires_at is None:
        return False
    return expires_at < now


def is_last_minute_booking(start_time: datetime, now: datetime) -> bool:
    """True if the booking starts within the last-minute threshold from ``now``."""
    return start_time - now <= timedelta(hours=LAST_MINUTE_THRESHOLD_HOURS)


def get_next_reset_date(now: datetime) -> datetime:
    """
    Next bi-weekly quota reset (Monday 03:00 UTC) strictly after ``now``.

    Args:
        now: Aware datetime

    Returns:
        Aware UTC datetime of the next reset
    """
    now_utc = now.astimezone(pytz.UTC)
    if now_utc < RESET_ANCHOR:
        return RESET_ANCHOR
    interval = timedelta(days=RESET_INTERVAL_DAYS)
    periods = (now_utc - RESET_ANCHOR) // interval
    return RESET_ANCHOR + (periods + 1) * interval


def format_time_range(start: datetime, end: datetime, tz: Optional[str] = None) -> str:
    """Human readable range, e.g. "Sat 3/14 10:00 AM - 11:30 AM", in tz when given."""
    if tz:
        zone = pytz.timezone(tz)
        start, end = start.astimezone(zone), end.astimezone(zone)
    day = f"{start.strftime('%a')} {start.month}/{start.day}"
    return f"{day} {_format_clock(start)} - {_format_clock(end)}"


def _format_clock(value: datetime) -> str:
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"
