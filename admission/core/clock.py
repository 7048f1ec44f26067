"""Time source used by every component.

Components accept a ``clock`` callable returning UNIX time in seconds, so
tests can pass a ``Mock`` with a fixed ``return_value`` and advance it.
"""

from __future__ import annotations

import time
from datetime import date, datetime, timedelta
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], float]

system_clock: Clock = time.time


def now_ms(clock: Clock) -> int:
    """Return the clock's current time as integer epoch milliseconds."""
    return int(clock() * 1000)


def local_date(clock: Clock, tz: ZoneInfo) -> date:
    """Return the calendar date for the clock's current instant in ``tz``."""
    return datetime.fromtimestamp(clock(), tz).date()


def next_midnight_ms(day: date, tz: ZoneInfo) -> int:
    """Return epoch milliseconds of the midnight that ends ``day`` in ``tz``."""
    boundary = datetime.combine(day + timedelta(days=1), datetime.min.time(), tzinfo=tz)
    return int(boundary.timestamp() * 1000)
