from __future__ import annotations

import re
from datetime import datetime, time

HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> time:
    m = HHMM_RE.match(value.strip())
    if not m:
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM.")
    return time(int(m.group(1)), int(m.group(2)))


def crosses_midnight(start: str, stop: str) -> bool:
    return parse_hhmm(start) > parse_hhmm(stop)


def in_sleep_window(start: str, stop: str, now: datetime | None = None) -> bool:
    """Return True when ``now`` falls in the sleep window.

    The window always wraps past midnight: "inside" means
    ``now >= start`` or ``now < stop``, both taken on today's date. An
    overnight window such as 22:00-06:00 therefore sleeps through the night,
    while a same-day window such as 01:00-23:00 is inside at every hour.
    Empty boundaries disable the window.
    """
    if not start or not stop:
        return False
    now = now or datetime.now()
    start_at = datetime.combine(now.date(), parse_hhmm(start), tzinfo=now.tzinfo)
    stop_at = datetime.combine(now.date(), parse_hhmm(stop), tzinfo=now.tzinfo)
    return now >= start_at or now < stop_at
