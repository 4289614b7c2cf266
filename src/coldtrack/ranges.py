"""Parse relative range strings such as 15m, 24h or 7d into epoch-second windows."""

import math
import re
import time
from typing import NamedTuple

RANGE_PATTERN = re.compile(r"^(\d+)([smhdw])$", re.IGNORECASE)

UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}

DEFAULT_WINDOW_SECONDS = 7 * 86400


class TimeWindow(NamedTuple):
    """A [start, end] window in epoch seconds."""

    start: int
    end: int

    @property
    def seconds(self) -> int:
        return self.end - self.start


def is_valid_range(range_str: str | None) -> bool:
    """Return True if the string matches the range grammar with a positive count."""
    if not range_str:
        return False
    match = RANGE_PATTERN.match(range_str.strip())
    return bool(match) and int(match.group(1)) > 0


def range_seconds(range_str: str | None) -> int:
    """
    Return the length in seconds of a range string.

    Invalid, empty or zero-count ranges fall back to seven days.
    """
    if not range_str or not range_str.strip():
        return DEFAULT_WINDOW_SECONDS

    match = RANGE_PATTERN.match(range_str.strip())
    if not match:
        return DEFAULT_WINDOW_SECONDS

    value = int(match.group(1))
    unit = match.group(2).lower()
    if value <= 0:
        return DEFAULT_WINDOW_SECONDS

    return value * UNIT_SECONDS[unit]


def parse_range(range_str: str | None = None, now: float | None = None) -> TimeWindow:
    """
    Convert a relative range string into an absolute window ending now.

    Args:
        range_str: Range like 60s, 15m, 24h, 7d or 2w (case-insensitive)
        now: Current time in epoch seconds (uses the wall clock if not specified)

    Returns:
        TimeWindow with integer epoch-second start and end
    """
    if now is None:
        now = time.time()
    end = math.floor(now)
    return TimeWindow(start=end - range_seconds(range_str), end=end)
