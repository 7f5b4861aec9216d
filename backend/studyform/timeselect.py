"""Time selector helpers.

The pickers hand us a point in time; the form stores only the wall-clock
part as a zero-padded 24-hour `HH:MM` string.
"""

from datetime import datetime, time
from typing import Optional, Union

TIME_FIELDS = {"start": "startTime", "end": "endTime"}

TimeValue = Union[datetime, time]


def format_time(value: TimeValue) -> str:
    """Format a `datetime` or `time` as `HH:MM`."""
    return f"{value.hour:02d}:{value.minute:02d}"


def parse_time(text: Optional[str]) -> Optional[time]:
    """Parse a stored `HH:MM` string back into a `time`.

    Returns None for empty or malformed input so hydration of a partial
    record never fails.
    """
    if not text:
        return None
    try:
        hours, minutes = text.split(":")[:2]
        return time(int(hours), int(minutes))
    except ValueError:
        return None


class TimeSelector:
    """Write picked times into a values mapping."""
    def __init__(self, values: dict):
        self.values = dict(values)

    def select(self, field: str, value: Optional[TimeValue]) -> bool:
        """Store `value` under `field`; `None` keeps whatever was set."""
        if field not in TIME_FIELDS.values():
            raise ValueError(f"unknown time field: {field}")
        if value is None:
            return False
        self.values[field] = format_time(value)
        return True
