"""Input rules for sync settings.

Timezones must be IANA names known to the zoneinfo database. Sync times
accept HH:MM or HH:MM:SS (24h, single-digit hour allowed).
"""

import re
from datetime import time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

COMMON_TIMEZONES = (
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
    "America/Phoenix",
    "America/Anchorage",
    "Pacific/Honolulu",
    "Europe/London",
    "Europe/Paris",
    "Europe/Berlin",
    "Asia/Tokyo",
    "Asia/Shanghai",
    "Asia/Singapore",
    "Australia/Sydney",
    "Australia/Melbourne",
)

_SYNC_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])(?::([0-5][0-9]))?$")


def is_valid_timezone(name: str) -> bool:
    if not name or name != name.strip():
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def parse_sync_time(value: str) -> time | None:
    """Parse HH:MM[:SS]; returns None when the value does not match."""
    match = _SYNC_TIME_RE.match(value or "")
    if match is None:
        return None
    hours, minutes, seconds = match.groups()
    return time(int(hours), int(minutes), int(seconds or 0))
