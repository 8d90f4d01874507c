"""
Unified time helpers.

The anemometer reports local time (Asia/Vladivostok, UTC+10); persisted
timestamps are plain integer seconds since the epoch.

Usage:
    from telewind.utils.timezone import TIMEZONE, epoch_seconds
"""
import time
from zoneinfo import ZoneInfo

# Station timezone
TIMEZONE = ZoneInfo("Asia/Vladivostok")


def epoch_seconds() -> int:
    """Current time as integer seconds since the epoch."""
    return int(time.time())
