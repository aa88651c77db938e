import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds, used by the rate limiter"""
    return time.monotonic() * 1000


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
