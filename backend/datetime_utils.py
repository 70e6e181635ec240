import time
from datetime import datetime, timezone


def now_utc() -> datetime:
    """Return a timezone-aware datetime in UTC."""
    return datetime.now(timezone.utc)


def now_utc_iso() -> str:
    """Return current UTC time as ISO-8601 string including offset."""
    return now_utc().isoformat()


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
