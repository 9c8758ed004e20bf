import time
from datetime import datetime, timedelta, timezone


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def epoch_ms(dt: datetime | None = None) -> int:
    """Milliseconds since the epoch, used for time-derived ids."""
    if dt is None:
        return time.time_ns() // 1_000_000
    return int(dt.timestamp() * 1000)


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_uptime(elapsed: timedelta) -> str:
    total = max(0, int(elapsed.total_seconds()))
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    return f"{days}d {hours}h {minutes}m"
