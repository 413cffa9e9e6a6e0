# ordertrack/services/formatting.py
from datetime import datetime, timezone

def _as_datetime(ts) -> datetime:
    if isinstance(ts, datetime):
        return ts
    return datetime.fromisoformat(str(ts).strip().replace("Z", "+00:00"))

def format_timestamp(ts) -> str:
    dt = _as_datetime(ts)
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    return dt.strftime("%Y-%m-%d %H:%M")

def time_ago(ts, now: datetime | None = None) -> str:
    dt = _as_datetime(ts)
    if now is None:
        now = datetime.now(timezone.utc) if dt.tzinfo else datetime.now()
    seconds = int((now - dt).total_seconds())

    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        n, unit = seconds // 60, "minute"
    elif seconds < 86400:
        n, unit = seconds // 3600, "hour"
    else:
        n, unit = seconds // 86400, "day"
    return f"{n} {unit}{'s' if n > 1 else ''} ago"
