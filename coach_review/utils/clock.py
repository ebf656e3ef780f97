# utils/clock.py
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Naive UTC "now"; all datetimes stored by the project are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def format_seconds(seconds: float | None) -> str:
    """Render a video position as m:ss (or h:mm:ss)."""
    if seconds is None:
        return "—"
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def parse_seconds(text: str) -> float:
    """Parse "83", "1:23" or "1:02:03" into seconds; raises ValueError."""
    parts = text.strip().split(":")
    if not parts or len(parts) > 3 or any(p.strip() == "" for p in parts):
        raise ValueError(f"invalid position: {text!r}")
    total = 0.0
    for part in parts:
        value = float(part)
        if value < 0:
            raise ValueError(f"invalid position: {text!r}")
        total = total * 60 + value
    return total


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from ``start`` to ``end``, rounded, never negative."""
    return max(0, round((as_naive_utc(end) - as_naive_utc(start)).total_seconds() / 60))
