"""Small shared helpers."""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a stored timestamp; SQLite hands back naive datetimes."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with halves going up (12.5 -> 13), unlike the builtin ``round``."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round2(value: float) -> float:
    return round_half_up(float(value), 2)


def room_key(session_id: int) -> str:
    return f"session-{session_id}"
