"""
Timezone utilities for Ratingo.
Provides consistent UTC datetime handling for sync bookkeeping.
"""
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.
    Replacement for deprecated datetime.utcnow().
    """
    return datetime.now(timezone.utc)


def month_starts(now: Optional[datetime] = None, count: int = 6) -> List[date]:
    """First day of the current month and the `count - 1` months before it, newest first."""
    current = (now or utc_now()).date().replace(day=1)
    out = []
    for _ in range(count):
        out.append(current)
        current = (current - timedelta(days=1)).replace(day=1)
    return out


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse 'YYYY-MM-DD' or an ISO timestamp; None when empty or malformed."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            return None


def days_since(value: Optional[date], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days elapsed since `value`, never negative."""
    if value is None:
        return None
    today = (now or utc_now()).date()
    return max(0, (today - value).days)
