"""UTC datetime utilities.

Every deadline comparison in the settlement engine uses the application
clock passed into SQL as a bound parameter, never the database NOW().
"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def commit_deadline_for(paid_at: datetime, window_hours: int) -> datetime:
    """Deadline by which the seller must commit: paid_at + window."""
    return paid_at + timedelta(hours=window_hours)
