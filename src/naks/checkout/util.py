"""Common utilities."""
from datetime import datetime, timezone
from typing import Optional, TypeVar

from blacksheep.exceptions import NotFound

T = TypeVar("T")


def get_now(seconds_only: bool = False) -> datetime:
    """Get the current tz-aware UTC datetime.

    Args:
        seconds_only: Don't include microseconds.
    """
    dt = datetime.now(tz=timezone.utc)
    return dt.replace(microsecond=0) if seconds_only else dt


def get_seconds_until(deadline: Optional[datetime], now: datetime) -> Optional[float]:
    """Get the seconds left until ``deadline``, negative once it has passed.

    Returns None when there is no deadline.
    """
    if deadline is None:
        return None
    return (deadline - now).total_seconds()


def check_not_found(obj: Optional[T]) -> T:
    """Raise :class:`NotFound` if the argument is null."""
    if obj is None:
        raise NotFound
    return obj
