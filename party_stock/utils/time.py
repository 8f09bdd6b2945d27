"""
Time helpers shared by the ledger, registry and snapshot store.

Wall-clock time is only used for audit timestamps and retention windows;
market progress is measured in rounds, never in seconds.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(ts: datetime) -> str:
    """
    Format a timestamp for snapshots and log payloads.

    Args:
        ts: Timestamp to format

    Returns:
        ISO8601 formatted string
    """
    return ts.isoformat()


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO8601 timestamp written by format_timestamp.

    Naive values are assumed to be UTC.
    """
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def time_elapsed_seconds(start_time: datetime, end_time: Optional[datetime] = None) -> float:
    """
    Calculate elapsed time in seconds between two timestamps.

    Args:
        start_time: Start timestamp
        end_time: End timestamp, defaults to now

    Returns:
        Elapsed time in seconds
    """
    if end_time is None:
        end_time = utc_now()

    return (end_time - start_time).total_seconds()


def is_expired(created_at: datetime, ttl_hours: float, now: Optional[datetime] = None) -> bool:
    """True when created_at is older than ttl_hours. A ttl of 0 or less never expires."""
    if ttl_hours <= 0:
        return False
    return time_elapsed_seconds(created_at, now) > timedelta(hours=ttl_hours).total_seconds()
