"""
Timestamps are stored as naive UTC, matching the DateTime columns.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
