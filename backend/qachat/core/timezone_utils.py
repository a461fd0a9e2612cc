"""
Timezone utilities for the messaging core.

All persisted timestamps are UTC. SQLite hands them back naive, so every
comparison against wall-clock time goes through ``ensure_utc``.
"""

from datetime import datetime
from typing import Optional

import pytz


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Attach or convert to UTC.

    Args:
        dt: Datetime to normalize (naive values are assumed to be UTC)

    Returns:
        Timezone-aware UTC datetime, or None when dt is None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)
