"""
Timezone Utilities - Centralized UTC handling

Durable log records and health responses are stamped in UTC.

Usage:
    from core.utils.timezone import get_utc_now, get_utc_isoformat
"""
from datetime import datetime

import pytz

UTC = pytz.utc


def get_utc_now() -> datetime:
    """Get current datetime in UTC."""
    return datetime.now(UTC)


def get_utc_isoformat() -> str:
    """Get current datetime as ISO format string with UTC offset."""
    return get_utc_now().isoformat()
