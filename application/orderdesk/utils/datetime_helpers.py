"""
Timestamps for workflow rows.

Writes are stamped in IST from Python; reads may come back as datetimes
(postgres) or ISO strings (sqlite) and are normalised here.
"""

from datetime import datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo
IST = ZoneInfo("Asia/Kolkata")


def get_ist_now() -> datetime:
    return datetime.now(IST)


def parse_db_timestamp(value: Union[datetime, str, None]) -> Optional[datetime]:
    """Timestamp column value as a datetime; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if value.tzinfo is None:
        # sqlite CURRENT_TIMESTAMP defaults carry no offset
        value = value.replace(tzinfo=timezone.utc)
    return value


def format_datetime_ist(value: Union[datetime, str, None]) -> Optional[str]:
    """ISO string in IST, or None."""
    dt = parse_db_timestamp(value)
    return dt.astimezone(IST).isoformat() if dt else None
