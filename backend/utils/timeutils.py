# backend/utils/timeutils.py
from datetime import datetime, timezone
from typing import Optional


# All timestamps are stored as naive UTC so SQLite and PostgreSQL compare alike
def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
