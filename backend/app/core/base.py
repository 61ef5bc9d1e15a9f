"""SQLAlchemy declarative base and shared mixins.

Timestamps are explicit UTC-only, timezone-aware values: the ingestion cursor
is derived from stored block timestamps, so a naive or shifted value would
move the cursor.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import DeclarativeBase


UTC = timezone.utc


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def ensure_utc(key: str, value: Optional[datetime]) -> Optional[datetime]:
    """Reject naive or non-UTC datetimes; return the value normalized to UTC."""
    if value is None:
        return None
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{key} must be timezone-aware (UTC).")
    if value.utcoffset() != timedelta(0):
        raise ValueError(f"{key} must be UTC (offset 0).")
    return value.astimezone(UTC)
