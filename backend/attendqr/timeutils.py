"""
Helpers d'horodatage.

Tous les timestamps sont stockés en UTC naïf : SQLite ne conserve pas le
fuseau et PostgreSQL compare alors sans conversion implicite.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convertit un datetime (aware ou naïf supposé UTC) en UTC naïf."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
