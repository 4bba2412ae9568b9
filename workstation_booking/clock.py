from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Protocol

from .errors import ValidationError


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in local civil time, truncated to the minute.

    Every value in the core is a naive datetime. Client and server are assumed
    to share one operating timezone, so no offset conversion happens here.
    """

    def now(self) -> datetime:
        return datetime.now().replace(second=0, microsecond=0)


class FixedClock:
    def __init__(self, current: datetime) -> None:
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


def ensure_local(value: datetime, field: str) -> datetime:
    """Return ``value`` truncated to the minute, refusing offset-carrying values."""
    if not isinstance(value, datetime):
        raise ValidationError(f"{field} must be a date-time.", field=field)
    if value.tzinfo is not None:
        raise ValidationError(f"{field} must be local time without a UTC offset.", field=field)
    return value.replace(second=0, microsecond=0)


def parse_local_datetime(value: Any, field: str) -> datetime:
    if value in (None, ""):
        raise ValidationError(f"{field} is required.", field=field)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError as error:
        raise ValidationError(f"{field} must be an ISO date-time (YYYY-MM-DDTHH:MM).", field=field) from error
    return ensure_local(parsed, field)


def parse_local_date(value: Any, field: str = "date", default: date | None = None) -> date:
    if value in (None, ""):
        if default is None:
            raise ValidationError(f"{field} is required.", field=field)
        return default
    try:
        return date.fromisoformat(str(value))
    except ValueError as error:
        raise ValidationError(f"{field} must use the YYYY-MM-DD format.", field=field) from error
