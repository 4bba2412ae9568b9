from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, Mapping

import holidays as pyholidays

from .booking import find_conflicts
from .config import BookingSettings
from .errors import ValidationError
from .models import Reservation, TimeSlot, Workstation

_HOLIDAY_CACHE: dict[tuple[str, int], set[date]] = {}


def is_closed_day(target_date: date, settings: BookingSettings) -> bool:
    if not settings.holiday_country:
        return False
    key = (settings.holiday_country, target_date.year)
    if key not in _HOLIDAY_CACHE:
        holiday_map = pyholidays.country_holidays(settings.holiday_country, years=[target_date.year])
        _HOLIDAY_CACHE[key] = set(holiday_map.keys())
    return target_date in _HOLIDAY_CACHE[key]


def previous_day(current: date, today: date) -> date:
    candidate = current - timedelta(days=1)
    if candidate < today:
        raise ValidationError("Cannot navigate to a day in the past.", field="date")
    return candidate


def next_day(current: date) -> date:
    return current + timedelta(days=1)


class TimeSlotGenerator:
    """Builds the bookable slots of one workstation for one calendar day.

    The sequence is recomputed on every call from the supplied reservations
    and never mutates them.
    """

    def __init__(self, settings: BookingSettings | None = None) -> None:
        self.settings = settings or BookingSettings()

    def slot_bounds(self, day: date) -> list[tuple[datetime, datetime]]:
        step = timedelta(minutes=self.settings.slot_minutes)
        cursor = datetime(day.year, day.month, day.day, self.settings.opening_hour)
        closing = datetime(day.year, day.month, day.day) + timedelta(hours=self.settings.closing_hour)
        bounds: list[tuple[datetime, datetime]] = []
        while cursor < closing:
            bounds.append((cursor, cursor + step))
            cursor += step
        return bounds

    def generate(
        self,
        workstation: Workstation,
        day: date,
        reservations: Iterable[Reservation],
        now: datetime,
        occupant_names: Mapping[str, str] | None = None,
    ) -> list[TimeSlot]:
        relevant = [row for row in reservations if row.workstation_id == workstation.workstation_id and row.is_active]
        names = occupant_names or {}
        closed = not workstation.is_bookable or day < now.date() or is_closed_day(day, self.settings)

        slots: list[TimeSlot] = []
        for start, end in self.slot_bounds(day):
            conflicts = find_conflicts(start, end, relevant)
            blocker = min(conflicts, key=lambda row: row.start) if conflicts else None
            available = not closed and blocker is None and start >= now
            slots.append(
                TimeSlot(
                    hour=start.hour,
                    label=start.strftime("%H:%M"),
                    start=start,
                    end=end,
                    available=available,
                    occupant=(names.get(blocker.user_id) if blocker else None),
                    reservation_id=(blocker.reservation_id if blocker else None),
                )
            )
        return slots
