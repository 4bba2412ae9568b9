from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Iterable

from .errors import ValidationError
from .models import Reservation

if TYPE_CHECKING:
    from .gateway import ReservationGateway


def has_time_overlap(new_start: datetime, new_end: datetime, exist_start: datetime, exist_end: datetime) -> bool:
    """Return True when two time intervals overlap by even one minute.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 10:00-11:00 and 11:00-12:00) do not overlap.
    """
    if new_start >= new_end:
        raise ValidationError("new_start must be earlier than new_end.", field="end")
    if exist_start >= exist_end:
        raise ValidationError("exist_start must be earlier than exist_end.")

    return new_start < exist_end and new_end > exist_start


def find_conflicts(
    new_start: datetime,
    new_end: datetime,
    existing_reservations: Iterable[Reservation],
    exclude_reservation_id: str | None = None,
) -> list[Reservation]:
    """Return the active reservations that overlap the requested interval."""
    if new_start >= new_end:
        raise ValidationError("new_start must be earlier than new_end.", field="end")

    return [
        reservation
        for reservation in existing_reservations
        if reservation.is_active
        and reservation.reservation_id != exclude_reservation_id
        and has_time_overlap(new_start, new_end, reservation.start, reservation.end)
    ]


def can_reserve(
    new_start: datetime,
    new_end: datetime,
    existing_reservations: Iterable[Reservation],
    exclude_reservation_id: str | None = None,
) -> bool:
    """Return True if the requested interval does not overlap any active reservation."""
    return not find_conflicts(new_start, new_end, existing_reservations, exclude_reservation_id)


def days_spanned(start: datetime, end: datetime) -> list[date]:
    last = (end - timedelta(microseconds=1)).date()
    cursor = start.date()
    days: list[date] = []
    while cursor <= last:
        days.append(cursor)
        cursor += timedelta(days=1)
    return days


class OverlapDetector:
    """Advisory conflict check against a point-in-time snapshot.

    The result only spares the user a round trip. Two clients can both pass
    this check for the same slot; the persistence layer has to run the same
    test and the insert atomically and answer the loser with a ConflictError.
    """

    def __init__(self, gateway: "ReservationGateway") -> None:
        self.gateway = gateway

    def conflicts(
        self,
        workstation_id: str,
        start: datetime,
        end: datetime,
        exclude_reservation_id: str | None = None,
    ) -> list[Reservation]:
        if start >= end:
            raise ValidationError("Reservation start time must be earlier than end time.", field="end")

        snapshot: dict[str, Reservation] = {}
        for day in days_spanned(start, end):
            for reservation in self.gateway.list_reservations(workstation_id, day):
                snapshot[reservation.reservation_id] = reservation
        return find_conflicts(start, end, snapshot.values(), exclude_reservation_id)

    def has_conflict(
        self,
        workstation_id: str,
        start: datetime,
        end: datetime,
        exclude_reservation_id: str | None = None,
    ) -> bool:
        return bool(self.conflicts(workstation_id, start, end, exclude_reservation_id))
