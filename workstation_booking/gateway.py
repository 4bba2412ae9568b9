from __future__ import annotations

from datetime import date, datetime
from typing import Protocol

from .models import Reservation, ReservationStatus, User, Workstation


class ReservationGateway(Protocol):
    """Operations the scheduling core expects from its persistence backend.

    Lookups raise ``NotFoundError`` for unknown ids. ``create_reservation`` and
    ``update_reservation`` must perform the overlap test and the write as one
    atomic step and raise ``ConflictError`` when an active reservation on the
    same workstation overlaps. The same step re-applies the owner's per-user
    limits (single active reservation, cooldown) and raises the matching
    ``PolicyViolation``. Connectivity problems and timeouts surface as
    ``TransientFailure``.
    """

    def get_user(self, user_id: str) -> User: ...

    def set_strike_count(
        self,
        user_id: str,
        count: int,
        *,
        expected: int | None = None,
        reason: str | None = None,
        now: datetime,
    ) -> User: ...

    def get_workstation(self, workstation_id: str) -> Workstation: ...

    def get_reservation(self, reservation_id: str) -> Reservation: ...

    def list_reservations(self, workstation_id: str, day: date) -> list[Reservation]: ...

    def list_user_reservations(self, user_id: str) -> list[Reservation]: ...

    def create_reservation(self, draft: Reservation) -> Reservation: ...

    def update_reservation(
        self,
        reservation_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        notes: str | None = None,
        now: datetime,
    ) -> Reservation: ...

    def set_status(self, reservation_id: str, status: ReservationStatus, *, now: datetime) -> Reservation: ...

    def cancel(self, reservation_id: str, *, now: datetime) -> Reservation: ...

    def cancel_with_reason(
        self,
        reservation_id: str,
        reason: str,
        *,
        cancelled_by: str,
        now: datetime,
    ) -> Reservation: ...

    def delete_reservation(self, reservation_id: str, *, now: datetime) -> None: ...
