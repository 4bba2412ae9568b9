from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import ValidationError


class Role(str, Enum):
    STUDENT = "STUDENT"
    CENTER_MANAGER = "CENTER_MANAGER"
    PEDAGOGICAL_MANAGER = "PEDAGOGICAL_MANAGER"
    ASSET_MANAGER = "ASSET_MANAGER"
    EXECUTIVE_DIRECTOR = "EXECUTIVE_DIRECTOR"
    ADMIN = "ADMIN"


class ReservationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class WorkstationStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    UNAVAILABLE = "UNAVAILABLE"
    MAINTENANCE = "MAINTENANCE"


class UserStanding(str, Enum):
    GOOD = "GOOD"
    WARNING = "WARNING"
    BAD = "BAD"


ACTIVE_STATUSES = frozenset({ReservationStatus.PENDING, ReservationStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({ReservationStatus.CANCELLED, ReservationStatus.REJECTED, ReservationStatus.COMPLETED})


def _format_minutes(value: datetime | None) -> str | None:
    return value.isoformat(timespec="minutes") if value is not None else None


def _parse_optional(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True)
class User:
    user_id: str
    role: Role
    name: str = ""
    assigned_center: str | None = None
    strike_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "user_id": self.user_id,
            "role": self.role.value,
            "name": self.name,
            "strike_count": self.strike_count,
        }
        if self.assigned_center is not None:
            payload["assigned_center"] = self.assigned_center
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "User":
        return User(
            user_id=str(data["user_id"]),
            role=Role(str(data["role"])),
            name=str(data.get("name") or ""),
            assigned_center=(str(data["assigned_center"]) if data.get("assigned_center") is not None else None),
            strike_count=int(data.get("strike_count") or 0),
        )


@dataclass(frozen=True)
class Workstation:
    workstation_id: str
    name: str
    room_id: str
    center_id: str | None = None
    status: WorkstationStatus = WorkstationStatus.AVAILABLE

    @property
    def is_bookable(self) -> bool:
        return self.status == WorkstationStatus.AVAILABLE

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "workstation_id": self.workstation_id,
            "name": self.name,
            "room_id": self.room_id,
            "status": self.status.value,
        }
        if self.center_id is not None:
            payload["center_id"] = self.center_id
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Workstation":
        return Workstation(
            workstation_id=str(data["workstation_id"]),
            name=str(data.get("name") or data["workstation_id"]),
            room_id=str(data["room_id"]),
            center_id=(str(data["center_id"]) if data.get("center_id") is not None else None),
            status=WorkstationStatus(str(data.get("status") or WorkstationStatus.AVAILABLE.value)),
        )


@dataclass(frozen=True)
class Reservation:
    """A booked half-open interval ``[start, end)`` on one workstation.

    Times are naive local civil time at minute precision. COMPLETED is never
    stored by an actor: a CONFIRMED reservation whose end has passed reports
    COMPLETED through :meth:`effective_status`.
    """

    reservation_id: str
    user_id: str
    workstation_id: str
    start: datetime
    end: datetime
    status: ReservationStatus = ReservationStatus.PENDING
    notes: str | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationError("Reservation start time must be earlier than end time.", field="end")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def effective_status(self, now: datetime) -> ReservationStatus:
        if self.status == ReservationStatus.CONFIRMED and now >= self.end:
            return ReservationStatus.COMPLETED
        return self.status

    def blocks_time(self, now: datetime | None = None) -> bool:
        if not self.is_active:
            return False
        return now is None or self.end > now

    def with_changes(self, **changes: Any) -> "Reservation":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "reservation_id": self.reservation_id,
            "user_id": self.user_id,
            "workstation_id": self.workstation_id,
            "start": _format_minutes(self.start),
            "end": _format_minutes(self.end),
            "status": self.status.value,
        }
        optional = {
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by,
            "cancelled_at": _format_minutes(self.cancelled_at),
            "created_at": (self.created_at.isoformat(timespec="seconds") if self.created_at else None),
            "updated_at": (self.updated_at.isoformat(timespec="seconds") if self.updated_at else None),
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Reservation":
        return Reservation(
            reservation_id=str(data["reservation_id"]),
            user_id=str(data["user_id"]),
            workstation_id=str(data["workstation_id"]),
            start=datetime.fromisoformat(str(data["start"])),
            end=datetime.fromisoformat(str(data["end"])),
            status=ReservationStatus(str(data.get("status") or ReservationStatus.PENDING.value)),
            notes=(str(data["notes"]) if data.get("notes") is not None else None),
            cancellation_reason=(
                str(data["cancellation_reason"]) if data.get("cancellation_reason") is not None else None
            ),
            cancelled_by=(str(data["cancelled_by"]) if data.get("cancelled_by") is not None else None),
            cancelled_at=_parse_optional(data.get("cancelled_at")),
            created_at=_parse_optional(data.get("created_at")),
            updated_at=_parse_optional(data.get("updated_at")),
        )


@dataclass(frozen=True)
class TimeSlot:
    hour: int
    label: str
    start: datetime
    end: datetime
    available: bool
    occupant: str | None = None
    reservation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "hour": self.hour,
            "label": self.label,
            "start": self.start.isoformat(timespec="minutes"),
            "end": self.end.isoformat(timespec="minutes"),
            "available": self.available,
            "occupant": self.occupant,
            "reservation_id": self.reservation_id,
        }
