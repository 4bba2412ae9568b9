from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterator
import shutil
import threading
from uuid import uuid4

import yaml

from .booking import find_conflicts
from .config import BookingSettings
from .errors import ConflictError, NotFoundError, TransientFailure, ValidationError
from .lifecycle import ReservationLifecycle
from .models import Reservation, ReservationStatus, Role, User, Workstation, WorkstationStatus
from .policies import CooldownPolicy


class ReservationStorageError(TransientFailure):
    pass


_LOCKS: dict[Path, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = path.resolve()
    with _LOCKS_GUARD:
        if key not in _LOCKS:
            _LOCKS[key] = threading.RLock()
        return _LOCKS[key]


class ReservationYamlRepository:
    """Reference persistence backend storing everything in YAML files.

    All writes for one data directory share a lock, which makes the overlap
    test and the insert in :meth:`create_reservation` a single critical
    section. A database deployment would get the same guarantee from an
    exclusion constraint on (workstation, interval).
    """

    def __init__(
        self,
        base_dir: str | Path = "data",
        lock_timeout: float = 5.0,
        lifecycle: ReservationLifecycle | None = None,
        settings: BookingSettings | None = None,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.reservations_file = self.base_dir / "reservations.yaml"
        self.workstations_file = self.base_dir / "workstations.yaml"
        self.users_file = self.base_dir / "users.yaml"
        self.log_file = self.base_dir / "reservation_events.yaml"
        self.lock_timeout = lock_timeout
        self.settings = settings or BookingSettings()
        self.lifecycle = lifecycle or ReservationLifecycle(self.settings)
        self.cooldown = CooldownPolicy(self.settings)
        self._ensure_files()
        self._lock = _lock_for(self.base_dir)

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in (self.reservations_file, self.workstations_file, self.users_file, self.log_file):
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise TransientFailure(
                "Timed out waiting for the reservation store.",
                timeout_seconds=self.lock_timeout,
            )
        try:
            yield
        finally:
            self._lock.release()

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            else:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise ReservationStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            pass

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self._log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        events = self._read_yaml_list(self.log_file)
        events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
        self._write_yaml_list(self.log_file, events)

    def get_events(self) -> list[dict[str, Any]]:
        return self._read_yaml_list(self.log_file)

    # Inventory and users. Only strike counts change at runtime; the upserts
    # exist for seeding and tests.

    def upsert_user(self, user: User) -> User:
        with self._locked():
            self._upsert(self.users_file, "user_id", user.user_id, user.to_dict())
        return user

    def set_strike_count(
        self,
        user_id: str,
        count: int,
        *,
        expected: int | None = None,
        reason: str | None = None,
        now: datetime,
    ) -> User:
        """Store a new strike count, refusing the write when ``expected`` is stale."""
        if count < 0:
            raise ValidationError("Strike count cannot be negative.", field="strike_count")
        with self._locked():
            rows = self._read_yaml_list(self.users_file)
            for index, row in enumerate(rows):
                if str(row.get("user_id")) == user_id:
                    break
            else:
                raise NotFoundError(f"User not found with id: {user_id}", field="user_id")

            current = User.from_dict(rows[index])
            if expected is not None and current.strike_count != expected:
                raise ConflictError(
                    "Strike count changed while the request was processed.",
                    user_id=user_id,
                    strike_count=current.strike_count,
                )
            updated = replace(current, strike_count=count)
            rows[index] = updated.to_dict()
            self._write_yaml_list(self.users_file, rows)

            self._log_event(
                "USER_STRIKES_CHANGED",
                {
                    "user_id": user_id,
                    "previous_strike_count": current.strike_count,
                    "strike_count": count,
                    "reason": reason,
                },
                now,
            )
            return updated

    def upsert_workstation(self, workstation: Workstation) -> Workstation:
        with self._locked():
            self._upsert(self.workstations_file, "workstation_id", workstation.workstation_id, workstation.to_dict())
        return workstation

    def _upsert(self, path: Path, key: str, value: str, payload: dict[str, Any]) -> None:
        rows = [row for row in self._read_yaml_list(path) if str(row.get(key)) != value]
        rows.append(payload)
        self._write_yaml_list(path, rows)

    def get_user(self, user_id: str) -> User:
        user = self._find_user(user_id)
        if user is not None:
            return user
        raise NotFoundError(f"User not found with id: {user_id}", field="user_id")

    def get_workstation(self, workstation_id: str) -> Workstation:
        for row in self._read_yaml_list(self.workstations_file):
            if str(row.get("workstation_id")) == workstation_id:
                return Workstation.from_dict(row)
        raise NotFoundError(f"Workstation not found with id: {workstation_id}", field="workstation_id")

    def list_workstations(self) -> list[Workstation]:
        return [Workstation.from_dict(row) for row in self._read_yaml_list(self.workstations_file)]

    # Reservations.

    def list_all_reservations(self) -> list[Reservation]:
        return [Reservation.from_dict(row) for row in self._read_yaml_list(self.reservations_file)]

    def get_reservation(self, reservation_id: str) -> Reservation:
        for row in self._read_yaml_list(self.reservations_file):
            if str(row.get("reservation_id")) == reservation_id:
                return Reservation.from_dict(row)
        raise NotFoundError(f"Reservation not found with id: {reservation_id}", field="reservation_id")

    def list_reservations(self, workstation_id: str, day: date) -> list[Reservation]:
        day_start = datetime(day.year, day.month, day.day)
        day_end = day_start + timedelta(days=1)
        rows = [
            row
            for row in self.list_all_reservations()
            if row.workstation_id == workstation_id and row.start < day_end and row.end > day_start
        ]
        rows.sort(key=lambda row: row.start)
        return rows

    def list_user_reservations(self, user_id: str) -> list[Reservation]:
        rows = [row for row in self.list_all_reservations() if row.user_id == user_id]
        rows.sort(key=lambda row: row.start)
        return rows

    def create_reservation(self, draft: Reservation) -> Reservation:
        with self._locked():
            self.get_workstation(draft.workstation_id)
            rows = self._read_yaml_list(self.reservations_file)
            existing = [Reservation.from_dict(row) for row in rows]
            self._ensure_no_conflict(draft, existing)
            self._ensure_user_limits(draft, existing, draft.created_at or datetime.now())

            record = draft if draft.reservation_id else draft.with_changes(reservation_id=str(uuid4()))
            if any(row.reservation_id == record.reservation_id for row in existing):
                raise ConflictError(f"Reservation id already exists: {record.reservation_id}")

            rows.append(record.to_dict())
            self._write_yaml_list(self.reservations_file, rows)

            self._log_event(
                "RESERVATION_CREATED",
                {
                    "reservation_id": record.reservation_id,
                    "user_id": record.user_id,
                    "workstation_id": record.workstation_id,
                    "start": record.start.isoformat(timespec="minutes"),
                    "end": record.end.isoformat(timespec="minutes"),
                    "status": record.status.value,
                },
                record.created_at,
            )
            return record

    def update_reservation(
        self,
        reservation_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        notes: str | None = None,
        now: datetime,
    ) -> Reservation:
        def change(current: Reservation, others: list[Reservation]) -> Reservation:
            updated = self.lifecycle.edit(current, now, start=start, end=end, notes=notes)
            self._ensure_no_conflict(updated, others)
            if (updated.start, updated.end) != (current.start, current.end):
                self._ensure_user_limits(updated, others, now)
            return updated

        return self._replace(
            reservation_id,
            change,
            "RESERVATION_UPDATED",
            lambda record: {
                "start": record.start.isoformat(timespec="minutes"),
                "end": record.end.isoformat(timespec="minutes"),
            },
            now,
        )

    def set_status(self, reservation_id: str, status: ReservationStatus, *, now: datetime) -> Reservation:
        return self._replace(
            reservation_id,
            lambda current, _others: self.lifecycle.apply_status(current, status, now),
            "RESERVATION_STATUS_CHANGED",
            lambda record: {"status": record.status.value},
            now,
        )

    def cancel(self, reservation_id: str, *, now: datetime) -> Reservation:
        return self._replace(
            reservation_id,
            lambda current, _others: self.lifecycle.cancel(current, now),
            "RESERVATION_CANCELLED",
            lambda record: {"path": "plain"},
            now,
        )

    def cancel_with_reason(
        self,
        reservation_id: str,
        reason: str,
        *,
        cancelled_by: str,
        now: datetime,
    ) -> Reservation:
        return self._replace(
            reservation_id,
            lambda current, _others: self.lifecycle.cancel_with_reason(current, reason, cancelled_by, now),
            "RESERVATION_CANCELLED",
            lambda record: {
                "path": "with_reason",
                "cancelled_by": record.cancelled_by,
                "reason": record.cancellation_reason,
            },
            now,
        )

    def delete_reservation(self, reservation_id: str, *, now: datetime) -> None:
        with self._locked():
            rows = self._read_yaml_list(self.reservations_file)
            index = self._index_of(rows, reservation_id)
            current = Reservation.from_dict(rows[index])
            self.lifecycle.ensure_deletable(current, now)

            del rows[index]
            self._write_yaml_list(self.reservations_file, rows)
            self._log_event(
                "RESERVATION_DELETED",
                {"reservation_id": reservation_id, "workstation_id": current.workstation_id},
                now,
            )

    def _replace(
        self,
        reservation_id: str,
        change: Callable[[Reservation, list[Reservation]], Reservation],
        event_type: str,
        describe: Callable[[Reservation], dict[str, Any]],
        now: datetime,
    ) -> Reservation:
        with self._locked():
            rows = self._read_yaml_list(self.reservations_file)
            index = self._index_of(rows, reservation_id)
            current = Reservation.from_dict(rows[index])
            others = [Reservation.from_dict(row) for i, row in enumerate(rows) if i != index]

            updated = change(current, others)
            rows[index] = updated.to_dict()
            self._write_yaml_list(self.reservations_file, rows)

            payload = {"reservation_id": reservation_id, "workstation_id": updated.workstation_id}
            payload.update(describe(updated))
            self._log_event(event_type, payload, now)
            return updated

    @staticmethod
    def _index_of(rows: list[dict[str, Any]], reservation_id: str) -> int:
        for index, row in enumerate(rows):
            if str(row.get("reservation_id")) == reservation_id:
                return index
        raise NotFoundError(f"Reservation not found with id: {reservation_id}", field="reservation_id")

    def _find_user(self, user_id: str) -> User | None:
        for row in self._read_yaml_list(self.users_file):
            if str(row.get("user_id")) == user_id:
                return User.from_dict(row)
        return None

    def _ensure_user_limits(self, candidate: Reservation, existing: list[Reservation], now: datetime) -> None:
        # Evaluated against rows read under the write lock.
        if not candidate.is_active:
            return
        user = self._find_user(candidate.user_id)
        if user is None:
            return
        history = [row for row in existing if row.user_id == user.user_id]
        self.cooldown.check(user, history, candidate.start, now, exclude_reservation_id=candidate.reservation_id or None)

    @staticmethod
    def _ensure_no_conflict(candidate: Reservation, existing: list[Reservation]) -> None:
        if not candidate.is_active:
            return
        same_workstation = [row for row in existing if row.workstation_id == candidate.workstation_id]
        conflicts = find_conflicts(candidate.start, candidate.end, same_workstation, candidate.reservation_id or None)
        if conflicts:
            first = min(conflicts, key=lambda row: row.start)
            raise ConflictError(
                "WorkStation is not available for the requested time period.",
                workstation_id=candidate.workstation_id,
                conflicting_reservation_id=first.reservation_id,
                conflicting_start=first.start,
                conflicting_end=first.end,
            )


def seed_demo_data(repository: ReservationYamlRepository, center_id: str = "center-1") -> dict[str, list[Any]]:
    """Write a small demo inventory: two rooms, six workstations, one user per role."""
    workstations: list[Workstation] = []
    for room_index in (1, 2):
        for desk_index in (1, 2, 3):
            status = WorkstationStatus.MAINTENANCE if (room_index, desk_index) == (2, 3) else WorkstationStatus.AVAILABLE
            workstations.append(
                repository.upsert_workstation(
                    Workstation(
                        workstation_id=f"ws-{room_index}{desk_index}",
                        name=f"Room {room_index} / Desk {desk_index}",
                        room_id=f"room-{room_index}",
                        center_id=center_id,
                        status=status,
                    )
                )
            )

    users: list[User] = []
    for role in Role:
        assigned = center_id if role in (Role.STUDENT, Role.CENTER_MANAGER) else None
        users.append(
            repository.upsert_user(
                User(
                    user_id=role.value.lower(),
                    role=role,
                    name=role.value.replace("_", " ").title(),
                    assigned_center=assigned,
                )
            )
        )

    repository._log_event(
        "DEMO_DATA_GENERATED",
        {"center_id": center_id, "workstations": len(workstations), "users": len(users)},
    )
    return {"workstations": workstations, "users": users}
