from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Generic, TypeVar
import logging
from uuid import uuid4

from .booking import OverlapDetector
from .cancellation import CancellationDecision, CancellationPolicy, validate_reason
from .clock import Clock, SystemClock, ensure_local
from .config import BookingSettings
from .errors import (
    AuthorizationError,
    BookingError,
    CancellationLocked,
    ConflictError,
    NotFoundError,
    TransientFailure,
    ValidationError,
    WorkstationClosed,
)
from .gateway import ReservationGateway
from .lifecycle import ReservationLifecycle
from .models import Reservation, ReservationStatus, Role, TimeSlot, User, Workstation
from .policies import CooldownDecision, CooldownPolicy, DurationPolicy, StandingPolicy, standing_for_strikes
from .slots import TimeSlotGenerator, is_closed_day

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BookingRequest:
    actor_id: str | None
    workstation_id: str
    start: datetime
    end: datetime
    notes: str | None = None


@dataclass(frozen=True)
class BookingOutcome(Generic[T]):
    value: T | None = None
    error: BookingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def reservation(self) -> Reservation | None:
        return self.value if isinstance(self.value, Reservation) else None


class BookingOrchestrator:
    """Entry point of the scheduling core.

    Each public method validates its input, runs the relevant policies and
    only then talks to the gateway. Expected failures never escape as
    exceptions: they come back as ``BookingOutcome.error``. A
    ``TransientFailure`` from the gateway is retried once before it is
    reported.
    """

    def __init__(
        self,
        gateway: ReservationGateway,
        clock: Clock | None = None,
        settings: BookingSettings | None = None,
    ) -> None:
        self.gateway = gateway
        self.clock = clock or SystemClock()
        self.settings = settings or BookingSettings()
        self.slots = TimeSlotGenerator(self.settings)
        self.overlap = OverlapDetector(gateway)
        self.duration = DurationPolicy(self.settings)
        self.cooldown = CooldownPolicy(self.settings)
        self.standing = StandingPolicy()
        self.cancellation = CancellationPolicy(self.settings)
        self.lifecycle = ReservationLifecycle(self.settings)

    # Plumbing

    def _now(self) -> datetime:
        return self.clock.now().replace(second=0, microsecond=0)

    def _run(self, operation: str, action: Callable[[], T]) -> BookingOutcome[T]:
        try:
            return BookingOutcome(value=action())
        except AuthorizationError as error:
            logger.warning("%s denied: %s", operation, error.message)
            return BookingOutcome(error=error)
        except ConflictError as error:
            logger.info("%s rejected by conflict: %s", operation, error.message)
            return BookingOutcome(error=error)
        except TransientFailure as error:
            logger.warning("%s failed after retry: %s", operation, error.message)
            return BookingOutcome(error=error)
        except BookingError as error:
            logger.debug("%s refused: %s", operation, error.message)
            return BookingOutcome(error=error)
        except Exception:
            logger.exception("%s failed unexpectedly", operation)
            return BookingOutcome(error=BookingError("The request could not be processed."))

    def _call(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return operation(*args, **kwargs)
        except TransientFailure as error:
            logger.warning("Retrying %s after transient failure: %s", getattr(operation, "__name__", operation), error.message)
            return operation(*args, **kwargs)

    def _write(self, operation: Callable[[], T], already_applied: Callable[[], T | None]) -> T:
        """Run a write once more after a transient failure, unless it already landed."""
        try:
            return operation()
        except TransientFailure as error:
            logger.warning("Retrying write after transient failure: %s", error.message)
            applied = already_applied()
            if applied is not None:
                return applied
            return operation()

    def _authenticate(self, actor_id: str | None) -> User:
        if not actor_id:
            raise AuthorizationError("You must be logged in to make this request.")
        try:
            return self._call(self.gateway.get_user, actor_id)
        except NotFoundError as error:
            raise AuthorizationError("Unknown user.") from error

    def _owner_of(self, reservation: Reservation) -> User | None:
        try:
            return self._call(self.gateway.get_user, reservation.user_id)
        except NotFoundError:
            return None

    def _ensure_center_access(self, actor: User, workstation: Workstation) -> None:
        policy = self.settings.policy_for(actor.role)
        if policy.global_access or actor.assigned_center is None:
            return
        if workstation.center_id is not None and workstation.center_id != actor.assigned_center:
            raise AuthorizationError("You can only book workstations in your assigned center.")

    def _ensure_can_manage(self, actor: User, reservation: Reservation) -> None:
        if actor.user_id == reservation.user_id:
            return
        policy = self.settings.policy_for(actor.role)
        if policy.global_access:
            return
        if policy.can_approve and actor.assigned_center is not None:
            workstation = self._call(self.gateway.get_workstation, reservation.workstation_id)
            if workstation.center_id == actor.assigned_center:
                return
        raise AuthorizationError("You can only manage your own reservations.")

    def _validate_interval(self, start: datetime, end: datetime, now: datetime) -> None:
        if end <= start:
            raise ValidationError("Reservation end time must be after its start time.", field="end")
        earliest = now + timedelta(minutes=self.settings.submission_buffer_minutes)
        if start < earliest:
            raise ValidationError(
                "Cannot book time slots in the past. Please select a future time slot.",
                field="start",
                earliest_start=earliest,
            )

    def _validate_workstation(self, workstation: Workstation, start: datetime, end: datetime) -> None:
        if not workstation.is_bookable:
            raise WorkstationClosed(
                f"WorkStation is not available ({workstation.status.value.lower()}).",
                workstation_id=workstation.workstation_id,
            )
        if is_closed_day(start.date(), self.settings):
            raise WorkstationClosed("The center is closed on this day.", day=start.date().isoformat())

        opening = datetime(start.year, start.month, start.day, self.settings.opening_hour)
        closing = datetime(start.year, start.month, start.day) + timedelta(hours=self.settings.closing_hour)
        if start < opening or end > closing:
            raise WorkstationClosed(
                "Reservations must fall within operating hours "
                f"({self.settings.opening_hour:02d}:00-{self.settings.closing_hour:02d}:00).",
                opening=opening,
                closing=closing,
            )

    # Queries

    def available_slots(self, workstation_id: str, day: date) -> BookingOutcome[list[TimeSlot]]:
        def action() -> list[TimeSlot]:
            workstation = self._call(self.gateway.get_workstation, workstation_id)
            reservations = self._call(self.gateway.list_reservations, workstation_id, day)
            names: dict[str, str] = {}
            for user_id in {row.user_id for row in reservations if row.is_active}:
                try:
                    names[user_id] = self._call(self.gateway.get_user, user_id).name
                except NotFoundError:
                    continue
            return self.slots.generate(workstation, day, reservations, self._now(), names)

        return self._run("available_slots", action)

    def check_availability(
        self,
        workstation_id: str,
        start: datetime,
        end: datetime,
        exclude_reservation_id: str | None = None,
    ) -> BookingOutcome[bool]:
        def action() -> bool:
            local_start, local_end = ensure_local(start, "start"), ensure_local(end, "end")
            workstation = self._call(self.gateway.get_workstation, workstation_id)
            if not workstation.is_bookable:
                return False
            return not self._call(self.overlap.has_conflict, workstation_id, local_start, local_end, exclude_reservation_id)

        return self._run("check_availability", action)

    def validate_duration(self, actor_id: str | None, start: datetime, end: datetime) -> BookingOutcome[int]:
        def action() -> int:
            actor = self._authenticate(actor_id)
            self.duration.validate(actor.role, ensure_local(start, "start"), ensure_local(end, "end"))
            return self.duration.max_duration_hours(actor.role)

        return self._run("validate_duration", action)

    def can_make_reservation(self, actor_id: str | None, proposed_start: datetime) -> BookingOutcome[CooldownDecision]:
        def action() -> CooldownDecision:
            actor = self._authenticate(actor_id)
            history = self._call(self.gateway.list_user_reservations, actor.user_id)
            return self.cooldown.can_make_reservation(actor, history, ensure_local(proposed_start, "start"))

        return self._run("can_make_reservation", action)

    def has_active_reservation(self, actor_id: str | None) -> BookingOutcome[bool]:
        def action() -> bool:
            actor = self._authenticate(actor_id)
            history = self._call(self.gateway.list_user_reservations, actor.user_id)
            return self.cooldown.active_blocker(actor, history, self._now()) is not None

        return self._run("has_active_reservation", action)

    def can_cancel(self, reservation_id: str, actor_id: str | None) -> BookingOutcome[CancellationDecision]:
        def action() -> CancellationDecision:
            actor = self._authenticate(actor_id)
            reservation = self._call(self.gateway.get_reservation, reservation_id)
            return self.cancellation.can_cancel(reservation, actor, self._now(), self._owner_of(reservation))

        return self._run("can_cancel", action)

    def _user_history(self, user_id: str, actor_id: str | None) -> tuple[list[Reservation], datetime]:
        actor = self._authenticate(actor_id)
        if actor.user_id != user_id and not self.settings.policy_for(actor.role).can_approve:
            raise AuthorizationError("You can only view your own reservations.")
        return self._call(self.gateway.list_user_reservations, user_id), self._now()

    def upcoming_reservations(self, user_id: str, actor_id: str | None) -> BookingOutcome[list[Reservation]]:
        def action() -> list[Reservation]:
            history, now = self._user_history(user_id, actor_id)
            upcoming = [row for row in history if row.blocks_time(now)]
            upcoming.sort(key=lambda row: row.start)
            return upcoming

        return self._run("upcoming_reservations", action)

    def reservation_stats(self, user_id: str, actor_id: str | None) -> BookingOutcome[dict[str, int]]:
        def action() -> dict[str, int]:
            history, now = self._user_history(user_id, actor_id)
            counts = Counter(row.effective_status(now).value for row in history)
            stats = {status.value: counts.get(status.value, 0) for status in ReservationStatus}
            stats["TOTAL"] = len(history)
            return stats

        return self._run("reservation_stats", action)

    # Commands

    def submit(self, request: BookingRequest) -> BookingOutcome[Reservation]:
        def action() -> Reservation:
            actor = self._authenticate(request.actor_id)
            now = self._now()
            start = ensure_local(request.start, "start")
            end = ensure_local(request.end, "end")

            self._validate_interval(start, end, now)
            self.standing.check(actor)
            self.duration.validate(actor.role, start, end)

            history = self._call(self.gateway.list_user_reservations, actor.user_id)
            self.cooldown.check(actor, history, start, now)

            workstation = self._call(self.gateway.get_workstation, request.workstation_id)
            self._ensure_center_access(actor, workstation)
            self._validate_workstation(workstation, start, end)

            if self._call(self.overlap.has_conflict, workstation.workstation_id, start, end):
                raise ConflictError(
                    "WorkStation is not available for the requested time period.",
                    workstation_id=workstation.workstation_id,
                )

            draft = Reservation(
                reservation_id=str(uuid4()),
                user_id=actor.user_id,
                workstation_id=workstation.workstation_id,
                start=start,
                end=end,
                status=self.lifecycle.initial_status(actor),
                notes=request.notes,
                created_at=now,
                updated_at=now,
            )
            created = self._write(
                lambda: self.gateway.create_reservation(draft),
                lambda: self._find_reservation(draft.reservation_id),
            )
            logger.info(
                "Reservation %s created for %s on %s (%s)",
                created.reservation_id,
                created.user_id,
                created.workstation_id,
                created.status.value,
            )
            return created

        return self._run("submit", action)

    def _find_reservation(self, reservation_id: str) -> Reservation | None:
        try:
            return self.gateway.get_reservation(reservation_id)
        except NotFoundError:
            return None

    def edit(
        self,
        reservation_id: str,
        actor_id: str | None,
        start: datetime | None = None,
        end: datetime | None = None,
        notes: str | None = None,
    ) -> BookingOutcome[Reservation]:
        def action() -> Reservation:
            actor = self._authenticate(actor_id)
            now = self._now()
            current = self._call(self.gateway.get_reservation, reservation_id)
            self._ensure_can_manage(actor, current)
            self.lifecycle.ensure_editable(current, now)

            new_start = ensure_local(start or current.start, "start")
            new_end = ensure_local(end or current.end, "end")
            if (new_start, new_end) != (current.start, current.end):
                self._validate_interval(new_start, new_end, now)
                owner = self._owner_of(current) or actor
                self.duration.validate(owner.role, new_start, new_end)
                history = self._call(self.gateway.list_user_reservations, owner.user_id)
                self.cooldown.check(owner, history, new_start, now, exclude_reservation_id=current.reservation_id)
                workstation = self._call(self.gateway.get_workstation, current.workstation_id)
                self._validate_workstation(workstation, new_start, new_end)
                if self._call(self.overlap.has_conflict, current.workstation_id, new_start, new_end, current.reservation_id):
                    raise ConflictError(
                        "WorkStation is not available for the requested time period.",
                        workstation_id=current.workstation_id,
                    )

            updated = self._call(
                self.gateway.update_reservation,
                reservation_id,
                start=new_start,
                end=new_end,
                notes=notes,
                now=now,
            )
            logger.info("Reservation %s updated by %s", reservation_id, actor.user_id)
            return updated

        return self._run("edit", action)

    def cancel(self, reservation_id: str, actor_id: str | None) -> BookingOutcome[Reservation]:
        return self._run("cancel", lambda: self._cancel(reservation_id, actor_id, None, reason_path=False))

    def cancel_with_reason(self, reservation_id: str, actor_id: str | None, reason: str | None) -> BookingOutcome[Reservation]:
        return self._run("cancel_with_reason", lambda: self._cancel(reservation_id, actor_id, reason, reason_path=True))

    def _cancel(self, reservation_id: str, actor_id: str | None, reason: str | None, reason_path: bool) -> Reservation:
        actor = self._authenticate(actor_id)
        now = self._now()
        privileged = self.cancellation.is_privileged(actor)
        if reason_path and not privileged:
            raise AuthorizationError(f"{actor.role.value} cannot cancel reservations with a reason.")

        text = validate_reason(reason) if privileged else None
        reservation = self._call(self.gateway.get_reservation, reservation_id)
        owner = self._owner_of(reservation) or actor
        decision = self.cancellation.can_cancel(reservation, actor, now, owner)
        if not decision.allowed:
            message = decision.reason or "Cancellation is not allowed."
            if decision.code == "not_owner":
                raise AuthorizationError(message)
            if decision.code == "locked":
                raise CancellationLocked(
                    message,
                    start=reservation.start,
                    lock_hours=self.settings.policy_for(owner.role).cancellation_lock_hours,
                )
            raise ValidationError(message, field="status")

        def already_cancelled() -> Reservation | None:
            latest = self._find_reservation(reservation_id)
            return latest if latest is not None and latest.status == ReservationStatus.CANCELLED else None

        if decision.requires_reason and text is not None:
            cancelled = self._write(
                lambda: self.gateway.cancel_with_reason(reservation_id, text, cancelled_by=actor.user_id, now=now),
                already_cancelled,
            )
        else:
            cancelled = self._write(lambda: self.gateway.cancel(reservation_id, now=now), already_cancelled)
        logger.info("Reservation %s cancelled by %s (%s)", reservation_id, actor.user_id, decision.path)
        return cancelled

    def confirm(self, reservation_id: str, actor_id: str | None) -> BookingOutcome[Reservation]:
        return self._run("confirm", lambda: self._review(reservation_id, actor_id, ReservationStatus.CONFIRMED))

    def reject(self, reservation_id: str, actor_id: str | None) -> BookingOutcome[Reservation]:
        return self._run("reject", lambda: self._review(reservation_id, actor_id, ReservationStatus.REJECTED))

    def set_status(self, reservation_id: str, actor_id: str | None, status: ReservationStatus) -> BookingOutcome[Reservation]:
        if status == ReservationStatus.CONFIRMED:
            return self.confirm(reservation_id, actor_id)
        if status == ReservationStatus.REJECTED:
            return self.reject(reservation_id, actor_id)
        if status == ReservationStatus.CANCELLED:
            message = "Use the cancellation endpoints to cancel a reservation."
        else:
            message = f"Status {status.value} cannot be set directly."
        return BookingOutcome(error=ValidationError(message, field="status"))

    def _review(self, reservation_id: str, actor_id: str | None, target: ReservationStatus) -> Reservation:
        actor = self._authenticate(actor_id)
        now = self._now()
        reservation = self._call(self.gateway.get_reservation, reservation_id)
        workstation = self._call(self.gateway.get_workstation, reservation.workstation_id)
        if target == ReservationStatus.CONFIRMED:
            self.lifecycle.confirm(reservation, actor, workstation, now)
        else:
            self.lifecycle.reject(reservation, actor, workstation, now)

        def already_applied() -> Reservation | None:
            latest = self._find_reservation(reservation_id)
            return latest if latest is not None and latest.status == target else None

        updated = self._write(lambda: self.gateway.set_status(reservation_id, target, now=now), already_applied)
        logger.info("Reservation %s set to %s by %s", reservation_id, target.value, actor.user_id)
        return updated

    def delete(self, reservation_id: str, actor_id: str | None) -> BookingOutcome[str]:
        def action() -> str:
            actor = self._authenticate(actor_id)
            now = self._now()
            reservation = self._call(self.gateway.get_reservation, reservation_id)
            self._ensure_can_manage(actor, reservation)
            self.lifecycle.ensure_deletable(reservation, now)
            self._write(
                lambda: self.gateway.delete_reservation(reservation_id, now=now),
                lambda: reservation_id if self._find_reservation(reservation_id) is None else None,
            )
            logger.info("Reservation %s deleted by %s", reservation_id, actor.user_id)
            return reservation_id

        return self._run("delete", action)

    # Penalties

    def add_strike(self, user_id: str, actor_id: str | None, reason: str | None = None) -> BookingOutcome[User]:
        return self._run("add_strike", lambda: self._change_strikes(user_id, actor_id, lambda count: count + 1, reason))

    def remove_strike(self, user_id: str, actor_id: str | None) -> BookingOutcome[User]:
        return self._run("remove_strike", lambda: self._change_strikes(user_id, actor_id, lambda count: max(count - 1, 0)))

    def reset_strikes(self, user_id: str, actor_id: str | None) -> BookingOutcome[User]:
        return self._run("reset_strikes", lambda: self._change_strikes(user_id, actor_id, lambda count: 0))

    def _change_strikes(
        self,
        user_id: str,
        actor_id: str | None,
        change: Callable[[int], int],
        reason: str | None = None,
    ) -> User:
        actor = self._authenticate(actor_id)
        if not self.settings.policy_for(actor.role).can_manage_penalties:
            raise AuthorizationError(f"{actor.role.value} cannot manage strikes.")
        user = self._call(self.gateway.get_user, user_id)
        count = change(user.strike_count)
        if count > user.strike_count and user.role != Role.STUDENT:
            raise ValidationError("Strikes can only be added to students.", field="user_id")
        if count == user.strike_count:
            return user

        def already_applied() -> User | None:
            latest = self._call(self.gateway.get_user, user_id)
            return latest if latest.strike_count == count else None

        updated = self._write(
            lambda: self.gateway.set_strike_count(
                user_id, count, expected=user.strike_count, reason=reason, now=self._now()
            ),
            already_applied,
        )
        logger.info(
            "Strikes for %s changed from %d to %d by %s (%s)",
            user_id,
            user.strike_count,
            count,
            actor.user_id,
            standing_for_strikes(count).value,
        )
        return updated
