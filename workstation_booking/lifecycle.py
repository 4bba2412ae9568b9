from __future__ import annotations

from datetime import datetime

from .config import BookingSettings
from .errors import AuthorizationError, ValidationError
from .models import Reservation, ReservationStatus, User, Workstation

ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset(
        {ReservationStatus.CONFIRMED, ReservationStatus.REJECTED, ReservationStatus.CANCELLED}
    ),
    ReservationStatus.CONFIRMED: frozenset({ReservationStatus.CANCELLED, ReservationStatus.COMPLETED}),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.REJECTED: frozenset(),
    ReservationStatus.COMPLETED: frozenset(),
}

DELETABLE_STATUSES = frozenset({ReservationStatus.CANCELLED, ReservationStatus.COMPLETED})


class ReservationLifecycle:
    """State machine for reservations.

    Every method is pure: it returns a new ``Reservation`` and leaves the
    argument untouched, so persistence layers decide when to store the result.
    """

    def __init__(self, settings: BookingSettings | None = None) -> None:
        self.settings = settings or BookingSettings()

    def initial_status(self, user: User) -> ReservationStatus:
        if self.settings.policy_for(user.role).auto_confirm:
            return ReservationStatus.CONFIRMED
        return ReservationStatus.PENDING

    def ensure_transition(self, reservation: Reservation, target: ReservationStatus, now: datetime) -> None:
        current = reservation.effective_status(now)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise ValidationError(
                f"Cannot change a {current.value} reservation to {target.value}.",
                field="status",
                current_status=current.value,
            )

    def ensure_can_review(self, actor: User, workstation: Workstation) -> None:
        policy = self.settings.policy_for(actor.role)
        if not policy.can_approve:
            raise AuthorizationError(f"{actor.role.value} cannot approve or reject reservations.")
        if policy.global_access:
            return
        if actor.assigned_center is None or actor.assigned_center != workstation.center_id:
            raise AuthorizationError("You can only review reservations in your assigned center.")

    def ensure_reviewable(self, reservation: Reservation, verb: str, now: datetime) -> None:
        if reservation.status != ReservationStatus.PENDING:
            raise ValidationError(
                f"Only pending reservations can be {verb}. Current status: {reservation.effective_status(now).value}",
                field="status",
            )
        if reservation.end <= now:
            raise ValidationError(
                f"Reservation already ended and can no longer be {verb}.",
                field="status",
                end=reservation.end,
            )

    def confirm(self, reservation: Reservation, actor: User, workstation: Workstation, now: datetime) -> Reservation:
        self.ensure_can_review(actor, workstation)
        self.ensure_reviewable(reservation, "confirmed", now)
        return reservation.with_changes(status=ReservationStatus.CONFIRMED, updated_at=now)

    def reject(self, reservation: Reservation, actor: User, workstation: Workstation, now: datetime) -> Reservation:
        self.ensure_can_review(actor, workstation)
        self.ensure_reviewable(reservation, "rejected", now)
        return reservation.with_changes(status=ReservationStatus.REJECTED, updated_at=now)

    def apply_status(self, reservation: Reservation, target: ReservationStatus, now: datetime) -> Reservation:
        """Store-side counterpart of confirm/reject once the actor was checked."""
        if target not in (ReservationStatus.CONFIRMED, ReservationStatus.REJECTED):
            raise ValidationError(
                f"Status {target.value} cannot be set directly.",
                field="status",
            )
        self.ensure_transition(reservation, target, now)
        if reservation.end <= now:
            raise ValidationError(
                f"Reservation already ended and can no longer be {target.value.lower()}.",
                field="status",
                end=reservation.end,
            )
        return reservation.with_changes(status=target, updated_at=now)

    def cancel(self, reservation: Reservation, now: datetime) -> Reservation:
        self.ensure_transition(reservation, ReservationStatus.CANCELLED, now)
        return reservation.with_changes(
            status=ReservationStatus.CANCELLED,
            cancellation_reason=None,
            cancelled_by=None,
            cancelled_at=now,
            updated_at=now,
        )

    def cancel_with_reason(self, reservation: Reservation, reason: str, cancelled_by: str, now: datetime) -> Reservation:
        self.ensure_transition(reservation, ReservationStatus.CANCELLED, now)
        return reservation.with_changes(
            status=ReservationStatus.CANCELLED,
            cancellation_reason=reason,
            cancelled_by=cancelled_by,
            cancelled_at=now,
            updated_at=now,
        )

    def observe(self, reservation: Reservation, now: datetime) -> Reservation:
        effective = reservation.effective_status(now)
        if effective == reservation.status:
            return reservation
        return reservation.with_changes(status=effective)

    def is_editable(self, reservation: Reservation, now: datetime) -> bool:
        return reservation.status == ReservationStatus.PENDING and reservation.end > now

    def ensure_editable(self, reservation: Reservation, now: datetime) -> None:
        if not self.is_editable(reservation, now):
            raise ValidationError(
                "Only pending reservations that have not ended can be edited.",
                field="status",
                current_status=reservation.effective_status(now).value,
            )

    def edit(
        self,
        reservation: Reservation,
        now: datetime,
        start: datetime | None = None,
        end: datetime | None = None,
        notes: str | None = None,
    ) -> Reservation:
        self.ensure_editable(reservation, now)
        return reservation.with_changes(
            start=start or reservation.start,
            end=end or reservation.end,
            notes=(notes if notes is not None else reservation.notes),
            updated_at=now,
        )

    def ensure_deletable(self, reservation: Reservation, now: datetime) -> None:
        effective = reservation.effective_status(now)
        if effective not in DELETABLE_STATUSES:
            raise ValidationError(
                f"Only cancelled or completed reservations can be deleted. Current status: {effective.value}",
                field="status",
            )
