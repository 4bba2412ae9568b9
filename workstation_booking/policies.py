from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from .config import BookingSettings
from .errors import AccountSuspended, ActiveReservationLimit, CooldownActive, DurationExceeded, ValidationError
from .models import Reservation, ReservationStatus, Role, User, UserStanding

WARNING_STRIKES = 3
SUSPENDED_STRIKES = 5

_COOLDOWN_STATUSES = frozenset({ReservationStatus.PENDING, ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED})


def standing_for_strikes(strike_count: int) -> UserStanding:
    if strike_count >= SUSPENDED_STRIKES:
        return UserStanding.BAD
    if strike_count >= WARNING_STRIKES:
        return UserStanding.WARNING
    return UserStanding.GOOD


class StandingPolicy:
    def check(self, user: User) -> UserStanding:
        standing = standing_for_strikes(user.strike_count)
        if standing == UserStanding.BAD:
            raise AccountSuspended(
                "Too many no-show strikes: new reservations are blocked. Please contact an administrator.",
                strike_count=user.strike_count,
            )
        return standing


class DurationPolicy:
    def __init__(self, settings: BookingSettings | None = None) -> None:
        self.settings = settings or BookingSettings()

    def max_duration_hours(self, role: Role) -> int:
        return self.settings.policy_for(role).max_duration_hours

    def validate(self, role: Role, start: datetime, end: datetime) -> timedelta:
        duration = end - start
        if duration <= timedelta(0):
            raise ValidationError("Reservation end time must be after its start time.", field="end")

        max_hours = self.max_duration_hours(role)
        if duration > timedelta(hours=max_hours):
            raise DurationExceeded(max_hours)
        return duration


@dataclass(frozen=True)
class CooldownDecision:
    allowed: bool
    earliest_start: datetime | None = None
    message: str | None = None


class CooldownPolicy:
    """Spacing rules for roles that are not cooldown-exempt.

    Both rules look at the user's whole reservation history, across every
    workstation, not only the one being booked.
    """

    def __init__(self, settings: BookingSettings | None = None) -> None:
        self.settings = settings or BookingSettings()

    def applies_to(self, user: User) -> bool:
        return not self.settings.policy_for(user.role).cooldown_exempt

    def active_blocker(
        self,
        user: User,
        history: Iterable[Reservation],
        now: datetime,
        exclude_reservation_id: str | None = None,
    ) -> Reservation | None:
        if not self.settings.policy_for(user.role).single_active_limit:
            return None
        active = [
            row
            for row in history
            if row.user_id == user.user_id
            and row.reservation_id != exclude_reservation_id
            and row.blocks_time(now)
        ]
        return min(active, key=lambda row: row.end) if active else None

    def check_active_limit(
        self,
        user: User,
        history: Iterable[Reservation],
        now: datetime,
        exclude_reservation_id: str | None = None,
    ) -> None:
        blocker = self.active_blocker(user, history, now, exclude_reservation_id)
        if blocker is not None:
            raise ActiveReservationLimit(
                "You already have an active reservation ending at "
                f"{blocker.end.strftime('%Y-%m-%d %H:%M')}. Only one active reservation is allowed at a time.",
                blocking_reservation_id=blocker.reservation_id,
                blocking_end=blocker.end,
            )

    def earliest_start(
        self,
        user: User,
        history: Iterable[Reservation],
        proposed_start: datetime,
        exclude_reservation_id: str | None = None,
    ) -> datetime | None:
        if not self.applies_to(user):
            return None
        previous_ends = [
            row.end
            for row in history
            if row.user_id == user.user_id
            and row.reservation_id != exclude_reservation_id
            and row.status in _COOLDOWN_STATUSES
            and row.start < proposed_start
        ]
        if not previous_ends:
            return None
        return max(previous_ends) + timedelta(hours=self.settings.policy_for(user.role).cooldown_hours)

    def can_make_reservation(
        self,
        user: User,
        history: Iterable[Reservation],
        proposed_start: datetime,
        exclude_reservation_id: str | None = None,
    ) -> CooldownDecision:
        earliest = self.earliest_start(user, history, proposed_start, exclude_reservation_id)
        if earliest is None or proposed_start >= earliest:
            return CooldownDecision(allowed=True, earliest_start=earliest)

        hours = self.settings.policy_for(user.role).cooldown_hours
        message = (
            f"You must wait {hours} hour{'s' if hours != 1 else ''} after your last reservation ends. "
            f"The earliest allowed start time is {earliest.strftime('%Y-%m-%d %H:%M')}."
        )
        return CooldownDecision(allowed=False, earliest_start=earliest, message=message)

    def check(
        self,
        user: User,
        history: Iterable[Reservation],
        proposed_start: datetime,
        now: datetime,
        exclude_reservation_id: str | None = None,
    ) -> None:
        if not self.applies_to(user):
            return
        rows = list(history)
        decision = self.can_make_reservation(user, rows, proposed_start, exclude_reservation_id)
        if not decision.allowed:
            raise CooldownActive(decision.message or "Cooldown period is still active.", earliest_start=decision.earliest_start)
        self.check_active_limit(user, rows, now, exclude_reservation_id)
