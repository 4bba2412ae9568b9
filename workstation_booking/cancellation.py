from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from .config import REASON_MAX_LENGTH, REASON_MIN_LENGTH, BookingSettings
from .errors import ValidationError
from .models import TERMINAL_STATUSES, Reservation, User

PLAIN_PATH = "plain"
REASON_PATH = "with_reason"


@dataclass(frozen=True)
class CancellationDecision:
    allowed: bool
    path: str = PLAIN_PATH
    reason: str | None = None
    code: str | None = None

    @property
    def requires_reason(self) -> bool:
        return self.path == REASON_PATH

    def to_dict(self) -> dict[str, object]:
        return {
            "allowed": self.allowed,
            "path": self.path,
            "requires_reason": self.requires_reason,
            "reason": self.reason,
            "code": self.code,
        }


def validate_reason(reason: str | None) -> str:
    """Return the trimmed cancellation reason or raise ValidationError."""
    text = (reason or "").strip()
    if not text:
        raise ValidationError("Cancellation reason is required.", field="reason")
    if len(text) < REASON_MIN_LENGTH:
        raise ValidationError(
            f"Cancellation reason must be at least {REASON_MIN_LENGTH} characters.",
            field="reason",
            min_length=REASON_MIN_LENGTH,
        )
    if len(text) > REASON_MAX_LENGTH:
        raise ValidationError(
            f"Cancellation reason must not exceed {REASON_MAX_LENGTH} characters.",
            field="reason",
            max_length=REASON_MAX_LENGTH,
        )
    return text


class CancellationPolicy:
    def __init__(self, settings: BookingSettings | None = None) -> None:
        self.settings = settings or BookingSettings()

    def is_privileged(self, user: User) -> bool:
        return self.settings.policy_for(user.role).can_cancel_any_with_reason

    def can_cancel(
        self,
        reservation: Reservation,
        requesting_user: User,
        now: datetime,
        owner: User | None = None,
    ) -> CancellationDecision:
        """Decide whether ``requesting_user`` may cancel ``reservation`` at ``now``.

        Privileged roles always take the reason-required path and are not
        bound by the lock window. Everybody else cancels their own
        reservations through the plain path, subject to the owner role's
        lock window before the start time.
        """
        if reservation.effective_status(now) in TERMINAL_STATUSES:
            return CancellationDecision(
                allowed=False,
                code="terminal",
                reason=f"Reservation is already {reservation.effective_status(now).value.lower()}.",
            )

        if self.is_privileged(requesting_user):
            return CancellationDecision(allowed=True, path=REASON_PATH)

        if reservation.user_id != requesting_user.user_id:
            return CancellationDecision(
                allowed=False, code="not_owner", reason="You can only cancel your own reservations."
            )

        owner_role = (owner or requesting_user).role
        lock_hours = self.settings.policy_for(owner_role).cancellation_lock_hours
        if lock_hours > 0 and now >= reservation.start - timedelta(hours=lock_hours):
            return CancellationDecision(
                allowed=False,
                code="locked",
                reason=(
                    f"Reservations cannot be cancelled within {lock_hours} "
                    f"hour{'s' if lock_hours != 1 else ''} of the start time."
                ),
            )

        return CancellationDecision(allowed=True)
