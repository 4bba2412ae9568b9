from __future__ import annotations

from typing import Any


class BookingError(Exception):
    """Base class for every failure the scheduling core reports.

    ``kind`` names the failure family, ``retryable`` tells the caller whether
    repeating the same request can succeed, and ``details`` carries the
    numeric bounds a caller needs to self-correct (max hours, earliest start).
    """

    kind = "booking_error"
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = {key: value for key, value in details.items() if value is not None}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message, "retryable": self.retryable}
        if self.details:
            payload["details"] = {
                key: (value.isoformat(timespec="minutes") if hasattr(value, "isoformat") else value)
                for key, value in self.details.items()
            }
        return payload


class ValidationError(BookingError, ValueError):
    kind = "validation_error"


class NotFoundError(ValidationError):
    kind = "not_found"


class PolicyViolation(BookingError):
    kind = "policy_violation"


class DurationExceeded(PolicyViolation):
    kind = "duration_exceeded"

    def __init__(self, max_hours: int) -> None:
        super().__init__(f"You may book up to {max_hours} hours per reservation.", max_hours=max_hours)
        self.max_hours = max_hours


class ActiveReservationLimit(PolicyViolation):
    kind = "active_reservation_limit"


class CooldownActive(PolicyViolation):
    kind = "cooldown_active"


class CancellationLocked(PolicyViolation):
    kind = "cancellation_locked"


class AccountSuspended(PolicyViolation):
    kind = "account_suspended"


class WorkstationClosed(PolicyViolation):
    kind = "workstation_closed"


class ConflictError(BookingError):
    kind = "conflict"


class TransientFailure(BookingError):
    kind = "transient_failure"
    retryable = True


class AuthorizationError(BookingError):
    kind = "authorization_error"
