from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from .models import Role


@dataclass(frozen=True)
class RolePolicy:
    max_duration_hours: int = 4
    cooldown_exempt: bool = True
    cooldown_hours: int = 1
    cancellation_lock_hours: int = 0
    single_active_limit: bool = False
    auto_confirm: bool = False
    can_approve: bool = True
    can_cancel_any_with_reason: bool = False
    global_access: bool = False
    can_manage_penalties: bool = False


_STUDENT = RolePolicy(
    max_duration_hours=2,
    cooldown_exempt=False,
    cooldown_hours=1,
    cancellation_lock_hours=1,
    single_active_limit=True,
    auto_confirm=True,
    can_approve=False,
)
_CENTER_MANAGER = RolePolicy()
_PRIVILEGED = RolePolicy(can_cancel_any_with_reason=True, global_access=True)

DEFAULT_ROLE_POLICIES: dict[Role, RolePolicy] = {
    Role.STUDENT: _STUDENT,
    Role.CENTER_MANAGER: _CENTER_MANAGER,
    Role.PEDAGOGICAL_MANAGER: _PRIVILEGED,
    Role.ASSET_MANAGER: _PRIVILEGED,
    Role.EXECUTIVE_DIRECTOR: _PRIVILEGED,
    Role.ADMIN: replace(_PRIVILEGED, can_manage_penalties=True),
}

OPENING_HOUR = 8
CLOSING_HOUR = 18
SLOT_MINUTES = 60
SUBMISSION_BUFFER_MINUTES = 2
REASON_MIN_LENGTH = 10
REASON_MAX_LENGTH = 500


@dataclass(frozen=True)
class BookingSettings:
    opening_hour: int = OPENING_HOUR
    closing_hour: int = CLOSING_HOUR
    slot_minutes: int = SLOT_MINUTES
    submission_buffer_minutes: int = SUBMISSION_BUFFER_MINUTES
    holiday_country: str | None = None
    roles: Mapping[Role, RolePolicy] = field(default_factory=lambda: dict(DEFAULT_ROLE_POLICIES))

    def __post_init__(self) -> None:
        if not 0 <= self.opening_hour < self.closing_hour <= 24:
            raise ValueError("opening_hour must be earlier than closing_hour within one day")
        if self.slot_minutes <= 0 or (60 * (self.closing_hour - self.opening_hour)) % self.slot_minutes:
            raise ValueError("slot_minutes must evenly divide the operating hours")
        if self.submission_buffer_minutes < 0:
            raise ValueError("submission_buffer_minutes must not be negative")

    def policy_for(self, role: Role) -> RolePolicy:
        return self.roles.get(role, DEFAULT_ROLE_POLICIES[role])


def load_settings(path: str | Path | None = None) -> BookingSettings:
    """Load settings from a YAML document, falling back to the defaults.

    Role entries are merged over the default table, so a file only needs to
    name the fields it changes::

        holiday_country: MA
        roles:
          STUDENT:
            max_duration_hours: 3
    """
    if path is None:
        return BookingSettings()

    try:
        payload = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
        raise ValueError(f"Failed to read settings file: {path}") from error

    if payload is None:
        return BookingSettings()
    if not isinstance(payload, dict):
        raise ValueError("settings file must contain a mapping")

    return settings_from_dict(payload)


def settings_from_dict(payload: Mapping[str, Any]) -> BookingSettings:
    known = {item.name for item in fields(BookingSettings)} - {"roles"}
    unknown = set(payload) - known - {"roles"}
    if unknown:
        raise ValueError(f"Unknown settings keys: {', '.join(sorted(unknown))}")

    roles = dict(DEFAULT_ROLE_POLICIES)
    for role_name, overrides in (payload.get("roles") or {}).items():
        try:
            role = Role(str(role_name).upper())
        except ValueError as error:
            raise ValueError(f"Unknown role in settings: {role_name}") from error
        if not isinstance(overrides, dict):
            raise ValueError(f"Role settings for {role_name} must be a mapping")
        roles[role] = _merge_role_policy(roles[role], overrides)

    scalars = {key: payload[key] for key in known if key in payload}
    return BookingSettings(roles=roles, **scalars)


def _merge_role_policy(base: RolePolicy, overrides: Mapping[str, Any]) -> RolePolicy:
    allowed = {item.name: item for item in fields(RolePolicy)}
    changes: dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in allowed:
            raise ValueError(f"Unknown role policy field: {key}")
        changes[key] = bool(value) if isinstance(getattr(base, key), bool) else int(value)
    return replace(base, **changes)
