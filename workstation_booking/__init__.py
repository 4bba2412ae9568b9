from .booking import OverlapDetector, can_reserve, find_conflicts, has_time_overlap
from .cancellation import CancellationDecision, CancellationPolicy, validate_reason
from .clock import Clock, FixedClock, SystemClock
from .config import BookingSettings, RolePolicy, load_settings
from .errors import (
	AuthorizationError,
	BookingError,
	ConflictError,
	DurationExceeded,
	PolicyViolation,
	TransientFailure,
	ValidationError,
)
from .lifecycle import ReservationLifecycle
from .models import Reservation, ReservationStatus, Role, TimeSlot, User, Workstation, WorkstationStatus
from .orchestrator import BookingOrchestrator, BookingOutcome, BookingRequest
from .policies import CooldownPolicy, DurationPolicy
from .slots import TimeSlotGenerator
from .yaml_store import ReservationStorageError, ReservationYamlRepository, seed_demo_data

__all__ = [
	"OverlapDetector",
	"can_reserve",
	"find_conflicts",
	"has_time_overlap",
	"CancellationDecision",
	"CancellationPolicy",
	"validate_reason",
	"Clock",
	"FixedClock",
	"SystemClock",
	"BookingSettings",
	"RolePolicy",
	"load_settings",
	"AuthorizationError",
	"BookingError",
	"ConflictError",
	"DurationExceeded",
	"PolicyViolation",
	"TransientFailure",
	"ValidationError",
	"ReservationLifecycle",
	"Reservation",
	"ReservationStatus",
	"Role",
	"TimeSlot",
	"User",
	"Workstation",
	"WorkstationStatus",
	"BookingOrchestrator",
	"BookingOutcome",
	"BookingRequest",
	"CooldownPolicy",
	"DurationPolicy",
	"TimeSlotGenerator",
	"ReservationStorageError",
	"ReservationYamlRepository",
	"seed_demo_data",
]
