import unittest
from datetime import datetime, timedelta

from workstation_booking import (
    CooldownPolicy,
    DurationExceeded,
    DurationPolicy,
    Reservation,
    ReservationStatus,
    Role,
    User,
    ValidationError,
)
from workstation_booking.errors import AccountSuspended, ActiveReservationLimit, CooldownActive
from workstation_booking.models import UserStanding
from workstation_booking.policies import StandingPolicy, standing_for_strikes


STUDENT = User(user_id="amina", role=Role.STUDENT, name="Amina", assigned_center="center-1")
MANAGER = User(user_id="karim", role=Role.CENTER_MANAGER, name="Karim", assigned_center="center-1")


def _reservation(
    reservation_id: str,
    start: datetime,
    end: datetime,
    status: ReservationStatus = ReservationStatus.CONFIRMED,
    user_id: str = "amina",
) -> Reservation:
    return Reservation(
        reservation_id=reservation_id,
        user_id=user_id,
        workstation_id="ws-1",
        start=start,
        end=end,
        status=status,
    )


class TestDurationPolicy(unittest.TestCase):
    def setUp(self) -> None:
        self.policy = DurationPolicy()
        self.start = datetime(2026, 3, 10, 10, 0)

    def test_student_may_book_exactly_the_maximum(self) -> None:
        self.assertEqual(self.policy.validate(Role.STUDENT, self.start, self.start + timedelta(hours=2)), timedelta(hours=2))

    def test_student_three_hours_is_refused_with_bound(self) -> None:
        with self.assertRaises(DurationExceeded) as context:
            self.policy.validate(Role.STUDENT, self.start, self.start + timedelta(hours=3))

        self.assertEqual(context.exception.max_hours, 2)
        self.assertEqual(str(context.exception), "You may book up to 2 hours per reservation.")

    def test_managers_get_four_hours(self) -> None:
        self.assertEqual(self.policy.max_duration_hours(Role.CENTER_MANAGER), 4)
        self.policy.validate(Role.ADMIN, self.start, self.start + timedelta(hours=4))
        with self.assertRaises(DurationExceeded):
            self.policy.validate(Role.ADMIN, self.start, self.start + timedelta(hours=4, minutes=1))

    def test_empty_interval_is_a_validation_error(self) -> None:
        with self.assertRaises(ValidationError):
            self.policy.validate(Role.STUDENT, self.start, self.start)


class TestCooldownPolicy(unittest.TestCase):
    def setUp(self) -> None:
        self.policy = CooldownPolicy()
        self.now = datetime(2026, 3, 10, 8, 0)

    def test_exempt_roles_are_never_blocked(self) -> None:
        history = [_reservation("r1", datetime(2026, 3, 10, 12, 0), datetime(2026, 3, 10, 14, 0), user_id="karim")]

        self.assertFalse(self.policy.applies_to(MANAGER))
        self.policy.check(MANAGER, history, datetime(2026, 3, 10, 14, 0), self.now)

    def test_request_inside_cooldown_reports_earliest_start(self) -> None:
        history = [_reservation("r1", datetime(2026, 3, 10, 12, 0), datetime(2026, 3, 10, 14, 0))]

        decision = self.policy.can_make_reservation(STUDENT, history, datetime(2026, 3, 10, 14, 30))

        self.assertFalse(decision.allowed)
        self.assertEqual(decision.earliest_start, datetime(2026, 3, 10, 15, 0))
        self.assertIn("2026-03-10 15:00", decision.message or "")

    def test_start_exactly_at_cooldown_end_is_allowed(self) -> None:
        history = [_reservation("r1", datetime(2026, 3, 10, 12, 0), datetime(2026, 3, 10, 14, 0))]

        decision = self.policy.can_make_reservation(STUDENT, history, datetime(2026, 3, 10, 15, 0))

        self.assertTrue(decision.allowed)

    def test_cooldown_spans_all_workstations_and_ignores_cancelled(self) -> None:
        history = [
            _reservation("r1", datetime(2026, 3, 10, 12, 0), datetime(2026, 3, 10, 14, 0), ReservationStatus.CANCELLED),
            _reservation("r2", datetime(2026, 3, 10, 9, 0), datetime(2026, 3, 10, 10, 0), ReservationStatus.COMPLETED),
        ]

        self.assertTrue(self.policy.can_make_reservation(STUDENT, history, datetime(2026, 3, 10, 14, 30)).allowed)
        self.assertFalse(self.policy.can_make_reservation(STUDENT, history, datetime(2026, 3, 10, 10, 30)).allowed)

    def test_check_raises_cooldown_before_active_limit(self) -> None:
        history = [_reservation("r1", datetime(2026, 3, 10, 12, 0), datetime(2026, 3, 10, 14, 0))]

        with self.assertRaises(CooldownActive) as context:
            self.policy.check(STUDENT, history, datetime(2026, 3, 10, 14, 30), self.now)

        self.assertEqual(context.exception.details["earliest_start"], datetime(2026, 3, 10, 15, 0))

    def test_second_active_reservation_is_refused(self) -> None:
        history = [_reservation("r1", datetime(2026, 3, 10, 12, 0), datetime(2026, 3, 10, 14, 0))]

        with self.assertRaises(ActiveReservationLimit) as context:
            self.policy.check(STUDENT, history, datetime(2026, 3, 10, 16, 0), self.now)

        self.assertEqual(context.exception.details["blocking_end"], datetime(2026, 3, 10, 14, 0))

    def test_finished_reservation_no_longer_counts_as_active(self) -> None:
        history = [_reservation("r1", datetime(2026, 3, 10, 12, 0), datetime(2026, 3, 10, 14, 0))]

        self.policy.check(STUDENT, history, datetime(2026, 3, 10, 16, 0), datetime(2026, 3, 10, 14, 0))

    def test_excluded_reservation_is_ignored_when_editing(self) -> None:
        history = [_reservation("r1", datetime(2026, 3, 10, 12, 0), datetime(2026, 3, 10, 14, 0), ReservationStatus.PENDING)]

        self.policy.check(STUDENT, history, datetime(2026, 3, 10, 12, 30), self.now, exclude_reservation_id="r1")


class TestStandingPolicy(unittest.TestCase):
    def test_standing_thresholds(self) -> None:
        self.assertEqual(standing_for_strikes(0), UserStanding.GOOD)
        self.assertEqual(standing_for_strikes(3), UserStanding.WARNING)
        self.assertEqual(standing_for_strikes(5), UserStanding.BAD)

    def test_bad_standing_blocks_booking(self) -> None:
        policy = StandingPolicy()
        self.assertEqual(policy.check(User("amina", Role.STUDENT, strike_count=4)), UserStanding.WARNING)
        with self.assertRaises(AccountSuspended):
            policy.check(User("amina", Role.STUDENT, strike_count=5))


if __name__ == "__main__":
    unittest.main()
