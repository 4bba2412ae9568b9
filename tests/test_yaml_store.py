import tempfile
import threading
import unittest
from datetime import date, datetime
from pathlib import Path

from workstation_booking import (
    ConflictError,
    Reservation,
    ReservationStatus,
    ReservationYamlRepository,
    TransientFailure,
    ValidationError,
    Workstation,
    WorkstationStatus,
    seed_demo_data,
)
from workstation_booking.errors import ActiveReservationLimit, CooldownActive, NotFoundError


def _draft(
    reservation_id: str,
    start: datetime,
    end: datetime,
    status: ReservationStatus = ReservationStatus.PENDING,
    user_id: str = "center_manager",
    workstation_id: str = "ws-11",
) -> Reservation:
    return Reservation(
        reservation_id=reservation_id,
        user_id=user_id,
        workstation_id=workstation_id,
        start=start,
        end=end,
        status=status,
        created_at=datetime(2026, 3, 10, 8, 0),
    )


class TestReservationYamlRepository(unittest.TestCase):
    def test_seed_demo_data_writes_inventory_and_users(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            seeded = seed_demo_data(repo)

            self.assertEqual(len(seeded["workstations"]), 6)
            self.assertEqual(len(seeded["users"]), 6)
            self.assertEqual(repo.get_workstation("ws-23").status, WorkstationStatus.MAINTENANCE)
            self.assertEqual(repo.get_user("student").assigned_center, "center-1")
            self.assertIsNone(repo.get_user("admin").assigned_center)
            self.assertEqual(repo.get_events()[-1]["event_type"], "DEMO_DATA_GENERATED")

    def test_logs_create_update_cancel_events(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            seed_demo_data(repo)
            now = datetime(2026, 3, 10, 8, 0)
            repo.create_reservation(_draft("r1", datetime(2026, 3, 10, 10, 0), datetime(2026, 3, 10, 11, 0)))
            repo.update_reservation("r1", end=datetime(2026, 3, 10, 12, 0), notes="longer", now=now)
            repo.cancel_with_reason("r1", "Equipment needs urgent repair", cancelled_by="admin", now=now)

            log_path = Path(temp_dir) / "data" / "reservation_events.yaml"
            contents = log_path.read_text(encoding="utf-8")
            self.assertIn("RESERVATION_CREATED", contents)
            self.assertIn("RESERVATION_UPDATED", contents)
            self.assertIn("RESERVATION_CANCELLED", contents)
            self.assertIn("Equipment needs urgent repair", contents)

            stored = repo.get_reservation("r1")
            self.assertEqual(stored.status, ReservationStatus.CANCELLED)
            self.assertEqual(stored.notes, "longer")
            self.assertEqual(stored.cancelled_by, "admin")

    def test_create_assigns_id_when_missing(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            seed_demo_data(repo)

            created = repo.create_reservation(_draft("", datetime(2026, 3, 10, 10, 0), datetime(2026, 3, 10, 11, 0)))

            self.assertTrue(created.reservation_id)
            self.assertEqual(repo.get_reservation(created.reservation_id).start, datetime(2026, 3, 10, 10, 0))

    def test_create_rejects_overlap_under_lock(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            seed_demo_data(repo)
            repo.create_reservation(_draft("r1", datetime(2026, 3, 10, 10, 0), datetime(2026, 3, 10, 11, 0)))

            with self.assertRaises(ConflictError) as context:
                repo.create_reservation(_draft("r2", datetime(2026, 3, 10, 10, 30), datetime(2026, 3, 10, 11, 30)))

            self.assertEqual(context.exception.details["conflicting_reservation_id"], "r1")
            repo.create_reservation(_draft("r3", datetime(2026, 3, 10, 11, 0), datetime(2026, 3, 10, 12, 0)))
            self.assertEqual(len(repo.list_all_reservations()), 2)

    def test_create_enforces_student_limits_under_lock(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            seed_demo_data(repo)
            confirmed = ReservationStatus.CONFIRMED
            repo.create_reservation(
                _draft("r1", datetime(2026, 3, 10, 10, 0), datetime(2026, 3, 10, 11, 0), confirmed, user_id="student")
            )

            with self.assertRaises(ActiveReservationLimit) as context:
                repo.create_reservation(
                    _draft("r2", datetime(2026, 3, 10, 14, 0), datetime(2026, 3, 10, 15, 0), confirmed, "student", "ws-12")
                )
            early = _draft("r3", datetime(2026, 3, 10, 11, 30), datetime(2026, 3, 10, 12, 30), confirmed, "student", "ws-12")
            with self.assertRaises(CooldownActive):
                repo.create_reservation(early.with_changes(created_at=datetime(2026, 3, 10, 11, 30)))

            self.assertEqual(context.exception.details["blocking_reservation_id"], "r1")
            self.assertEqual([row.reservation_id for row in repo.list_all_reservations()], ["r1"])

    def test_set_strike_count_checks_expected_value_and_logs(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            seed_demo_data(repo)
            now = datetime(2026, 3, 10, 8, 0)

            updated = repo.set_strike_count("student", 2, expected=0, reason="Missed two sessions", now=now)
            with self.assertRaises(ConflictError) as context:
                repo.set_strike_count("student", 1, expected=0, now=now)
            with self.assertRaises(ValidationError):
                repo.set_strike_count("student", -1, now=now)
            with self.assertRaises(NotFoundError):
                repo.set_strike_count("nobody", 1, now=now)

            self.assertEqual(updated.strike_count, 2)
            self.assertEqual(repo.get_user("student").strike_count, 2)
            self.assertEqual(context.exception.details["strike_count"], 2)
            event = repo.get_events()[-1]
            self.assertEqual(event["event_type"], "USER_STRIKES_CHANGED")
            self.assertEqual(event["payload"]["previous_strike_count"], 0)
            self.assertEqual(event["payload"]["reason"], "Missed two sessions")

    def test_cancelled_rows_do_not_block_new_reservations(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            seed_demo_data(repo)
            repo.create_reservation(_draft("r1", datetime(2026, 3, 10, 10, 0), datetime(2026, 3, 10, 11, 0)))
            repo.cancel("r1", now=datetime(2026, 3, 10, 8, 0))

            repo.create_reservation(_draft("r2", datetime(2026, 3, 10, 10, 0), datetime(2026, 3, 10, 11, 0)))

            self.assertEqual(len(repo.list_reservations("ws-11", date(2026, 3, 10))), 2)

    def test_duplicate_id_and_unknown_workstation_are_refused(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            seed_demo_data(repo)
            repo.create_reservation(_draft("r1", datetime(2026, 3, 10, 10, 0), datetime(2026, 3, 10, 11, 0)))

            with self.assertRaises(ConflictError):
                repo.create_reservation(_draft("r1", datetime(2026, 3, 10, 14, 0), datetime(2026, 3, 10, 15, 0)))
            with self.assertRaises(NotFoundError):
                repo.create_reservation(
                    Reservation(
                        reservation_id="r9",
                        user_id="admin",
                        workstation_id="ws-99",
                        start=datetime(2026, 3, 10, 10, 0),
                        end=datetime(2026, 3, 10, 11, 0),
                    )
                )

    def test_list_reservations_includes_intervals_crossing_midnight(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            seed_demo_data(repo)
            repo.create_reservation(_draft("late", datetime(2026, 3, 10, 23, 0), datetime(2026, 3, 11, 1, 0)))

            self.assertEqual([row.reservation_id for row in repo.list_reservations("ws-11", date(2026, 3, 11))], ["late"])
            self.assertEqual(repo.list_reservations("ws-11", date(2026, 3, 12)), [])

    def test_delete_only_cancelled_or_completed(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            seed_demo_data(repo)
            now = datetime(2026, 3, 10, 8, 0)
            repo.create_reservation(_draft("r1", datetime(2026, 3, 10, 10, 0), datetime(2026, 3, 10, 11, 0)))

            with self.assertRaises(ValidationError):
                repo.delete_reservation("r1", now=now)

            repo.cancel("r1", now=now)
            repo.delete_reservation("r1", now=now)

            self.assertEqual(repo.list_all_reservations(), [])
            self.assertEqual(repo.get_events()[-1]["event_type"], "RESERVATION_DELETED")
            with self.assertRaises(NotFoundError):
                repo.get_reservation("r1")

    def test_corrupted_yaml_is_backed_up_and_reset(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = ReservationYamlRepository(data_dir)
            (data_dir / "reservations.yaml").write_text("- reservation_id: [unclosed\n", encoding="utf-8")

            self.assertEqual(repo.list_all_reservations(), [])
            self.assertEqual(len(list(data_dir.glob("reservations.corrupt.*.yaml"))), 1)
            self.assertEqual(repo.get_events()[-1]["event_type"], "YAML_RECOVERED")

    def test_non_mapping_rows_are_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = ReservationYamlRepository(data_dir)
            repo.upsert_workstation(Workstation(workstation_id="ws-1", name="Desk 1", room_id="room-1"))
            with (data_dir / "workstations.yaml").open("a", encoding="utf-8") as handle:
                handle.write("- just a string\n")

            self.assertEqual([row.workstation_id for row in repo.list_workstations()], ["ws-1"])
            self.assertEqual(repo.get_events()[-1]["event_type"], "YAML_ROW_SKIPPED")

    def test_lock_timeout_is_reported_as_transient(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data", lock_timeout=0.05)
            seed_demo_data(repo)
            holding = threading.Event()
            release = threading.Event()

            def hold_lock() -> None:
                with repo._locked():
                    holding.set()
                    release.wait(5)

            holder = threading.Thread(target=hold_lock)
            holder.start()
            holding.wait(5)
            try:
                with self.assertRaises(TransientFailure):
                    repo.create_reservation(_draft("r1", datetime(2026, 3, 10, 10, 0), datetime(2026, 3, 10, 11, 0)))
            finally:
                release.set()
                holder.join()

            self.assertEqual(repo.list_all_reservations(), [])


if __name__ == "__main__":
    unittest.main()
