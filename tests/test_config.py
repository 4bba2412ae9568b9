import tempfile
import unittest
from pathlib import Path

from workstation_booking import BookingSettings, Role, load_settings


class TestLoadSettings(unittest.TestCase):
    def test_defaults_without_file(self) -> None:
        settings = load_settings()

        self.assertEqual((settings.opening_hour, settings.closing_hour), (8, 18))
        self.assertIsNone(settings.holiday_country)
        student = settings.policy_for(Role.STUDENT)
        self.assertEqual(student.max_duration_hours, 2)
        self.assertTrue(student.auto_confirm)
        self.assertEqual(student.cancellation_lock_hours, 1)
        self.assertTrue(settings.policy_for(Role.ASSET_MANAGER).can_cancel_any_with_reason)
        self.assertFalse(settings.policy_for(Role.CENTER_MANAGER).can_cancel_any_with_reason)
        self.assertTrue(settings.policy_for(Role.ADMIN).can_manage_penalties)
        self.assertFalse(settings.policy_for(Role.EXECUTIVE_DIRECTOR).can_manage_penalties)

    def test_role_overrides_merge_over_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "booking.yaml"
            path.write_text(
                "holiday_country: MA\n"
                "closing_hour: 20\n"
                "roles:\n"
                "  student:\n"
                "    max_duration_hours: 3\n"
                "    cooldown_hours: 2\n",
                encoding="utf-8",
            )

            settings = load_settings(path)

        self.assertEqual(settings.holiday_country, "MA")
        self.assertEqual(settings.closing_hour, 20)
        student = settings.policy_for(Role.STUDENT)
        self.assertEqual(student.max_duration_hours, 3)
        self.assertEqual(student.cooldown_hours, 2)
        self.assertTrue(student.single_active_limit)

    def test_empty_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "booking.yaml"
            path.write_text("", encoding="utf-8")

            self.assertEqual(load_settings(path).slot_minutes, 60)

    def test_invalid_documents_raise_value_error(self) -> None:
        documents = [
            "- not\n- a mapping\n",
            "unknown_key: 1\n",
            "roles:\n  JANITOR:\n    max_duration_hours: 1\n",
            "roles:\n  STUDENT:\n    teleport: true\n",
            "opening_hour: 18\nclosing_hour: 8\n",
            "key: [unclosed\n",
        ]
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "booking.yaml"
            for document in documents:
                with self.subTest(document=document):
                    path.write_text(document, encoding="utf-8")
                    with self.assertRaises(ValueError):
                        load_settings(path)

    def test_missing_file_raises_value_error(self) -> None:
        with self.assertRaises(ValueError):
            load_settings("/nonexistent/booking.yaml")

    def test_slot_length_must_divide_operating_hours(self) -> None:
        with self.assertRaises(ValueError):
            BookingSettings(slot_minutes=45, opening_hour=8, closing_hour=9)


if __name__ == "__main__":
    unittest.main()
