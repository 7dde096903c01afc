"""
Tests for the reminder record, priorities and the fault recorder.
"""

import unittest
from datetime import datetime

from reminders.errors import ErrorCategory, ErrorHandler, StoreError
from reminders.models import Priority, Reminder, SourceRef

NOON = datetime(2024, 3, 1, 12, 0, 0)


class TestReminderRecord(unittest.TestCase):
    """Test record parsing and its invariants."""

    def test_from_dict_enforces_completion_invariant(self):
        reminder = Reminder.from_dict({
            "id": "rem_1",
            "message": "Done",
            "due_at": "2024-03-01T10:00:00",
            "completed": True,
            "snoozed_until": "2024-03-01T13:00:00",
            "updated_at": "2024-03-01T11:00:00",
        })
        self.assertEqual(reminder.completed_at, datetime(2024, 3, 1, 11, 0))
        self.assertIsNone(reminder.snoozed_until)

        reopened = Reminder.from_dict({
            "id": "rem_2",
            "message": "Open",
            "due_at": "2024-03-01T10:00:00",
            "completed_at": "2024-03-01T11:00:00",
        })
        self.assertIsNone(reopened.completed_at)

    def test_from_dict_repairs_timestamps(self):
        reminder = Reminder.from_dict({
            "id": "rem_1",
            "message": "x",
            "due_at": "2024-03-01T10:00:00",
            "created_at": "2024-03-01T09:00:00",
            "updated_at": "2024-03-01T08:00:00",
            "snooze_count": -3,
            "priority": "whatever",
        })
        self.assertEqual(reminder.updated_at, reminder.created_at)
        self.assertEqual(reminder.snooze_count, 0)
        self.assertEqual(reminder.priority, Priority.NORMAL)

    def test_from_dict_rejects_missing_fields(self):
        for record in ({}, {"id": "a", "message": "b"}, {"id": "a", "due_at": "2024-03-01"}):
            with self.assertRaises(ValueError):
                Reminder.from_dict(record)

    def test_overdue_ignores_snooze(self):
        reminder = Reminder(id="r", message="m", due_at=NOON, created_at=NOON, updated_at=NOON,
                            snoozed_until=datetime(2024, 3, 1, 13, 0))
        later = datetime(2024, 3, 1, 12, 30)
        self.assertTrue(reminder.is_overdue(later))
        self.assertTrue(reminder.is_snoozed(later))

    def test_priority_parse(self):
        self.assertEqual(Priority.parse("URGENT"), Priority.URGENT)
        self.assertEqual(Priority.parse(Priority.LOW), Priority.LOW)
        self.assertEqual(Priority.parse("bogus", default=Priority.NORMAL), Priority.NORMAL)
        with self.assertRaises(ValueError):
            Priority.parse("bogus")

    def test_source_ref_from_value(self):
        self.assertEqual(SourceRef.from_value("a.md"), SourceRef("a.md"))
        self.assertEqual(SourceRef.from_value({"path": "a.md", "line": "7"}), SourceRef("a.md", 7))
        self.assertIsNone(SourceRef.from_value({"line": 7}))


class TestErrorHandler(unittest.TestCase):
    """Test the bounded fault history."""

    def test_history_is_bounded_and_newest_first(self):
        handler = ErrorHandler(history_limit=3)
        for i in range(5):
            handler.handle_data_error(f"write {i}", StoreError("disk"))

        history = handler.get_history()
        self.assertEqual([f.message for f in history], ["write 4", "write 3", "write 2"])
        self.assertTrue(history[0].can_retry)

    def test_filter_and_clear(self):
        handler = ErrorHandler()
        handler.handle_data_error("data")
        handler.handle_delivery_error("delivery", reminder_id="rem_1")

        delivery = handler.get_history(ErrorCategory.NOTIFICATION)
        self.assertEqual(len(delivery), 1)
        self.assertFalse(delivery[0].can_retry)
        self.assertIn("reminder_id=rem_1", delivery[0].format())

        handler.clear_history()
        self.assertEqual(handler.get_history(), [])


if __name__ == "__main__":
    unittest.main()
