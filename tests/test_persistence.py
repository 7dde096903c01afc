"""
Tests for persistence: the debounced writer, JSON document storage and
loading of current and legacy documents.
"""

import json
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

from reminders.errors import ErrorCategory, ErrorHandler, StoreError
from reminders.models import Priority, SourceRef
from reminders.persistence import DebouncedWriter, JsonDocumentStorage, build_document, parse_document
from reminders.settings import ReminderSettings

from fakes import TimerFactory


class TestDebouncedWriter(unittest.TestCase):
    """Test coalescing, flushing and failure handling."""

    def setUp(self):
        self.timers = TimerFactory()
        self.errors = ErrorHandler()
        self.calls = 0
        self.fail = False

    def write(self):
        self.calls += 1
        if self.fail:
            raise StoreError("disk full")
        return True

    def make_writer(self):
        return DebouncedWriter(self.write, delay=1.0, error_handler=self.errors, timer_factory=self.timers)

    def test_restarts_single_timer(self):
        writer = self.make_writer()
        writer.mark_dirty()
        writer.mark_dirty()
        writer.mark_dirty()

        self.assertEqual(len(self.timers.timers), 3)
        self.assertEqual(len(self.timers.live), 1)
        self.assertTrue(self.timers.timers[0].cancelled)
        self.assertEqual(self.timers.live[0].interval, 1.0)
        self.assertTrue(self.timers.live[0].daemon)

        self.timers.live[0].fire()
        self.assertEqual(self.calls, 1)
        self.assertFalse(writer.dirty)

    def test_flush_without_changes_does_not_write(self):
        writer = self.make_writer()
        self.assertTrue(writer.flush())
        self.assertEqual(self.calls, 0)

    def test_failed_write_stays_dirty_and_is_recorded(self):
        writer = self.make_writer()
        self.fail = True
        writer.mark_dirty()

        self.assertFalse(writer.flush())
        self.assertTrue(writer.dirty)
        history = self.errors.get_history(ErrorCategory.DATA_ACCESS)
        self.assertEqual(len(history), 1)
        self.assertIsInstance(history[0].original_error, StoreError)

        self.fail = False
        self.assertTrue(writer.flush())
        self.assertFalse(writer.dirty)
        self.assertEqual(self.calls, 2)

    def test_false_return_counts_as_failure(self):
        writer = DebouncedWriter(lambda: False, error_handler=self.errors, timer_factory=self.timers)
        writer.mark_dirty()
        self.assertFalse(writer.flush())
        self.assertEqual(writer.failure_count, 1)


class TestJsonDocumentStorage(unittest.TestCase):
    """Test the JSON file on disk."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "data" / "reminders.json"
        self.storage = JsonDocumentStorage(self.path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_missing_file_is_empty_document(self):
        self.assertEqual(self.storage.load(), {"reminders": [], "settings": {}})

    def test_save_then_load(self):
        document = {"reminders": [{"id": "rem_1"}], "settings": {"show_debug_log": True}}
        self.assertTrue(self.storage.save(document))
        self.assertEqual(self.storage.load(), document)
        self.assertFalse(self.path.with_suffix(".json.tmp").exists())

    def test_corrupt_file_is_moved_aside(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json", encoding="utf-8")

        self.assertEqual(self.storage.load(), {"reminders": [], "settings": {}})
        self.assertFalse(self.path.exists())
        self.assertTrue(self.path.with_suffix(".json.corrupt").exists())

    def test_overflowing_interval_loads_as_default(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text(
            '{"reminders": [], "settings": {"slow_check_interval": 1e400, "fast_check_interval": NaN}}',
            encoding="utf-8",
        )

        _, settings = parse_document(self.storage.load())
        self.assertEqual(settings.slow_check_interval, ReminderSettings().slow_check_interval)
        self.assertEqual(settings.fast_check_interval, ReminderSettings().fast_check_interval)

    def test_save_retries_transient_errors(self):
        real_replace = __import__("os").replace
        attempts = []

        def flaky_replace(src, dst):
            attempts.append(dst)
            if len(attempts) < 2:
                raise PermissionError("locked")
            return real_replace(src, dst)

        with patch("reminders.persistence.os.replace", side_effect=flaky_replace), \
                patch("concurrency.retry.time.sleep"):
            self.storage.save({"reminders": [], "settings": {}})

        self.assertEqual(len(attempts), 2)
        self.assertTrue(self.path.exists())

    def test_persistent_failure_raises_store_error(self):
        with patch("reminders.persistence.os.replace", side_effect=PermissionError("locked")), \
                patch("concurrency.retry.time.sleep"):
            with self.assertRaises(StoreError):
                self.storage.save({"reminders": [], "settings": {}})


class TestParseDocument(unittest.TestCase):
    """Test loading records and settings with defaults merged."""

    def test_empty_document_gets_defaults(self):
        reminders, settings = parse_document(None)
        self.assertEqual(reminders, [])
        self.assertEqual(settings, ReminderSettings())

    def test_legacy_document(self):
        document = {
            "reminders": [{
                "id": "rem_1700000000000_abc123def",
                "message": "Legacy reminder",
                "datetime": "2024-03-01T10:00:00",
                "priority": "urgent",
                "sourceNote": "Daily/2024-03-01.md",
                "sourceLine": 12,
                "completed": False,
                "snoozedUntil": "2024-03-01T11:00:00",
                "snoozeCount": 2,
                "created": "2024-02-28T09:00:00",
                "updated": "2024-02-28T09:30:00",
            }],
            "settings": {
                "fastCheckInterval": 2000,
                "showObsidianNotice": False,
                "defaultPriority": "low",
                "someFutureSetting": 1,
            },
        }

        reminders, settings = parse_document(document)

        reminder = reminders[0]
        self.assertEqual(reminder.due_at, datetime(2024, 3, 1, 10, 0))
        self.assertEqual(reminder.priority, Priority.URGENT)
        self.assertEqual(reminder.source_ref, SourceRef("Daily/2024-03-01.md", 12))
        self.assertEqual(reminder.snoozed_until, datetime(2024, 3, 1, 11, 0))
        self.assertEqual(reminder.snooze_count, 2)
        self.assertEqual(reminder.created_at, datetime(2024, 2, 28, 9, 0))

        self.assertEqual(settings.fast_check_interval, 2.0)
        self.assertEqual(settings.slow_check_interval, 30.0)
        self.assertFalse(settings.show_in_app_notice)
        self.assertEqual(settings.default_priority, Priority.LOW)

    def test_invalid_and_duplicate_records_are_skipped(self):
        good = {"id": "rem_1", "message": "ok", "due_at": "2024-03-01T10:00:00"}
        document = {"reminders": [good, {"id": "rem_2", "message": ""}, "junk", dict(good)]}

        reminders, _ = parse_document(document)
        self.assertEqual([r.id for r in reminders], ["rem_1"])

    def test_round_trip_through_document(self):
        reminders, settings = parse_document({
            "reminders": [{"id": "rem_1", "message": "ok", "due_at": "2024-03-01T10:00:00",
                           "completed": True, "tags": ["a"]}],
            "settings": {"renotify_interval": "1h"},
        })
        again, settings_again = parse_document(json.loads(json.dumps(build_document(reminders, settings))))
        self.assertEqual(again, reminders)
        self.assertEqual(settings_again, settings)


if __name__ == "__main__":
    unittest.main()
