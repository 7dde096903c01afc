"""
Tests for the lock manager and the I/O retry decorator.
"""

import threading
import unittest
from unittest.mock import MagicMock

from concurrency.locks import LockManager
from concurrency.retry import io_retry


class TestLockManager(unittest.TestCase):
    """Test named locks and their statistics."""

    def test_default_locks_are_reentrant(self):
        manager = LockManager()
        with manager.acquire("reminders"):
            with manager.acquire("reminders"):
                self.assertTrue(manager.get_stats("reminders")["currently_held"])
        stats = manager.get_stats("reminders")
        self.assertEqual(stats["acquisitions"], 2)
        self.assertFalse(stats["currently_held"])

    def test_unknown_lock(self):
        with self.assertRaises(KeyError):
            with LockManager().acquire("nope"):
                pass

    def test_create_lock(self):
        manager = LockManager()
        manager.create_lock("extra")
        with manager.acquire("extra"):
            pass
        self.assertEqual(manager.get_stats("extra")["acquisitions"], 1)
        self.assertEqual(manager.get_stats("missing"), {})

    def test_timeout_when_held_elsewhere(self):
        manager = LockManager()
        held = threading.Event()
        release = threading.Event()

        def holder():
            with manager.acquire("scheduler"):
                held.set()
                release.wait(2.0)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(2.0)
        try:
            with self.assertRaises(TimeoutError):
                with manager.acquire("scheduler", timeout=0.05):
                    pass
        finally:
            release.set()
            thread.join()

        self.assertGreaterEqual(manager.get_stats("scheduler")["contentions"], 1)


class TestIoRetry(unittest.TestCase):
    """Test backoff behaviour."""

    def test_retries_then_succeeds(self):
        sleep = MagicMock()
        calls = []

        @io_retry(max_retries=3, initial_delay=0.1, backoff_multiplier=2.0, max_delay=0.15, sleep=sleep)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise PermissionError("busy")
            return "ok"

        self.assertEqual(flaky(), "ok")
        self.assertEqual(len(calls), 3)
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [0.1, 0.15])

    def test_gives_up_and_reraises(self):
        sleep = MagicMock()

        @io_retry(max_retries=2, sleep=sleep)
        def always_busy():
            raise BlockingIOError("busy")

        with self.assertRaises(BlockingIOError):
            always_busy()
        self.assertEqual(sleep.call_count, 2)

    def test_other_errors_are_not_retried(self):
        sleep = MagicMock()

        @io_retry(sleep=sleep)
        def broken():
            raise FileNotFoundError("gone")

        with self.assertRaises(FileNotFoundError):
            broken()
        sleep.assert_not_called()


if __name__ == "__main__":
    unittest.main()
