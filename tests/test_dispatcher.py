"""
Tests for the notification dispatcher and its delivery surfaces.
"""

import unittest
from datetime import datetime
from unittest.mock import MagicMock, patch

from rich.console import Console

import config
from core.logger import THEME
from reminders.dispatcher import (
    Dispatcher,
    NotificationSurface,
    InAppNoticeSurface,
    NotificationDispatcher,
    SystemNotificationSurface,
)
from reminders.models import Priority, Reminder
from reminders.settings import ReminderSettings

NOON = datetime(2024, 3, 1, 12, 0, 0)


def make_reminder(priority=Priority.NORMAL, message="Drink water [now]"):
    return Reminder(
        id="rem_1",
        message=message,
        due_at=NOON,
        created_at=NOON,
        updated_at=NOON,
        priority=priority,
        tags=["health"],
    )


class TestInAppNoticeSurface(unittest.TestCase):
    """Test the console panel."""

    def test_prints_message_and_tags(self):
        console = Console(record=True, width=80, theme=THEME)
        surface = InAppNoticeSurface(console=console, clock=lambda: NOON)

        surface.show(make_reminder())

        text = console.export_text()
        self.assertIn("Drink water [now]", text)
        self.assertIn("#health", text)
        self.assertIn("Reminder", text)

    def test_follows_setting(self):
        surface = InAppNoticeSurface(console=Console(record=True, theme=THEME))
        self.assertTrue(surface.is_enabled(ReminderSettings().with_changes(show_in_app_notice=True)))
        self.assertFalse(surface.is_enabled(ReminderSettings().with_changes(show_in_app_notice=False)))


class TestSystemNotificationSurface(unittest.TestCase):
    """Test the plyer notification call."""

    @patch("reminders.dispatcher.notification")
    def test_notify_arguments(self, mock_notification):
        SystemNotificationSurface(app_name="Nudge").show(make_reminder())

        mock_notification.notify.assert_called_once_with(
            title="Reminder",
            message="Drink water [now]",
            app_name="Nudge",
            timeout=config.NOTIFICATION_TIMEOUT,
        )

    @patch("reminders.dispatcher.notification")
    def test_urgent_stays_longer(self, mock_notification):
        SystemNotificationSurface().show(make_reminder(Priority.URGENT))

        kwargs = mock_notification.notify.call_args.kwargs
        self.assertEqual(kwargs["timeout"], config.NOTIFICATION_TIMEOUT_URGENT)
        self.assertEqual(kwargs["title"], "Urgent reminder")

    def test_timeout_for_priorities(self):
        surface = SystemNotificationSurface()
        self.assertEqual(surface.timeout_for(make_reminder(Priority.LOW)), config.NOTIFICATION_TIMEOUT)
        self.assertEqual(surface.timeout_for(make_reminder(Priority.HIGH)), config.NOTIFICATION_TIMEOUT_URGENT)


class TestNotificationDispatcher(unittest.TestCase):
    """Test surface selection and independent failure."""

    def make_surface(self, name, enabled=True, error=None):
        surface = MagicMock()
        surface.name = name
        surface.is_enabled.return_value = enabled
        if error is not None:
            surface.show.side_effect = error
        return surface

    def test_delivers_through_enabled_surfaces(self):
        on = self.make_surface("on")
        off = self.make_surface("off", enabled=False)
        dispatcher = NotificationDispatcher(ReminderSettings, surfaces=[on, off])

        self.assertTrue(dispatcher.deliver(make_reminder()))
        on.show.assert_called_once()
        off.show.assert_not_called()

    def test_one_failing_surface_does_not_block_others(self):
        broken = self.make_surface("broken", error=OSError("no display"))
        working = self.make_surface("working")
        dispatcher = NotificationDispatcher(ReminderSettings, surfaces=[broken, working])

        self.assertTrue(dispatcher.deliver(make_reminder()))
        working.show.assert_called_once()

    def test_all_failing_reports_failure(self):
        broken = self.make_surface("broken", error=OSError("no display"))
        dispatcher = NotificationDispatcher(ReminderSettings, surfaces=[broken])
        self.assertFalse(dispatcher.deliver(make_reminder()))

    def test_nothing_enabled_counts_as_delivered(self):
        dispatcher = NotificationDispatcher(ReminderSettings, surfaces=[self.make_surface("off", enabled=False)])
        self.assertTrue(dispatcher.deliver(make_reminder()))

    def test_reads_live_settings(self):
        current = {"settings": ReminderSettings().with_changes(show_system_notification=True)}
        dispatcher = NotificationDispatcher(lambda: current["settings"])
        with patch("reminders.dispatcher.notification") as mock_notification, \
                patch.object(InAppNoticeSurface, "show"):
            dispatcher.deliver(make_reminder())
            current["settings"] = current["settings"].with_changes(show_system_notification=False)
            dispatcher.deliver(make_reminder())

        self.assertEqual(mock_notification.notify.call_count, 1)



class TestDeliveryContracts(unittest.TestCase):
    """Test that dispatchers and surfaces must implement their delivery method."""

    def test_dispatcher_without_deliver_cannot_be_built(self):
        class Incomplete(Dispatcher):
            pass

        with self.assertRaises(TypeError):
            Incomplete()

    def test_surface_without_show_cannot_be_built(self):
        class Incomplete(NotificationSurface):
            name = "incomplete"

        with self.assertRaises(TypeError):
            Incomplete()

    def test_complete_subclasses_build(self):
        class Always(Dispatcher):
            def deliver(self, reminder):
                return True

        self.assertTrue(Always().deliver(make_reminder()))
        self.assertIsInstance(NotificationDispatcher(ReminderSettings, surfaces=[]), Dispatcher)


if __name__ == "__main__":
    unittest.main()
