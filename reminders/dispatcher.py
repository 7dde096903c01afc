"""
Nudge - Dispatcher
Delivery boundary between the scheduler and the notification surfaces
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional

from plyer import notification
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from core.clock import format_with_relative, now as system_now
from core.logger import console as default_console, log_warning, log_debug
from reminders.models import Priority, Reminder
from reminders.settings import ReminderSettings
import config


class Dispatcher(ABC):
    """
    Delivery boundary used by the scheduler.

    `deliver()` returns whether the reminder reached the user. It may raise;
    the scheduler records any exception as a delivery fault.
    """

    @abstractmethod
    def deliver(self, reminder: Reminder) -> bool:
        """Show the reminder on the enabled surfaces."""
        pass


class NotificationSurface(ABC):
    """One way of showing a reminder to the user."""

    name = "surface"

    def is_enabled(self, settings: ReminderSettings) -> bool:
        return True

    @abstractmethod
    def show(self, reminder: Reminder) -> None:
        """Present the reminder. Raises on failure."""
        pass


class InAppNoticeSurface(NotificationSurface):
    """Prints a panel in the host's console."""

    name = "in_app"

    BORDER_STYLES = {
        Priority.LOW: "blue",
        Priority.NORMAL: "cyan",
        Priority.HIGH: "yellow",
        Priority.URGENT: "bold red",
    }

    def __init__(self, console: Optional[Console] = None, clock: Callable[[], datetime] = system_now):
        self.console = console or default_console
        self._clock = clock

    def is_enabled(self, settings: ReminderSettings) -> bool:
        return settings.show_in_app_notice

    def show(self, reminder: Reminder) -> None:
        lines = [escape(reminder.message)]
        lines.append(f"[timestamp]Due {format_with_relative(reminder.due_at, self._clock())}[/timestamp]")
        if reminder.tags:
            lines.append(f"[config]{escape(' '.join('#' + t for t in reminder.tags))}[/config]")

        self.console.print(Panel(
            "\n".join(lines),
            title=f"{reminder.priority.icon} Reminder",
            border_style=self.BORDER_STYLES[reminder.priority],
            expand=False,
        ))


class SystemNotificationSurface(NotificationSurface):
    """OS-level desktop notification through plyer."""

    name = "system"

    def __init__(self, app_name: str = config.NOTIFICATION_APP_NAME):
        self.app_name = app_name

    def is_enabled(self, settings: ReminderSettings) -> bool:
        return settings.show_system_notification

    def timeout_for(self, reminder: Reminder) -> int:
        """High and urgent reminders stay on screen longer."""
        if reminder.priority in (Priority.HIGH, Priority.URGENT):
            return config.NOTIFICATION_TIMEOUT_URGENT
        return config.NOTIFICATION_TIMEOUT

    def show(self, reminder: Reminder) -> None:
        title = "Reminder"
        if reminder.priority == Priority.URGENT:
            title = "Urgent reminder"
        notification.notify(
            title=title,
            message=reminder.message,
            app_name=self.app_name,
            timeout=self.timeout_for(reminder),
        )


class NotificationDispatcher(Dispatcher):
    """
    Delivers through every surface the live settings enable.

    Each surface fails on its own: an exception from one is logged and the
    others still run. Delivery counts as successful if at least one enabled
    surface showed the reminder, or if none is enabled.
    """

    def __init__(
        self,
        settings_provider: Callable[[], ReminderSettings],
        surfaces: Optional[List[NotificationSurface]] = None
    ):
        """
        Args:
            settings_provider: Returns the current settings (usually the store's)
            surfaces: Delivery surfaces (in-app notice and OS notification by default)
        """
        self._settings_provider = settings_provider
        self.surfaces = surfaces if surfaces is not None else [
            InAppNoticeSurface(),
            SystemNotificationSurface(),
        ]

    def deliver(self, reminder: Reminder) -> bool:
        settings = self._settings_provider()
        enabled = [s for s in self.surfaces if s.is_enabled(settings)]
        if not enabled:
            log_debug(f"No notification surface enabled for {reminder.id}", prefix="🔕")
            return True

        delivered = 0
        for surface in enabled:
            try:
                surface.show(reminder)
                delivered += 1
            except Exception as e:
                log_warning(f"{surface.name} notification failed for {reminder.id}: {e}")

        return delivered > 0
