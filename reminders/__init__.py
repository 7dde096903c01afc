"""
Nudge - Reminder Engine
Schedules reminders inside a long-lived host process and delivers each
due reminder at most once per scheduler session.

Pieces:
- ReminderStore owns the collection and its time-windowed queries
- ReminderScheduler polls at adaptive intervals and fires due reminders
- NotificationDispatcher shows them (console notice, OS notification)
- ReminderEngine wires them together for a host
"""

from reminders.models import (
    Reminder,
    Priority,
    SourceRef,
    FilterType,
    ReminderStatistics,
)

from reminders.errors import (
    ReminderError,
    ValidationError,
    StoreError,
    SchedulerFault,
    DeliveryFault,
    ErrorHandler,
)

from reminders.settings import (
    ReminderSettings,
    RenotifyInterval,
)

from reminders.persistence import (
    DebouncedWriter,
    JsonDocumentStorage,
)

from reminders.store import ReminderStore

from reminders.dispatcher import (
    Dispatcher,
    NotificationDispatcher,
    InAppNoticeSurface,
    SystemNotificationSurface,
)

from reminders.scheduler import ReminderScheduler

from reminders.engine import ReminderEngine, init_logging

__all__ = [
    # Models
    "Reminder",
    "Priority",
    "SourceRef",
    "FilterType",
    "ReminderStatistics",
    # Errors
    "ReminderError",
    "ValidationError",
    "StoreError",
    "SchedulerFault",
    "DeliveryFault",
    "ErrorHandler",
    # Settings
    "ReminderSettings",
    "RenotifyInterval",
    # Persistence
    "DebouncedWriter",
    "JsonDocumentStorage",
    # Components
    "ReminderStore",
    "Dispatcher",
    "NotificationDispatcher",
    "InAppNoticeSurface",
    "SystemNotificationSurface",
    "ReminderScheduler",
    "ReminderEngine",
    "init_logging",
]
