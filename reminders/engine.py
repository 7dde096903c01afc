"""
Nudge - Reminder Engine
Owns the store, scheduler and dispatcher of one host process
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from core.clock import now as system_now, parse_instant, parse_time_expression, snooze_until
from core.logger import (
    log_header,
    log_info,
    log_success,
    log_section,
    log_subsection,
    set_debug,
    setup_logging,
)
from concurrency.locks import LockManager
from reminders.dispatcher import Dispatcher, NotificationDispatcher
from reminders.errors import ErrorHandler, ValidationError
from reminders.models import Reminder, ReminderStatistics
from reminders.persistence import JsonDocumentStorage, parse_document
from reminders.scheduler import ReminderScheduler
from reminders.settings import ReminderSettings
from reminders.store import ReminderStore
import config


def init_logging() -> None:
    """Configure console and file logging from config. Call once at host startup."""
    setup_logging(
        log_file_path=config.DIAGNOSTIC_LOG_PATH,
        level=config.LOG_LEVEL,
        log_to_file=config.LOG_TO_FILE,
    )
    log_header(f"{config.PROJECT_NAME} v{config.VERSION}")
    log_subsection(f"Diagnostic Log: {config.DIAGNOSTIC_LOG_PATH}")


class ReminderEngine:
    """
    Lifetime owner for the reminder engine.

    The host creates one engine, calls `load()` and `start()`, routes user
    actions through it, and calls `shutdown()` on exit so the final change
    is flushed. There is no module-level instance.
    """

    def __init__(
        self,
        storage: Optional[JsonDocumentStorage] = None,
        dispatcher: Optional[Dispatcher] = None,
        clock: Callable[[], datetime] = system_now,
        on_degraded: Optional[Callable[[int], None]] = None,
        save_delay: float = config.SAVE_DEBOUNCE_SECONDS
    ):
        """
        Args:
            storage: Document storage (JSON file at the configured path by default)
            dispatcher: Delivery boundary (console notice + OS notification by default)
            clock: Source of the current instant
            on_degraded: Called when repeated check passes fail
            save_delay: Debounce quiet period for writes, in seconds
        """
        self.storage = storage or JsonDocumentStorage()
        self.clock = clock
        self.lock_manager = LockManager()
        self.error_handler = ErrorHandler()

        self._dispatcher = dispatcher
        self._on_degraded = on_degraded
        self._save_delay = save_delay

        self.store: Optional[ReminderStore] = None
        self.scheduler: Optional[ReminderScheduler] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_loaded(self) -> bool:
        return self.store is not None

    def load(self) -> "ReminderEngine":
        """Read the document and build the store and scheduler over it."""
        if self.scheduler is not None:
            self.scheduler.stop()

        reminders, settings = parse_document(self.storage.load())
        set_debug(settings.show_debug_log)

        self.store = ReminderStore(
            persist=self.storage.save,
            reminders=reminders,
            settings=settings,
            clock=self.clock,
            lock_manager=self.lock_manager,
            error_handler=self.error_handler,
            save_delay=self._save_delay,
        )
        dispatcher = self._dispatcher or NotificationDispatcher(lambda: self.store.settings)
        self.scheduler = ReminderScheduler(
            self.store,
            dispatcher,
            clock=self.clock,
            lock_manager=self.lock_manager,
            error_handler=self.error_handler,
            on_degraded=self._on_degraded,
        )

        log_info(f"Loaded {len(reminders)} reminder(s) from {self.storage.path}", prefix="📂")
        return self

    def start(self) -> None:
        if not self.is_loaded:
            self.load()
        self.scheduler.start()

    def shutdown(self) -> bool:
        """Stop the scheduler and flush synchronously. Returns whether data is saved."""
        if not self.is_loaded:
            return True
        self.scheduler.stop()
        saved = self.store.close()
        if saved:
            log_success("Reminders saved")
        return saved

    def _require_loaded(self) -> ReminderStore:
        if self.store is None:
            raise RuntimeError("ReminderEngine.load() has not been called")
        return self.store

    def _poke(self) -> None:
        if self.scheduler is not None and self.scheduler.is_running():
            self.scheduler.schedule_immediate()

    # =========================================================================
    # USER ACTIONS
    # =========================================================================

    def resolve_due_time(self, value: Union[datetime, str, None]) -> Optional[datetime]:
        """
        Turn user input into a due time.

        Accepts a datetime, an ISO string or a relative expression such as
        "in 15 minutes" or "tomorrow morning". None means the store default.

        Raises:
            ValidationError: If the value cannot be understood
        """
        if value is None:
            return None
        parsed = parse_instant(value)
        if parsed is None and isinstance(value, str):
            parsed = parse_time_expression(value, self.clock())
        if parsed is None:
            raise ValidationError(f"Could not understand due time: {value!r}", field_name="due_at")
        return parsed

    def _check_not_past(self, due_at: Optional[datetime]) -> None:
        if due_at is not None and due_at < self.clock():
            raise ValidationError("Due time cannot be in the past", field_name="due_at")

    def add_reminder(
        self,
        message: str,
        due_at: Union[datetime, str, None] = None,
        **fields
    ) -> Reminder:
        """
        Create a reminder from user input and check for due reminders.

        Raises:
            ValidationError: Empty message, unparseable or past due time
        """
        store = self._require_loaded()
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Please enter a reminder message", field_name="message")

        resolved = self.resolve_due_time(due_at)
        self._check_not_past(resolved)

        reminder = store.create(message=message, due_at=resolved, **fields)
        self._poke()
        return reminder

    def edit_reminder(self, reminder_id: str, **changes) -> Optional[Reminder]:
        """
        Change a reminder. A new due time re-arms it for delivery.

        Raises:
            ValidationError: Invalid or past due time, or an invalid field
        """
        store = self._require_loaded()
        if "due_at" in changes:
            changes["due_at"] = self.resolve_due_time(changes["due_at"])
            self._check_not_past(changes["due_at"])

        before = store.find(reminder_id)
        reminder = store.update(reminder_id, **changes)
        if reminder is None:
            return None

        if before is not None and before.due_at != reminder.due_at and self.scheduler is not None:
            self.scheduler.rearm(reminder_id)
        self._poke()
        return reminder

    def complete(self, reminder_id: str) -> Optional[Reminder]:
        return self._require_loaded().complete(reminder_id)

    def uncomplete(self, reminder_id: str) -> Optional[Reminder]:
        reminder = self._require_loaded().uncomplete(reminder_id)
        if reminder is not None:
            self.scheduler.rearm(reminder_id)
            self._poke()
        return reminder

    def delete(self, reminder_id: str) -> bool:
        return self._require_loaded().delete(reminder_id)

    def snooze(self, reminder_id: str, minutes: float) -> Optional[Reminder]:
        """
        Snooze for the given number of minutes from now.

        Raises:
            ValidationError: If minutes is not positive
        """
        store = self._require_loaded()
        if isinstance(minutes, bool) or not isinstance(minutes, (int, float)) or minutes <= 0:
            raise ValidationError("Snooze minutes must be a positive number", field_name="minutes")
        return store.snooze(reminder_id, snooze_until(minutes, self.clock()))

    @property
    def snooze_presets(self) -> List[Tuple[str, int]]:
        return list(config.SNOOZE_PRESETS)

    @property
    def quick_time_presets(self) -> List[Tuple[str, int]]:
        return list(config.QUICK_TIME_PRESETS)

    def update_settings(self, **changes) -> ReminderSettings:
        settings = self._require_loaded().update_settings(**changes)
        if "show_debug_log" in changes:
            set_debug(settings.show_debug_log)
        return settings

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    def statistics(self) -> ReminderStatistics:
        return self._require_loaded().statistics(self.clock())

    def status(self) -> Dict[str, Any]:
        """Scheduler status, collection counts and recent faults."""
        store = self._require_loaded()
        return {
            "scheduler": self.scheduler.get_status(),
            "statistics": store.statistics(self.clock()).to_dict(),
            "unsaved_changes": store.writer.dirty,
            "recent_faults": [f.format() for f in self.error_handler.get_history()[:5]],
        }

    def log_status(self) -> None:
        status = self.status()
        log_section("Reminder Engine", "⏰")
        scheduler = status["scheduler"]
        state = "running" if scheduler["running"] else "stopped"
        if scheduler["degraded"]:
            state += " (degraded)"
        log_subsection(f"Scheduler: {state}, {scheduler['check_count']} checks")
        for name, count in status["statistics"].items():
            log_subsection(f"{name}: {count}")
        self.lock_manager.log_stats()
