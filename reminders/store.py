"""
Nudge - Reminder Store
Owns the reminder collection: CRUD, time-windowed queries, debounced persistence
"""

import random
import string
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from core.clock import now as system_now, parse_instant
from core.logger import log_info, log_debug
from concurrency.locks import LockManager
from reminders.errors import ErrorHandler, ValidationError
from reminders.models import FilterType, Priority, Reminder, ReminderStatistics, SourceRef
from reminders.persistence import DebouncedWriter, Document, build_document
from reminders.settings import ReminderSettings
import config

# Fields accepted by create()
CREATE_FIELDS = frozenset({"message", "due_at", "priority", "category", "tags", "source_ref"})

# Fields update() may change; everything else on a Reminder is managed by the store
MUTABLE_FIELDS = frozenset(CREATE_FIELDS | {"completed", "snoozed_until"})

_ID_ALPHABET = string.ascii_lowercase + string.digits


class ReminderStore:
    """
    The single owner of the reminder collection.

    Every mutation goes through here so `updated_at` and the completion and
    snooze invariants are enforced in one place. Records handed out are
    copies; change them only through store operations.

    Thread-safe: all reads and read-modify-write sequences hold the
    "reminders" lock. Persistence is debounced through a DebouncedWriter.
    """

    def __init__(
        self,
        persist: Callable[[Document], Optional[bool]],
        reminders: Optional[Iterable[Reminder]] = None,
        settings: Optional[ReminderSettings] = None,
        clock: Callable[[], datetime] = system_now,
        lock_manager: Optional[LockManager] = None,
        error_handler: Optional[ErrorHandler] = None,
        save_delay: float = config.SAVE_DEBOUNCE_SECONDS,
        timer_factory: Callable[..., threading.Timer] = threading.Timer
    ):
        """
        Args:
            persist: Receives the full document to write; returns False or raises on failure
            reminders: Initial collection (usually loaded from disk)
            settings: Initial settings (defaults when None)
            clock: Source of the current instant
            lock_manager: Shared lock manager
            error_handler: Shared fault recorder
            save_delay: Debounce quiet period in seconds
            timer_factory: threading.Timer compatible factory for the writer
        """
        self._persist = persist
        self._clock = clock
        self._lock_manager = lock_manager or LockManager()
        self._error_handler = error_handler or ErrorHandler()

        self._reminders: Dict[str, Reminder] = {}
        self._issued_ids = set()
        for reminder in reminders or []:
            self._reminders[reminder.id] = reminder.copy()
            self._issued_ids.add(reminder.id)

        self._settings = settings or ReminderSettings()

        self._writer = DebouncedWriter(
            self._write_document,
            delay=save_delay,
            lock_manager=self._lock_manager,
            error_handler=self._error_handler,
            timer_factory=timer_factory,
        )

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def snapshot(self) -> Document:
        """The document as it would be written right now."""
        with self._lock_manager.acquire("reminders"):
            ordered = sorted(self._reminders.values(), key=lambda r: r.created_at)
            return build_document(ordered, self._settings)

    def _write_document(self) -> Optional[bool]:
        return self._persist(self.snapshot())

    def _changed(self) -> None:
        self._writer.mark_dirty()

    def flush(self) -> bool:
        """Write pending changes synchronously. Returns whether the data is saved."""
        return self._writer.flush()

    def close(self) -> bool:
        """Cancel the pending debounce timer and flush."""
        return self._writer.flush()

    @property
    def writer(self) -> DebouncedWriter:
        return self._writer

    # =========================================================================
    # SETTINGS
    # =========================================================================

    @property
    def settings(self) -> ReminderSettings:
        with self._lock_manager.acquire("reminders"):
            return self._settings

    def update_settings(self, **changes) -> ReminderSettings:
        """
        Change settings and persist them.

        Raises:
            ValidationError: On unknown settings or invalid values
        """
        with self._lock_manager.acquire("reminders"):
            self._settings = self._settings.with_changes(**changes)
            self._changed()
            return self._settings

    # =========================================================================
    # CRUD
    # =========================================================================

    def _new_id(self, current: datetime) -> str:
        while True:
            suffix = "".join(random.choices(_ID_ALPHABET, k=9))
            reminder_id = f"rem_{int(current.timestamp() * 1000)}_{suffix}"
            if reminder_id not in self._issued_ids:
                self._issued_ids.add(reminder_id)
                return reminder_id

    def _stamp(self, reminder: Reminder, current: datetime) -> None:
        reminder.updated_at = max(current, reminder.created_at)

    def create(self, **partial) -> Reminder:
        """
        Add a reminder, filling defaults.

        Defaults: priority from settings, due time one hour from now,
        not completed, never snoozed.

        Raises:
            ValidationError: Unknown field, empty message or unparseable due time
        """
        unknown = set(partial) - CREATE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown reminder fields: {', '.join(sorted(unknown))}")

        current = self._clock()
        values = _validate_fields(partial)
        if "message" not in values:
            raise ValidationError("Reminder message is required", field_name="message")

        with self._lock_manager.acquire("reminders"):
            reminder = Reminder(
                id=self._new_id(current),
                message=values["message"],
                due_at=values.get("due_at") or current + timedelta(hours=config.DEFAULT_HOURS_AHEAD),
                created_at=current,
                updated_at=current,
                priority=values.get("priority") or self._settings.default_priority,
                category=values.get("category", ""),
                tags=values.get("tags", []),
                source_ref=values.get("source_ref"),
            )
            self._reminders[reminder.id] = reminder
            self._changed()

        log_info(f"Created reminder {reminder.id}: {reminder.message[:50]}", prefix="📝")
        return reminder.copy()

    def update(self, reminder_id: str, **partial) -> Optional[Reminder]:
        """
        Merge the given fields into a reminder.

        Nothing is applied unless every field is valid. Setting `completed`
        stamps or clears `completed_at`; completing also clears the snooze.
        Changing `due_at` clears `notified_at`.

        Returns:
            The updated reminder, or None if the id is unknown

        Raises:
            ValidationError: Unknown or store-managed field, or an invalid value
        """
        unknown = set(partial) - MUTABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        if partial.get("snoozed_until") is not None:
            raise ValidationError("Use snooze() to snooze a reminder", field_name="snoozed_until")

        values = _validate_fields(partial)
        completed = partial.get("completed")
        if completed is not None and not isinstance(completed, bool):
            raise ValidationError("completed must be a bool", field_name="completed")

        current = self._clock()
        with self._lock_manager.acquire("reminders"):
            existing = self._reminders.get(reminder_id)
            if existing is None:
                return None

            reminder = existing.copy()
            for name in ("message", "priority", "category", "tags", "source_ref"):
                if name in values:
                    setattr(reminder, name, values[name])
            if "due_at" in values and values["due_at"] != reminder.due_at:
                reminder.due_at = values["due_at"]
                reminder.notified_at = None
            if "snoozed_until" in partial:
                reminder.snoozed_until = None
            if completed is not None:
                _set_completed(reminder, completed, current)

            self._stamp(reminder, current)
            self._reminders[reminder_id] = reminder
            self._changed()
            return reminder.copy()

    def delete(self, reminder_id: str) -> bool:
        with self._lock_manager.acquire("reminders"):
            if self._reminders.pop(reminder_id, None) is None:
                return False
            self._changed()
        log_debug(f"Deleted reminder {reminder_id}", prefix="🗑️")
        return True

    def delete_completed(self) -> int:
        """Remove every completed reminder. Returns how many were removed."""
        with self._lock_manager.acquire("reminders"):
            done = [rid for rid, r in self._reminders.items() if r.completed]
            for rid in done:
                del self._reminders[rid]
            if done:
                self._changed()
        return len(done)

    def delete_all(self) -> int:
        with self._lock_manager.acquire("reminders"):
            count = len(self._reminders)
            self._reminders.clear()
            if count:
                self._changed()
        return count

    def complete(self, reminder_id: str) -> Optional[Reminder]:
        """Mark completed now and clear any snooze."""
        current = self._clock()
        with self._lock_manager.acquire("reminders"):
            reminder = self._reminders.get(reminder_id)
            if reminder is None:
                return None
            _set_completed(reminder, True, current)
            self._stamp(reminder, current)
            self._changed()
            return reminder.copy()

    def uncomplete(self, reminder_id: str) -> Optional[Reminder]:
        """Reopen a completed reminder. Its next due-event fires again."""
        current = self._clock()
        with self._lock_manager.acquire("reminders"):
            reminder = self._reminders.get(reminder_id)
            if reminder is None:
                return None
            _set_completed(reminder, False, current)
            reminder.notified_at = None
            self._stamp(reminder, current)
            self._changed()
            return reminder.copy()

    def snooze(self, reminder_id: str, until: Union[datetime, str]) -> Optional[Reminder]:
        """
        Suppress a reminder until the given instant.

        Raises:
            ValidationError: If `until` is unparseable or not in the future,
                or the reminder is completed
        """
        until_at = parse_instant(until)
        if until_at is None:
            raise ValidationError(f"Invalid snooze time: {until!r}", field_name="snoozed_until")

        current = self._clock()
        if until_at <= current:
            raise ValidationError("Snooze time must be in the future", field_name="snoozed_until")

        with self._lock_manager.acquire("reminders"):
            reminder = self._reminders.get(reminder_id)
            if reminder is None:
                return None
            if reminder.completed:
                raise ValidationError("Cannot snooze a completed reminder", field_name="snoozed_until")
            reminder.snoozed_until = until_at
            reminder.snooze_count += 1
            self._stamp(reminder, current)
            self._changed()
            return reminder.copy()

    def find(self, reminder_id: str) -> Optional[Reminder]:
        with self._lock_manager.acquire("reminders"):
            reminder = self._reminders.get(reminder_id)
            return reminder.copy() if reminder else None

    def all(self) -> List[Reminder]:
        """Every reminder, due time ascending."""
        return self._select(lambda r: True)

    def __len__(self) -> int:
        with self._lock_manager.acquire("reminders"):
            return len(self._reminders)

    # =========================================================================
    # SCHEDULER-FACING WRITES
    # =========================================================================

    def clear_expired_snoozes(self, now: datetime) -> List[str]:
        """
        Clear every snooze that has expired by `now`, atomically.

        Returns:
            Ids whose snooze was cleared
        """
        cleared = []
        with self._lock_manager.acquire("reminders"):
            for reminder in self._reminders.values():
                if reminder.completed or reminder.snoozed_until is None:
                    continue
                if reminder.snoozed_until <= now:
                    reminder.snoozed_until = None
                    self._stamp(reminder, now)
                    cleared.append(reminder.id)
            if cleared:
                self._changed()
        return cleared

    def mark_notified(self, reminder_id: str, when: datetime) -> Optional[Reminder]:
        """Stamp the last delivery instant."""
        with self._lock_manager.acquire("reminders"):
            reminder = self._reminders.get(reminder_id)
            if reminder is None:
                return None
            reminder.notified_at = when
            self._stamp(reminder, when)
            self._changed()
            return reminder.copy()

    def active(self) -> List[Reminder]:
        """Snapshot of every non-completed reminder."""
        return self._select(lambda r: not r.completed)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def _select(self, predicate: Callable[[Reminder], bool], key=None) -> List[Reminder]:
        with self._lock_manager.acquire("reminders"):
            matches = [r.copy() for r in self._reminders.values() if predicate(r)]
        matches.sort(key=key or (lambda r: r.due_at))
        return matches

    def pending(self, now: datetime) -> List[Reminder]:
        """Due, not completed and not currently snoozed; due time ascending."""
        return self._select(lambda r: not r.completed and r.due_at <= now and not r.is_snoozed(now))

    def snoozed(self, now: datetime) -> List[Reminder]:
        """Currently snoozed, earliest snooze expiry first."""
        return self._select(
            lambda r: not r.completed and r.is_snoozed(now),
            key=lambda r: r.snoozed_until,
        )

    def upcoming(self, now: datetime, limit: int = config.DEFAULT_UPCOMING_LIMIT) -> List[Reminder]:
        """Not yet due and not snoozed, soonest first, at most `limit`."""
        matches = self._select(lambda r: not r.completed and r.due_at > now and not r.is_snoozed(now))
        return matches[:limit]

    def completed_reminders(self) -> List[Reminder]:
        """Completed reminders, most recently completed first."""
        matches = self._select(lambda r: r.completed, key=lambda r: r.completed_at)
        matches.reverse()
        return matches

    def by_tag(self, tag: str) -> List[Reminder]:
        """Reminders with the tag (or category), case-insensitive."""
        wanted = tag.strip().lower()
        return self._select(
            lambda r: r.category.lower() == wanted or any(t.lower() == wanted for t in r.tags)
        )

    def by_note(self, ref: Union[SourceRef, str]) -> List[Reminder]:
        """Reminders created from the given document."""
        path = ref.path if isinstance(ref, SourceRef) else ref
        return self._select(lambda r: r.source_ref is not None and r.source_ref.path == path)

    def by_filter(self, filter_type: Union[FilterType, str], now: datetime) -> List[Reminder]:
        """Dispatch a view selector to its query."""
        filter_type = FilterType(filter_type)
        if filter_type == FilterType.PENDING:
            return self.pending(now)
        if filter_type == FilterType.UPCOMING:
            return self.upcoming(now)
        if filter_type == FilterType.SNOOZED:
            return self.snoozed(now)
        if filter_type == FilterType.COMPLETED:
            return self.completed_reminders()
        return self.all()

    def statistics(self, now: datetime) -> ReminderStatistics:
        """
        Counts at `now`. Overdue ignores snoozes, so a snoozed past-due
        reminder counts as both snoozed and overdue.
        """
        horizon = now + timedelta(hours=24)
        stats = ReminderStatistics()
        with self._lock_manager.acquire("reminders"):
            for r in self._reminders.values():
                stats.total += 1
                if r.completed:
                    stats.completed += 1
                    continue
                stats.pending += 1
                if r.is_snoozed(now):
                    stats.snoozed += 1
                if r.due_at <= now:
                    stats.overdue += 1
                elif r.due_at < horizon:
                    stats.due_within_24h += 1
        return stats


def _set_completed(reminder: Reminder, completed: bool, current: datetime) -> None:
    if completed:
        if not reminder.completed:
            reminder.completed_at = current
        reminder.completed = True
        reminder.snoozed_until = None
    else:
        reminder.completed = False
        reminder.completed_at = None


def _validate_fields(partial: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and normalize user-settable fields. Raises ValidationError."""
    values: Dict[str, Any] = {}

    if "message" in partial:
        message = partial["message"]
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Reminder message cannot be empty", field_name="message")
        values["message"] = message.strip()

    if "due_at" in partial and partial["due_at"] is not None:
        due_at = parse_instant(partial["due_at"])
        if due_at is None:
            raise ValidationError(f"Invalid due time: {partial['due_at']!r}", field_name="due_at")
        values["due_at"] = due_at

    if "priority" in partial and partial["priority"] is not None:
        try:
            values["priority"] = Priority.parse(partial["priority"])
        except ValueError:
            raise ValidationError(f"Invalid priority: {partial['priority']!r}", field_name="priority")

    if "category" in partial:
        values["category"] = str(partial["category"] or "")

    if "tags" in partial:
        tags = partial["tags"] or []
        if isinstance(tags, str) or not all(isinstance(t, str) for t in tags):
            raise ValidationError("Tags must be a list of strings", field_name="tags")
        values["tags"] = [t.strip() for t in tags if t.strip()]

    if "source_ref" in partial:
        raw = partial["source_ref"]
        source_ref = SourceRef.from_value(raw)
        if raw is not None and source_ref is None:
            raise ValidationError(f"Invalid source reference: {raw!r}", field_name="source_ref")
        values["source_ref"] = source_ref

    return values
