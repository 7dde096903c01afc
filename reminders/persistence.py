"""
Nudge - Persistence
Debounced writer and the JSON document the reminder collection lives in
"""

import json
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.logger import log_info, log_warning, log_debug
from concurrency.locks import LockManager
from concurrency.retry import io_retry
from reminders.errors import ErrorHandler, StoreError
from reminders.models import Reminder
from reminders.settings import ReminderSettings
import config

Document = Dict[str, Any]


class DebouncedWriter:
    """
    Coalesces rapid mutations into one delayed write.

    `mark_dirty()` (re)starts a single pending timer; when it fires the
    write callback runs once. `flush()` cancels the timer and writes
    synchronously (used on shutdown). A failed write leaves the writer
    dirty, so the next mutation or flush retries it.
    """

    def __init__(
        self,
        write: Callable[[], Optional[bool]],
        delay: float = config.SAVE_DEBOUNCE_SECONDS,
        lock_manager: Optional[LockManager] = None,
        error_handler: Optional[ErrorHandler] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer
    ):
        """
        Args:
            write: Performs the write; returns False or raises on failure
            delay: Quiet period in seconds before a pending write runs
            lock_manager: Shared lock manager (uses the "persistence" lock)
            error_handler: Where failed writes are recorded
            timer_factory: threading.Timer compatible factory (tests replace it)
        """
        self._write = write
        self.delay = delay
        self._lock_manager = lock_manager or LockManager()
        self._error_handler = error_handler or ErrorHandler()
        self._timer_factory = timer_factory

        self._timer: Optional[threading.Timer] = None
        self._dirty = False
        self._write_lock = threading.Lock()  # Serializes writes, never held with "persistence"
        self.write_count = 0
        self.failure_count = 0

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pending(self) -> bool:
        """True while a debounced write is scheduled."""
        return self._timer is not None

    def mark_dirty(self) -> None:
        """Record a change and restart the quiet-period timer."""
        with self._lock_manager.acquire("persistence"):
            self._dirty = True
            self._cancel_timer()
            timer = self._timer_factory(self.delay, self._on_timer)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def flush(self) -> bool:
        """Write now if anything is pending. Returns whether the data is saved."""
        with self._lock_manager.acquire("persistence"):
            self._cancel_timer()
        return self._write_now()

    def cancel(self) -> None:
        """Drop the pending timer without writing."""
        with self._lock_manager.acquire("persistence"):
            self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        with self._lock_manager.acquire("persistence"):
            self._timer = None
        self._write_now()

    def _write_now(self) -> bool:
        with self._write_lock:
            with self._lock_manager.acquire("persistence"):
                if not self._dirty:
                    return True
                self._dirty = False

            try:
                ok = self._write()
                error = None
            except Exception as e:
                ok = False
                error = e

            if ok is False:
                with self._lock_manager.acquire("persistence"):
                    self._dirty = True
                self.failure_count += 1
                self._error_handler.handle_data_error(
                    "Failed to persist reminders; will retry on next change or flush",
                    error or StoreError("persist callback reported failure"),
                    failures=self.failure_count,
                )
                return False

            self.write_count += 1
            log_debug(f"Reminders persisted (write #{self.write_count})", prefix="💾")
            return True


class JsonDocumentStorage:
    """
    Loads and saves the reminder document as a JSON file.

    Document shape: {"reminders": [...], "settings": {...}}.
    Writes go to a temp file that then replaces the target, so a crash
    mid-write never leaves a truncated document.
    """

    def __init__(self, path: Path = config.REMINDERS_DOCUMENT_PATH):
        self.path = Path(path)

    def load(self) -> Document:
        """
        Read the raw document. Missing file -> empty document.

        A corrupt file is moved aside (".corrupt") and an empty document
        returned, so the next save does not silently overwrite it.
        """
        if not self.path.exists():
            log_info(f"No reminder document at {self.path}, starting empty", prefix="📂")
            return {"reminders": [], "settings": {}}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            backup = self.path.with_suffix(self.path.suffix + ".corrupt")
            os.replace(self.path, backup)
            log_warning(f"Invalid reminder document, moved to {backup.name}: {e}")
            return {"reminders": [], "settings": {}}

        if not isinstance(data, dict):
            log_warning("Reminder document is not an object, using defaults")
            return {"reminders": [], "settings": {}}

        return data

    def save(self, document: Document) -> bool:
        """
        Write the document atomically.

        Raises:
            StoreError: If the write still fails after retries
        """
        try:
            self._write_atomic(document)
        except OSError as e:
            raise StoreError(f"Could not write {self.path}: {e}") from e
        return True

    @io_retry()
    def _write_atomic(self, document: Document) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)


def build_document(reminders: List[Reminder], settings: ReminderSettings) -> Document:
    return {
        "reminders": [r.to_dict() for r in reminders],
        "settings": settings.to_dict(),
    }


def parse_document(data: Optional[Document]) -> Tuple[List[Reminder], ReminderSettings]:
    """
    Turn a loaded document into records and settings, merging defaults.

    Invalid reminder records are skipped with a warning; a record whose id
    repeats an earlier one is dropped.
    """
    data = data or {}
    settings = ReminderSettings.from_dict(data.get("settings"))

    reminders: List[Reminder] = []
    seen = set()
    for record in data.get("reminders") or []:
        try:
            reminder = Reminder.from_dict(record)
        except (ValueError, TypeError, AttributeError) as e:
            log_warning(f"Skipping invalid reminder record: {e}")
            continue
        if reminder.id in seen:
            log_warning(f"Skipping duplicate reminder id {reminder.id}")
            continue
        seen.add(reminder.id)
        reminders.append(reminder)

    return reminders, settings
