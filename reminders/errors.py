"""
Nudge - Error Types
Exception taxonomy and a fault recorder for host-level diagnostics
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List

from core.logger import log_warning, log_error, log_debug
import config


class ReminderError(Exception):
    """Base class for every error raised by the reminder engine."""
    pass


class ValidationError(ReminderError):
    """
    Bad user input (empty message, missing or past due time, bad snooze).

    Reported to the caller, never retried, never logged as a system fault.
    """

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name


class StoreError(ReminderError):
    """Persistence write failed. The in-memory change is kept."""
    pass


class SchedulerFault(ReminderError):
    """An exception escaped a scheduler check pass."""
    pass


class DeliveryFault(ReminderError):
    """A dispatcher failed to deliver a reminder."""

    def __init__(self, message: str, reminder_id: Optional[str] = None):
        super().__init__(message)
        self.reminder_id = reminder_id


class ErrorCategory(Enum):
    """Where a fault came from."""
    VALIDATION = "validation"
    DATA_ACCESS = "data_access"
    SCHEDULER = "scheduler"
    NOTIFICATION = "notification"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    LOW = "low"            # Minor issue, functionality continues
    MEDIUM = "medium"      # Some functionality affected
    HIGH = "high"          # Major functionality broken
    CRITICAL = "critical"  # Engine unusable


@dataclass
class FaultRecord:
    """
    One recorded fault.

    Attributes:
        category: Where the fault came from
        severity: How bad it is
        message: Description for the diagnostic log
        context: Extra data (reminder id, counts, ...)
        original_error: The exception that caused it, if any
        timestamp: When it was recorded
        can_retry: Whether a later attempt may succeed
    """
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    original_error: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=datetime.now)
    can_retry: bool = False

    def format(self) -> str:
        line = f"{self.category.value.upper()}: {self.message}"
        if self.context:
            details = ", ".join(f"{k}={v}" for k, v in self.context.items())
            line += f" | {details}"
        if self.original_error is not None:
            line += f" ({type(self.original_error).__name__}: {self.original_error})"
        return line


class ErrorHandler:
    """
    Logs faults by severity and keeps a bounded, newest-first history.

    The store, scheduler and dispatcher of one engine share a handler so the
    host can inspect recent faults in one place.
    """

    def __init__(self, history_limit: int = config.ERROR_HISTORY_LIMIT):
        self._history: List[FaultRecord] = []
        self._history_limit = history_limit
        self._lock = threading.Lock()

    def record(self, fault: FaultRecord) -> FaultRecord:
        with self._lock:
            self._history.insert(0, fault)
            del self._history[self._history_limit:]

        if fault.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            log_error(fault.format())
        elif fault.severity == ErrorSeverity.MEDIUM:
            log_warning(fault.format())
        else:
            log_debug(fault.format())
        return fault

    def handle_data_error(self, message: str, error: Optional[BaseException] = None, **context) -> FaultRecord:
        """Persistence or collection access failure."""
        return self.record(FaultRecord(
            category=ErrorCategory.DATA_ACCESS,
            severity=ErrorSeverity.MEDIUM,
            message=message,
            context=context,
            original_error=error,
            can_retry=True,
        ))

    def handle_scheduler_error(
        self,
        message: str,
        error: Optional[BaseException] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        **context
    ) -> FaultRecord:
        return self.record(FaultRecord(
            category=ErrorCategory.SCHEDULER,
            severity=severity,
            message=message,
            context=context,
            original_error=error,
            can_retry=True,
        ))

    def handle_delivery_error(self, message: str, error: Optional[BaseException] = None, **context) -> FaultRecord:
        """Delivery failures are not retried automatically."""
        return self.record(FaultRecord(
            category=ErrorCategory.NOTIFICATION,
            severity=ErrorSeverity.MEDIUM,
            message=message,
            context=context,
            original_error=error,
            can_retry=False,
        ))

    def get_history(self, category: Optional[ErrorCategory] = None) -> List[FaultRecord]:
        with self._lock:
            if category is None:
                return list(self._history)
            return [f for f in self._history if f.category == category]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
