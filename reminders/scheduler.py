"""
Nudge - Reminder Scheduler
Background thread that polls the store at adaptive intervals and delivers
each due reminder at most once per scheduler session.
"""

import math
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Any, List, Optional, Set

from core.clock import now as system_now, seconds_between
from core.logger import log_info, log_debug, log_warning
from concurrency.locks import LockManager
from reminders.dispatcher import Dispatcher
from reminders.errors import DeliveryFault, ErrorHandler, ErrorSeverity, SchedulerFault
from reminders.models import Reminder
from reminders.store import ReminderStore
import config


class ReminderScheduler:
    """
    Polls the store and fires due reminders through the dispatcher.

    States: stopped (initial) and running. While running, a daemon thread
    repeats: pick the next interval, wait on its session event, then run one
    check pass. The interval is fast while any reminder is due within the
    lookahead window, slow otherwise.

    Dedup: an id enters the processed set just before its delivery is
    attempted, and stays there until the reminder is deleted or completed,
    its snooze expires, or the scheduler restarts.
    """

    def __init__(
        self,
        store: ReminderStore,
        dispatcher: Dispatcher,
        clock: Callable[[], datetime] = system_now,
        lock_manager: Optional[LockManager] = None,
        error_handler: Optional[ErrorHandler] = None,
        on_degraded: Optional[Callable[[int], None]] = None,
        fault_threshold: int = config.SCHEDULER_FAULT_THRESHOLD
    ):
        """
        Args:
            store: Reminder store (read, plus snooze-clear and notified stamps)
            dispatcher: Delivery boundary
            clock: Source of the current instant
            lock_manager: Shared lock manager (uses the "scheduler" lock)
            error_handler: Shared fault recorder
            on_degraded: Called with the consecutive fault count once it
                reaches fault_threshold, and again on every further fault
            fault_threshold: Consecutive faults before the degraded signal
        """
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock
        self._lock_manager = lock_manager or LockManager()
        self._error_handler = error_handler or ErrorHandler()
        self._on_degraded = on_degraded
        self.fault_threshold = fault_threshold

        self._thread: Optional[threading.Thread] = None
        self._session: Optional[threading.Event] = None  # Set when its session is stopped
        self._running = False

        self._processed: Set[str] = set()
        self._check_count = 0
        self._last_check: Optional[datetime] = None
        self._consecutive_faults = 0
        self._total_faults = 0
        self._delivered_count = 0

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Start polling. No-op while already running."""
        if self._running:
            return

        with self._lock_manager.acquire("scheduler"):
            self._processed.clear()
            self._check_count = 0
            self._consecutive_faults = 0

        session = threading.Event()
        self._session = session
        self._running = True

        self._thread = threading.Thread(
            target=self._scheduler_loop,
            args=(session,),
            daemon=True,
            name="ReminderScheduler"
        )
        self._thread.start()
        log_info("Reminder scheduler started", prefix="⏰")

    def stop(self) -> None:
        """Stop polling and forget processed ids. No-op while stopped."""
        if not self._running:
            return

        self._running = False
        session, self._session = self._session, None
        if session is not None:
            session.set()

        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=config.SCHEDULER_JOIN_TIMEOUT)
            if thread.is_alive():
                log_warning("Scheduler thread still finishing a check pass; it will exit after it")

        with self._lock_manager.acquire("scheduler"):
            self._processed.clear()
        log_info("Reminder scheduler stopped", prefix="⏰")

    def is_running(self) -> bool:
        return self._running

    @property
    def is_degraded(self) -> bool:
        """True from the threshold-th consecutive faulted pass until a pass succeeds."""
        return self._consecutive_faults >= self.fault_threshold

    @property
    def processed_ids(self) -> Set[str]:
        return set(self._processed)

    def _scheduler_loop(self, session: threading.Event) -> None:
        """
        Main loop for one session: wait the adaptive interval, then run one
        guarded pass. Exits once its own session event is set, even if a
        newer session has started meanwhile.
        """
        while not session.is_set():
            interval = self._safe_interval()
            if session.wait(interval):
                break
            self.run_check()

    def _safe_interval(self) -> float:
        """next_interval, bounded to a positive finite wait."""
        try:
            interval = float(self.next_interval(self._clock()))
        except Exception as e:
            log_warning(f"Could not compute check interval, using fallback interval: {e}")
            return config.FALLBACK_CHECK_INTERVAL

        if not math.isfinite(interval) or interval <= 0:
            log_warning(f"Invalid check interval {interval!r}, using fallback interval")
            return config.FALLBACK_CHECK_INTERVAL
        return min(interval, config.MAX_CHECK_INTERVAL)

    def tick(self) -> bool:
        """
        One scheduled tick: re-check the running flag, then run a check pass.

        Returns whether a pass ran.
        """
        if not self._running:
            return False
        self.run_check()
        return True

    def schedule_immediate(self) -> None:
        """Run one check pass now without touching the scheduled tick."""
        self.run_check()

    def rearm(self, reminder_id: str) -> None:
        """Forget that a reminder fired, so its (new) due time fires again."""
        with self._lock_manager.acquire("scheduler"):
            self._processed.discard(reminder_id)

    # =========================================================================
    # INTERVAL SELECTION
    # =========================================================================

    def next_interval(self, now: datetime) -> float:
        """
        Fast interval if any active reminder's effective due time falls
        strictly between now and the end of the lookahead window, slow
        otherwise.

        The effective due time of a reminder whose snooze has expired is the
        snooze expiry; a reminder still snoozed is ignored. Already overdue
        reminders do not keep the loop fast.
        """
        settings = self._store.settings
        if self.has_upcoming(now, settings.lookahead_minutes):
            return settings.fast_check_interval
        return settings.slow_check_interval

    def has_upcoming(self, now: datetime, lookahead_minutes: float) -> bool:
        horizon = now + timedelta(minutes=lookahead_minutes)
        for reminder in self._store.active():
            if reminder.is_snoozed(now):
                continue
            effective = reminder.snoozed_until or reminder.due_at
            if now < effective < horizon:
                return True
        return False

    # =========================================================================
    # CHECK PASS
    # =========================================================================

    def run_check(self) -> None:
        """
        Run one check pass under the scheduler lock.

        Any exception is recorded as a SchedulerFault and never escapes;
        the processed set is only ever grown before delivery, so a failed
        pass cannot make an id eligible twice.
        """
        with self._lock_manager.acquire("scheduler"):
            try:
                fired = self._check_pass()
            except Exception as e:
                self._record_fault(e)
                return

            self._check_count += 1
            if self._consecutive_faults:
                log_info(f"Scheduler recovered after {self._consecutive_faults} failed pass(es)", prefix="⏰")
            self._consecutive_faults = 0
            if fired:
                log_debug(f"Check #{self._check_count}: fired {len(fired)} reminder(s)", prefix="⏰")

    def _check_pass(self) -> List[str]:
        now = self._clock()
        self._last_check = now
        settings = self._store.settings

        for reminder_id in self._store.clear_expired_snoozes(now):
            self._processed.discard(reminder_id)
            log_debug(f"Snooze expired for {reminder_id}", prefix="⏰")

        active = self._store.active()
        self._processed &= {r.id for r in active}

        fired = []
        for reminder in active:
            if reminder.is_snoozed(now):
                continue
            if seconds_between(reminder.due_at, now) > settings.trigger_threshold_seconds:
                continue
            if reminder.due_at > now:
                continue

            if reminder.id not in self._processed:
                self._processed.add(reminder.id)
                self._fire(reminder, now)
                fired.append(reminder.id)
            elif self._renotify_due(reminder, now, settings.renotify_interval.seconds):
                self._fire(reminder, now)
                fired.append(reminder.id)

        return fired

    def _renotify_due(self, reminder: Reminder, now: datetime, interval: Optional[int]) -> bool:
        if interval is None or reminder.notified_at is None:
            return False
        return seconds_between(now, reminder.notified_at) >= interval

    def _fire(self, reminder: Reminder, now: datetime) -> None:
        self._store.mark_notified(reminder.id, now)
        try:
            delivered = self._dispatcher.deliver(reminder)
        except Exception as e:
            self._error_handler.handle_delivery_error(
                f"Delivery raised for reminder {reminder.id}",
                DeliveryFault(str(e), reminder_id=reminder.id),
                reminder_id=reminder.id,
            )
            return

        if delivered is False:
            self._error_handler.handle_delivery_error(
                f"No surface delivered reminder {reminder.id}",
                DeliveryFault("all surfaces failed", reminder_id=reminder.id),
                reminder_id=reminder.id,
            )
            return

        self._delivered_count += 1
        log_info(f"Reminder due: {reminder.message[:60]}", prefix=reminder.priority.icon)

    def _record_fault(self, error: Exception) -> None:
        self._consecutive_faults += 1
        self._total_faults += 1
        severity = ErrorSeverity.HIGH if self.is_degraded else ErrorSeverity.MEDIUM
        self._error_handler.handle_scheduler_error(
            "Check pass failed",
            SchedulerFault(f"{type(error).__name__}: {error}"),
            severity=severity,
            consecutive=self._consecutive_faults,
        )

        if self.is_degraded and self._on_degraded is not None:
            try:
                self._on_degraded(self._consecutive_faults)
            except Exception as e:
                log_warning(f"Degraded-state callback failed: {e}")

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "check_count": self._check_count,
            "last_check": self._last_check,
            "processed_count": len(self._processed),
            "delivered_count": self._delivered_count,
            "consecutive_faults": self._consecutive_faults,
            "total_faults": self._total_faults,
            "degraded": self.is_degraded,
        }
