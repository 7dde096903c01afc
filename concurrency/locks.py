"""
Nudge - Lock Management
Named re-entrant locks with acquisition tracking and statistics
"""

import threading
import time
from datetime import datetime
from typing import Dict, Optional, Any
from dataclasses import dataclass
from contextlib import contextmanager
from collections import defaultdict

from core.logger import log_section, log_subsection

# Locks every engine instance needs
DEFAULT_LOCKS = (
    "reminders",     # Store collection (read-modify-write sequences)
    "scheduler",     # One check pass at a time
    "persistence",   # Debounce timer handle and document writes
)


@dataclass
class LockStats:
    """Statistics for a single lock."""
    acquisitions: int = 0
    contentions: int = 0  # Times lock was already held by another thread
    total_wait_time: float = 0.0
    total_hold_time: float = 0.0
    max_wait_time: float = 0.0
    max_hold_time: float = 0.0
    last_acquired: Optional[datetime] = None
    last_released: Optional[datetime] = None


class LockManager:
    """
    Manages named locks with monitoring and statistics.

    One instance is shared by the store, scheduler and writer of an engine,
    so the debug log can show where time is spent waiting.
    """

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._stats: Dict[str, LockStats] = defaultdict(LockStats)
        self._meta_lock = threading.Lock()  # Protects the dictionaries
        self._active_holders: Dict[str, Optional[int]] = {}
        self._hold_depth: Dict[str, int] = defaultdict(int)

        for name in DEFAULT_LOCKS:
            self._locks[name] = threading.RLock()
            self._stats[name] = LockStats()

    @contextmanager
    def acquire(self, lock_name: str, timeout: Optional[float] = None):
        """
        Acquire a named lock with optional timeout.

        Args:
            lock_name: Name of the lock to acquire
            timeout: Optional timeout in seconds

        Raises:
            TimeoutError: If timeout expires before lock acquired
            KeyError: If lock_name doesn't exist
        """
        with self._meta_lock:
            if lock_name not in self._locks:
                raise KeyError(f"Unknown lock: {lock_name}")
            lock = self._locks[lock_name]
            current_holder = self._active_holders.get(lock_name)

        thread_id = threading.current_thread().ident
        start_wait = time.monotonic()

        if current_holder is not None and current_holder != thread_id:
            with self._meta_lock:
                self._stats[lock_name].contentions += 1

        if timeout is not None:
            if not lock.acquire(timeout=timeout):
                raise TimeoutError(f"Timeout waiting for lock: {lock_name}")
        else:
            lock.acquire()

        acquire_time = time.monotonic()
        wait_time = acquire_time - start_wait

        with self._meta_lock:
            stats = self._stats[lock_name]
            stats.acquisitions += 1
            stats.total_wait_time += wait_time
            stats.max_wait_time = max(stats.max_wait_time, wait_time)
            stats.last_acquired = datetime.now()
            self._active_holders[lock_name] = thread_id
            self._hold_depth[lock_name] += 1

        try:
            yield
        finally:
            hold_time = time.monotonic() - acquire_time

            with self._meta_lock:
                stats = self._stats[lock_name]
                stats.total_hold_time += hold_time
                stats.max_hold_time = max(stats.max_hold_time, hold_time)
                stats.last_released = datetime.now()
                self._hold_depth[lock_name] -= 1
                if self._hold_depth[lock_name] == 0:
                    self._active_holders[lock_name] = None

            lock.release()

    def create_lock(self, name: str) -> None:
        """Create a new named re-entrant lock."""
        with self._meta_lock:
            if name not in self._locks:
                self._locks[name] = threading.RLock()
                self._stats[name] = LockStats()

    def get_stats(self, lock_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Get statistics for locks.

        Args:
            lock_name: Specific lock name, or None for all locks

        Returns:
            Dict of lock statistics
        """
        with self._meta_lock:
            if lock_name:
                if lock_name not in self._stats:
                    return {}
                return self._format_stats(lock_name, self._stats[lock_name])

            return {
                name: self._format_stats(name, stats)
                for name, stats in self._stats.items()
            }

    def _format_stats(self, name: str, stats: LockStats) -> Dict[str, Any]:
        return {
            "acquisitions": stats.acquisitions,
            "contentions": stats.contentions,
            "avg_wait_time": stats.total_wait_time / max(stats.acquisitions, 1),
            "max_wait_time": stats.max_wait_time,
            "avg_hold_time": stats.total_hold_time / max(stats.acquisitions, 1),
            "max_hold_time": stats.max_hold_time,
            "currently_held": self._active_holders.get(name) is not None,
        }

    def log_stats(self) -> None:
        """Log current lock statistics."""
        stats = self.get_stats()

        log_section("Lock Statistics", "🔒")

        for name, data in stats.items():
            if data["acquisitions"] > 0:
                log_subsection(
                    f"{name}: {data['acquisitions']} acq, "
                    f"{data['contentions']} contentions, "
                    f"avg wait {data['avg_wait_time']*1000:.1f}ms, "
                    f"avg hold {data['avg_hold_time']*1000:.1f}ms"
                )
