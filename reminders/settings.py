"""
Nudge - Reminder Settings
The settings block of the persisted document, with default merging
"""

import math
from dataclasses import dataclass, asdict, fields, replace
from enum import Enum
from typing import Any, Dict, Optional

from core.logger import log_warning
from reminders.errors import ValidationError
from reminders.models import Priority
import config


class RenotifyInterval(Enum):
    """How often an overdue, unhandled reminder is delivered again."""
    NEVER = "never"
    FIVE_MINUTES = "5m"
    FIFTEEN_MINUTES = "15m"
    THIRTY_MINUTES = "30m"
    HOURLY = "1h"

    @property
    def seconds(self) -> Optional[int]:
        return _RENOTIFY_SECONDS[self]


_RENOTIFY_SECONDS = {
    RenotifyInterval.NEVER: None,
    RenotifyInterval.FIVE_MINUTES: 5 * 60,
    RenotifyInterval.FIFTEEN_MINUTES: 15 * 60,
    RenotifyInterval.THIRTY_MINUTES: 30 * 60,
    RenotifyInterval.HOURLY: 60 * 60,
}


def _default_renotify() -> RenotifyInterval:
    try:
        return RenotifyInterval(config.RENOTIFY_INTERVAL)
    except ValueError:
        return RenotifyInterval.NEVER


# Seconds or minutes; each must be positive and finite
DURATION_FIELDS = ("fast_check_interval", "slow_check_interval", "lookahead_minutes", "trigger_threshold_seconds")

# Keys written by earlier versions of the document -> (current key, converter)
LEGACY_KEYS = {
    "fastCheckInterval": ("fast_check_interval", lambda ms: float(ms) / 1000.0),
    "slowCheckInterval": ("slow_check_interval", lambda ms: float(ms) / 1000.0),
    "showSystemNotification": ("show_system_notification", bool),
    "showObsidianNotice": ("show_in_app_notice", bool),
    "showDebugLog": ("show_debug_log", bool),
    "defaultPriority": ("default_priority", str),
}


@dataclass(frozen=True)
class ReminderSettings:
    """
    Engine settings. Intervals are in seconds.

    Frozen: change settings with `with_changes()` (or the store's
    update_settings), which validates and returns a new instance.
    """
    fast_check_interval: float = config.FAST_CHECK_INTERVAL
    slow_check_interval: float = config.SLOW_CHECK_INTERVAL
    lookahead_minutes: float = config.UPCOMING_THRESHOLD_MINUTES
    trigger_threshold_seconds: float = config.TRIGGER_THRESHOLD_SECONDS
    default_priority: Priority = Priority.parse(config.DEFAULT_PRIORITY, default=Priority.NORMAL)
    show_system_notification: bool = config.SHOW_SYSTEM_NOTIFICATION
    show_in_app_notice: bool = config.SHOW_IN_APP_NOTICE
    show_debug_log: bool = config.SHOW_DEBUG_LOG
    renotify_interval: RenotifyInterval = _default_renotify()

    def with_changes(self, **changes) -> "ReminderSettings":
        """
        Return a copy with the given fields changed.

        Raises:
            ValidationError: On unknown fields or invalid values
        """
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        coerced = {}
        for name, value in changes.items():
            try:
                coerced[name] = _coerce(name, value)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid value for {name}: {value!r}", field_name=name) from e

        updated = replace(self, **coerced)
        for name in DURATION_FIELDS:
            value = getattr(updated, name)
            if not math.isfinite(value) or value <= 0:
                raise ValidationError(f"{name} must be a positive finite number", field_name=name)
        return updated

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["default_priority"] = self.default_priority.value
        data["renotify_interval"] = self.renotify_interval.value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ReminderSettings":
        """
        Merge a loaded (possibly partial or older) settings block over the defaults.

        Unknown keys are ignored; invalid values keep the default.
        """
        settings = cls()
        if not data:
            return settings

        normalized: Dict[str, Any] = {}
        for key, value in data.items():
            if key in LEGACY_KEYS:
                new_key, convert = LEGACY_KEYS[key]
                if new_key in data:
                    continue
                try:
                    normalized[new_key] = convert(value)
                except (TypeError, ValueError):
                    log_warning(f"Ignoring invalid legacy setting {key}={value!r}")
            else:
                normalized[key] = value

        known = {f.name for f in fields(cls)}
        for key, value in normalized.items():
            if key not in known:
                continue
            try:
                settings = settings.with_changes(**{key: value})
            except ValidationError:
                log_warning(f"Ignoring invalid setting {key}={value!r}, using default")

        return settings


def _coerce(name: str, value: Any) -> Any:
    if name == "default_priority":
        return Priority.parse(value)
    if name == "renotify_interval":
        return value if isinstance(value, RenotifyInterval) else RenotifyInterval(value)
    if name in DURATION_FIELDS:
        if isinstance(value, bool):
            raise TypeError(f"{name} must be a number")
        return float(value)
    if name in ("show_system_notification", "show_in_app_notice", "show_debug_log"):
        if not isinstance(value, bool):
            raise TypeError(f"{name} must be a bool")
        return value
    return value
