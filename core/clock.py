"""
Nudge - Clock Utilities
Pure helpers for the current instant, parsing, offsets and display
"""

import re
from datetime import datetime, timedelta
from typing import Optional, Union

Instant = Union[datetime, str]

# Patterns for relative time expressions
TIME_PATTERNS = [
    # "in X minutes/hours/days"
    (r'in\s+(\d+)\s*(?:min(?:ute)?s?)$', 'minutes'),
    (r'in\s+(\d+)\s*(?:h(?:ou)?rs?)$', 'hours'),
    (r'in\s+(\d+)\s*(?:days?)$', 'days'),

    # "Xm", "Xh", "Xd" shorthand
    (r'(\d+)\s*m$', 'minutes'),
    (r'(\d+)\s*h$', 'hours'),
    (r'(\d+)\s*d$', 'days'),

    # Relative day expressions
    (r'tomorrow\s+morning$', 'tomorrow_morning'),
    (r'tomorrow\s+afternoon$', 'tomorrow_afternoon'),
    (r'tomorrow\s+evening$', 'tomorrow_evening'),
    (r'tomorrow$', 'tomorrow'),
    (r'later(?:\s+today)?$', 'later_today'),
    (r'this\s+evening$', 'this_evening'),
    (r'tonight$', 'tonight'),
]

DISPLAY_FORMAT = "%b %d, %I:%M %p"


def now() -> datetime:
    """Current local instant. Injected wherever a clock is needed."""
    return datetime.now()


def parse_instant(value: Optional[Instant]) -> Optional[datetime]:
    """
    Parse a datetime or ISO-8601 string into a naive local datetime.

    Returns None for empty or unparseable input. A trailing 'Z' and other
    UTC offsets are accepted and converted to local time.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def is_valid_instant(value: Optional[Instant]) -> bool:
    return parse_instant(value) is not None


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize an instant for the persisted document."""
    return value.isoformat() if value is not None else None


def minutes_from_now(minutes: float, current: Optional[datetime] = None) -> datetime:
    return (current or now()) + timedelta(minutes=minutes)


def hours_from_now(hours: float, current: Optional[datetime] = None) -> datetime:
    return (current or now()) + timedelta(hours=hours)


def tomorrow_at(hour: int = 9, minute: int = 0, current: Optional[datetime] = None) -> datetime:
    """Tomorrow at the given wall-clock time (default 9 AM)."""
    tomorrow = (current or now()) + timedelta(days=1)
    return tomorrow.replace(hour=hour, minute=minute, second=0, microsecond=0)


def snooze_until(minutes: float, current: Optional[datetime] = None) -> datetime:
    """Instant at which a snooze of the given length expires."""
    return minutes_from_now(minutes, current)


def is_in_past(value: Optional[Instant], current: Optional[datetime] = None) -> bool:
    parsed = parse_instant(value)
    if parsed is None:
        return False
    return parsed < (current or now())


def is_in_future(value: Optional[Instant], current: Optional[datetime] = None) -> bool:
    parsed = parse_instant(value)
    if parsed is None:
        return False
    return parsed > (current or now())


def seconds_between(later: datetime, earlier: datetime) -> float:
    """Signed seconds from earlier to later (negative when later is before)."""
    return (later - earlier).total_seconds()


def parse_time_expression(expression: str, current: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse a relative time expression into a datetime.

    Args:
        expression: Text such as "in 15 minutes", "2h", "tomorrow morning"
        current: Reference instant (defaults to now())

    Returns:
        The resolved datetime, or None if the expression is not understood
    """
    current = current or now()
    expression = expression.lower().strip()

    for pattern, unit in TIME_PATTERNS:
        match = re.match(pattern, expression)
        if not match:
            continue

        if unit == 'minutes':
            return current + timedelta(minutes=int(match.group(1)))
        elif unit == 'hours':
            return current + timedelta(hours=int(match.group(1)))
        elif unit == 'days':
            return current + timedelta(days=int(match.group(1)))
        elif unit in ('tomorrow', 'tomorrow_morning'):
            return tomorrow_at(9, 0, current)
        elif unit == 'tomorrow_afternoon':
            return tomorrow_at(14, 0, current)
        elif unit == 'tomorrow_evening':
            return tomorrow_at(18, 0, current)
        elif unit == 'later_today':
            return current + timedelta(hours=2)
        elif unit == 'this_evening':
            return current.replace(hour=18, minute=0, second=0, microsecond=0)
        elif unit == 'tonight':
            return current.replace(hour=20, minute=0, second=0, microsecond=0)

    # Bare number means hours
    try:
        return current + timedelta(hours=float(expression))
    except ValueError:
        return None


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count != 1 else ''}"


def format_relative(value: Optional[datetime], current: Optional[datetime] = None) -> str:
    """
    Format an instant relative to now.

    Returns:
        "in 5 minutes", "in 2 hours", "tomorrow", "3 minutes ago", "yesterday", ...
    """
    if value is None:
        return "unknown"

    seconds = seconds_between(value, current or now())
    future = seconds >= 0
    seconds = abs(seconds)

    if seconds < 60:
        return "in less than a minute" if future else "just now"

    if seconds < 3600:
        text = _plural(int(seconds / 60), "minute")
    elif seconds < 86400:
        text = _plural(int(seconds / 3600), "hour")
    else:
        days = int(seconds / 86400)
        if days == 1:
            return "tomorrow" if future else "yesterday"
        text = _plural(days, "day")

    return f"in {text}" if future else f"{text} ago"


def format_display(value: Optional[datetime], fallback: str = "Invalid date") -> str:
    """Absolute display form, e.g. "Jan 15, 02:30 PM"."""
    if value is None:
        return fallback
    return value.strftime(DISPLAY_FORMAT)


def format_with_relative(value: Optional[datetime], current: Optional[datetime] = None) -> str:
    """Absolute plus relative form, e.g. "Jan 15, 02:30 PM (in 5 minutes)"."""
    if value is None:
        return "No date set"
    return f"{format_display(value)} ({format_relative(value, current)})"
