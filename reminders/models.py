"""
Nudge - Reminder Model
The reminder record, its enums, and statistics
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from core.clock import parse_instant, to_iso


class Priority(Enum):
    """Importance levels, lowest to highest."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def icon(self) -> str:
        return PRIORITY_ICONS[self]

    @classmethod
    def parse(cls, value, default: "Priority" = None) -> "Priority":
        """Accept a Priority or its string value; fall back to default."""
        if isinstance(value, Priority):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            if default is None:
                raise
            return default


PRIORITY_ICONS = {
    Priority.LOW: "🔵",
    Priority.NORMAL: "⚪",
    Priority.HIGH: "🟡",
    Priority.URGENT: "🔴",
}


class FilterType(Enum):
    """View selectors over the reminder collection."""
    PENDING = "pending"
    UPCOMING = "upcoming"
    SNOOZED = "snoozed"
    COMPLETED = "completed"
    ALL = "all"


@dataclass(frozen=True)
class SourceRef:
    """Pointer to the document (and optional line) a reminder was created from."""
    path: str
    line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "line": self.line}

    @classmethod
    def from_value(cls, value) -> Optional["SourceRef"]:
        if value is None or isinstance(value, SourceRef):
            return value
        if isinstance(value, str):
            return cls(path=value)
        if isinstance(value, dict) and value.get("path"):
            line = value.get("line")
            return cls(path=value["path"], line=int(line) if line is not None else None)
        return None


@dataclass
class Reminder:
    """
    A single reminder at a fixed instant.

    Attributes:
        id: Unique identifier, never reused within a process run
        message: Display text (non-empty)
        due_at: When the reminder becomes due
        priority: low, normal, high, urgent
        category: Free-form grouping
        tags: Free-form labels
        source_ref: Document the reminder was created from (opaque here)
        completed: Whether the reminder is finished
        completed_at: Set iff completed
        snoozed_until: Suppressed until this instant (while not completed)
        snooze_count: Successful snoozes so far
        notified_at: Last delivery instant, used to throttle re-notification
        created_at: Creation instant
        updated_at: Last mutation instant
    """
    id: str
    message: str
    due_at: datetime
    created_at: datetime
    updated_at: datetime
    priority: Priority = Priority.NORMAL
    category: str = ""
    tags: List[str] = field(default_factory=list)
    source_ref: Optional[SourceRef] = None
    completed: bool = False
    completed_at: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    snooze_count: int = 0
    notified_at: Optional[datetime] = None

    def is_snoozed(self, now: datetime) -> bool:
        """True exactly while now < snoozed_until."""
        return self.snoozed_until is not None and now < self.snoozed_until

    def is_overdue(self, now: datetime) -> bool:
        """Past due and not completed, regardless of snooze."""
        return not self.completed and self.due_at <= now

    def copy(self) -> "Reminder":
        return replace(self, tags=list(self.tags))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "message": self.message,
            "due_at": to_iso(self.due_at),
            "priority": self.priority.value,
            "category": self.category,
            "tags": list(self.tags),
            "source_ref": self.source_ref.to_dict() if self.source_ref else None,
            "completed": self.completed,
            "completed_at": to_iso(self.completed_at),
            "snoozed_until": to_iso(self.snoozed_until),
            "snooze_count": self.snooze_count,
            "notified_at": to_iso(self.notified_at),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reminder":
        """
        Build a reminder from a persisted record.

        Accepts both the current snake_case shape and the older camelCase
        one (datetime / created / updated / sourceNote ...).

        Raises:
            ValueError: If id, message or due time is missing or invalid
        """
        def pick(*keys):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        reminder_id = pick("id")
        message = pick("message")
        due_at = parse_instant(pick("due_at", "datetime"))
        if not reminder_id or not message or due_at is None:
            raise ValueError(f"Invalid reminder record: {data!r}")

        created_at = parse_instant(pick("created_at", "created")) or due_at
        updated_at = parse_instant(pick("updated_at", "updated")) or created_at
        if updated_at < created_at:
            updated_at = created_at

        source_ref = SourceRef.from_value(pick("source_ref"))
        if source_ref is None and pick("sourceNote"):
            line = pick("sourceLine")
            source_ref = SourceRef(path=pick("sourceNote"), line=int(line) if line is not None else None)

        completed = bool(pick("completed"))
        completed_at = parse_instant(pick("completed_at", "completedAt"))
        if completed and completed_at is None:
            completed_at = updated_at
        if not completed:
            completed_at = None

        tags = pick("tags") or []

        return cls(
            id=str(reminder_id),
            message=str(message),
            due_at=due_at,
            created_at=created_at,
            updated_at=updated_at,
            priority=Priority.parse(pick("priority") or "normal", default=Priority.NORMAL),
            category=pick("category") or "",
            tags=[str(tag) for tag in tags],
            source_ref=source_ref,
            completed=completed,
            completed_at=completed_at,
            snoozed_until=None if completed else parse_instant(pick("snoozed_until", "snoozedUntil")),
            snooze_count=max(0, int(pick("snooze_count", "snoozeCount") or 0)),
            notified_at=parse_instant(pick("notified_at", "notifiedAt")),
        )


@dataclass
class ReminderStatistics:
    """Counts over the collection at one instant. Snoozed and overdue overlap."""
    total: int = 0
    completed: int = 0
    pending: int = 0
    snoozed: int = 0
    overdue: int = 0
    due_within_24h: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "pending": self.pending,
            "snoozed": self.snoozed,
            "overdue": self.overdue,
            "due_within_24h": self.due_within_24h,
        }
