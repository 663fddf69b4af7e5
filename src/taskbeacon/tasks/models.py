# src/taskbeacon/tasks/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

WINDOW_SIZE = 6
DEFAULT_REMIND_BEFORE_MINUTES = 30


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - OVERDUE is time-derived (see lifecycle.effective_status); it may also be
      stored when a client writes it explicitly.
    """

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ReminderFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class EndType(StrEnum):
    FOREVER = "forever"
    UNTIL = "until"
    COUNT = "count"


class NotificationType(StrEnum):
    REMINDER = "reminder"
    DEADLINE = "deadline"
    DEPENDENCY = "dependency"


class NotificationStatus(StrEnum):
    """
    Notification delivery status.

    PENDING doubles as the sweep's claim state: a row moves upcoming -> pending
    while it is being dispatched, then pending -> sent (or back to upcoming).
    """

    UPCOMING = "upcoming"
    SENT = "sent"
    MISSED = "missed"
    PENDING = "pending"

    @classmethod
    def from_db(cls, raw: str | None) -> NotificationStatus:
        if not raw:
            return cls.UPCOMING
        try:
            return cls(raw)
        except ValueError:
            return cls.UPCOMING


class ActionType(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True, frozen=True)
class RecurrenceRule:
    frequency: Frequency
    # Informational for weekly rules; 0=Sunday ... 6=Saturday.
    day_of_week: int | None = None
    day_of_month: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "dayOfWeek": self.day_of_week,
            "dayOfMonth": self.day_of_month,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RecurrenceRule:
        return cls(
            frequency=Frequency(raw["frequency"]),
            day_of_week=raw.get("dayOfWeek"),
            day_of_month=raw.get("dayOfMonth"),
        )


@dataclass(slots=True, frozen=True)
class RecurrenceEnd:
    type: EndType = EndType.FOREVER
    end_date: int | None = None
    occurrences: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "endDate": self.end_date,
            "occurrences": self.occurrences,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> RecurrenceEnd | None:
        if not raw:
            return None
        return cls(
            type=EndType(raw.get("type") or EndType.FOREVER.value),
            end_date=raw.get("endDate"),
            occurrences=raw.get("occurrences"),
        )


@dataclass(slots=True, frozen=True)
class ReminderRule:
    frequency: ReminderFrequency
    time: str  # "HH:MM", 24h wall clock
    day_of_week: int | None = None  # 0=Sunday ... 6=Saturday
    day_of_month: int | None = None  # 1..31
    month_of_year: int | None = None  # 1..12, yearly only

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "time": self.time,
            "dayOfWeek": self.day_of_week,
            "dayOfMonth": self.day_of_month,
            "monthOfYear": self.month_of_year,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ReminderRule:
        return cls(
            frequency=ReminderFrequency(raw["frequency"]),
            time=str(raw["time"]),
            day_of_week=raw.get("dayOfWeek"),
            day_of_month=raw.get("dayOfMonth"),
            month_of_year=raw.get("monthOfYear"),
        )


@dataclass(slots=True)
class Task:
    id: int
    owner_id: str
    title: str
    due_date: int
    priority: Priority
    status: TaskStatus
    created_at: int

    description: str | None = None
    tags: list[str] = field(default_factory=list)
    dependencies: list[int] = field(default_factory=list)
    group_id: int | None = None
    is_shared: bool = False
    recurring_task_id: int | None = None
    instance_number: int | None = None
    completed_at: int | None = None

    def snapshot(self) -> dict[str, Any]:
        """Full field capture used for undo (TaskLifecycle.restore)."""
        return {
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date,
            "priority": self.priority,
            "status": self.status,
            "tags": list(self.tags),
            "dependencies": list(self.dependencies),
            "group_id": self.group_id,
            "is_shared": self.is_shared,
            "recurring_task_id": self.recurring_task_id,
            "instance_number": self.instance_number,
            "completed_at": self.completed_at,
        }


@dataclass(slots=True)
class RecurringTaskTemplate:
    id: int
    owner_id: str
    title: str
    priority: Priority
    recurrence_rule: RecurrenceRule
    is_active: bool
    created_at: int

    description: str | None = None
    tags: list[str] = field(default_factory=list)
    recurrence_end: RecurrenceEnd | None = None
    group_id: int | None = None
    is_shared: bool = False
    generated_count: int = 0


@dataclass(slots=True)
class Reminder:
    id: int
    owner_id: str
    title: str
    recurrence_rule: ReminderRule
    show_on_calendar: bool
    is_shared: bool
    is_active: bool
    created_at: int

    recurrence_end: RecurrenceEnd | None = None
    group_id: int | None = None
    last_fired_bucket: int | None = None
    fired_count: int = 0


@dataclass(slots=True)
class Notification:
    id: int
    user_id: str
    task_id: int
    message: str
    type: NotificationType
    read: bool
    scheduled_time: int
    status: NotificationStatus

    remind_before: int | None = None
    claimed_at: int | None = None


@dataclass(slots=True)
class Group:
    id: int
    name: str
    created_by: str
    members: list[str] = field(default_factory=list)
    description: str | None = None


@dataclass(slots=True, frozen=True)
class DeviceToken:
    id: int
    user_id: str
    token: str
    last_updated: int
    platform: str | None = None


@dataclass(slots=True, frozen=True)
class SendResult:
    success_count: int
    failure_count: int

    @property
    def token_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def delivered(self) -> bool:
        """At least one token accepted the message, or there was nobody to deliver to."""
        return self.success_count > 0 or self.token_count == 0


@dataclass(slots=True)
class ActionRecord:
    """One entry of a user's task history; states are Task.snapshot() dicts."""

    id: int
    user_id: str
    type: ActionType
    task_id: int
    created_at: int

    previous_state: dict[str, Any] | None = None
    new_state: dict[str, Any] | None = None
