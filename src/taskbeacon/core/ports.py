# src/taskbeacon/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps storage/push transport swappable and makes testing easier.
"""

from datetime import datetime
from typing import Any, Awaitable, Iterable, Protocol

from ..tasks.models import (
    ActionRecord,
    DeviceToken,
    Group,
    Notification,
    NotificationStatus,
    RecurringTaskTemplate,
    Reminder,
    SendResult,
    Task,
)


class Clock(Protocol):
    """Wall clock; always returns a timezone-aware datetime in the configured zone."""
    def now(self) -> datetime: ...


class Notifier(Protocol):
    """
    Push transport port.

    Recipient resolution (user id -> delivery tokens) happens behind this port;
    partial success across a user's tokens is tolerated.
    """

    def check_ready(self) -> None:
        """Raise ConfigurationError when the transport cannot send at all."""
        ...

    def send(
            self,
            user_id: str,
            title: str,
            body: str,
            metadata: dict[str, str] | None = None,
    ) -> Awaitable[SendResult]: ...


class AccessPolicy(Protocol):
    """Capability check: may `user_id` act on `resource` (task, template or reminder)?"""
    def __call__(self, user_id: str, resource: Any) -> bool: ...


class TaskRepo(Protocol):
    def insert_task(self, **fields: Any) -> int: ...
    def get_task(self, task_id: int) -> Task | None: ...
    def patch_task(self, task_id: int, **fields: Any) -> None: ...
    def delete_task(self, task_id: int) -> None: ...
    def list_tasks_by_owner(self, owner_id: str) -> list[Task]: ...
    def list_tasks_by_group(self, group_id: int) -> list[Task]: ...
    def list_tasks_by_template(self, template_id: int, *, include_completed: bool = True) -> list[Task]: ...


class TemplateRepo(Protocol):
    def insert_template(self, **fields: Any) -> int: ...
    def get_template(self, template_id: int) -> RecurringTaskTemplate | None: ...
    def patch_template(self, template_id: int, **fields: Any) -> None: ...
    def delete_template(self, template_id: int) -> None: ...
    def list_templates_by_owner(self, owner_id: str) -> list[RecurringTaskTemplate]: ...


class NotificationRepo(Protocol):
    def insert_notification(self, **fields: Any) -> int: ...
    def get_notification(self, notification_id: int) -> Notification | None: ...
    def patch_notification(self, notification_id: int, **fields: Any) -> None: ...
    def delete_notification(self, notification_id: int) -> None: ...
    def list_notifications_by_task(self, task_id: int) -> list[Notification]: ...
    def delete_notifications_by_task(self, task_id: int) -> int: ...
    def list_notifications_by_user(
            self, user_id: str, *, status: NotificationStatus | None = None
    ) -> list[Notification]: ...

    # Sweep API
    def list_due_notifications(self, *, now_ms: int, limit: int = 200) -> list[Notification]: ...
    def try_claim_notification(
            self, notification_id: int, *, expected: Iterable[NotificationStatus], now_ms: int
    ) -> bool: ...
    def release_stale_claims(self, *, older_than_ms: int) -> int: ...


class ReminderRepo(Protocol):
    def insert_reminder(self, **fields: Any) -> int: ...
    def get_reminder(self, reminder_id: int) -> Reminder | None: ...
    def patch_reminder(self, reminder_id: int, **fields: Any) -> None: ...
    def delete_reminder(self, reminder_id: int) -> None: ...
    def list_reminders_by_owner(self, owner_id: str) -> list[Reminder]: ...
    def list_reminders_by_group(self, group_id: int) -> list[Reminder]: ...
    def list_active_reminders(self) -> list[Reminder]: ...
    def try_mark_reminder_fired(self, reminder_id: int, *, bucket: int) -> bool: ...


class GroupRepo(Protocol):
    def insert_group(self, *, name: str, created_by: str, members: list[str], description: str | None = None) -> int: ...
    def get_group(self, group_id: int) -> Group | None: ...
    def list_groups_for_member(self, user_id: str) -> list[Group]: ...


class TokenRegistry(Protocol):
    def register_device_token(self, *, user_id: str, token: str, platform: str | None = None) -> int: ...
    def remove_device_token(self, *, user_id: str, token: str) -> None: ...
    def list_device_tokens(self, user_ids: Iterable[str]) -> list[DeviceToken]: ...


class ActionRepo(Protocol):
    def insert_action(self, **fields: Any) -> int: ...
    def list_actions_by_user(self, user_id: str, *, limit: int | None = None) -> list[ActionRecord]: ...


class Store(
    TaskRepo, TemplateRepo, NotificationRepo, ReminderRepo, GroupRepo, TokenRegistry, ActionRepo, Protocol
):
    """Everything the core needs from persistence (see storage.sqlite_store.SqliteStore)."""
