# src/taskbeacon/tasks/notifications.py

"""
Notification materialization for task instances.

One Notification row per recipient: the owner alone for private tasks, every
current group member for shared ones (membership read at call time).

    scheduled_time = due_date - remind_before * 60000
    status         = upcoming if scheduled_time > now else sent

Only the due sweep ever moves a row to sent/missed after creation.
"""

from __future__ import annotations

import logging
from typing import Any

from ..core.ports import Clock, Store
from ..core.timeutil import MS_PER_MINUTE, to_ms
from .models import (
    DEFAULT_REMIND_BEFORE_MINUTES,
    Notification,
    NotificationStatus,
    NotificationType,
    Task,
)

logger = logging.getLogger(__name__)


def scheduled_time_for(due_date: int, remind_before: int) -> int:
    return int(due_date) - int(remind_before) * MS_PER_MINUTE


def initial_status(scheduled_time: int, now_ms: int) -> NotificationStatus:
    return NotificationStatus.UPCOMING if scheduled_time > now_ms else NotificationStatus.SENT


def due_soon_message(title: str) -> str:
    return f"{title} is due soon"


def resolve_recipients(store: Store, item: Any, *, fallback_to_owner: bool = False) -> list[str]:
    """
    Audience of a task/template/reminder.

    Shared items go to the group's members. A shared item whose group has
    disappeared has no audience, or only its owner with fallback_to_owner
    (reminders).
    """
    if getattr(item, "is_shared", False) and getattr(item, "group_id", None) is not None:
        group = store.get_group(item.group_id)
        if group is None:
            logger.warning(
                "Group %s of shared %s %s not found; %s",
                item.group_id,
                type(item).__name__,
                getattr(item, "id", "?"),
                "falling back to owner" if fallback_to_owner else "no recipients",
            )
            return [item.owner_id] if fallback_to_owner else []
        return list(dict.fromkeys(group.members))
    return [item.owner_id]


class NotificationMaterializer:
    def __init__(
        self,
        store: Store,
        clock: Clock,
        *,
        default_remind_before: int = DEFAULT_REMIND_BEFORE_MINUTES,
    ) -> None:
        self.store = store
        self.clock = clock
        self.default_remind_before = int(default_remind_before)

    def _now_ms(self) -> int:
        return to_ms(self.clock.now())

    def materialize(
        self,
        task: Task,
        lead_minutes: int | None = None,
        *,
        message: str | None = None,
        kind: NotificationType = NotificationType.REMINDER,
    ) -> list[Notification]:
        lead = self.default_remind_before if lead_minutes is None else int(lead_minutes)
        scheduled = scheduled_time_for(task.due_date, lead)
        status = initial_status(scheduled, self._now_ms())
        text = message or due_soon_message(task.title)

        out: list[Notification] = []
        for user_id in resolve_recipients(self.store, task):
            notif_id = self.store.insert_notification(
                user_id=user_id,
                task_id=task.id,
                message=text,
                type=kind,
                read=False,
                scheduled_time=scheduled,
                remind_before=lead,
                status=status,
            )
            out.append(
                Notification(
                    id=notif_id,
                    user_id=user_id,
                    task_id=task.id,
                    message=text,
                    type=kind,
                    read=False,
                    scheduled_time=scheduled,
                    remind_before=lead,
                    status=status,
                )
            )

        logger.debug(
            "Materialized %d notification(s) task_id=%s scheduled=%s status=%s",
            len(out),
            task.id,
            scheduled,
            status.value,
        )
        return out

    def delete_for_task(self, task_id: int) -> int:
        n = self.store.delete_notifications_by_task(task_id)
        if n:
            logger.debug("Deleted %d notification(s) task_id=%s", n, task_id)
        return n

    def reschedule_for_task(self, task_id: int, new_due_date: int) -> list[Notification]:
        """Recompute every existing row from its own remind_before; never creates rows."""
        now_ms = self._now_ms()
        out: list[Notification] = []
        for notif in self.store.list_notifications_by_task(task_id):
            lead = notif.remind_before if notif.remind_before is not None else self.default_remind_before
            scheduled = scheduled_time_for(new_due_date, lead)
            status = initial_status(scheduled, now_ms)
            self.store.patch_notification(notif.id, scheduled_time=scheduled, status=status, claimed_at=None)
            notif.scheduled_time = scheduled
            notif.status = status
            notif.claimed_at = None
            out.append(notif)
        return out

    def set_remind_before(self, notif: Notification, due_date: int, remind_before: int) -> Notification:
        """User changed the lead time of one notification."""
        scheduled = scheduled_time_for(due_date, remind_before)
        status = initial_status(scheduled, self._now_ms())
        self.store.patch_notification(
            notif.id, remind_before=int(remind_before), scheduled_time=scheduled, status=status
        )
        notif.remind_before = int(remind_before)
        notif.scheduled_time = scheduled
        notif.status = status
        return notif
