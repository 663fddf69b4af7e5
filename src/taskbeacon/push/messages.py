# src/taskbeacon/push/messages.py

"""Push texts: (title, body, data) triples handed to a Notifier."""

from __future__ import annotations

from ..tasks.models import Notification, Reminder


def task_push_content(notif: Notification, task_title: str) -> tuple[str, str, dict[str, str]]:
    return (
        f"Task Reminder: {task_title}",
        f'Your task "{task_title}" is due soon!',
        {
            "taskId": str(notif.task_id),
            "notificationId": str(notif.id),
            "type": "task_reminder",
        },
    )


def reminder_push_content(reminder: Reminder) -> tuple[str, str, dict[str, str]]:
    return (
        "⏰ Reminder",
        reminder.title,
        {"type": "reminder", "reminderId": str(reminder.id)},
    )
