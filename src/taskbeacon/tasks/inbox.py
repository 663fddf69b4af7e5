# src/taskbeacon/tasks/inbox.py

"""User-facing view of one's own notification rows."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..core.auth import AuthContext, require_user
from ..core.errors import ConfigurationError, NotFound, Unauthorized, ValidationError
from ..core.ports import AccessPolicy, Clock, Notifier, Store
from ..core.timeutil import to_ms
from ..push.messages import task_push_content
from .models import Notification, NotificationStatus, NotificationType, Task
from .notifications import NotificationMaterializer, due_soon_message, initial_status, scheduled_time_for

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InboxItem:
    notification: Notification
    # None when the task was deleted under the row.
    task: Task | None


class NotificationInbox:
    def __init__(
        self,
        store: Store,
        clock: Clock,
        materializer: NotificationMaterializer,
        access: AccessPolicy,
        *,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.materializer = materializer
        self.access = access
        self.notifier = notifier

    def _now_ms(self) -> int:
        return to_ms(self.clock.now())

    def _own(self, ctx: AuthContext | None, notification_id: int) -> tuple[str, Notification]:
        user_id = require_user(ctx)
        notif = self.store.get_notification(notification_id)
        # Someone else's row looks exactly like a missing one.
        if notif is None or notif.user_id != user_id:
            raise NotFound(f"notification {notification_id} not found")
        return user_id, notif

    def _enrich(self, rows: list[Notification]) -> list[InboxItem]:
        tasks: dict[int, Task | None] = {}
        out: list[InboxItem] = []
        for n in rows:
            if n.task_id not in tasks:
                tasks[n.task_id] = self.store.get_task(n.task_id)
            out.append(InboxItem(notification=n, task=tasks[n.task_id]))
        return out

    def create(
        self,
        ctx: AuthContext | None,
        task_id: int,
        *,
        message: str | None = None,
        kind: NotificationType = NotificationType.REMINDER,
        remind_before: int | None = None,
        scheduled_time: int | None = None,
    ) -> int:
        """Add one extra notification for the acting user on a task they can see."""
        user_id = require_user(ctx)
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFound(f"task {task_id} not found")
        if not self.access(user_id, task):
            raise Unauthorized(f"user {user_id} may not act on task {task_id}")

        lead = self.materializer.default_remind_before if remind_before is None else int(remind_before)
        if lead < 0:
            raise ValidationError("remind_before must not be negative")
        scheduled = scheduled_time_for(task.due_date, lead) if scheduled_time is None else int(scheduled_time)

        return self.store.insert_notification(
            user_id=user_id,
            task_id=task.id,
            message=message or due_soon_message(task.title),
            type=kind,
            read=False,
            scheduled_time=scheduled,
            remind_before=lead,
            status=initial_status(scheduled, self._now_ms()),
        )

    def list_all(self, ctx: AuthContext | None, *, limit: int | None = None) -> list[InboxItem]:
        rows = self.store.list_notifications_by_user(require_user(ctx))
        if limit is not None:
            rows = rows[: max(0, int(limit))]
        return self._enrich(rows)

    def upcoming(self, ctx: AuthContext | None) -> list[InboxItem]:
        now = self._now_ms()
        rows = self.store.list_notifications_by_user(require_user(ctx), status=NotificationStatus.UPCOMING)
        rows = sorted((n for n in rows if n.scheduled_time >= now), key=lambda n: (n.scheduled_time, n.id))
        return self._enrich(rows)

    def past(self, ctx: AuthContext | None) -> list[InboxItem]:
        rows = self.store.list_notifications_by_user(require_user(ctx), status=NotificationStatus.SENT)
        return self._enrich(rows)

    def update_remind_before(self, ctx: AuthContext | None, notification_id: int, remind_before: int) -> Notification:
        _, notif = self._own(ctx, notification_id)
        if int(remind_before) < 0:
            raise ValidationError("remind_before must not be negative")
        task = self.store.get_task(notif.task_id)
        if task is None:
            raise NotFound(f"task {notif.task_id} not found")
        return self.materializer.set_remind_before(notif, task.due_date, int(remind_before))

    def mark_read(self, ctx: AuthContext | None, notification_id: int) -> None:
        _, notif = self._own(ctx, notification_id)
        self.store.patch_notification(notif.id, read=True)

    def mark_all_read(self, ctx: AuthContext | None) -> int:
        unread = [n for n in self.store.list_notifications_by_user(require_user(ctx)) if not n.read]
        for n in unread:
            self.store.patch_notification(n.id, read=True)
        return len(unread)

    def remove(self, ctx: AuthContext | None, notification_id: int) -> None:
        _, notif = self._own(ctx, notification_id)
        self.store.delete_notification(notif.id)
        logger.debug("Notification removed id=%s", notif.id)

    async def send_test(self, ctx: AuthContext | None, task_id: int) -> int:
        """
        Push a test notification for one of the acting user's own tasks right now.

        The row is stored as already sent (remind_before 0). A transport that is
        not configured raises ConfigurationError before anything is stored;
        delivery problems after that are logged only.
        """
        user_id = require_user(ctx)
        task = self.store.get_task(task_id)
        if task is None or task.owner_id != user_id:
            raise NotFound(f"task {task_id} not found")
        if self.notifier is None:
            raise ConfigurationError("no push transport configured")
        self.notifier.check_ready()

        now = self._now_ms()
        notification_id = self.store.insert_notification(
            user_id=user_id,
            task_id=task.id,
            message=f"Test notification for: {task.title}",
            type=NotificationType.REMINDER,
            read=False,
            scheduled_time=now,
            remind_before=0,
            status=NotificationStatus.SENT,
        )
        notif = self.store.get_notification(notification_id)
        if notif is None:
            raise RuntimeError(f"notification {notification_id} missing right after insert")

        title, body, metadata = task_push_content(notif, task.title)
        try:
            result = await self.notifier.send(user_id, title, body, metadata)
        except Exception:
            logger.exception("test push failed notification_id=%s user_id=%s", notification_id, user_id)
        else:
            logger.info(
                "Test push notification_id=%s user_id=%s tokens=%d/%d",
                notification_id,
                user_id,
                result.success_count,
                result.token_count,
            )
        return notification_id
