# src/taskbeacon/reminders/service.py

from __future__ import annotations

import logging
from typing import Any

from ..core.auth import AuthContext, GroupAccessPolicy, is_group_member, require_user
from ..core.errors import NotFound, Unauthorized, ValidationError
from ..core.ports import AccessPolicy, Clock, Store
from ..core.timeutil import to_ms
from ..tasks.models import RecurrenceEnd, Reminder, ReminderRule
from .engine import validate_rule

logger = logging.getLogger(__name__)

_UPDATABLE = frozenset({"title", "recurrence_rule", "recurrence_end", "show_on_calendar", "is_active"})


class ReminderService:
    """CRUD for recurring reminders; firing is the due scanner's job."""

    def __init__(self, store: Store, clock: Clock, *, access: AccessPolicy | None = None) -> None:
        self.store = store
        self.clock = clock
        self.access: AccessPolicy = access or GroupAccessPolicy(store)

    def _load(self, ctx: AuthContext | None, reminder_id: int) -> tuple[str, Reminder]:
        user_id = require_user(ctx)
        reminder = self.store.get_reminder(reminder_id)
        if reminder is None:
            raise NotFound(f"reminder {reminder_id} not found")
        if not self.access(user_id, reminder):
            raise Unauthorized(f"user {user_id} may not act on reminder {reminder_id}")
        return user_id, reminder

    def create(
        self,
        ctx: AuthContext | None,
        *,
        title: str,
        recurrence_rule: ReminderRule,
        recurrence_end: RecurrenceEnd | None = None,
        show_on_calendar: bool = False,
        is_shared: bool = False,
        group_id: int | None = None,
    ) -> int:
        user_id = require_user(ctx)
        if not title or not title.strip():
            raise ValidationError("title is required")
        validate_rule(recurrence_rule)
        if is_shared:
            if group_id is None:
                raise ValidationError("a shared reminder needs a group")
            if not is_group_member(self.store, group_id, user_id):
                raise ValidationError("You are not a member of this group")

        reminder_id = self.store.insert_reminder(
            owner_id=user_id,
            title=title.strip(),
            recurrence_rule=recurrence_rule,
            recurrence_end=recurrence_end,
            show_on_calendar=bool(show_on_calendar),
            is_shared=bool(is_shared),
            is_active=True,
            group_id=group_id,
            fired_count=0,
            created_at=to_ms(self.clock.now()),
        )
        logger.info(
            "Reminder created id=%s owner=%s frequency=%s time=%s",
            reminder_id,
            user_id,
            recurrence_rule.frequency.value,
            recurrence_rule.time,
        )
        return reminder_id

    def update(self, ctx: AuthContext | None, reminder_id: int, **changes: Any) -> Reminder:
        _, reminder = self._load(ctx, reminder_id)
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(f"cannot update fields: {sorted(unknown)}")
        if "title" in changes and not (changes["title"] or "").strip():
            raise ValidationError("title is required")
        if changes.get("recurrence_rule") is not None:
            validate_rule(changes["recurrence_rule"])
        elif "recurrence_rule" in changes:
            raise ValidationError("recurrence_rule cannot be cleared")

        if changes:
            self.store.patch_reminder(reminder.id, **changes)
        updated = self.store.get_reminder(reminder.id)
        if updated is None:
            raise NotFound(f"reminder {reminder.id} not found")
        return updated

    def set_active(self, ctx: AuthContext | None, reminder_id: int, active: bool) -> Reminder:
        return self.update(ctx, reminder_id, is_active=bool(active))

    def remove(self, ctx: AuthContext | None, reminder_id: int) -> None:
        _, reminder = self._load(ctx, reminder_id)
        self.store.delete_reminder(reminder.id)
        logger.info("Reminder removed id=%s", reminder.id)

    def get(self, ctx: AuthContext | None, reminder_id: int) -> Reminder:
        return self._load(ctx, reminder_id)[1]

    def list_own(self, ctx: AuthContext | None) -> list[Reminder]:
        return self.store.list_reminders_by_owner(require_user(ctx))

    def list_all_accessible(self, ctx: AuthContext | None) -> list[Reminder]:
        """Own private reminders plus reminders shared into the user's groups."""
        user_id = require_user(ctx)
        by_id = {r.id: r for r in self.store.list_reminders_by_owner(user_id) if not r.is_shared}
        for group in self.store.list_groups_for_member(user_id):
            for r in self.store.list_reminders_by_group(group.id):
                if r.is_shared:
                    by_id.setdefault(r.id, r)
        return sorted(by_id.values(), key=lambda r: r.id)
