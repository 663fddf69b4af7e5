# src/taskbeacon/tasks/history.py

"""
Per-user action history.

TaskLifecycle appends one record per user-initiated mutation (create, update,
delete) with the task snapshot before and/or after it. Automatic window
regeneration is not a user action and is not recorded.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..core.auth import AuthContext, require_user
from ..core.ports import ActionRepo, Clock
from ..core.timeutil import to_ms
from .models import ActionRecord, ActionType

logger = logging.getLogger(__name__)


class ActionLog:
    def __init__(self, store: ActionRepo, clock: Clock) -> None:
        self.store = store
        self.clock = clock

    def record(
        self,
        user_id: str,
        kind: ActionType,
        task_id: int,
        *,
        previous_state: Mapping[str, Any] | None = None,
        new_state: Mapping[str, Any] | None = None,
    ) -> int:
        action_id = self.store.insert_action(
            user_id=user_id,
            type=ActionType(kind),
            task_id=int(task_id),
            previous_state=dict(previous_state) if previous_state is not None else None,
            new_state=dict(new_state) if new_state is not None else None,
            created_at=to_ms(self.clock.now()),
        )
        logger.debug("Action recorded id=%s user=%s type=%s task=%s", action_id, user_id, kind, task_id)
        return action_id

    def create(
        self,
        ctx: AuthContext | None,
        kind: ActionType,
        task_id: int,
        *,
        previous_state: Mapping[str, Any] | None = None,
        new_state: Mapping[str, Any] | None = None,
    ) -> int:
        """Record an action on behalf of the acting user (e.g. a client-side edit)."""
        return self.record(
            require_user(ctx), kind, task_id, previous_state=previous_state, new_state=new_state
        )

    def history(self, ctx: AuthContext | None, *, limit: int | None = None) -> list[ActionRecord]:
        return self.store.list_actions_by_user(require_user(ctx), limit=limit)
