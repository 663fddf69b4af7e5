# src/taskbeacon/tasks/lifecycle.py

"""
Task lifecycle: every user-initiated task mutation and the task queries.

State machine per task:
    pending -> in-progress -> completed
    pending/in-progress -> overdue      (time-derived, see effective_status)
    completed -> pending                 (reopen; clears completed_at)

Cross-document sequences (complete -> delete notifications -> regenerate
window) are not one transaction. Each step is idempotent on its own: completing
twice is a no-op, deleting notifications twice deletes nothing, and window
regeneration re-counts live instances before it inserts.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..core.auth import AuthContext, GroupAccessPolicy, is_group_member, require_user
from ..core.errors import NotFound, Unauthorized, ValidationError
from ..core.ports import AccessPolicy, Clock, Store
from ..core.timeutil import MS_PER_DAY, to_ms
from .history import ActionLog
from .models import (
    ActionType,
    Priority,
    RecurrenceEnd,
    RecurrenceRule,
    RecurringTaskTemplate,
    Task,
    TaskStatus,
)
from .notifications import NotificationMaterializer
from .window import OccurrenceWindowManager, end_allows

logger = logging.getLogger(__name__)

_UPDATABLE = frozenset({"title", "description", "due_date", "priority", "status", "tags", "dependencies"})


def effective_status(task: Task, now_ms: int) -> TaskStatus:
    """Stored status, with overdue derived for unfinished tasks past their due date."""
    if task.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS) and task.due_date < now_ms:
        return TaskStatus.OVERDUE
    return task.status


def _filter(
    tasks: Iterable[Task],
    *,
    start: int | None = None,
    end: int | None = None,
    status: TaskStatus | None = None,
) -> list[Task]:
    out: list[Task] = []
    for t in tasks:
        if status is not None and t.status != status:
            continue
        if start is not None and t.due_date < start:
            continue
        if end is not None and t.due_date > end:
            continue
        out.append(t)
    return out


class TaskLifecycle:
    def __init__(
        self,
        store: Store,
        clock: Clock,
        materializer: NotificationMaterializer,
        windows: OccurrenceWindowManager,
        *,
        access: AccessPolicy | None = None,
        history: ActionLog | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.materializer = materializer
        self.windows = windows
        self.access: AccessPolicy = access or GroupAccessPolicy(store)
        self.history = history

    def _now_ms(self) -> int:
        return to_ms(self.clock.now())

    def _record(
        self,
        user_id: str,
        kind: ActionType,
        task_id: int,
        *,
        previous: dict[str, Any] | None = None,
        new: dict[str, Any] | None = None,
    ) -> None:
        if self.history is not None:
            self.history.record(user_id, kind, task_id, previous_state=previous, new_state=new)

    # ---- guards ----

    def _load_task(self, ctx: AuthContext | None, task_id: int) -> tuple[str, Task]:
        user_id = require_user(ctx)
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFound(f"task {task_id} not found")
        if not self.access(user_id, task):
            raise Unauthorized(f"user {user_id} may not act on task {task_id}")
        return user_id, task

    def _load_template(self, ctx: AuthContext | None, template_id: int) -> tuple[str, RecurringTaskTemplate]:
        user_id = require_user(ctx)
        template = self.store.get_template(template_id)
        if template is None:
            raise NotFound(f"recurring task {template_id} not found")
        if not self.access(user_id, template):
            raise Unauthorized(f"user {user_id} may not act on recurring task {template_id}")
        return user_id, template

    def _check_sharing(self, user_id: str, is_shared: bool, group_id: int | None) -> None:
        if not is_shared:
            return
        if group_id is None:
            raise ValidationError("a shared task needs a group")
        if not is_group_member(self.store, group_id, user_id):
            raise ValidationError("You are not a member of this group")

    def _check_dependency(self, user_id: str, task_id: int | None, depends_on: int, current: list[int]) -> None:
        if task_id is not None and depends_on == task_id:
            raise ValidationError("a task cannot depend on itself")
        if depends_on in current:
            raise ValidationError("Dependency already exists")
        dep = self.store.get_task(depends_on)
        if dep is None or not self.access(user_id, dep):
            raise NotFound(f"dependency task {depends_on} not found")
        if task_id is not None and self._reaches(depends_on, task_id):
            raise ValidationError(f"dependency {task_id} -> {depends_on} would create a cycle")

    def _reaches(self, start: int, target: int) -> bool:
        """Is `target` reachable from `start` along existing dependency edges?"""
        seen: set[int] = set()
        stack = [start]
        while stack:
            current = stack.pop()
            if current == target:
                return True
            if current in seen:
                continue
            seen.add(current)
            task = self.store.get_task(current)
            if task is not None:
                stack.extend(task.dependencies)
        return False

    # ---- mutations ----

    def create(
        self,
        ctx: AuthContext | None,
        *,
        title: str,
        due_date: int,
        priority: Priority = Priority.MEDIUM,
        status: TaskStatus = TaskStatus.PENDING,
        description: str | None = None,
        tags: list[str] | None = None,
        dependencies: list[int] | None = None,
        is_shared: bool = False,
        group_id: int | None = None,
        recurrence_rule: RecurrenceRule | None = None,
        recurrence_end: RecurrenceEnd | None = None,
    ) -> int:
        """
        Create a task, or a recurring template plus its first window.

        Returns the id of the (first) task instance.
        """
        user_id = require_user(ctx)
        if not title or not title.strip():
            raise ValidationError("title is required")
        self._check_sharing(user_id, is_shared, group_id)

        if recurrence_rule is not None:
            return self._create_recurring(
                user_id,
                title=title.strip(),
                due_date=int(due_date),
                priority=priority,
                description=description,
                tags=tags,
                is_shared=is_shared,
                group_id=group_id,
                recurrence_rule=recurrence_rule,
                recurrence_end=recurrence_end,
            )

        deps: list[int] = []
        for dep in dependencies or []:
            self._check_dependency(user_id, None, int(dep), deps)
            deps.append(int(dep))

        now = self._now_ms()
        task_id = self.store.insert_task(
            owner_id=user_id,
            title=title.strip(),
            description=description,
            due_date=int(due_date),
            priority=priority,
            status=status,
            tags=list(tags or []),
            dependencies=deps,
            group_id=group_id,
            is_shared=is_shared,
            completed_at=now if status == TaskStatus.COMPLETED else None,
            created_at=now,
        )
        task = self.store.get_task(task_id)
        if task is None:
            raise RuntimeError(f"task {task_id} missing right after insert")
        if task.status != TaskStatus.COMPLETED:
            self.materializer.materialize(task)
        self._record(user_id, ActionType.CREATE, task_id, new=task.snapshot())

        logger.info("Task created id=%s owner=%s shared=%s", task_id, user_id, is_shared)
        return task_id

    def _create_recurring(
        self,
        user_id: str,
        *,
        title: str,
        due_date: int,
        priority: Priority,
        description: str | None,
        tags: list[str] | None,
        is_shared: bool,
        group_id: int | None,
        recurrence_rule: RecurrenceRule,
        recurrence_end: RecurrenceEnd | None,
    ) -> int:
        draft = RecurringTaskTemplate(
            id=0,
            owner_id=user_id,
            title=title,
            priority=priority,
            recurrence_rule=recurrence_rule,
            recurrence_end=recurrence_end,
            is_active=True,
            created_at=0,
        )
        if not end_allows(draft, due_date, 0):
            raise ValidationError("recurrence end leaves no occurrences")

        template_id = self.store.insert_template(
            owner_id=user_id,
            title=title,
            description=description,
            priority=priority,
            tags=list(tags or []),
            recurrence_rule=recurrence_rule,
            recurrence_end=recurrence_end,
            is_active=True,
            group_id=group_id,
            is_shared=is_shared,
            generated_count=0,
            created_at=self._now_ms(),
        )
        template = self.store.get_template(template_id)
        if template is None:
            raise RuntimeError(f"recurring task {template_id} missing right after insert")

        created = self.windows.initialize(template, due_date)
        for task in created:
            self._record(user_id, ActionType.CREATE, task.id, new=task.snapshot())
        logger.info(
            "Recurring task created id=%s frequency=%s instances=%d",
            template_id,
            recurrence_rule.frequency.value,
            len(created),
        )
        return created[0].id

    def update(self, ctx: AuthContext | None, task_id: int, **changes: Any) -> Task:
        """
        Generic field patch.

        status -> completed routes through complete(); completed -> pending or
        in-progress reopens; a new due_date reschedules the task's notifications.
        """
        user_id, task = self._load_task(ctx, task_id)
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(f"cannot update fields: {sorted(unknown)}")

        new_status = changes.pop("status", None)
        if new_status is not None:
            new_status = TaskStatus(new_status)

        if "title" in changes and not (changes["title"] or "").strip():
            raise ValidationError("title is required")
        if "priority" in changes:
            changes["priority"] = Priority(changes["priority"])
        if "dependencies" in changes:
            deps: list[int] = []
            for dep in changes["dependencies"] or []:
                self._check_dependency(user_id, task.id, int(dep), deps)
                deps.append(int(dep))
            changes["dependencies"] = deps

        if changes:
            self.store.patch_task(task.id, **changes)
            if "due_date" in changes and int(changes["due_date"]) != task.due_date:
                self.materializer.reschedule_for_task(task.id, int(changes["due_date"]))

        if new_status is not None and new_status != task.status:
            current = self.store.get_task(task.id) or task
            if new_status == TaskStatus.COMPLETED:
                self._complete(current)
            elif task.status == TaskStatus.COMPLETED:
                self._reopen(current)
                if new_status != TaskStatus.PENDING:
                    self.store.patch_task(task.id, status=new_status)
            else:
                self.store.patch_task(task.id, status=new_status)

        updated = self.store.get_task(task.id)
        if updated is None:
            raise NotFound(f"task {task.id} not found")
        if changes or (new_status is not None and new_status != task.status):
            self._record(user_id, ActionType.UPDATE, task.id, previous=task.snapshot(), new=updated.snapshot())
        return updated

    def _complete(self, task: Task) -> None:
        now = self._now_ms()
        self.store.patch_task(task.id, status=TaskStatus.COMPLETED, completed_at=now)
        task.status = TaskStatus.COMPLETED
        task.completed_at = now

        self.materializer.delete_for_task(task.id)

        if task.recurring_task_id is not None:
            template = self.store.get_template(task.recurring_task_id)
            if template is None:
                logger.warning(
                    "Task %s references missing recurring task %s", task.id, task.recurring_task_id
                )
            else:
                self.windows.on_instance_completed(template, task)

        logger.info("Task completed id=%s", task.id)

    def _reopen(self, task: Task) -> None:
        self.store.patch_task(task.id, status=TaskStatus.PENDING, completed_at=None)
        task.status = TaskStatus.PENDING
        task.completed_at = None
        # Completion dropped the notifications; bring one set back.
        if not self.store.list_notifications_by_task(task.id):
            self.materializer.materialize(task)

        logger.info("Task reopened id=%s", task.id)

    def complete(self, ctx: AuthContext | None, task_id: int) -> Task:
        user_id, task = self._load_task(ctx, task_id)
        if task.status == TaskStatus.COMPLETED:
            return task

        before = task.snapshot()
        self._complete(task)
        self._record(user_id, ActionType.UPDATE, task.id, previous=before, new=task.snapshot())
        return task

    def reopen(self, ctx: AuthContext | None, task_id: int) -> Task:
        user_id, task = self._load_task(ctx, task_id)
        if task.status != TaskStatus.COMPLETED:
            return task

        before = task.snapshot()
        self._reopen(task)
        self._record(user_id, ActionType.UPDATE, task.id, previous=before, new=task.snapshot())
        return task

    def postpone(self, ctx: AuthContext | None, task_id: int, custom_date: int | None = None) -> Task:
        user_id, task = self._load_task(ctx, task_id)
        new_due = int(custom_date) if custom_date is not None else task.due_date + MS_PER_DAY
        before = task.snapshot()

        self.store.patch_task(task.id, due_date=new_due)
        self.materializer.reschedule_for_task(task.id, new_due)
        task.due_date = new_due
        self._record(user_id, ActionType.UPDATE, task.id, previous=before, new=task.snapshot())

        logger.info("Task postponed id=%s due_date=%s", task.id, new_due)
        return task

    def remove(self, ctx: AuthContext | None, task_id: int) -> dict[str, Any]:
        """
        Delete a task and its notifications.

        Returns the task snapshot so the caller can offer undo via restore().
        A live recurring instance is replaced so the template keeps its full window.
        Tasks listing this one in `dependencies` keep the dangling id.
        """
        user_id, task = self._load_task(ctx, task_id)
        snapshot = task.snapshot()

        self.materializer.delete_for_task(task.id)
        self.store.delete_task(task.id)

        if task.recurring_task_id is not None and task.status != TaskStatus.COMPLETED:
            template = self.store.get_template(task.recurring_task_id)
            if template is not None:
                # Chain past the removed date so it is not generated again.
                self.windows.ensure_window(template, anchor_due_date=task.due_date)
        self._record(user_id, ActionType.DELETE, task.id, previous=snapshot)

        logger.info("Task removed id=%s", task.id)
        return snapshot

    def restore(self, ctx: AuthContext | None, snapshot: Mapping[str, Any]) -> int:
        """
        Re-insert a task from a captured snapshot with a fresh id and notification set.

        The restored task is standalone: its template already replaced it when it was removed.
        """
        user_id = require_user(ctx)
        if not snapshot.get("title") or snapshot.get("due_date") is None:
            raise ValidationError("snapshot needs at least title and due_date")

        is_shared = bool(snapshot.get("is_shared", False))
        group_id = snapshot.get("group_id")
        self._check_sharing(user_id, is_shared, group_id)

        task_id = self.store.insert_task(
            owner_id=user_id,
            title=str(snapshot["title"]),
            description=snapshot.get("description"),
            due_date=int(snapshot["due_date"]),
            priority=Priority(snapshot.get("priority") or Priority.MEDIUM),
            status=TaskStatus(snapshot.get("status") or TaskStatus.PENDING),
            tags=list(snapshot.get("tags") or []),
            dependencies=[int(d) for d in snapshot.get("dependencies") or []],
            group_id=group_id,
            is_shared=is_shared,
            completed_at=snapshot.get("completed_at"),
            created_at=self._now_ms(),
        )
        task = self.store.get_task(task_id)
        if task is None:
            raise RuntimeError(f"task {task_id} missing right after insert")
        self.materializer.materialize(task)
        self._record(user_id, ActionType.CREATE, task_id, new=task.snapshot())

        logger.info("Task restored id=%s", task_id)
        return task_id

    def add_dependency(self, ctx: AuthContext | None, task_id: int, depends_on: int) -> Task:
        user_id, task = self._load_task(ctx, task_id)
        self._check_dependency(user_id, task.id, int(depends_on), task.dependencies)
        before = task.snapshot()
        task.dependencies = [*task.dependencies, int(depends_on)]
        self.store.patch_task(task.id, dependencies=task.dependencies)
        self._record(user_id, ActionType.UPDATE, task.id, previous=before, new=task.snapshot())
        return task

    def remove_dependency(self, ctx: AuthContext | None, task_id: int, depends_on: int) -> Task:
        user_id, task = self._load_task(ctx, task_id)
        if int(depends_on) not in task.dependencies:
            return task
        before = task.snapshot()
        task.dependencies = [d for d in task.dependencies if d != int(depends_on)]
        self.store.patch_task(task.id, dependencies=task.dependencies)
        self._record(user_id, ActionType.UPDATE, task.id, previous=before, new=task.snapshot())
        return task

    # ---- queries ----

    def get(self, ctx: AuthContext | None, task_id: int) -> Task:
        return self._load_task(ctx, task_id)[1]

    def list_own(
        self,
        ctx: AuthContext | None,
        *,
        start: int | None = None,
        end: int | None = None,
        status: TaskStatus | None = None,
    ) -> list[Task]:
        user_id = require_user(ctx)
        return _filter(self.store.list_tasks_by_owner(user_id), start=start, end=end, status=status)

    def list_shared(
        self,
        ctx: AuthContext | None,
        group_id: int,
        *,
        start: int | None = None,
        end: int | None = None,
        status: TaskStatus | None = None,
    ) -> list[Task]:
        user_id = require_user(ctx)
        if not is_group_member(self.store, group_id, user_id):
            raise Unauthorized(f"user {user_id} is not a member of group {group_id}")
        shared = [t for t in self.store.list_tasks_by_group(group_id) if t.is_shared]
        return _filter(shared, start=start, end=end, status=status)

    def list_all_accessible(
        self,
        ctx: AuthContext | None,
        *,
        start: int | None = None,
        end: int | None = None,
        status: TaskStatus | None = None,
    ) -> list[Task]:
        """Own private tasks plus every task shared into one of the user's groups."""
        user_id = require_user(ctx)
        by_id: dict[int, Task] = {
            t.id: t for t in self.store.list_tasks_by_owner(user_id) if not t.is_shared
        }
        for group in self.store.list_groups_for_member(user_id):
            for t in self.store.list_tasks_by_group(group.id):
                # A group_id without is_shared is still private to its owner.
                if t.is_shared:
                    by_id.setdefault(t.id, t)
        tasks = sorted(by_id.values(), key=lambda t: (t.due_date, t.id))
        return _filter(tasks, start=start, end=end, status=status)

    def upcoming(self, ctx: AuthContext | None, *, limit: int = 5) -> list[Task]:
        now = self._now_ms()
        tasks = [
            t
            for t in self.list_all_accessible(ctx)
            if t.status != TaskStatus.COMPLETED and t.due_date >= now
        ]
        return tasks[: max(0, int(limit))]

    def overdue(self, ctx: AuthContext | None) -> list[Task]:
        now = self._now_ms()
        return [
            t for t in self.list_all_accessible(ctx) if effective_status(t, now) == TaskStatus.OVERDUE
        ]

    def search(self, ctx: AuthContext | None, term: str) -> list[Task]:
        needle = (term or "").strip().lower()
        if not needle:
            return []
        return [
            t
            for t in self.list_all_accessible(ctx)
            if needle in t.title.lower() or needle in (t.description or "").lower()
        ]

    # ---- recurring templates ----

    def list_templates(self, ctx: AuthContext | None) -> list[RecurringTaskTemplate]:
        user_id = require_user(ctx)
        return self.store.list_templates_by_owner(user_id)

    def set_template_active(self, ctx: AuthContext | None, template_id: int, active: bool) -> RecurringTaskTemplate:
        """Pause/resume. Resuming tops the window back up; pausing retracts nothing."""
        _, template = self._load_template(ctx, template_id)
        self.store.patch_template(template.id, is_active=bool(active))
        template.is_active = bool(active)
        if active:
            self.windows.ensure_window(template)
        logger.info("Recurring task %s active=%s", template.id, active)
        return template

    def remove_template(self, ctx: AuthContext | None, template_id: int) -> int:
        """Delete a template, all its instances and their notifications. Returns instances removed."""
        _, template = self._load_template(ctx, template_id)
        instances = self.store.list_tasks_by_template(template.id)
        for task in instances:
            self.materializer.delete_for_task(task.id)
            self.store.delete_task(task.id)
        self.store.delete_template(template.id)
        logger.info("Recurring task removed id=%s instances=%d", template.id, len(instances))
        return len(instances)
