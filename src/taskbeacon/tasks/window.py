# src/taskbeacon/tasks/window.py

"""
Rolling occurrence window for recurring task templates.

Every active template keeps WINDOW_SIZE non-completed Task instances
materialized ahead of time (fewer when recurrence_end runs out). Each step is
written as "ensure N live instances exist" and re-counts the store before it
inserts, so a crashed or repeated call never overshoots the window.
"""

from __future__ import annotations

import logging
from datetime import tzinfo

from ..core.ports import Store
from .models import WINDOW_SIZE, EndType, RecurringTaskTemplate, Task, TaskStatus
from .notifications import NotificationMaterializer
from .recurrence import next_occurrence

logger = logging.getLogger(__name__)


def end_allows(template: RecurringTaskTemplate, due_date: int, generated: int) -> bool:
    """May an instance with this due date become instance number generated+1?"""
    end = template.recurrence_end
    if end is None:
        return True
    match end.type:
        case EndType.FOREVER:
            return True
        case EndType.UNTIL:
            return end.end_date is None or due_date <= end.end_date
        case EndType.COUNT:
            return end.occurrences is None or generated < end.occurrences


class OccurrenceWindowManager:
    def __init__(
        self,
        store: Store,
        materializer: NotificationMaterializer,
        tz: tzinfo,
        *,
        window_size: int = WINDOW_SIZE,
    ) -> None:
        self.store = store
        self.materializer = materializer
        self.tz = tz
        self.window_size = int(window_size)

    def initialize(self, template: RecurringTaskTemplate, first_due_date: int) -> list[Task]:
        """Materialize the first window starting exactly at first_due_date."""
        if self.store.list_tasks_by_template(template.id, include_completed=False):
            # Already (partly) initialized by an earlier attempt: continue the series.
            return self.ensure_window(template)
        created = self._extend(template, first_due_date, self.window_size)
        logger.info(
            "Template %s initialized with %d instance(s) from due_date=%s",
            template.id,
            len(created),
            first_due_date,
        )
        return created

    def on_instance_completed(self, template: RecurringTaskTemplate, completed: Task) -> list[Task]:
        """Top the window back up after `completed` left it."""
        created = self.ensure_window(template, anchor_due_date=completed.due_date)
        if created:
            logger.info(
                "Template %s regenerated %d instance(s) after task %s completed",
                template.id,
                len(created),
                completed.id,
            )
        return created

    def ensure_window(
        self, template: RecurringTaskTemplate, *, anchor_due_date: int | None = None
    ) -> list[Task]:
        """
        Create instances until WINDOW_SIZE live ones exist (or the end is hit).

        New instances chain from the latest due date among live instances
        (and the anchor, if given), never from whichever one just completed,
        so out-of-order completions leave no gaps and no duplicates.
        """
        fresh = self.store.get_template(template.id)
        if fresh is None:
            logger.warning("Template %s vanished; window not regenerated", template.id)
            return []
        template = fresh

        if not template.is_active:
            logger.debug("Template %s is paused; window left as is", template.id)
            return []

        live = self.store.list_tasks_by_template(template.id, include_completed=False)
        missing = self.window_size - len(live)
        if missing <= 0:
            return []

        candidates = [t.due_date for t in live]
        if anchor_due_date is not None:
            candidates.append(int(anchor_due_date))
        if not candidates:
            candidates = [t.due_date for t in self.store.list_tasks_by_template(template.id)]
        if not candidates:
            logger.warning("Template %s has no instances to chain from", template.id)
            return []

        start = next_occurrence(max(candidates), template.recurrence_rule, self.tz)
        return self._extend(template, start, missing)

    def _extend(self, template: RecurringTaskTemplate, start_due_date: int, count: int) -> list[Task]:
        created: list[Task] = []
        generated = template.generated_count
        due = start_due_date

        for _ in range(max(0, count)):
            if not end_allows(template, due, generated):
                logger.info(
                    "Template %s reached its recurrence end (generated=%d)", template.id, generated
                )
                break

            generated += 1
            task_id = self.store.insert_task(
                owner_id=template.owner_id,
                title=template.title,
                description=template.description,
                due_date=due,
                priority=template.priority,
                status=TaskStatus.PENDING,
                tags=list(template.tags),
                group_id=template.group_id,
                is_shared=template.is_shared,
                recurring_task_id=template.id,
                instance_number=generated,
            )
            # Persist progress per instance so a crash mid-loop keeps the count honest.
            self.store.patch_template(template.id, generated_count=generated)

            task = self.store.get_task(task_id)
            if task is None:
                raise RuntimeError(f"task {task_id} missing right after insert")
            self.materializer.materialize(task)
            created.append(task)

            due = next_occurrence(due, template.recurrence_rule, self.tz)

        template.generated_count = generated
        return created
