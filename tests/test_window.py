# tests/test_window.py

from __future__ import annotations

from datetime import datetime

import pytest

from taskbeacon.core.errors import ValidationError
from taskbeacon.core.timeutil import MS_PER_DAY, to_ms
from taskbeacon.tasks.models import EndType, Frequency, RecurrenceEnd, RecurrenceRule, TaskStatus

from .conftest import ALICE, UTC

FIRST_DUE = to_ms(datetime(2025, 3, 6, 9, 0, tzinfo=UTC))
DAILY = RecurrenceRule(Frequency.DAILY)


def _create_daily(lifecycle, **kw) -> int:
    first_id = lifecycle.create(ALICE, title="Water plants", due_date=FIRST_DUE, recurrence_rule=DAILY, **kw)
    return lifecycle.store.get_task(first_id).recurring_task_id


def _live(store, template_id: int):
    return store.list_tasks_by_template(template_id, include_completed=False)


def test_create_materializes_full_window(lifecycle, store) -> None:
    template_id = _create_daily(lifecycle)

    live = _live(store, template_id)
    assert len(live) == 6
    assert [t.due_date for t in live] == [FIRST_DUE + i * MS_PER_DAY for i in range(6)]
    assert [t.instance_number for t in live] == [1, 2, 3, 4, 5, 6]
    assert all(len(store.list_notifications_by_task(t.id)) == 1 for t in live)
    assert store.get_template(template_id).generated_count == 6


def test_completing_earliest_instance_tops_window_up(lifecycle, store) -> None:
    template_id = _create_daily(lifecycle)
    first = _live(store, template_id)[0]

    lifecycle.complete(ALICE, first.id)

    live = _live(store, template_id)
    assert len(live) == 6
    assert max(t.due_date for t in live) == FIRST_DUE + 6 * MS_PER_DAY
    assert live[-1].instance_number == 7


def test_out_of_order_completion_creates_no_duplicate_due_dates(lifecycle, store) -> None:
    template_id = _create_daily(lifecycle)
    instances = _live(store, template_id)

    lifecycle.complete(ALICE, instances[3].id)
    lifecycle.complete(ALICE, instances[0].id)
    lifecycle.complete(ALICE, instances[5].id)

    live = _live(store, template_id)
    assert len(live) == 6
    dues = [t.due_date for t in store.list_tasks_by_template(template_id)]
    assert len(dues) == len(set(dues))
    assert max(dues) == FIRST_DUE + 8 * MS_PER_DAY


def test_completing_twice_does_not_regenerate_twice(lifecycle, store) -> None:
    template_id = _create_daily(lifecycle)
    first = _live(store, template_id)[0]

    lifecycle.complete(ALICE, first.id)
    lifecycle.complete(ALICE, first.id)

    assert len(store.list_tasks_by_template(template_id)) == 7


def test_paused_template_gets_no_new_instances_until_resumed(lifecycle, store) -> None:
    template_id = _create_daily(lifecycle)
    lifecycle.set_template_active(ALICE, template_id, False)

    lifecycle.complete(ALICE, _live(store, template_id)[0].id)
    assert len(_live(store, template_id)) == 5

    lifecycle.set_template_active(ALICE, template_id, True)
    live = _live(store, template_id)
    assert len(live) == 6
    assert live[-1].due_date == FIRST_DUE + 6 * MS_PER_DAY


def test_count_end_limits_instances_ever_created(lifecycle, store) -> None:
    template_id = _create_daily(lifecycle, recurrence_end=RecurrenceEnd(EndType.COUNT, occurrences=3))
    assert len(_live(store, template_id)) == 3

    lifecycle.complete(ALICE, _live(store, template_id)[0].id)
    assert len(_live(store, template_id)) == 2
    assert len(store.list_tasks_by_template(template_id)) == 3


def test_until_end_excludes_later_due_dates(lifecycle, store) -> None:
    end = FIRST_DUE + 2 * MS_PER_DAY
    template_id = _create_daily(lifecycle, recurrence_end=RecurrenceEnd(EndType.UNTIL, end_date=end))

    live = _live(store, template_id)
    assert [t.due_date for t in live] == [FIRST_DUE, FIRST_DUE + MS_PER_DAY, end]


def test_end_before_first_occurrence_is_rejected(lifecycle, store) -> None:
    with pytest.raises(ValidationError):
        lifecycle.create(
            ALICE,
            title="Never",
            due_date=FIRST_DUE,
            recurrence_rule=DAILY,
            recurrence_end=RecurrenceEnd(EndType.UNTIL, end_date=FIRST_DUE - 1),
        )
    assert store.list_templates_by_owner("alice") == []


def test_initialize_again_does_not_overshoot(lifecycle, windows, store) -> None:
    template_id = _create_daily(lifecycle)
    template = store.get_template(template_id)

    assert windows.initialize(template, FIRST_DUE) == []
    assert len(_live(store, template_id)) == 6


def test_shared_template_instances_notify_every_member(lifecycle, store, family) -> None:
    first_id = lifecycle.create(
        ALICE,
        title="Take out bins",
        due_date=FIRST_DUE,
        recurrence_rule=RecurrenceRule(Frequency.WEEKLY, day_of_week=4),
        is_shared=True,
        group_id=family,
    )
    notifs = store.list_notifications_by_task(first_id)
    assert sorted(n.user_id for n in notifs) == ["alice", "bob", "carol"]


def test_remove_template_cascades_instances_and_notifications(lifecycle, store) -> None:
    template_id = _create_daily(lifecycle)
    ids = [t.id for t in _live(store, template_id)]

    assert lifecycle.remove_template(ALICE, template_id) == 6

    assert store.get_template(template_id) is None
    assert store.list_tasks_by_template(template_id) == []
    assert all(store.list_notifications_by_task(i) == [] for i in ids)


def test_completed_instance_keeps_status_and_loses_notifications(lifecycle, store) -> None:
    template_id = _create_daily(lifecycle)
    first = _live(store, template_id)[0]

    done = lifecycle.complete(ALICE, first.id)

    assert done.status == TaskStatus.COMPLETED
    assert store.get_task(first.id).completed_at is not None
    assert store.list_notifications_by_task(first.id) == []


def test_removing_live_instance_keeps_full_window(lifecycle, store) -> None:
    template_id = _create_daily(lifecycle)
    second = _live(store, template_id)[1]

    lifecycle.remove(ALICE, second.id)

    live = _live(store, template_id)
    assert len(live) == 6
    due_dates = [t.due_date for t in live]
    assert second.due_date not in due_dates
    assert len(set(due_dates)) == 6
    assert max(due_dates) == FIRST_DUE + 6 * MS_PER_DAY


def test_removing_latest_instance_does_not_recreate_its_date(lifecycle, store) -> None:
    template_id = _create_daily(lifecycle)
    last = _live(store, template_id)[-1]

    lifecycle.remove(ALICE, last.id)

    live = _live(store, template_id)
    assert len(live) == 6
    assert last.due_date not in [t.due_date for t in live]
    assert live[-1].due_date == last.due_date + MS_PER_DAY


def test_restored_instance_is_standalone_and_window_stays_at_six(lifecycle, store) -> None:
    template_id = _create_daily(lifecycle)
    first = _live(store, template_id)[0]

    snapshot = lifecycle.remove(ALICE, first.id)
    restored_id = lifecycle.restore(ALICE, snapshot)

    assert len(_live(store, template_id)) == 6
    restored = store.get_task(restored_id)
    assert restored.recurring_task_id is None
    assert restored.due_date == first.due_date
