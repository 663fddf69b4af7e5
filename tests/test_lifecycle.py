# tests/test_lifecycle.py

from __future__ import annotations

import pytest

from taskbeacon.core.errors import NotFound, Unauthorized, ValidationError
from taskbeacon.core.timeutil import MS_PER_DAY, MS_PER_MINUTE, to_ms
from taskbeacon.tasks.lifecycle import effective_status
from taskbeacon.tasks.models import NotificationStatus, Priority, Task, TaskStatus

from .conftest import ALICE, BOB, CAROL, MALLORY, START

NOW = to_ms(START)
HOUR = 60 * MS_PER_MINUTE


def _task(lifecycle, ctx=ALICE, *, due=NOW + 2 * HOUR, title="Pay rent", **kw) -> int:
    return lifecycle.create(ctx, title=title, due_date=due, **kw)


# ---- create / notifications ----


def test_create_private_task_materializes_one_upcoming_notification(lifecycle, store) -> None:
    task_id = _task(lifecycle, priority=Priority.HIGH, tags=["home"])

    task = store.get_task(task_id)
    assert task.owner_id == "alice"
    assert task.priority == Priority.HIGH
    assert task.tags == ["home"]

    (notif,) = store.list_notifications_by_task(task_id)
    assert notif.user_id == "alice"
    assert notif.scheduled_time == task.due_date - 30 * MS_PER_MINUTE
    assert notif.status == NotificationStatus.UPCOMING
    assert notif.message == "Pay rent is due soon"
    assert notif.read is False


def test_lead_time_already_past_creates_sent_notification(lifecycle, store) -> None:
    task_id = _task(lifecycle, due=NOW + 10 * MS_PER_MINUTE)
    (notif,) = store.list_notifications_by_task(task_id)
    assert notif.status == NotificationStatus.SENT


def test_shared_task_notifies_each_group_member(lifecycle, store, family) -> None:
    task_id = _task(lifecycle, is_shared=True, group_id=family)
    notifs = store.list_notifications_by_task(task_id)
    assert sorted(n.user_id for n in notifs) == ["alice", "bob", "carol"]
    assert len({n.scheduled_time for n in notifs}) == 1


def test_sharing_into_foreign_group_is_rejected(lifecycle, family) -> None:
    with pytest.raises(ValidationError):
        _task(lifecycle, MALLORY, is_shared=True, group_id=family)


def test_blank_title_is_rejected(lifecycle) -> None:
    with pytest.raises(ValidationError):
        _task(lifecycle, title="   ")


# ---- authorization ----


def test_missing_context_is_unauthorized(lifecycle) -> None:
    with pytest.raises(Unauthorized):
        _task(lifecycle, None)


def test_private_task_is_invisible_to_others(lifecycle) -> None:
    task_id = _task(lifecycle)
    with pytest.raises(Unauthorized):
        lifecycle.get(BOB, task_id)
    with pytest.raises(Unauthorized):
        lifecycle.complete(BOB, task_id)


def test_missing_task_is_not_found(lifecycle) -> None:
    with pytest.raises(NotFound):
        lifecycle.get(ALICE, 9999)


def test_group_member_may_complete_shared_task(lifecycle, store, family) -> None:
    task_id = _task(lifecycle, is_shared=True, group_id=family)
    lifecycle.complete(BOB, task_id)
    assert store.get_task(task_id).status == TaskStatus.COMPLETED


# ---- complete / reopen / update ----


def test_complete_deletes_notifications_for_all_recipients(lifecycle, store, family) -> None:
    task_id = _task(lifecycle, is_shared=True, group_id=family)
    lifecycle.complete(CAROL, task_id)
    assert store.list_notifications_by_task(task_id) == []
    assert store.get_task(task_id).completed_at == NOW


def test_update_status_routes_through_complete_and_reopen(lifecycle, store) -> None:
    task_id = _task(lifecycle)

    done = lifecycle.update(ALICE, task_id, status=TaskStatus.COMPLETED)
    assert done.status == TaskStatus.COMPLETED
    assert store.list_notifications_by_task(task_id) == []

    reopened = lifecycle.update(ALICE, task_id, status=TaskStatus.PENDING)
    assert reopened.status == TaskStatus.PENDING
    assert reopened.completed_at is None
    assert len(store.list_notifications_by_task(task_id)) == 1


def test_update_due_date_reschedules_notifications(lifecycle, store) -> None:
    task_id = _task(lifecycle)
    new_due = NOW + 5 * HOUR

    lifecycle.update(ALICE, task_id, due_date=new_due, title="Pay rent (late)")

    (notif,) = store.list_notifications_by_task(task_id)
    assert notif.scheduled_time == new_due - 30 * MS_PER_MINUTE
    assert store.get_task(task_id).title == "Pay rent (late)"


def test_update_rejects_unknown_fields(lifecycle) -> None:
    task_id = _task(lifecycle)
    with pytest.raises(ValidationError):
        lifecycle.update(ALICE, task_id, owner_id="bob")


# ---- postpone ----


def test_postpone_defaults_to_one_day_and_keeps_each_lead_time(lifecycle, store, inbox) -> None:
    task_id = _task(lifecycle)
    (notif,) = store.list_notifications_by_task(task_id)
    inbox.update_remind_before(ALICE, notif.id, 60)
    old_due = store.get_task(task_id).due_date

    lifecycle.postpone(ALICE, task_id)

    task = store.get_task(task_id)
    assert task.due_date == old_due + 86_400_000
    (notif,) = store.list_notifications_by_task(task_id)
    assert notif.scheduled_time == task.due_date - 60 * MS_PER_MINUTE
    assert notif.status == NotificationStatus.UPCOMING


def test_postpone_to_custom_date(lifecycle, store) -> None:
    task_id = _task(lifecycle)
    target = NOW + 3 * MS_PER_DAY

    lifecycle.postpone(ALICE, task_id, custom_date=target)

    assert store.get_task(task_id).due_date == target
    (notif,) = store.list_notifications_by_task(task_id)
    assert notif.scheduled_time == target - 30 * MS_PER_MINUTE


def test_postpone_of_sent_notification_makes_it_upcoming_again(lifecycle, store) -> None:
    task_id = _task(lifecycle, due=NOW + 10 * MS_PER_MINUTE)
    lifecycle.postpone(ALICE, task_id)
    (notif,) = store.list_notifications_by_task(task_id)
    assert notif.status == NotificationStatus.UPCOMING


# ---- remove / restore ----


def test_remove_cascades_notifications_for_all_recipients(lifecycle, store, family) -> None:
    task_id = _task(lifecycle, is_shared=True, group_id=family)
    lifecycle.remove(ALICE, task_id)

    assert store.get_task(task_id) is None
    assert store.list_notifications_by_task(task_id) == []
    for user in ("alice", "bob", "carol"):
        assert store.list_notifications_by_user(user) == []


def test_restore_recreates_task_and_one_notification_set(lifecycle, store) -> None:
    task_id = _task(lifecycle, description="landlord", tags=["home"], priority=Priority.LOW)
    snapshot = lifecycle.remove(ALICE, task_id)

    new_id = lifecycle.restore(ALICE, snapshot)

    assert new_id != task_id
    restored = store.get_task(new_id)
    assert restored.title == "Pay rent"
    assert restored.description == "landlord"
    assert restored.tags == ["home"]
    assert restored.priority == Priority.LOW
    assert restored.owner_id == "alice"
    assert len(store.list_notifications_by_task(new_id)) == 1


def test_restore_snapshot_without_title_is_rejected(lifecycle) -> None:
    with pytest.raises(ValidationError):
        lifecycle.restore(ALICE, {"due_date": NOW})


# ---- dependencies ----


def test_dependency_rules(lifecycle, store) -> None:
    a = _task(lifecycle, title="A")
    b = _task(lifecycle, title="B")
    c = _task(lifecycle, title="C")

    lifecycle.add_dependency(ALICE, a, b)
    lifecycle.add_dependency(ALICE, b, c)
    assert store.get_task(a).dependencies == [b]

    with pytest.raises(ValidationError):
        lifecycle.add_dependency(ALICE, a, a)
    with pytest.raises(ValidationError):
        lifecycle.add_dependency(ALICE, a, b)
    with pytest.raises(ValidationError):
        lifecycle.add_dependency(ALICE, c, a)
    with pytest.raises(NotFound):
        lifecycle.add_dependency(ALICE, a, 9999)

    lifecycle.remove_dependency(ALICE, a, b)
    assert store.get_task(a).dependencies == []


def test_dependency_on_someone_elses_private_task_is_not_found(lifecycle) -> None:
    mine = _task(lifecycle)
    theirs = _task(lifecycle, BOB)
    with pytest.raises(NotFound):
        lifecycle.add_dependency(ALICE, mine, theirs)


def test_removed_dependency_target_leaves_dangling_reference(lifecycle, store) -> None:
    a = _task(lifecycle, title="A")
    b = _task(lifecycle, title="B")
    lifecycle.add_dependency(ALICE, a, b)

    lifecycle.remove(ALICE, b)

    assert store.get_task(a).dependencies == [b]


# ---- queries ----


def test_effective_status_derives_overdue() -> None:
    task = Task(
        id=1,
        owner_id="alice",
        title="x",
        due_date=NOW - 1,
        priority=Priority.MEDIUM,
        status=TaskStatus.PENDING,
        created_at=0,
    )
    assert effective_status(task, NOW) == TaskStatus.OVERDUE
    task.status = TaskStatus.COMPLETED
    assert effective_status(task, NOW) == TaskStatus.COMPLETED


def test_accessible_upcoming_and_overdue_queries(lifecycle, family) -> None:
    mine = _task(lifecycle, title="Mine")
    shared = _task(lifecycle, title="Shared", due=NOW + HOUR, is_shared=True, group_id=family)
    late = _task(lifecycle, title="Late", due=NOW - HOUR)
    _task(lifecycle, BOB, title="Bob private")

    assert [t.id for t in lifecycle.list_all_accessible(ALICE)] == [late, shared, mine]
    assert [t.title for t in lifecycle.list_all_accessible(BOB)] == ["Shared", "Bob private"]
    assert [t.id for t in lifecycle.upcoming(ALICE)] == [shared, mine]
    assert [t.id for t in lifecycle.upcoming(ALICE, limit=1)] == [shared]
    assert [t.id for t in lifecycle.overdue(ALICE)] == [late]
    assert [t.id for t in lifecycle.list_shared(CAROL, family)] == [shared]
    assert [t.id for t in lifecycle.search(ALICE, "sha")] == [shared]

    with pytest.raises(Unauthorized):
        lifecycle.list_shared(MALLORY, family)


def test_list_own_filters_by_range_and_status(lifecycle) -> None:
    early = _task(lifecycle, title="Early", due=NOW + HOUR)
    late = _task(lifecycle, title="Later", due=NOW + 10 * HOUR)
    lifecycle.complete(ALICE, late)

    assert [t.id for t in lifecycle.list_own(ALICE, end=NOW + 2 * HOUR)] == [early]
    assert [t.id for t in lifecycle.list_own(ALICE, status=TaskStatus.COMPLETED)] == [late]


def test_group_id_without_sharing_stays_out_of_group_listings(lifecycle, family) -> None:
    private = _task(lifecycle, MALLORY, title="Not really shared", group_id=family)
    shared = _task(lifecycle, title="Shared", is_shared=True, group_id=family)

    assert [t.id for t in lifecycle.list_all_accessible(ALICE)] == [shared]
    assert [t.id for t in lifecycle.list_shared(BOB, family)] == [shared]
    assert lifecycle.search(ALICE, "really") == []
    assert [t.id for t in lifecycle.list_own(MALLORY)] == [private]
    with pytest.raises(Unauthorized):
        lifecycle.get(ALICE, private)
