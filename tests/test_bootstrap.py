# tests/test_bootstrap.py

from __future__ import annotations

from datetime import timedelta

import pytest

from taskbeacon.cli.bootstrap import create_initial_state
from taskbeacon.core.errors import ConfigurationError
from taskbeacon.core.timeutil import MS_PER_MINUTE, to_ms
from taskbeacon.push.fcm import FcmNotifier
from taskbeacon.push.offline import LogNotifier
from taskbeacon.tasks.models import NotificationStatus

from .conftest import ALICE


def test_offline_state_uses_log_notifier(settings) -> None:
    state = create_initial_state(settings=settings)

    assert isinstance(state.notifier, LogNotifier)
    assert settings.db_path.exists()
    assert state.clock.now().tzinfo is not None


@pytest.mark.asyncio
async def test_push_enabled_without_credentials_still_builds(settings) -> None:
    settings.push_enabled = True
    state = create_initial_state(settings=settings)

    assert isinstance(state.notifier, FcmNotifier)
    with pytest.raises(ConfigurationError):
        state.notifier.check_ready()
    await state.notifier.aclose()


@pytest.mark.asyncio
async def test_wired_state_creates_and_delivers_a_notification(settings) -> None:
    state = create_initial_state(settings=settings)
    now = state.clock.now()
    task_id = state.tasks.create(ALICE, title="Standup", due_date=to_ms(now) + 40 * MS_PER_MINUTE)

    report = await state.scanner.sweep_notifications(now + timedelta(minutes=15))

    assert report.dispatched == 1
    (notif,) = state.store.list_notifications_by_task(task_id)
    assert notif.status == NotificationStatus.SENT
    assert [a.task_id for a in state.history.history(ALICE)] == [task_id]
