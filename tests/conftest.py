# tests/conftest.py

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from taskbeacon.core.auth import AuthContext, GroupAccessPolicy
from taskbeacon.reminders.service import ReminderService
from taskbeacon.scheduler.due_scanner import DueScanner
from taskbeacon.storage.sqlite_store import SqliteStore
from taskbeacon.tasks.history import ActionLog
from taskbeacon.tasks.inbox import NotificationInbox
from taskbeacon.tasks.lifecycle import TaskLifecycle
from taskbeacon.tasks.notifications import NotificationMaterializer
from taskbeacon.tasks.window import OccurrenceWindowManager

from .fakes import FixedClock, RecordingNotifier

UTC = ZoneInfo("UTC")

# Wednesday, 2025-03-05 12:00 UTC
START = datetime(2025, 3, 5, 12, 0, tzinfo=UTC)

ALICE = AuthContext("alice")
BOB = AuthContext("bob")
CAROL = AuthContext("carol")
MALLORY = AuthContext("mallory")


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with create_initial_state.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskbeacon-test",
        log_level="DEBUG",
        data_dir=tmp_path / "data",
        db_path=tmp_path / "data" / "taskbeacon.sqlite3",
        timezone="UTC",
        notification_sweep_seconds=0.01,
        reminder_sweep_seconds=0.01,
        sweep_batch_limit=50,
        claim_timeout_seconds=600,
        notification_missed_after_minutes=0,
        default_remind_before_minutes=30,
        push_enabled=False,
        fcm_project_id=None,
        fcm_access_token=None,
        fcm_base_url="https://fcm.example.test/v1",
        fcm_timeout_seconds=5.0,
    )


@pytest.fixture()
def tz() -> ZoneInfo:
    return UTC


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture()
def store(tmp_path: Path) -> SqliteStore:
    # Real SQLite: the single-statement claims are part of what we test.
    return SqliteStore(tmp_path / "taskbeacon.sqlite3")


@pytest.fixture()
def family(store: SqliteStore) -> int:
    """Group with alice, bob and carol."""
    return store.insert_group(name="family", created_by="alice", members=["alice", "bob", "carol"])


@pytest.fixture()
def materializer(store: SqliteStore, clock: FixedClock) -> NotificationMaterializer:
    return NotificationMaterializer(store, clock)


@pytest.fixture()
def windows(store: SqliteStore, materializer: NotificationMaterializer, tz: ZoneInfo) -> OccurrenceWindowManager:
    return OccurrenceWindowManager(store, materializer, tz)


@pytest.fixture()
def history(store: SqliteStore, clock: FixedClock) -> ActionLog:
    return ActionLog(store, clock)


@pytest.fixture()
def lifecycle(
    store: SqliteStore,
    clock: FixedClock,
    materializer: NotificationMaterializer,
    windows: OccurrenceWindowManager,
    history: ActionLog,
) -> TaskLifecycle:
    return TaskLifecycle(store, clock, materializer, windows, access=GroupAccessPolicy(store), history=history)


@pytest.fixture()
def reminders(store: SqliteStore, clock: FixedClock) -> ReminderService:
    return ReminderService(store, clock)


@pytest.fixture()
def inbox(
    store: SqliteStore,
    clock: FixedClock,
    materializer: NotificationMaterializer,
    notifier: RecordingNotifier,
) -> NotificationInbox:
    return NotificationInbox(store, clock, materializer, GroupAccessPolicy(store), notifier=notifier)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def scanner(store: SqliteStore, notifier: RecordingNotifier, clock: FixedClock) -> DueScanner:
    return DueScanner(store, notifier, clock, batch_limit=50, claim_timeout_seconds=600)
