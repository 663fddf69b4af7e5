# src/taskbeacon/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store, clock, push, services).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.auth import GroupAccessPolicy
from ..core.clock import SystemClock
from ..core.errors import ConfigurationError
from ..core.ports import Notifier
from ..core.state import AppState
from ..core.timeutil import resolve_tz
from ..push.fcm import FcmNotifier
from ..push.offline import LogNotifier
from ..reminders.service import ReminderService
from ..scheduler.due_scanner import DueScanner
from ..storage.sqlite_store import SqliteStore
from ..tasks.history import ActionLog
from ..tasks.inbox import NotificationInbox
from ..tasks.lifecycle import TaskLifecycle
from ..tasks.notifications import NotificationMaterializer
from ..tasks.window import OccurrenceWindowManager

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def _build_notifier(settings, store: SqliteStore) -> Notifier:
    if not settings.push_enabled:
        logger.info("Push disabled; notifications are logged only.")
        return LogNotifier(store)

    notifier = FcmNotifier(
        store,
        project_id=settings.fcm_project_id,
        access_token=settings.fcm_access_token,
        base_url=settings.fcm_base_url,
        timeout_seconds=settings.fcm_timeout_seconds,
    )
    try:
        notifier.check_ready()
    except ConfigurationError as e:
        # Keep FCM wired: sweeps skip their dispatch phase until it is configured.
        logger.warning("Push enabled but not configured: %s", e)
    return notifier


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    tz = resolve_tz(settings.timezone)
    clock = SystemClock(tz)
    store = SqliteStore(settings.db_path)
    access = GroupAccessPolicy(store)
    notifier = _build_notifier(settings, store)

    materializer = NotificationMaterializer(
        store, clock, default_remind_before=settings.default_remind_before_minutes
    )
    windows = OccurrenceWindowManager(store, materializer, tz)
    history = ActionLog(store, clock)

    return AppState(
        settings=settings,
        tz=tz,
        clock=clock,
        store=store,
        notifier=notifier,
        materializer=materializer,
        windows=windows,
        history=history,
        tasks=TaskLifecycle(store, clock, materializer, windows, access=access, history=history),
        reminders=ReminderService(store, clock, access=access),
        inbox=NotificationInbox(store, clock, materializer, access, notifier=notifier),
        scanner=DueScanner(
            store,
            notifier,
            clock,
            batch_limit=settings.sweep_batch_limit,
            claim_timeout_seconds=settings.claim_timeout_seconds,
            missed_after_minutes=settings.notification_missed_after_minutes,
        ),
    )
