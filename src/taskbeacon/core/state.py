# src/taskbeacon/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import tzinfo
from typing import Any

from ..reminders.service import ReminderService
from ..scheduler.due_scanner import DueScanner
from ..storage.sqlite_store import SqliteStore
from ..tasks.history import ActionLog
from ..tasks.inbox import NotificationInbox
from ..tasks.lifecycle import TaskLifecycle
from ..tasks.notifications import NotificationMaterializer
from ..tasks.window import OccurrenceWindowManager
from .ports import Clock, Notifier


@dataclass
class AppState:
    # Settings live on the state so every component reads the same object.
    settings: Any

    tz: tzinfo
    clock: Clock
    store: SqliteStore
    notifier: Notifier

    materializer: NotificationMaterializer
    windows: OccurrenceWindowManager
    history: ActionLog
    tasks: TaskLifecycle
    reminders: ReminderService
    inbox: NotificationInbox
    scanner: DueScanner
