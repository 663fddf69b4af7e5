# tests/test_config.py

from __future__ import annotations

from pathlib import Path

import pytest

from taskbeacon.config import Settings

_KEYS = (
    "DATA_DIR",
    "DB_PATH",
    "TIMEZONE",
    "NOTIFICATION_SWEEP_SECONDS",
    "REMINDER_SWEEP_SECONDS",
    "SWEEP_BATCH_LIMIT",
    "NOTIFICATION_MISSED_AFTER_MINUTES",
    "DEFAULT_REMIND_BEFORE_MINUTES",
    "PUSH_ENABLED",
    "FCM_PROJECT_ID",
    "FCM_BASE_URL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _KEYS:
        monkeypatch.delenv(f"TASKBEACON_{key}", raising=False)


def test_defaults() -> None:
    s = Settings.from_env()
    assert s.notification_sweep_seconds == 300.0
    assert s.reminder_sweep_seconds == 60.0
    assert s.sweep_batch_limit == 200
    assert s.notification_missed_after_minutes == 0
    assert s.default_remind_before_minutes == 30
    assert s.push_enabled is False
    assert s.fcm_project_id is None
    assert s.db_path == s.data_dir / "taskbeacon.sqlite3"


def test_values_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TASKBEACON_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("TASKBEACON_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("TASKBEACON_REMINDER_SWEEP_SECONDS", "30")
    monkeypatch.setenv("TASKBEACON_PUSH_ENABLED", "yes")
    monkeypatch.setenv("TASKBEACON_FCM_PROJECT_ID", "  my-project ")
    monkeypatch.setenv("TASKBEACON_FCM_BASE_URL", "https://fcm.example.test/v1/")

    s = Settings.from_env()

    assert s.data_dir == tmp_path
    assert s.db_path == tmp_path / "taskbeacon.sqlite3"
    assert s.timezone == "Europe/Berlin"
    assert s.reminder_sweep_seconds == 30.0
    assert s.push_enabled is True
    assert s.fcm_project_id == "my-project"
    assert s.fcm_base_url == "https://fcm.example.test/v1"


def test_bad_numbers_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TASKBEACON_SWEEP_BATCH_LIMIT", "lots")
    monkeypatch.setenv("TASKBEACON_NOTIFICATION_SWEEP_SECONDS", "")
    s = Settings.from_env()
    assert s.sweep_batch_limit == 200
    assert s.notification_sweep_seconds == 300.0
