# src/taskbeacon/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole process.
- No secrets required at import time (push credentials are validated lazily).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "TASKBEACON"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path

    # ---- Time ----
    # IANA zone name; empty means the host's local zone.
    timezone: str

    # ---- Sweeps ----
    notification_sweep_seconds: float
    reminder_sweep_seconds: float
    sweep_batch_limit: int
    claim_timeout_seconds: int
    notification_missed_after_minutes: int
    default_remind_before_minutes: int

    # ---- Push (FCM HTTP v1) ----
    push_enabled: bool
    fcm_project_id: Optional[str]
    fcm_access_token: Optional[str]
    fcm_base_url: str
    fcm_timeout_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskbeacon").strip() or "taskbeacon"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskbeacon"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "taskbeacon.sqlite3")

        timezone = _env(_k("TIMEZONE"), "").strip()

        notification_sweep_seconds = _env_float(_k("NOTIFICATION_SWEEP_SECONDS"), 300.0)
        reminder_sweep_seconds = _env_float(_k("REMINDER_SWEEP_SECONDS"), 60.0)
        sweep_batch_limit = _env_int(_k("SWEEP_BATCH_LIMIT"), 200)
        claim_timeout_seconds = _env_int(_k("CLAIM_TIMEOUT_SECONDS"), 600)
        notification_missed_after_minutes = _env_int(_k("NOTIFICATION_MISSED_AFTER_MINUTES"), 0)
        default_remind_before_minutes = _env_int(_k("DEFAULT_REMIND_BEFORE_MINUTES"), 30)

        push_enabled = _env_bool(_k("PUSH_ENABLED"), False)
        fcm_project_id = _env(_k("FCM_PROJECT_ID"), "").strip() or None
        fcm_access_token = _env(_k("FCM_ACCESS_TOKEN"), "").strip() or None
        fcm_base_url = _env(_k("FCM_BASE_URL"), "https://fcm.googleapis.com/v1").rstrip("/")
        fcm_timeout_seconds = _env_float(_k("FCM_TIMEOUT_SECONDS"), 10.0)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            timezone=timezone,
            notification_sweep_seconds=notification_sweep_seconds,
            reminder_sweep_seconds=reminder_sweep_seconds,
            sweep_batch_limit=sweep_batch_limit,
            claim_timeout_seconds=claim_timeout_seconds,
            notification_missed_after_minutes=notification_missed_after_minutes,
            default_remind_before_minutes=default_remind_before_minutes,
            push_enabled=push_enabled,
            fcm_project_id=fcm_project_id,
            fcm_access_token=fcm_access_token,
            fcm_base_url=fcm_base_url,
            fcm_timeout_seconds=fcm_timeout_seconds,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
