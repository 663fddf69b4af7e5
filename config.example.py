# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Use:
- .env (local, gitignored)

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "TASKBEACON_APP_NAME": "App display name (default: taskbeacon).",
    "TASKBEACON_LOG_LEVEL": "Console logging level (default: INFO).",
    # Paths (gitignored)
    "TASKBEACON_DATA_DIR": "Local data directory, also holds taskbeacon.log (default: .local/taskbeacon).",
    "TASKBEACON_DB_PATH": "SQLite path (default: <data_dir>/taskbeacon.sqlite3).",
    # Time
    "TASKBEACON_TIMEZONE": "IANA zone for recurrence and reminder matching (default: host local zone).",
    # Sweeps
    "TASKBEACON_NOTIFICATION_SWEEP_SECONDS": "Seconds between task notification sweeps (default: 300).",
    "TASKBEACON_REMINDER_SWEEP_SECONDS": "Seconds between reminder sweeps; keep <= 60 (default: 60).",
    "TASKBEACON_SWEEP_BATCH_LIMIT": "Max due notifications handled per sweep (default: 200).",
    "TASKBEACON_CLAIM_TIMEOUT_SECONDS": "Claimed rows older than this go back to upcoming (default: 600).",
    "TASKBEACON_NOTIFICATION_MISSED_AFTER_MINUTES": (
        "Mark due rows older than this as missed instead of sending; 0 disables (default: 0)."
    ),
    "TASKBEACON_DEFAULT_REMIND_BEFORE_MINUTES": "Lead time for new task notifications (default: 30).",
    # Push (FCM HTTP v1)
    "TASKBEACON_PUSH_ENABLED": "Send real pushes via FCM (true/false). Off => pushes are only logged.",
    "TASKBEACON_FCM_PROJECT_ID": "Firebase project id.",
    "TASKBEACON_FCM_ACCESS_TOKEN": "OAuth2 bearer token for the FCM API (refreshed by the deployer).",
    "TASKBEACON_FCM_BASE_URL": "FCM API base URL (default: https://fcm.googleapis.com/v1).",
    "TASKBEACON_FCM_TIMEOUT_SECONDS": "HTTP timeout per push request (default: 10).",
}
