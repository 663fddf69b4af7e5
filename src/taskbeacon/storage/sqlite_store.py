# src/taskbeacon/storage/sqlite_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..tasks.models import (
    ActionRecord,
    ActionType,
    DeviceToken,
    Group,
    Notification,
    NotificationStatus,
    NotificationType,
    Priority,
    RecurrenceEnd,
    RecurrenceRule,
    RecurringTaskTemplate,
    Reminder,
    ReminderRule,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)

# Columns a caller may write through insert_*/patch_* (keys double as the
# dataclass field names).
_TASK_COLS = frozenset({
    "owner_id", "title", "description", "due_date", "priority", "status", "tags",
    "dependencies", "group_id", "is_shared", "recurring_task_id", "instance_number",
    "completed_at", "created_at",
})
_TEMPLATE_COLS = frozenset({
    "owner_id", "title", "description", "priority", "tags", "recurrence_rule",
    "recurrence_end", "is_active", "group_id", "is_shared", "generated_count", "created_at",
})
_NOTIFICATION_COLS = frozenset({
    "user_id", "task_id", "message", "type", "read", "scheduled_time", "remind_before",
    "status", "claimed_at",
})
_REMINDER_COLS = frozenset({
    "owner_id", "title", "recurrence_rule", "recurrence_end", "show_on_calendar",
    "is_shared", "is_active", "group_id", "last_fired_bucket", "fired_count", "created_at",
})
_ACTION_COLS = frozenset({"user_id", "type", "task_id", "previous_state", "new_state", "created_at"})


def _now_ms() -> int:
    return int(time.time() * 1000)


def _encode(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (RecurrenceRule, ReminderRule, RecurrenceEnd)):
        return json.dumps(value.to_dict(), ensure_ascii=False)
    if isinstance(value, (list, tuple, set)):
        return json.dumps(list(value), ensure_ascii=False)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, str):
        # StrEnum members are str subclasses; store the raw value.
        return str(value)
    return value


def _json_list(s: str | None) -> list[Any]:
    if not s:
        return []
    try:
        val = json.loads(s)
        return val if isinstance(val, list) else []
    except json.JSONDecodeError:
        logger.warning("Corrupt JSON list column: %r", s)
        return []


def _json_dict(s: str | None) -> dict[str, Any] | None:
    if not s:
        return None
    try:
        val = json.loads(s)
        return val if isinstance(val, dict) else None
    except json.JSONDecodeError:
        logger.warning("Corrupt JSON object column: %r", s)
        return None


class SqliteStore:
    """
    SQLite implementation of core.ports.Store.

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    - every single-document mutation is one statement (atomic read-modify-write)
    """

    def __init__(self, db_path: str | Path = "taskbeacon.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("SqliteStore ready db=%s", self._db_path)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.executescript(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    due_date INTEGER NOT NULL,
                    priority TEXT NOT NULL DEFAULT 'medium',
                    status TEXT NOT NULL DEFAULT 'pending',
                    tags TEXT NOT NULL DEFAULT '[]',
                    dependencies TEXT NOT NULL DEFAULT '[]',
                    group_id INTEGER,
                    is_shared INTEGER NOT NULL DEFAULT 0,
                    recurring_task_id INTEGER,
                    instance_number INTEGER,
                    completed_at INTEGER,
                    created_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS recurring_tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    priority TEXT NOT NULL DEFAULT 'medium',
                    tags TEXT NOT NULL DEFAULT '[]',
                    recurrence_rule TEXT NOT NULL,
                    recurrence_end TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    group_id INTEGER,
                    is_shared INTEGER NOT NULL DEFAULT 0,
                    generated_count INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    task_id INTEGER NOT NULL,
                    message TEXT NOT NULL,
                    type TEXT NOT NULL DEFAULT 'reminder',
                    read INTEGER NOT NULL DEFAULT 0,
                    scheduled_time INTEGER NOT NULL,
                    remind_before INTEGER,
                    status TEXT NOT NULL DEFAULT 'upcoming',
                    claimed_at INTEGER
                );

                CREATE TABLE IF NOT EXISTS reminders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    recurrence_rule TEXT NOT NULL,
                    recurrence_end TEXT,
                    show_on_calendar INTEGER NOT NULL DEFAULT 0,
                    is_shared INTEGER NOT NULL DEFAULT 0,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    group_id INTEGER,
                    last_fired_bucket INTEGER,
                    fired_count INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS task_groups (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    description TEXT,
                    created_by TEXT NOT NULL,
                    members TEXT NOT NULL DEFAULT '[]'
                );

                CREATE TABLE IF NOT EXISTS device_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    token TEXT NOT NULL UNIQUE,
                    platform TEXT,
                    last_updated INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS actions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    task_id INTEGER NOT NULL,
                    previous_state TEXT,
                    new_state TEXT,
                    created_at INTEGER NOT NULL
                );
                """
            )

            # Migrations (safe): add columns introduced after the first release.
            def add_col(table: str, name: str, decl: str) -> None:
                cur.execute(f"PRAGMA table_info({table})")
                cols = {row["name"] for row in cur.fetchall()}
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                logger.info("SqliteStore migration: added %s.%s", table, name)

            add_col("tasks", "instance_number", "INTEGER")
            add_col("recurring_tasks", "generated_count", "INTEGER NOT NULL DEFAULT 0")
            add_col("notifications", "claimed_at", "INTEGER")
            add_col("reminders", "last_fired_bucket", "INTEGER")
            add_col("reminders", "fired_count", "INTEGER NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner ON tasks(owner_id, status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_group ON tasks(group_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_template ON tasks(recurring_task_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_templates_owner ON recurring_tasks(owner_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_notif_due ON notifications(status, scheduled_time)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_notif_user ON notifications(user_id, status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_notif_task ON notifications(task_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_reminders_owner ON reminders(owner_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_reminders_group ON reminders(group_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tokens_user ON device_tokens(user_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_actions_user ON actions(user_id, id)")

            conn.commit()
        finally:
            conn.close()

    def _insert(self, table: str, allowed: frozenset[str], fields: dict[str, Any]) -> int:
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"unknown {table} fields: {sorted(unknown)}")
        if "created_at" in allowed and fields.get("created_at") is None:
            fields = {**fields, "created_at": _now_ms()}

        cols = list(fields)
        placeholders = ", ".join("?" for _ in cols)
        sql = f"INSERT INTO {table}({', '.join(cols)}) VALUES ({placeholders})"  # noqa: S608

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(sql, [_encode(fields[c]) for c in cols])
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError(f"SQLite did not return lastrowid for {table} insert")
            return int(rowid)
        finally:
            conn.close()

    def _patch(self, table: str, allowed: frozenset[str], row_id: int, fields: dict[str, Any]) -> None:
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"unknown {table} fields: {sorted(unknown)}")
        if not fields:
            return

        cols = list(fields)
        assignments = ", ".join(f"{c} = ?" for c in cols)
        params = [_encode(fields[c]) for c in cols]
        params.append(int(row_id))

        conn = self._get_conn()
        try:
            conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", params)  # noqa: S608
            conn.commit()
        finally:
            conn.close()

    def _delete(self, table: str, row_id: int) -> None:
        conn = self._get_conn()
        try:
            conn.execute(f"DELETE FROM {table} WHERE id = ?", (int(row_id),))  # noqa: S608
            conn.commit()
        finally:
            conn.close()

    def _select(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        conn = self._get_conn()
        try:
            return conn.execute(sql, tuple(params)).fetchall()
        finally:
            conn.close()

    # ---- row mappers ----

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            owner_id=str(row["owner_id"]),
            title=str(row["title"]),
            description=row["description"],
            due_date=int(row["due_date"]),
            priority=Priority(row["priority"] or Priority.MEDIUM.value),
            status=TaskStatus.from_db(row["status"]),
            tags=[str(t) for t in _json_list(row["tags"])],
            dependencies=[int(d) for d in _json_list(row["dependencies"])],
            group_id=row["group_id"],
            is_shared=bool(row["is_shared"]),
            recurring_task_id=row["recurring_task_id"],
            instance_number=row["instance_number"],
            completed_at=row["completed_at"],
            created_at=int(row["created_at"] or 0),
        )

    @staticmethod
    def _row_to_template(row: sqlite3.Row) -> RecurringTaskTemplate:
        rule_raw = _json_dict(row["recurrence_rule"]) or {"frequency": "daily"}
        return RecurringTaskTemplate(
            id=int(row["id"]),
            owner_id=str(row["owner_id"]),
            title=str(row["title"]),
            description=row["description"],
            priority=Priority(row["priority"] or Priority.MEDIUM.value),
            tags=[str(t) for t in _json_list(row["tags"])],
            recurrence_rule=RecurrenceRule.from_dict(rule_raw),
            recurrence_end=RecurrenceEnd.from_dict(_json_dict(row["recurrence_end"])),
            is_active=bool(row["is_active"]),
            group_id=row["group_id"],
            is_shared=bool(row["is_shared"]),
            generated_count=int(row["generated_count"] or 0),
            created_at=int(row["created_at"] or 0),
        )

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> Notification:
        return Notification(
            id=int(row["id"]),
            user_id=str(row["user_id"]),
            task_id=int(row["task_id"]),
            message=str(row["message"]),
            type=NotificationType(row["type"] or NotificationType.REMINDER.value),
            read=bool(row["read"]),
            scheduled_time=int(row["scheduled_time"]),
            remind_before=row["remind_before"],
            status=NotificationStatus.from_db(row["status"]),
            claimed_at=row["claimed_at"],
        )

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        rule_raw = _json_dict(row["recurrence_rule"]) or {"frequency": "daily", "time": "00:00"}
        return Reminder(
            id=int(row["id"]),
            owner_id=str(row["owner_id"]),
            title=str(row["title"]),
            recurrence_rule=ReminderRule.from_dict(rule_raw),
            recurrence_end=RecurrenceEnd.from_dict(_json_dict(row["recurrence_end"])),
            show_on_calendar=bool(row["show_on_calendar"]),
            is_shared=bool(row["is_shared"]),
            is_active=bool(row["is_active"]),
            group_id=row["group_id"],
            last_fired_bucket=row["last_fired_bucket"],
            fired_count=int(row["fired_count"] or 0),
            created_at=int(row["created_at"] or 0),
        )

    @staticmethod
    def _row_to_action(row: sqlite3.Row) -> ActionRecord:
        return ActionRecord(
            id=int(row["id"]),
            user_id=str(row["user_id"]),
            type=ActionType(row["type"]),
            task_id=int(row["task_id"]),
            previous_state=_json_dict(row["previous_state"]),
            new_state=_json_dict(row["new_state"]),
            created_at=int(row["created_at"] or 0),
        )

    @staticmethod
    def _row_to_group(row: sqlite3.Row) -> Group:
        return Group(
            id=int(row["id"]),
            name=str(row["name"]),
            description=row["description"],
            created_by=str(row["created_by"]),
            members=[str(m) for m in _json_list(row["members"])],
        )

    # ---------- Tasks ----------

    def insert_task(self, **fields: Any) -> int:
        task_id = self._insert("tasks", _TASK_COLS, fields)
        logger.debug("Task inserted id=%s due_date=%s", task_id, fields.get("due_date"))
        return task_id

    def get_task(self, task_id: int) -> Task | None:
        rows = self._select("SELECT * FROM tasks WHERE id = ?", (int(task_id),))
        return self._row_to_task(rows[0]) if rows else None

    def patch_task(self, task_id: int, **fields: Any) -> None:
        self._patch("tasks", _TASK_COLS, task_id, fields)

    def delete_task(self, task_id: int) -> None:
        self._delete("tasks", task_id)

    def list_tasks_by_owner(self, owner_id: str) -> list[Task]:
        rows = self._select(
            "SELECT * FROM tasks WHERE owner_id = ? ORDER BY due_date ASC, id ASC", (owner_id,)
        )
        return [self._row_to_task(r) for r in rows]

    def list_tasks_by_group(self, group_id: int) -> list[Task]:
        rows = self._select(
            "SELECT * FROM tasks WHERE group_id = ? ORDER BY due_date ASC, id ASC", (int(group_id),)
        )
        return [self._row_to_task(r) for r in rows]

    def list_tasks_by_template(self, template_id: int, *, include_completed: bool = True) -> list[Task]:
        sql = "SELECT * FROM tasks WHERE recurring_task_id = ?"
        if not include_completed:
            sql += " AND status != 'completed'"
        sql += " ORDER BY due_date ASC, id ASC"
        rows = self._select(sql, (int(template_id),))
        return [self._row_to_task(r) for r in rows]

    # ---------- Recurring task templates ----------

    def insert_template(self, **fields: Any) -> int:
        return self._insert("recurring_tasks", _TEMPLATE_COLS, fields)

    def get_template(self, template_id: int) -> RecurringTaskTemplate | None:
        rows = self._select("SELECT * FROM recurring_tasks WHERE id = ?", (int(template_id),))
        return self._row_to_template(rows[0]) if rows else None

    def patch_template(self, template_id: int, **fields: Any) -> None:
        self._patch("recurring_tasks", _TEMPLATE_COLS, template_id, fields)

    def delete_template(self, template_id: int) -> None:
        self._delete("recurring_tasks", template_id)

    def list_templates_by_owner(self, owner_id: str) -> list[RecurringTaskTemplate]:
        rows = self._select(
            "SELECT * FROM recurring_tasks WHERE owner_id = ? ORDER BY id ASC", (owner_id,)
        )
        return [self._row_to_template(r) for r in rows]

    # ---------- Notifications ----------

    def insert_notification(self, **fields: Any) -> int:
        return self._insert("notifications", _NOTIFICATION_COLS, fields)

    def get_notification(self, notification_id: int) -> Notification | None:
        rows = self._select("SELECT * FROM notifications WHERE id = ?", (int(notification_id),))
        return self._row_to_notification(rows[0]) if rows else None

    def patch_notification(self, notification_id: int, **fields: Any) -> None:
        self._patch("notifications", _NOTIFICATION_COLS, notification_id, fields)

    def delete_notification(self, notification_id: int) -> None:
        self._delete("notifications", notification_id)

    def list_notifications_by_task(self, task_id: int) -> list[Notification]:
        rows = self._select(
            "SELECT * FROM notifications WHERE task_id = ? ORDER BY id ASC", (int(task_id),)
        )
        return [self._row_to_notification(r) for r in rows]

    def delete_notifications_by_task(self, task_id: int) -> int:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM notifications WHERE task_id = ?", (int(task_id),))
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    def list_notifications_by_user(
        self, user_id: str, *, status: NotificationStatus | None = None
    ) -> list[Notification]:
        if status is None:
            rows = self._select(
                "SELECT * FROM notifications WHERE user_id = ? ORDER BY scheduled_time DESC, id DESC",
                (user_id,),
            )
        else:
            rows = self._select(
                "SELECT * FROM notifications WHERE user_id = ? AND status = ? "
                "ORDER BY scheduled_time DESC, id DESC",
                (user_id, status.value),
            )
        return [self._row_to_notification(r) for r in rows]

    def list_due_notifications(self, *, now_ms: int, limit: int = 200) -> list[Notification]:
        """Rows with status=upcoming AND scheduled_time <= now, oldest first."""
        rows = self._select(
            """
            SELECT *
            FROM notifications
            WHERE status = 'upcoming'
              AND scheduled_time <= ?
            ORDER BY scheduled_time ASC, id ASC
                LIMIT ?
            """,
            (int(now_ms), int(limit)),
        )
        return [self._row_to_notification(r) for r in rows]

    def try_claim_notification(
        self, notification_id: int, *, expected: Iterable[NotificationStatus], now_ms: int
    ) -> bool:
        """
        Optimistic claim to avoid double-send from overlapping sweeps.

        Atomically transitions:
          status IN expected  -> status = pending, claimed_at = now

        Returns True if the row was claimed by this caller.
        """
        exp = [e.value for e in expected]
        if not exp:
            return False

        conn = self._get_conn()
        try:
            placeholders = ",".join("?" for _ in exp)
            cur = conn.execute(
                f"""
                UPDATE notifications
                SET status = 'pending', claimed_at = ?
                WHERE id = ?
                  AND status IN ({placeholders})
                """,  # noqa: S608
                (int(now_ms), int(notification_id), *exp),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def release_stale_claims(self, *, older_than_ms: int) -> int:
        """Put rows claimed by a crashed/hung sweep back to upcoming."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE notifications
                SET status = 'upcoming', claimed_at = NULL
                WHERE status = 'pending'
                  AND claimed_at IS NOT NULL
                  AND claimed_at < ?
                """,
                (int(older_than_ms),),
            )
            conn.commit()
            n = int(cur.rowcount)
            if n:
                logger.warning("Released %d stale notification claim(s)", n)
            return n
        finally:
            conn.close()

    # ---------- Reminders ----------

    def insert_reminder(self, **fields: Any) -> int:
        return self._insert("reminders", _REMINDER_COLS, fields)

    def get_reminder(self, reminder_id: int) -> Reminder | None:
        rows = self._select("SELECT * FROM reminders WHERE id = ?", (int(reminder_id),))
        return self._row_to_reminder(rows[0]) if rows else None

    def patch_reminder(self, reminder_id: int, **fields: Any) -> None:
        self._patch("reminders", _REMINDER_COLS, reminder_id, fields)

    def delete_reminder(self, reminder_id: int) -> None:
        self._delete("reminders", reminder_id)

    def list_reminders_by_owner(self, owner_id: str) -> list[Reminder]:
        rows = self._select("SELECT * FROM reminders WHERE owner_id = ? ORDER BY id ASC", (owner_id,))
        return [self._row_to_reminder(r) for r in rows]

    def list_reminders_by_group(self, group_id: int) -> list[Reminder]:
        rows = self._select("SELECT * FROM reminders WHERE group_id = ? ORDER BY id ASC", (int(group_id),))
        return [self._row_to_reminder(r) for r in rows]

    def list_active_reminders(self) -> list[Reminder]:
        rows = self._select("SELECT * FROM reminders WHERE is_active = 1 ORDER BY id ASC")
        return [self._row_to_reminder(r) for r in rows]

    def try_mark_reminder_fired(self, reminder_id: int, *, bucket: int) -> bool:
        """
        Claim the minute bucket for a reminder.

        Only one caller per (reminder, minute) gets True; this is the guard
        against overlapping reminder sweeps.
        """
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE reminders
                SET last_fired_bucket = ?, fired_count = fired_count + 1
                WHERE id = ?
                  AND (last_fired_bucket IS NULL OR last_fired_bucket < ?)
                """,
                (int(bucket), int(reminder_id), int(bucket)),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    # ---------- Groups ----------

    def insert_group(
        self, *, name: str, created_by: str, members: list[str], description: str | None = None
    ) -> int:
        if not name or not name.strip():
            raise ValueError("name is required")
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "INSERT INTO task_groups(name, description, created_by, members) VALUES (?, ?, ?, ?)",
                (name.strip(), description, created_by, json.dumps(list(members), ensure_ascii=False)),
            )
            conn.commit()
            return int(cur.lastrowid or 0)
        finally:
            conn.close()

    def get_group(self, group_id: int) -> Group | None:
        rows = self._select("SELECT * FROM task_groups WHERE id = ?", (int(group_id),))
        return self._row_to_group(rows[0]) if rows else None

    def list_groups_for_member(self, user_id: str) -> list[Group]:
        # Best-effort scan + filter; membership lives in a JSON column.
        rows = self._select("SELECT * FROM task_groups ORDER BY id ASC")
        groups = [self._row_to_group(r) for r in rows]
        return [g for g in groups if user_id in g.members]

    # ---------- Device tokens ----------

    def register_device_token(self, *, user_id: str, token: str, platform: str | None = None) -> int:
        """Insert or refresh a token; a token re-registered by another user moves to that user."""
        if not token or not token.strip():
            raise ValueError("token is required")
        now = _now_ms()
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO device_tokens(user_id, token, platform, last_updated)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(token) DO UPDATE SET
                    user_id = excluded.user_id,
                    platform = excluded.platform,
                    last_updated = excluded.last_updated
                """,
                (user_id, token.strip(), platform, now),
            )
            conn.commit()
            row = conn.execute("SELECT id FROM device_tokens WHERE token = ?", (token.strip(),)).fetchone()
            return int(row["id"])
        finally:
            conn.close()

    def remove_device_token(self, *, user_id: str, token: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM device_tokens WHERE token = ? AND user_id = ?", (token, user_id))
            conn.commit()
        finally:
            conn.close()

    def list_device_tokens(self, user_ids: Iterable[str]) -> list[DeviceToken]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        rows = self._select(
            f"SELECT * FROM device_tokens WHERE user_id IN ({placeholders}) ORDER BY id ASC",  # noqa: S608
            ids,
        )
        return [
            DeviceToken(
                id=int(r["id"]),
                user_id=str(r["user_id"]),
                token=str(r["token"]),
                platform=r["platform"],
                last_updated=int(r["last_updated"]),
            )
            for r in rows
        ]

    # ---------- Action history ----------

    def insert_action(self, **fields: Any) -> int:
        return self._insert("actions", _ACTION_COLS, fields)

    def list_actions_by_user(self, user_id: str, *, limit: int | None = None) -> list[ActionRecord]:
        """Newest first."""
        sql = "SELECT * FROM actions WHERE user_id = ? ORDER BY id DESC"
        params: list[Any] = [user_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(max(0, int(limit)))
        return [self._row_to_action(r) for r in self._select(sql, params)]
