# src/taskbeacon/scheduler/due_scanner.py

from __future__ import annotations

"""
Due scanner.

Two polling sweeps:
- notifications: fetch due upcoming rows, claim each (upcoming -> pending),
  push to the row's recipient, then mark sent or put the claim back;
- reminders: evaluate every active reminder against the current minute,
  claim the minute bucket, push to every recipient.

Each sweep kind runs under its own asyncio.Lock, so a slow tick never
overlaps the next one inside this process. Across processes the store's
single-statement claims are the guard.

Sweeps never raise per item: failures are logged and the row is left for
the next tick.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from ..core.errors import ConfigurationError, DispatchFailure
from ..core.ports import Clock, Notifier, Store
from ..core.timeutil import MS_PER_MINUTE, minute_bucket, to_ms
from ..push.messages import reminder_push_content, task_push_content
from ..reminders.engine import hhmm, is_due
from ..tasks.models import Notification, NotificationStatus, Reminder, SendResult
from ..tasks.notifications import resolve_recipients

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SweepReport:
    found: int = 0
    dispatched: int = 0
    failed: int = 0
    # True when the transport was not ready and the dispatch phase was skipped.
    skipped: bool = False
    missed: int = 0



class DueScanner:
    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        clock: Clock,
        *,
        batch_limit: int = 200,
        claim_timeout_seconds: int = 600,
        missed_after_minutes: int = 0,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.batch_limit = max(1, int(batch_limit))
        self.claim_timeout_seconds = max(1, int(claim_timeout_seconds))
        self.missed_after_minutes = max(0, int(missed_after_minutes))

        self._notification_lock = asyncio.Lock()
        self._reminder_lock = asyncio.Lock()

    # ---- notifications ----

    async def sweep_notifications(self, now: datetime | None = None) -> SweepReport:
        async with self._notification_lock:
            return await self._sweep_notifications(now or self.clock.now())

    async def _deliver(self, user_id: str, title: str, body: str, metadata: dict[str, str]) -> SendResult:
        result = await self.notifier.send(user_id, title, body, metadata)
        if not result.delivered:
            raise DispatchFailure(f"all {result.token_count} token(s) of {user_id} failed")
        return result

    def _revert_claim(self, notification_id: int) -> None:
        try:
            self.store.patch_notification(
                notification_id, status=NotificationStatus.UPCOMING, claimed_at=None
            )
        except Exception:
            logger.exception("revert claim failed notification_id=%s", notification_id)

    def _mark_missed(self, due: list[Notification], now_ms: int) -> tuple[list[Notification], int]:
        if self.missed_after_minutes <= 0:
            return due, 0

        cutoff = now_ms - self.missed_after_minutes * MS_PER_MINUTE
        keep: list[Notification] = []
        missed = 0
        for notif in due:
            if notif.scheduled_time >= cutoff:
                keep.append(notif)
                continue
            try:
                if self.store.try_claim_notification(
                    notif.id, expected=[NotificationStatus.UPCOMING], now_ms=now_ms
                ):
                    self.store.patch_notification(
                        notif.id, status=NotificationStatus.MISSED, claimed_at=None
                    )
                    missed += 1
            except Exception:
                logger.exception("mark missed failed notification_id=%s", notif.id)
        if missed:
            logger.info("Marked %d notification(s) missed (older than %d min)", missed, self.missed_after_minutes)
        return keep, missed

    async def _sweep_notifications(self, now: datetime) -> SweepReport:
        now_ms = to_ms(now)

        try:
            self.store.release_stale_claims(older_than_ms=now_ms - self.claim_timeout_seconds * 1000)
        except Exception:
            logger.exception("release_stale_claims failed")

        try:
            due = self.store.list_due_notifications(now_ms=now_ms, limit=self.batch_limit)
        except Exception:
            logger.exception("list_due_notifications failed")
            return SweepReport()

        if not due:
            return SweepReport()

        found = len(due)
        due, missed = self._mark_missed(due, now_ms)
        if not due:
            return SweepReport(found=found, missed=missed)

        try:
            self.notifier.check_ready()
        except ConfigurationError as e:
            logger.warning("Push transport not ready; skipping %d notification(s): %s", len(due), e)
            return SweepReport(found=found, skipped=True, missed=missed)

        dispatched = 0
        failed = 0
        for notif in due:
            try:
                claimed = self.store.try_claim_notification(
                    notif.id, expected=[NotificationStatus.UPCOMING], now_ms=now_ms
                )
            except Exception:
                logger.exception("try_claim_notification failed notification_id=%s", notif.id)
                continue

            if not claimed:
                continue

            task = self.store.get_task(notif.task_id)
            if task is None:
                logger.warning(
                    "Notification %s references missing task %s; dropping", notif.id, notif.task_id
                )
                try:
                    self.store.delete_notification(notif.id)
                except Exception:
                    logger.exception("delete orphan failed notification_id=%s", notif.id)
                continue

            title, body, metadata = task_push_content(notif, task.title)
            try:
                result = await self._deliver(notif.user_id, title, body, metadata)
            except ConfigurationError as e:
                logger.warning("Push transport became unavailable mid-sweep: %s", e)
                self._revert_claim(notif.id)
                return SweepReport(
                    found=found, dispatched=dispatched, failed=failed, skipped=True, missed=missed
                )
            except DispatchFailure as e:
                logger.warning("Notification %s: %s; retrying next sweep", notif.id, e)
                self._revert_claim(notif.id)
                failed += 1
                continue
            except Exception:
                logger.exception("dispatch failed notification_id=%s user_id=%s", notif.id, notif.user_id)
                self._revert_claim(notif.id)
                failed += 1
                continue

            try:
                self.store.patch_notification(notif.id, status=NotificationStatus.SENT, claimed_at=None)
            except Exception:
                logger.exception("mark sent failed notification_id=%s", notif.id)
                continue
            dispatched += 1
            logger.info(
                "Notification %s -> sent user_id=%s tokens=%d/%d",
                notif.id,
                notif.user_id,
                result.success_count,
                result.token_count,
            )

        return SweepReport(found=found, dispatched=dispatched, failed=failed, missed=missed)

    # ---- reminders ----

    async def sweep_reminders(self, now: datetime | None = None) -> SweepReport:
        async with self._reminder_lock:
            return await self._sweep_reminders(now or self.clock.now())

    async def _fan_out(self, reminder: Reminder) -> bool:
        title, body, metadata = reminder_push_content(reminder)
        delivered = False
        for user_id in resolve_recipients(self.store, reminder, fallback_to_owner=True):
            try:
                result: SendResult = await self.notifier.send(user_id, title, body, metadata)
            except Exception:
                logger.exception("reminder dispatch failed reminder_id=%s user_id=%s", reminder.id, user_id)
                continue
            delivered = delivered or result.delivered
        return delivered

    async def _sweep_reminders(self, now: datetime) -> SweepReport:
        try:
            active = self.store.list_active_reminders()
        except Exception:
            logger.exception("list_active_reminders failed")
            return SweepReport()

        due = [r for r in active if is_due(r, now)]
        logger.debug("Checked %d active reminder(s) at %s; %d due", len(active), hhmm(now), len(due))
        if not due:
            return SweepReport()

        try:
            self.notifier.check_ready()
        except ConfigurationError as e:
            # Buckets stay unclaimed, so a later sweep within the same minute may still fire.
            logger.warning("Push transport not ready; skipping %d reminder(s): %s", len(due), e)
            return SweepReport(found=len(due), skipped=True)

        bucket = minute_bucket(to_ms(now))
        dispatched = 0
        failed = 0
        for reminder in due:
            try:
                if not self.store.try_mark_reminder_fired(reminder.id, bucket=bucket):
                    continue
            except Exception:
                logger.exception("try_mark_reminder_fired failed reminder_id=%s", reminder.id)
                continue

            if await self._fan_out(reminder):
                dispatched += 1
                logger.info("Reminder %s fired at %s", reminder.id, hhmm(now))
            else:
                # The minute is claimed; a reminder is not retried outside its minute.
                failed += 1
                logger.warning("Reminder %s fired at %s but reached nobody", reminder.id, hhmm(now))

        return SweepReport(found=len(due), dispatched=dispatched, failed=failed)


async def _run_sweeper(name: str, sweep, interval_seconds: float) -> None:
    sleep_s = max(0.01, float(interval_seconds))
    while True:
        try:
            report = await sweep()
            if report.found:
                logger.info(
                    "%s sweep: found=%d dispatched=%d failed=%d missed=%d skipped=%s",
                    name,
                    report.found,
                    report.dispatched,
                    report.failed,
                    report.missed,
                    report.skipped,
                )
        except Exception:
            logger.exception("%s sweep failed", name)
        await asyncio.sleep(sleep_s)


async def run_notification_sweeper(scanner: DueScanner, *, interval_seconds: float = 300.0) -> None:
    """
    Polling loop for task notifications.

    To stop the sweeper, cancel the coroutine/task.
    """
    await _run_sweeper("notification", scanner.sweep_notifications, interval_seconds)


async def run_reminder_sweeper(scanner: DueScanner, *, interval_seconds: float = 60.0) -> None:
    """
    Polling loop for recurring reminders.

    Keep the interval at or below 60 s: a minute with no sweep is a skipped reminder.
    """
    await _run_sweeper("reminder", scanner.sweep_reminders, interval_seconds)
