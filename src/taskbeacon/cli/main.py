# src/taskbeacon/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs both sweepers until
SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..scheduler.due_scanner import run_notification_sweeper, run_reminder_sweeper

logger = logging.getLogger(__name__)


async def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        aclose = getattr(state.notifier, "aclose", None)
        if aclose is not None:
            await aclose()
    except Exception:
        logger.debug("Notifier close failed.", exc_info=True)

    # SqliteStore uses short-lived connections per call; close() is a no-op hook.
    try:
        state.store.close()
    except Exception:
        logger.debug("Store close failed.", exc_info=True)


async def run(state: AppState) -> None:
    settings = state.settings
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Some platforms do not support loop signal handlers.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    sweepers = [
        asyncio.create_task(
            run_notification_sweeper(state.scanner, interval_seconds=settings.notification_sweep_seconds),
            name="notification-sweeper",
        ),
        asyncio.create_task(
            run_reminder_sweeper(state.scanner, interval_seconds=settings.reminder_sweep_seconds),
            name="reminder-sweeper",
        ),
    ]
    logger.info(
        "Sweepers running (notifications every %.0fs, reminders every %.0fs). Press Ctrl+C to stop.",
        settings.notification_sweep_seconds,
        settings.reminder_sweep_seconds,
    )

    try:
        await stop.wait()
        logger.info("Signal received, shutting down...")
    finally:
        for t in sweepers:
            t.cancel()
        await asyncio.gather(*sweepers, return_exceptions=True)
        await _shutdown(state)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(run(state))
    except KeyboardInterrupt:
        pass
    logger.info("Bye.")


if __name__ == "__main__":
    main()
