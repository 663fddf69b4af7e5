# src/taskbeacon/push/offline.py

from __future__ import annotations

import logging

from ..core.ports import TokenRegistry
from ..tasks.models import SendResult

logger = logging.getLogger(__name__)


class LogNotifier:
    """
    Offline notifier used when push is disabled.

    Logs every message and reports each registered token as delivered, so
    sweeps make progress (rows go to sent) without any network access.
    """

    def __init__(self, tokens: TokenRegistry) -> None:
        self.tokens = tokens

    def check_ready(self) -> None:
        return

    async def aclose(self) -> None:
        return

    async def send(
        self,
        user_id: str,
        title: str,
        body: str,
        metadata: dict[str, str] | None = None,
    ) -> SendResult:
        count = len(self.tokens.list_device_tokens([user_id]))
        logger.info("[push offline] to=%s tokens=%d title=%r body=%r data=%s", user_id, count, title, body, metadata or {})
        return SendResult(success_count=count, failure_count=0)
