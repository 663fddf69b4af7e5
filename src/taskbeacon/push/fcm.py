# src/taskbeacon/push/fcm.py

from __future__ import annotations

import logging

import httpx

from ..core.errors import ConfigurationError
from ..core.ports import TokenRegistry
from ..tasks.models import DeviceToken, SendResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://fcm.googleapis.com/v1"


class FcmNotifier:
    """
    Notifier over the FCM HTTP v1 API.

    One POST per registered device token of the recipient; partial success is
    reported, not raised. A token FCM reports as unknown (HTTP 404) is removed
    from the registry.

    The bearer token is taken as configured; refreshing it is the deployer's job.
    """

    def __init__(
        self,
        tokens: TokenRegistry,
        *,
        project_id: str | None,
        access_token: str | None,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.tokens = tokens
        self.project_id = (project_id or "").strip() or None
        self.access_token = (access_token or "").strip() or None
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(float(timeout_seconds)))

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/projects/{self.project_id}/messages:send"

    def check_ready(self) -> None:
        if not self.project_id:
            raise ConfigurationError("FCM project id is not set. Set TASKBEACON_FCM_PROJECT_ID in your .env.")
        if not self.access_token:
            raise ConfigurationError("FCM access token is not set. Set TASKBEACON_FCM_ACCESS_TOKEN in your .env.")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _send_one(self, device: DeviceToken, title: str, body: str, data: dict[str, str]) -> bool:
        token = device.token
        payload = {
            "message": {
                "token": token,
                "notification": {"title": title, "body": body},
                "data": data,
            }
        }
        headers = {"Authorization": f"Bearer {self.access_token}"}

        try:
            resp = await self._client.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("FCM request failed token=%s…: %s", token[:8], e.__class__.__name__)
            return False

        if resp.status_code == 200:
            return True

        if resp.status_code in (401, 403):
            raise ConfigurationError(f"FCM rejected credentials (HTTP {resp.status_code})")

        if resp.status_code == 404:
            logger.info("FCM reports token unregistered; removing token=%s…", token[:8])
            self.tokens.remove_device_token(user_id=device.user_id, token=token)
            return False

        logger.warning("FCM send failed token=%s… status=%s body=%s", token[:8], resp.status_code, resp.text[:200])
        return False

    async def send(
        self,
        user_id: str,
        title: str,
        body: str,
        metadata: dict[str, str] | None = None,
    ) -> SendResult:
        self.check_ready()

        tokens = self.tokens.list_device_tokens([user_id])
        if not tokens:
            logger.info("No device tokens registered for user_id=%s", user_id)
            return SendResult(success_count=0, failure_count=0)

        data = {str(k): str(v) for k, v in (metadata or {}).items()}
        ok = 0
        failed = 0
        for i, t in enumerate(tokens):
            try:
                sent = await self._send_one(t, title, body, data)
            except ConfigurationError:
                if not ok:
                    raise
                # Earlier tokens already have the message; report them so the row is not resent.
                failed += len(tokens) - i
                logger.warning(
                    "FCM rejected credentials after %d delivery(ies) to user_id=%s; stopping", ok, user_id
                )
                break
            if sent:
                ok += 1
            else:
                failed += 1

        logger.debug("FCM user_id=%s success=%d failure=%d", user_id, ok, failed)
        return SendResult(success_count=ok, failure_count=failed)
