import logging
from typing import Any, Optional

import httpx

from presale.core.notifications import NotificationKind, NotificationResult

logger = logging.getLogger(__name__)


class HttpNotifier:
    """Posts ``{"type", "to", "data"}`` messages to an email/SMS relay."""

    def __init__(
        self,
        *,
        url: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not url:
            raise RuntimeError("NOTIFIER_HTTP_URL_REQUIRED")
        self._url = url
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    async def send(
        self, kind: NotificationKind, recipient: str, payload: dict[str, Any]
    ) -> NotificationResult:
        body = {"type": kind, "to": recipient, "data": payload}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(self._url, json=body)
                response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning("Notification relay timed out. type=%s", kind)
            return NotificationResult(success=False, error="NOTIFIER_TIMEOUT")
        except (httpx.HTTPStatusError, httpx.RequestError) as exc:
            logger.warning("Notification relay failed. type=%s error=%s", kind, exc)
            return NotificationResult(success=False, error="NOTIFIER_REQUEST_FAILED")

        message_id = None
        if response.headers.get("content-type", "").startswith("application/json"):
            content = response.json()
            if isinstance(content, dict):
                message_id = content.get("messageId")
        return NotificationResult(success=True, message_id=message_id)
