import logging
import uuid
from copy import deepcopy
from threading import Lock
from typing import Any

from presale.core.notifications import NotificationKind, NotificationResult

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Records notifications in an in-process outbox and logs them.

    Verification codes are never written to the log; only the outbox keeps
    the full payload so local runs and tests can read the code back.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._outbox: list[dict[str, Any]] = []

    async def send(
        self, kind: NotificationKind, recipient: str, payload: dict[str, Any]
    ) -> NotificationResult:
        message_id = f"msg_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._outbox.append(
                {
                    "message_id": message_id,
                    "type": kind,
                    "to": recipient,
                    "data": deepcopy(payload),
                }
            )
        logger.info(
            "Notification queued. type=%s message_id=%s",
            kind,
            message_id,
            extra={"extra_fields": {"notification_type": kind, "message_id": message_id}},
        )
        return NotificationResult(success=True, message_id=message_id)

    def outbox(self) -> list[dict[str, Any]]:
        with self._lock:
            return deepcopy(self._outbox)

    def last_message(self, *, kind: NotificationKind, recipient: str) -> dict[str, Any] | None:
        with self._lock:
            for message in reversed(self._outbox):
                if message["type"] == kind and message["to"] == recipient:
                    return deepcopy(message)
        return None
