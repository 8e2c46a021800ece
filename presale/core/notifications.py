from typing import Any, Literal, Optional, Protocol

from pydantic import BaseModel, Field

NotificationKind = Literal["otpVerification", "policyIssued"]


class NotificationResult(BaseModel):
    success: bool = Field(description="Delivery accepted by the channel.", examples=[True])
    message_id: Optional[str] = Field(default=None, examples=["msg_3f9a1c2b7d10"])
    error: Optional[str] = Field(default=None, examples=["SMTP_UNAVAILABLE"])


class Notifier(Protocol):
    async def send(
        self, kind: NotificationKind, recipient: str, payload: dict[str, Any]
    ) -> NotificationResult: ...
