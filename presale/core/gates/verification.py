import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Optional

from presale.core.notifications import Notifier
from presale.core.proposals.errors import NotificationDeliveryError, VerificationMismatchError
from presale.core.proposals.models import WorkflowConfig

logger = logging.getLogger(__name__)

OTP_DIGITS = 6


@dataclass(frozen=True)
class _IssuedCode:
    code: str
    recipient: str
    issued_at: datetime
    expires_at: datetime


def generate_code() -> str:
    return f"{secrets.randbelow(10**OTP_DIGITS):0{OTP_DIGITS}d}"


class VerificationGate:
    """One-time-code identity check, one outstanding code per proposal.

    Codes live only in this gate, never on the proposal record, and are
    dropped after a successful check, on expiry, or when delivery fails.
    """

    def __init__(
        self,
        *,
        notifier: Notifier,
        config: Optional[WorkflowConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._notifier = notifier
        self._config = config or WorkflowConfig()
        self._clock = clock or _utc_now
        self._lock = Lock()
        self._codes: dict[str, _IssuedCode] = {}
        self._verified: set[str] = set()

    async def issue(self, contact: str, *, proposal_id: str, customer_name: str) -> str:
        if not contact:
            raise VerificationMismatchError("VERIFICATION_CONTACT_MISSING")
        code = generate_code()
        now = self._clock()
        issued = _IssuedCode(
            code=code,
            recipient=contact,
            issued_at=now,
            expires_at=now + timedelta(seconds=self._config.otp_ttl_seconds),
        )
        with self._lock:
            self._codes[proposal_id] = issued
            self._verified.discard(proposal_id)

        result = await self._notifier.send(
            "otpVerification",
            contact,
            {"customerName": customer_name, "otpCode": code},
        )
        if not result.success:
            self.discard(proposal_id)
            logger.warning(
                "Verification code delivery failed. proposal_id=%s error=%s",
                proposal_id,
                result.error,
            )
            raise NotificationDeliveryError("VERIFICATION_CODE_DELIVERY_FAILED")
        logger.info("Verification code issued. proposal_id=%s", proposal_id)
        return code

    @staticmethod
    def verify(entered_code: str, issued_code: str) -> bool:
        return hmac.compare_digest(str(entered_code).encode(), str(issued_code).encode())

    def check(self, proposal_id: str, entered_code: str) -> None:
        if self._config.allow_gate_bypass:
            with self._lock:
                self._codes.pop(proposal_id, None)
                self._verified.add(proposal_id)
            return
        with self._lock:
            issued = self._codes.get(proposal_id)
            if issued is None:
                raise VerificationMismatchError("VERIFICATION_CODE_NOT_ISSUED")
            if self._clock() >= issued.expires_at:
                del self._codes[proposal_id]
                raise VerificationMismatchError("VERIFICATION_CODE_EXPIRED")
            if not self.verify(entered_code, issued.code):
                raise VerificationMismatchError("VERIFICATION_CODE_MISMATCH")
            del self._codes[proposal_id]
            self._verified.add(proposal_id)
        logger.info("Verification code accepted. proposal_id=%s", proposal_id)

    def is_verified(self, proposal_id: str) -> bool:
        if self._config.allow_gate_bypass:
            return True
        with self._lock:
            return proposal_id in self._verified

    def expires_at(self, proposal_id: str) -> Optional[datetime]:
        with self._lock:
            issued = self._codes.get(proposal_id)
            return issued.expires_at if issued is not None else None

    def discard(self, proposal_id: str) -> None:
        with self._lock:
            self._codes.pop(proposal_id, None)
            self._verified.discard(proposal_id)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
