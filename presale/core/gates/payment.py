import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Protocol

from presale.core.proposals.errors import PaymentStateError, ProposalValidationError
from presale.core.proposals.models import PaymentResult, PaymentStatus, WorkflowConfig

logger = logging.getLogger(__name__)

PAYMENT_METHODS = {"CREDIT_CARD", "NET_BANKING", "UPI", "WALLET", "online"}

PAYMENT_TRANSITIONS: set[tuple[PaymentStatus, PaymentStatus]] = {
    ("pending", "processing"),
    ("processing", "completed"),
    ("processing", "failed"),
    ("failed", "pending"),
}


@dataclass(frozen=True)
class GatewayChargeResult:
    success: bool
    provider_reference: Optional[str] = None
    failure_reason: Optional[str] = None


class PaymentGateway(Protocol):
    async def charge(
        self, *, method: str, amount: Decimal, reference: str
    ) -> GatewayChargeResult: ...


class PaymentGate:
    def __init__(
        self,
        *,
        gateway: PaymentGateway,
        config: Optional[WorkflowConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._gateway = gateway
        self._config = config or WorkflowConfig()
        self._clock = clock or _utc_now

    @staticmethod
    def transition(current: PaymentStatus, target: PaymentStatus) -> PaymentStatus:
        if (current, target) not in PAYMENT_TRANSITIONS:
            raise PaymentStateError(f"INVALID_PAYMENT_TRANSITION: {current}->{target}")
        return target

    def retry(self, current: PaymentStatus) -> PaymentStatus:
        return self.transition(current, "pending")

    async def process(self, *, method: str, amount: Decimal, reference: str) -> PaymentResult:
        """Charge once; the result is ``completed`` or ``failed``, never pending."""
        if method not in PAYMENT_METHODS:
            raise ProposalValidationError(
                "INVALID_PAYMENT_REQUEST", invalid_fields=["payment_method"]
            )
        if amount <= 0:
            raise ProposalValidationError("INVALID_PAYMENT_REQUEST", invalid_fields=["amount"])

        attempt_id = f"pay_{uuid.uuid4().hex[:12]}"
        started_at = self._clock()
        try:
            charge = await asyncio.wait_for(
                self._gateway.charge(method=method, amount=amount, reference=reference),
                timeout=self._config.payment_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Payment attempt timed out. attempt_id=%s reference=%s", attempt_id, reference
            )
            charge = GatewayChargeResult(success=False, failure_reason="PAYMENT_TIMEOUT")

        status: PaymentStatus = "completed" if charge.success else "failed"
        logger.info(
            "Payment attempt finished. attempt_id=%s reference=%s status=%s",
            attempt_id,
            reference,
            status,
        )
        return PaymentResult(
            attempt_id=attempt_id,
            status=status,
            method=method,
            amount=amount,
            provider_reference=charge.provider_reference,
            failure_reason=charge.failure_reason,
            started_at=started_at,
            finished_at=self._clock(),
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
