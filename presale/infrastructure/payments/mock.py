import asyncio
import uuid
from collections import deque
from decimal import Decimal
from typing import Iterable, Literal, Optional

from presale.core.gates.payment import GatewayChargeResult

MockOutcome = Literal["completed", "failed"]


class MockPaymentGateway:
    """Gateway stand-in with scripted outcomes.

    Outcomes are consumed in order; once exhausted every further charge uses
    ``default_outcome``.
    """

    def __init__(
        self,
        *,
        outcomes: Optional[Iterable[MockOutcome]] = None,
        default_outcome: MockOutcome = "completed",
        latency_seconds: float = 0.0,
    ) -> None:
        self._outcomes = deque(outcomes or [])
        self._default_outcome = default_outcome
        self._latency_seconds = latency_seconds
        self.charges: list[dict[str, object]] = []

    async def charge(self, *, method: str, amount: Decimal, reference: str) -> GatewayChargeResult:
        if self._latency_seconds > 0:
            await asyncio.sleep(self._latency_seconds)
        outcome = self._outcomes.popleft() if self._outcomes else self._default_outcome
        self.charges.append({"method": method, "amount": amount, "reference": reference})
        if outcome == "completed":
            return GatewayChargeResult(
                success=True, provider_reference=f"gw_{uuid.uuid4().hex[:10]}"
            )
        return GatewayChargeResult(success=False, failure_reason="PAYMENT_DECLINED")
