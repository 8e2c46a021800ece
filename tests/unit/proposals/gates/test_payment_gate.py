import asyncio
from decimal import Decimal

import pytest

from presale.core.gates.payment import PaymentGate
from presale.core.proposals.errors import PaymentStateError, ProposalValidationError
from presale.core.proposals.models import WorkflowConfig
from presale.infrastructure.payments import MockPaymentGateway
from tests.factories import FixedClock


def _process(gate: PaymentGate, method: str = "UPI", amount: str = "18450.00"):
    return asyncio.run(gate.process(method=method, amount=Decimal(amount), reference="pp_001"))


def test_successful_charge_completes_payment():
    gateway = MockPaymentGateway()
    gate = PaymentGate(gateway=gateway, clock=FixedClock())

    result = _process(gate)

    assert result.status == "completed"
    assert result.attempt_id.startswith("pay_")
    assert result.provider_reference.startswith("gw_")
    assert gateway.charges == [
        {"method": "UPI", "amount": Decimal("18450.00"), "reference": "pp_001"}
    ]


def test_declined_charge_fails_payment():
    gate = PaymentGate(gateway=MockPaymentGateway(outcomes=["failed"]))

    result = _process(gate)

    assert result.status == "failed"
    assert result.failure_reason == "PAYMENT_DECLINED"


def test_settlement_timeout_resolves_to_failed():
    gate = PaymentGate(
        gateway=MockPaymentGateway(latency_seconds=0.5),
        config=WorkflowConfig(payment_timeout_seconds=0.01),
    )

    result = _process(gate)

    assert result.status == "failed"
    assert result.failure_reason == "PAYMENT_TIMEOUT"


@pytest.mark.parametrize(("method", "amount"), [("CHEQUE_BY_POST", "100"), ("UPI", "0")])
def test_invalid_requests_are_rejected_before_charging(method, amount):
    gateway = MockPaymentGateway()
    gate = PaymentGate(gateway=gateway)

    with pytest.raises(ProposalValidationError, match="INVALID_PAYMENT_REQUEST"):
        _process(gate, method=method, amount=amount)
    assert gateway.charges == []


def test_payment_transitions_follow_state_machine():
    assert PaymentGate.transition("pending", "processing") == "processing"
    assert PaymentGate.transition("processing", "completed") == "completed"
    assert PaymentGate.transition("processing", "failed") == "failed"
    assert PaymentGate.transition("failed", "pending") == "pending"

    with pytest.raises(PaymentStateError, match="INVALID_PAYMENT_TRANSITION: completed->pending"):
        PaymentGate.transition("completed", "pending")
    with pytest.raises(PaymentStateError):
        PaymentGate.transition("pending", "completed")


def test_retry_only_from_failed():
    gate = PaymentGate(gateway=MockPaymentGateway())

    assert gate.retry("failed") == "pending"
    with pytest.raises(PaymentStateError):
        gate.retry("completed")
