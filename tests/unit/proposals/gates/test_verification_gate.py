import asyncio
import re
from datetime import timedelta

import pytest

from presale.core.gates.verification import VerificationGate, generate_code
from presale.core.notifications import NotificationResult
from presale.core.proposals.errors import NotificationDeliveryError, VerificationMismatchError
from presale.core.proposals.models import WorkflowConfig
from presale.infrastructure.notifications import LoggingNotifier
from tests.factories import FixedClock


class _FailingNotifier:
    async def send(self, kind, recipient, payload):
        return NotificationResult(success=False, error="SMTP_UNAVAILABLE")


def _gate(config=None, clock=None, notifier=None):
    return VerificationGate(
        notifier=notifier or LoggingNotifier(),
        config=config or WorkflowConfig(),
        clock=clock or FixedClock(),
    )


def test_generated_codes_are_six_digits():
    for _ in range(20):
        assert re.fullmatch(r"\d{6}", generate_code())


def test_issue_sends_code_through_notifier_and_check_accepts_it():
    notifier = LoggingNotifier()
    gate = _gate(notifier=notifier)

    code = asyncio.run(
        gate.issue("asha.rao@example.com", proposal_id="pp_001", customer_name="Asha Rao")
    )

    sent = notifier.last_message(kind="otpVerification", recipient="asha.rao@example.com")
    assert sent["data"] == {"customerName": "Asha Rao", "otpCode": code}
    assert not gate.is_verified("pp_001")

    gate.check("pp_001", code)
    assert gate.is_verified("pp_001")


def test_wrong_code_is_rejected_and_code_stays_usable():
    gate = _gate()
    code = asyncio.run(gate.issue("a@example.com", proposal_id="pp_001", customer_name="A"))
    wrong = "000000" if code != "000000" else "111111"

    with pytest.raises(VerificationMismatchError, match="VERIFICATION_CODE_MISMATCH"):
        gate.check("pp_001", wrong)
    assert not gate.is_verified("pp_001")

    gate.check("pp_001", code)
    assert gate.is_verified("pp_001")


def test_expired_code_is_rejected_and_discarded():
    clock = FixedClock()
    gate = _gate(config=WorkflowConfig(otp_ttl_seconds=60), clock=clock)
    code = asyncio.run(gate.issue("a@example.com", proposal_id="pp_001", customer_name="A"))

    clock.now = clock.now + timedelta(seconds=60)
    with pytest.raises(VerificationMismatchError, match="VERIFICATION_CODE_EXPIRED"):
        gate.check("pp_001", code)
    with pytest.raises(VerificationMismatchError, match="VERIFICATION_CODE_NOT_ISSUED"):
        gate.check("pp_001", code)


def test_reissue_replaces_previous_code():
    gate = _gate()
    first = asyncio.run(gate.issue("a@example.com", proposal_id="pp_001", customer_name="A"))
    second = asyncio.run(gate.issue("a@example.com", proposal_id="pp_001", customer_name="A"))

    if first != second:
        with pytest.raises(VerificationMismatchError):
            gate.check("pp_001", first)
    gate.check("pp_001", second)


def test_delivery_failure_discards_code():
    gate = _gate(notifier=_FailingNotifier())

    with pytest.raises(NotificationDeliveryError, match="VERIFICATION_CODE_DELIVERY_FAILED"):
        asyncio.run(gate.issue("a@example.com", proposal_id="pp_001", customer_name="A"))
    assert gate.expires_at("pp_001") is None


def test_missing_contact_is_rejected():
    gate = _gate()

    with pytest.raises(VerificationMismatchError, match="VERIFICATION_CONTACT_MISSING"):
        asyncio.run(gate.issue("", proposal_id="pp_001", customer_name="A"))


def test_bypass_skips_comparison():
    gate = _gate(config=WorkflowConfig(allow_gate_bypass=True))

    assert gate.is_verified("pp_001")
    gate.check("pp_001", "anything")


def test_verify_is_exact_string_match():
    assert VerificationGate.verify("123456", "123456")
    assert not VerificationGate.verify("123456 ", "123456")
    assert not VerificationGate.verify("023456", "123456")
