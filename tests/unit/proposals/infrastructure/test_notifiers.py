import asyncio
import json

import httpx
import pytest

from presale.infrastructure.notifications import HttpNotifier, LoggingNotifier


def test_logging_notifier_keeps_outbox_copy():
    notifier = LoggingNotifier()
    payload = {"customerName": "Asha Rao", "otpCode": "123456"}

    result = asyncio.run(notifier.send("otpVerification", "asha@example.com", payload))
    payload["otpCode"] = "changed"

    assert result.success
    assert result.message_id.startswith("msg_")
    outbox = notifier.outbox()
    assert len(outbox) == 1
    assert outbox[0]["data"]["otpCode"] == "123456"
    assert notifier.last_message(kind="policyIssued", recipient="asha@example.com") is None


def test_http_notifier_posts_message_envelope():
    seen = {}

    def _handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(202, json={"messageId": "relay_001"})

    notifier = HttpNotifier(url="http://relay.local/send", transport=httpx.MockTransport(_handler))

    result = asyncio.run(notifier.send("policyIssued", "asha@example.com", {"policyNumber": "P1"}))

    assert result.success
    assert result.message_id == "relay_001"
    assert seen["body"] == {
        "type": "policyIssued",
        "to": "asha@example.com",
        "data": {"policyNumber": "P1"},
    }


def test_http_notifier_reports_relay_errors():
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "down"})

    notifier = HttpNotifier(url="http://relay.local/send", transport=httpx.MockTransport(_handler))

    result = asyncio.run(notifier.send("otpVerification", "a@example.com", {}))

    assert not result.success
    assert result.error == "NOTIFIER_REQUEST_FAILED"


def test_http_notifier_reports_timeouts():
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("relay too slow", request=request)

    notifier = HttpNotifier(url="http://relay.local/send", transport=httpx.MockTransport(_handler))

    result = asyncio.run(notifier.send("otpVerification", "a@example.com", {}))

    assert result.error == "NOTIFIER_TIMEOUT"


def test_http_notifier_requires_url():
    with pytest.raises(RuntimeError, match="NOTIFIER_HTTP_URL_REQUIRED"):
        HttpNotifier(url="")
