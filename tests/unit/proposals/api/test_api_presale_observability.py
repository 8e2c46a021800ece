import json
import logging
import re

import pytest
from fastapi.testclient import TestClient

from presale.api.main import app
from presale.api.observability import (
    JsonFormatter,
    correlation_id_var,
    proposal_context_from_path,
    proposal_id_var,
    stage_var,
)
from presale.api.routers import proposals as proposals_router


def test_health_endpoint():
    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}


def test_metrics_endpoint_is_exposed():
    with TestClient(app) as client:
        client.get("/health")
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_observability_headers_preserve_inbound_correlation_and_trace_id():
    with TestClient(app) as client:
        response = client.get(
            "/presale/proposals",
            headers={
                "X-Correlation-Id": "corr-inbound-123",
                "X-Request-Id": "req-inbound-123",
                "traceparent": "00-1234567890abcdef1234567890abcdef-0000000000000001-01",
            },
        )

    assert response.status_code == 200
    assert response.headers["X-Correlation-Id"] == "corr-inbound-123"
    assert response.headers["X-Request-Id"] == "req-inbound-123"
    assert response.headers["X-Trace-Id"] == "1234567890abcdef1234567890abcdef"
    assert (
        response.headers["traceparent"] == "00-1234567890abcdef1234567890abcdef-0000000000000001-01"
    )


def test_observability_headers_generate_ids_when_missing():
    with TestClient(app) as client:
        response = client.get("/health")

    assert re.fullmatch(r"corr_[0-9a-f]{12}", response.headers["X-Correlation-Id"])
    assert re.fullmatch(r"req_[0-9a-f]{12}", response.headers["X-Request-Id"])
    assert re.fullmatch(r"[0-9a-f]{32}", response.headers["X-Trace-Id"])


def test_json_formatter_includes_context_and_extra_fields():
    record = logging.LogRecord(
        name="presale.core.proposals.service",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Proposal created. proposal_id=%s",
        args=("pp_001",),
        exc_info=None,
    )
    record.extra_fields = {"proposal_id": "pp_001"}
    token = correlation_id_var.set("corr_abc")
    try:
        payload = json.loads(JsonFormatter().format(record))
    finally:
        correlation_id_var.reset(token)

    assert payload["message"] == "Proposal created. proposal_id=pp_001"
    assert payload["correlation_id"] == "corr_abc"
    assert payload["proposal_id"] == "pp_001"
    assert payload["level"] == "INFO"
    assert "request_id" not in payload


def test_unhandled_errors_render_problem_details(monkeypatch):
    def _explode(**_kwargs):
        raise KeyError("unexpected")

    with TestClient(app, raise_server_exceptions=False) as client:
        service = proposals_router.get_proposal_workflow_service()
        monkeypatch.setattr(service, "list_proposals", _explode)
        response = client.get("/presale/proposals")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["instance"] == "/presale/proposals"


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/presale/proposals/pp_001", ("pp_001", None)),
        ("/presale/proposals/pp_001/stages/KYC/advance", ("pp_001", "KYC")),
        ("/presale/proposals/pp_001/verification/send", ("pp_001", None)),
        ("/presale/proposals/import", (None, None)),
        ("/presale/proposals", (None, None)),
        ("/presale/policies/POL000000000001", (None, None)),
    ],
)
def test_proposal_context_from_path(path, expected):
    assert proposal_context_from_path(path) == expected


def test_json_formatter_includes_proposal_and_stage_context():
    record = logging.LogRecord(
        name="presale.access",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="request.completed",
        args=(),
        exc_info=None,
    )
    proposal_token = proposal_id_var.set("pp_042")
    stage_token = stage_var.set("NOMINATION_DETAILS")
    try:
        payload = json.loads(JsonFormatter().format(record))
    finally:
        stage_var.reset(stage_token)
        proposal_id_var.reset(proposal_token)

    assert payload["proposal_id"] == "pp_042"
    assert payload["stage"] == "NOMINATION_DETAILS"


def test_proposal_requests_echo_proposal_id_header():
    with TestClient(app) as client:
        missing = client.get("/presale/proposals/pp_unknown")
        listing = client.get("/presale/proposals")

    assert missing.status_code == 404
    assert missing.headers["X-Proposal-Id"] == "pp_unknown"
    assert "X-Proposal-Id" not in listing.headers
