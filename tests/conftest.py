"""
Shared fixtures for proposal workflow tests.
"""

from pathlib import Path

import pytest

from presale.api.routers.proposals import reset_proposal_workflow_service_for_tests

_WORKFLOW_ENV_VARS = (
    "APP_PERSISTENCE_PROFILE",
    "PROPOSAL_STORE_BACKEND",
    "PROPOSAL_SQLITE_PATH",
    "PROPOSAL_POSTGRES_DSN",
    "PROPOSAL_WORKFLOW_ENABLED",
    "WORKFLOW_ALLOW_GATE_BYPASS",
    "WORKFLOW_OTP_TTL_SECONDS",
    "WORKFLOW_PAYMENT_TIMEOUT_SECONDS",
    "WORKFLOW_ZERO_PREMIUM_COUNTS_AS_MISSING",
    "NOTIFIER_BACKEND",
    "NOTIFIER_HTTP_URL",
    "PAYMENT_GATEWAY_MOCK_OUTCOME",
    "PAYMENT_GATEWAY_MOCK_LATENCY_SECONDS",
)


def _has_marker(item: pytest.Item, name: str) -> bool:
    return item.get_closest_marker(name) is not None


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if (
            _has_marker(item, "unit")
            or _has_marker(item, "integration")
            or _has_marker(item, "e2e")
        ):
            continue

        path = Path(str(item.fspath)).as_posix().lower()
        if "/tests/integration/" in path or "_integration.py" in path:
            item.add_marker(pytest.mark.integration)
            continue
        if "/tests/e2e/" in path:
            item.add_marker(pytest.mark.e2e)
            continue
        item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def workflow_runtime_test_harness(monkeypatch: pytest.MonkeyPatch):
    """Start every test from default runtime settings and a fresh service."""

    for name in _WORKFLOW_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_proposal_workflow_service_for_tests()
    yield
    reset_proposal_workflow_service_for_tests()
