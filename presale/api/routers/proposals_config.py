import os
from typing import cast

from presale.api.routers.runtime_utils import env_flag, env_float, env_int
from presale.core.gates.payment import PaymentGateway
from presale.core.notifications import Notifier
from presale.core.proposals.models import WorkflowConfig
from presale.core.proposals.repository import ProposalRepository
from presale.infrastructure.notifications import HttpNotifier, LoggingNotifier
from presale.infrastructure.payments import MockPaymentGateway
from presale.infrastructure.proposals import (
    InMemoryProposalRepository,
    PostgresProposalRepository,
    SqliteProposalRepository,
)

_STORE_BACKENDS = {"IN_MEMORY", "SQLITE", "POSTGRES"}
_DEFAULT_SQLITE_PATH = ".data/proposals.sqlite"


def proposal_store_backend_name() -> str:
    backend = os.getenv("PROPOSAL_STORE_BACKEND", "IN_MEMORY").strip().upper()
    return backend if backend in _STORE_BACKENDS else "IN_MEMORY"


def proposal_postgres_dsn() -> str:
    return os.getenv("PROPOSAL_POSTGRES_DSN", "").strip()


def proposal_sqlite_path() -> str:
    return os.getenv("PROPOSAL_SQLITE_PATH", "").strip() or _DEFAULT_SQLITE_PATH


def notifier_backend_name() -> str:
    backend = os.getenv("NOTIFIER_BACKEND", "LOGGING").strip().upper()
    return "HTTP" if backend == "HTTP" else "LOGGING"


def workflow_config() -> WorkflowConfig:
    return WorkflowConfig(
        allow_gate_bypass=env_flag("WORKFLOW_ALLOW_GATE_BYPASS", False),
        otp_ttl_seconds=env_int("WORKFLOW_OTP_TTL_SECONDS", 300),
        payment_timeout_seconds=env_float("WORKFLOW_PAYMENT_TIMEOUT_SECONDS", 30.0) or 30.0,
        zero_premium_counts_as_missing=env_flag("WORKFLOW_ZERO_PREMIUM_COUNTS_AS_MISSING", False),
    )


def _postgres_connection_exception_types() -> tuple[type[BaseException], ...]:
    types: list[type[BaseException]] = [
        ConnectionError,
        OSError,
        TimeoutError,
        TypeError,
        ValueError,
    ]
    try:
        import psycopg
    except ImportError:
        pass
    else:
        types.append(psycopg.Error)
    return tuple(types)


def build_repository() -> ProposalRepository:
    backend = proposal_store_backend_name()
    if backend == "POSTGRES":
        dsn = proposal_postgres_dsn()
        if not dsn:
            raise RuntimeError("PROPOSAL_POSTGRES_DSN_REQUIRED")
        try:
            return cast(ProposalRepository, PostgresProposalRepository(dsn=dsn))
        except RuntimeError:
            raise
        except _postgres_connection_exception_types() as exc:
            raise RuntimeError("PROPOSAL_POSTGRES_CONNECTION_FAILED") from exc
    if backend == "SQLITE":
        return cast(
            ProposalRepository,
            SqliteProposalRepository(database_path=proposal_sqlite_path()),
        )
    return cast(ProposalRepository, InMemoryProposalRepository())


def build_notifier() -> Notifier:
    if notifier_backend_name() == "HTTP":
        return HttpNotifier(url=os.getenv("NOTIFIER_HTTP_URL", "").strip())
    return LoggingNotifier()


def build_payment_gateway() -> PaymentGateway:
    outcome = os.getenv("PAYMENT_GATEWAY_MOCK_OUTCOME", "completed").strip().lower()
    return MockPaymentGateway(
        default_outcome="failed" if outcome == "failed" else "completed",
        latency_seconds=env_float("PAYMENT_GATEWAY_MOCK_LATENCY_SECONDS", 0.0),
    )
