import os

from presale.api.routers.proposals_config import (
    notifier_backend_name,
    proposal_postgres_dsn,
    proposal_store_backend_name,
)
from presale.api.routers.runtime_utils import env_flag

_PRODUCTION_PROFILE = "PRODUCTION"
_LOCAL_PROFILE = "LOCAL"


def app_persistence_profile_name() -> str:
    profile = os.getenv("APP_PERSISTENCE_PROFILE", _LOCAL_PROFILE).strip().upper()
    return _PRODUCTION_PROFILE if profile == _PRODUCTION_PROFILE else _LOCAL_PROFILE


def validate_persistence_profile_guardrails() -> None:
    if notifier_backend_name() == "HTTP" and not os.getenv("NOTIFIER_HTTP_URL", "").strip():
        raise RuntimeError("NOTIFIER_HTTP_URL_REQUIRED")
    if app_persistence_profile_name() != _PRODUCTION_PROFILE:
        return
    if proposal_store_backend_name() != "POSTGRES":
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_PROPOSAL_POSTGRES")
    if not proposal_postgres_dsn():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_PROPOSAL_POSTGRES_DSN")
    if env_flag("WORKFLOW_ALLOW_GATE_BYPASS", False):
        raise RuntimeError("PERSISTENCE_PROFILE_FORBIDS_GATE_BYPASS")
