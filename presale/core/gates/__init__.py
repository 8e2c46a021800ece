from presale.core.gates.kyc import (
    DocumentCheckResult,
    can_proceed,
    collect_kyc_errors,
    require_valid_document,
    validate_document,
    validate_pan,
)
from presale.core.gates.payment import (
    GatewayChargeResult,
    PaymentGate,
    PaymentGateway,
)
from presale.core.gates.verification import VerificationGate

__all__ = [
    "DocumentCheckResult",
    "GatewayChargeResult",
    "PaymentGate",
    "PaymentGateway",
    "VerificationGate",
    "can_proceed",
    "collect_kyc_errors",
    "require_valid_document",
    "validate_document",
    "validate_pan",
]
