import math
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from presale.core.gates.kyc import collect_kyc_errors
from presale.core.proposals.eligibility import requires_previous_policy_details
from presale.core.proposals.models import (
    CustomerInfo,
    CustomerType,
    KycDetails,
    LiabilityDetails,
    NominationDetails,
    OtherVehicleDetails,
    PaymentDeclaration,
    PreviousPolicyDetails,
    ProposalRecord,
    WorkflowStage,
)

STAGE_INDEX: dict[WorkflowStage, int] = {
    "PREVIOUS_POLICY_DETAILS": -1,
    "CUSTOMER_INFO": 0,
    "KYC": 1,
    "OTHER_VEHICLE_DETAILS": 2,
    "LIABILITY_DETAILS": 3,
    "NOMINATION_DETAILS": 4,
    "PAYMENT_DECLARATION": 5,
    "POLICY_ISSUANCE": 6,
}

FULL_STAGE_SEQUENCE: tuple[WorkflowStage, ...] = tuple(
    sorted(STAGE_INDEX, key=lambda stage: STAGE_INDEX[stage])
)

# proposal attribute and section model captured by each form stage
STAGE_SECTIONS: dict[WorkflowStage, tuple[str, type]] = {
    "PREVIOUS_POLICY_DETAILS": ("previous_policy_details", PreviousPolicyDetails),
    "CUSTOMER_INFO": ("customer_info", CustomerInfo),
    "KYC": ("kyc_details", KycDetails),
    "OTHER_VEHICLE_DETAILS": ("vehicle_details", OtherVehicleDetails),
    "LIABILITY_DETAILS": ("liability_details", LiabilityDetails),
    "NOMINATION_DETAILS": ("nomination_details", NominationDetails),
    "PAYMENT_DECLARATION": ("payment_declaration", PaymentDeclaration),
}

PREVIOUS_POLICY_REQUIRED_FIELDS = (
    "previous_od_policy_number",
    "previous_od_insurer",
    "previous_od_policy_from",
    "previous_od_policy_to",
    "previous_tp_policy_number",
    "previous_tp_insurer",
    "previous_tp_policy_from",
    "previous_tp_policy_to",
)
CUSTOMER_CONTACT_FIELDS = ("email", "phone", "address", "city", "state", "pincode")
VEHICLE_REQUIRED_FIELDS = ("chassis_number", "engine_number")
DECLARATION_PAYMENT_MODES = {"online", "cheque", "dd", "cash"}

_NOMINEE_NAME = re.compile(r"^[A-Za-z\s]+$")
_MOBILE = re.compile(r"^[0-9]{10}$")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def stage_index(stage: WorkflowStage) -> int:
    return STAGE_INDEX[stage]


def previous_policy_complete(
    details: Optional[PreviousPolicyDetails], *, zero_premium_counts_as_missing: bool = False
) -> bool:
    if details is None:
        return False
    missing, invalid = _previous_policy_errors(
        details.model_dump(mode="python"),
        zero_premium_counts_as_missing=zero_premium_counts_as_missing,
    )
    return not missing and not invalid


def customer_info_complete(customer_info: CustomerInfo) -> bool:
    missing, invalid = _customer_info_errors(customer_info.model_dump(mode="python"))
    return not missing and not invalid


def needs_previous_policy_stage(
    proposal: ProposalRecord,
    *,
    now: Optional[datetime] = None,
    zero_premium_counts_as_missing: bool = False,
) -> bool:
    if not requires_previous_policy_details(proposal.policy_details, now=now):
        return False
    return not previous_policy_complete(
        proposal.previous_policy_details,
        zero_premium_counts_as_missing=zero_premium_counts_as_missing,
    )


def compute_stage_sequence(
    proposal: ProposalRecord,
    *,
    now: Optional[datetime] = None,
    zero_premium_counts_as_missing: bool = False,
) -> list[WorkflowStage]:
    if needs_previous_policy_stage(
        proposal, now=now, zero_premium_counts_as_missing=zero_premium_counts_as_missing
    ):
        return list(FULL_STAGE_SEQUENCE)
    return [stage for stage in FULL_STAGE_SEQUENCE if stage != "PREVIOUS_POLICY_DETAILS"]


def resolve_entry_stage(
    proposal: ProposalRecord,
    *,
    now: Optional[datetime] = None,
    zero_premium_counts_as_missing: bool = False,
) -> WorkflowStage:
    """Pick the stage a proposal opens at, whatever the entry path."""
    if is_converted(proposal):
        return "POLICY_ISSUANCE"
    if needs_previous_policy_stage(
        proposal, now=now, zero_premium_counts_as_missing=zero_premium_counts_as_missing
    ):
        return "PREVIOUS_POLICY_DETAILS"
    if proposal.needs_customer_info or not customer_info_complete(proposal.customer_info):
        return "CUSTOMER_INFO"
    if proposal.kyc_status == "rejected":
        return "KYC"
    if proposal.selected_quote is not None:
        if proposal.kyc_status == "verified":
            return "PAYMENT_DECLARATION"
        return "NOMINATION_DETAILS"
    return "OTHER_VEHICLE_DETAILS"


def next_stage(sequence: list[WorkflowStage], stage: WorkflowStage) -> WorkflowStage:
    current = STAGE_INDEX[stage]
    for candidate in sequence:
        if STAGE_INDEX[candidate] > current:
            return candidate
    return "POLICY_ISSUANCE"


def is_converted(proposal: ProposalRecord) -> bool:
    if proposal.status == "CONVERTED":
        return True
    return proposal.selected_quote is not None and proposal.selected_quote.status == "CONVERTED"


def collect_stage_errors(
    stage: WorkflowStage,
    form: Mapping[str, Any],
    *,
    zero_premium_counts_as_missing: bool = False,
) -> tuple[list[str], list[str]]:
    """Return every ``(missing, invalid)`` field name for a stage submission."""
    if stage == "PREVIOUS_POLICY_DETAILS":
        return _previous_policy_errors(
            form, zero_premium_counts_as_missing=zero_premium_counts_as_missing
        )
    if stage == "CUSTOMER_INFO":
        return _customer_info_errors(form)
    if stage == "KYC":
        return collect_kyc_errors(form)
    if stage == "OTHER_VEHICLE_DETAILS":
        return [field for field in VEHICLE_REQUIRED_FIELDS if _blank(form.get(field))], []
    if stage == "LIABILITY_DETAILS":
        return [], []
    if stage == "NOMINATION_DETAILS":
        return _nomination_errors(form)
    if stage == "PAYMENT_DECLARATION":
        return _declaration_errors(form)
    return [], []


def _previous_policy_errors(
    form: Mapping[str, Any], *, zero_premium_counts_as_missing: bool
) -> tuple[list[str], list[str]]:
    missing = [field for field in PREVIOUS_POLICY_REQUIRED_FIELDS if _blank(form.get(field))]
    invalid: list[str] = []
    premium = form.get("previous_premium_paid")
    if _blank(premium):
        missing.append("previous_premium_paid")
    else:
        amount = _to_decimal(premium)
        if amount is None:
            invalid.append("previous_premium_paid")
        elif amount.is_nan():
            missing.append("previous_premium_paid")
        elif amount < 0:
            invalid.append("previous_premium_paid")
        elif amount == 0 and zero_premium_counts_as_missing:
            missing.append("previous_premium_paid")
    return missing, invalid


def _customer_info_errors(form: Mapping[str, Any]) -> tuple[list[str], list[str]]:
    customer_type: CustomerType = form.get("customer_type") or "INDIVIDUAL"
    if customer_type == "CORPORATE":
        required = ("company_name",) + CUSTOMER_CONTACT_FIELDS
    else:
        required = ("first_name", "last_name") + CUSTOMER_CONTACT_FIELDS
    missing = [field for field in required if _blank(form.get(field))]
    invalid: list[str] = []
    if customer_type not in ("INDIVIDUAL", "CORPORATE"):
        invalid.append("customer_type")
    email = form.get("email")
    if not _blank(email) and not _EMAIL.match(str(email)):
        invalid.append("email")
    return missing, invalid


def _nomination_errors(form: Mapping[str, Any]) -> tuple[list[str], list[str]]:
    required = ("nominee_name", "relationship", "contact_number", "email", "sex", "date_of_birth")
    missing = [field for field in required if _blank(form.get(field))]
    invalid: list[str] = []
    checks = (
        ("nominee_name", _NOMINEE_NAME),
        ("contact_number", _MOBILE),
        ("email", _EMAIL),
    )
    for field, pattern in checks:
        value = form.get(field)
        if not _blank(value) and not pattern.match(str(value).strip()):
            invalid.append(field)
    return missing, invalid


def _declaration_errors(form: Mapping[str, Any]) -> tuple[list[str], list[str]]:
    missing: list[str] = []
    invalid: list[str] = []
    payment_mode = form.get("payment_mode")
    if _blank(payment_mode):
        missing.append("payment_mode")
    elif str(payment_mode) not in DECLARATION_PAYMENT_MODES:
        invalid.append("payment_mode")
    if form.get("declaration_accepted") is not True:
        missing.append("declaration_accepted")
    return missing, invalid


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float):
        return math.isnan(value)
    return False


def _to_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
