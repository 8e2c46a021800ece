"""Canonicalise stored proposal payloads at the load boundary.

Proposals reach the repositories in three shapes: the canonical snake_case
``ProposalRecord`` dump, the nested camelCase shape written by the browser
client, and an older flat shape where customer, vehicle and quote fields sit
at the top level (``firstName``, ``selectedCompany``, ``quotedPremium``...).
Everything below the load boundary only ever sees the canonical shape.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from presale.core.proposals.models import ProposalRecord

_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")

TOP_LEVEL_ALIASES = {
    "id": "proposal_id",
    "mobile": "phone",
    "mobile_number": "phone",
    "selected_insurance_company": "selected_company",
    "variant_name": "variant",
}

CUSTOMER_FIELDS = (
    "customer_type",
    "first_name",
    "last_name",
    "company_name",
    "email",
    "phone",
    "address",
    "city",
    "state",
    "pincode",
    "customer_id",
)
POLICY_FIELDS = (
    "policy_type",
    "policy_for",
    "vehicle_class",
    "vehicle_type",
    "oem",
    "model_name",
    "variant",
    "year_of_manufacture",
    "registration_city",
    "ex_showroom_price",
    "policy_term",
    "quotation_date",
)
PREVIOUS_POLICY_FIELDS = (
    "previous_od_policy_number",
    "previous_od_insurer",
    "previous_od_policy_from",
    "previous_od_policy_to",
    "previous_tp_policy_number",
    "previous_tp_insurer",
    "previous_tp_policy_from",
    "previous_tp_policy_to",
    "previous_premium_paid",
)
VEHICLE_FIELDS = (
    "chassis_number",
    "engine_number",
    "electrical_accessories",
    "electrical_accessories_value",
    "non_electrical_accessories",
    "non_electrical_accessories_value",
    "discount_anti_theft",
    "discount_anti_theft_price",
    "discount_handicapped",
    "discount_voluntary",
    "discount_aa_membership",
    "discount_aa_membership_no",
    "discount_geo_extension",
    "discount_geo_countries",
)
LIABILITY_FIELDS = {
    "liability_compulsory_pa": "compulsory_pa",
    "liability_tppd_extension": "tppd_extension",
    "liability_driver_cover": "driver_cover",
    "liability_cleaner_cover": "cleaner_cover",
}
NOMINATION_FIELDS = {
    "nominee_name": "nominee_name",
    "nominee_relationship": "relationship",
    "nominee_contact_no": "contact_number",
    "nominee_email": "email",
    "nominee_sex": "sex",
    "nominee_dob": "date_of_birth",
}
DECLARATION_FIELDS = ("payment_mode", "additional_info", "declaration_accepted")
KYC_FIELDS = ("ckyc_number", "pan_number", "pan_holder_name", "pan_document")

PROPOSAL_STATUSES = {"DRAFT", "SUBMITTED", "APPROVED", "REJECTED", "CONVERTED"}
KYC_STATUSES = {"pending", "verified", "rejected"}
PAYMENT_STATUSES = {"pending", "processing", "completed", "failed"}
STAGES = {
    "PREVIOUS_POLICY_DETAILS",
    "CUSTOMER_INFO",
    "KYC",
    "OTHER_VEHICLE_DETAILS",
    "LIABILITY_DETAILS",
    "NOMINATION_DETAILS",
    "PAYMENT_DECLARATION",
    "POLICY_ISSUANCE",
}


def snake_case(key: str) -> str:
    key = _ACRONYM_BOUNDARY.sub(r"\1_\2", key)
    key = _WORD_BOUNDARY.sub(r"\1_\2", key)
    return key.lower()


def normalize_proposal_payload(
    raw: Mapping[str, Any], *, created_by: Optional[str] = None
) -> dict[str, Any]:
    """Map any supported stored shape onto the canonical record payload."""
    flat = {TOP_LEVEL_ALIASES.get(key, key): value for key, value in _snake_keys(raw).items()}
    now = datetime.now(timezone.utc).isoformat()

    proposal_id = flat.get("proposal_id") or f"pp_{uuid.uuid4().hex[:12]}"
    created_at = flat.get("created_at") or now
    status = _proposal_status(flat.get("status"))

    payload: dict[str, Any] = {
        "proposal_id": str(proposal_id),
        "created_by": flat.get("created_by") or created_by or "LEGACY_IMPORT",
        "customer_info": _merge_section(flat, "customer_info", CUSTOMER_FIELDS),
        "policy_details": _policy_details(flat, created_at=created_at),
        "selected_quote": _selected_quote(flat, status=status),
        "selected_add_ons": list(flat.get("selected_add_ons") or []),
        "kyc_status": _choice(flat.get("kyc_status"), KYC_STATUSES, "pending", lower=True),
        "pan_validation": _snake_keys(flat.get("pan_validation") or {}),
        "kyc_details": _optional_section(flat, "kyc_details", KYC_FIELDS),
        "previous_policy_details": _optional_section(
            flat, "previous_policy_details", PREVIOUS_POLICY_FIELDS
        ),
        "vehicle_details": _optional_section(flat, "vehicle_details", VEHICLE_FIELDS),
        "liability_details": _optional_section(flat, "liability_details", LIABILITY_FIELDS),
        "nomination_details": _optional_section(flat, "nomination_details", NOMINATION_FIELDS),
        "payment_declaration": _optional_section(
            flat, "payment_declaration", DECLARATION_FIELDS
        ),
        "payment_status": _choice(
            flat.get("payment_status"), PAYMENT_STATUSES, "pending", lower=True
        ),
        "payment_reference": flat.get("payment_reference"),
        "status": status,
        "needs_customer_info": bool(flat.get("needs_customer_info") or False),
        "current_stage": _choice(flat.get("current_stage"), STAGES, None),
        "furthest_stage": _choice(flat.get("furthest_stage"), STAGES, None),
        "policy_number": flat.get("policy_number"),
        "certificate_number": flat.get("certificate_number"),
        "policy_issued_at": flat.get("policy_issued_at"),
        "created_at": created_at,
        "updated_at": flat.get("updated_at") or created_at,
        "version": flat.get("version") or 1,
    }
    return payload


def load_proposal_record(
    raw: Mapping[str, Any], *, created_by: Optional[str] = None
) -> ProposalRecord:
    return ProposalRecord.model_validate(normalize_proposal_payload(raw, created_by=created_by))


def _snake_keys(value: Mapping[str, Any]) -> dict[str, Any]:
    return {snake_case(str(key)): item for key, item in value.items()}


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _merge_section(flat: Mapping[str, Any], section: str, fields) -> dict[str, Any]:
    """Nested values win; flat top-level values fill the gaps."""
    merged: dict[str, Any] = {}
    field_map = fields if isinstance(fields, Mapping) else {field: field for field in fields}
    for source, target in field_map.items():
        if _present(flat.get(source)):
            merged[target] = flat[source]
    nested = flat.get(section)
    if isinstance(nested, Mapping):
        for key, value in _snake_keys(nested).items():
            if _present(value) or key not in merged:
                merged[key] = value
    return merged


def _optional_section(flat: Mapping[str, Any], section: str, fields) -> Optional[dict[str, Any]]:
    merged = _merge_section(flat, section, fields)
    if not merged and flat.get(section) is None:
        return None
    if isinstance(merged.get("pan_document"), Mapping):
        merged["pan_document"] = _snake_keys(merged["pan_document"])
    return merged


def _policy_details(flat: Mapping[str, Any], *, created_at: str) -> dict[str, Any]:
    details = _merge_section(flat, "policy_details", POLICY_FIELDS)
    if not _present(details.get("policy_type")):
        details["policy_type"] = "GEN_MOTOR"
    if not _present(details.get("policy_term")):
        details["policy_term"] = 1
    if not _present(details.get("quotation_date")):
        details["quotation_date"] = created_at
    if details.get("ex_showroom_price") == "":
        details["ex_showroom_price"] = None
    return details


def _selected_quote(flat: Mapping[str, Any], *, status: str) -> Optional[dict[str, Any]]:
    nested = flat.get("selected_quote")
    if isinstance(nested, Mapping):
        quote = _snake_keys(nested)
    elif _present(flat.get("selected_company")) or _present(flat.get("quoted_premium")):
        quote = {
            "company_name": flat.get("selected_company") or "N/A",
            "total_premium": flat.get("quoted_premium") or 0,
            "status": "PENDING",
        }
    else:
        return None
    quote["company_name"] = quote.get("company_name") or "N/A"
    quote["total_premium"] = quote.get("total_premium") or 0
    quote_status = quote.get("status")
    if quote_status not in ("PENDING", "CONVERTED"):
        converted = status == "CONVERTED" or _present(quote.get("policy_number"))
        quote["status"] = "CONVERTED" if converted else "PENDING"
    return quote


def _proposal_status(value: Any) -> str:
    return _choice(value, PROPOSAL_STATUSES, "DRAFT")


def _choice(value: Any, allowed: set, default: Any, *, lower: bool = False) -> Any:
    if not isinstance(value, str):
        return default
    candidate = value.lower() if lower else value.upper()
    return candidate if candidate in allowed else default
