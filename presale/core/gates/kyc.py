import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from presale.core.proposals.errors import DocumentError
from presale.core.proposals.models import KycDocument

PAN_PATTERN = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]{1}$")
ALLOWED_DOCUMENT_TYPES = {"image/jpeg", "image/jpg", "image/png", "application/pdf"}
MAX_DOCUMENT_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class DocumentCheckResult:
    is_valid: bool
    error: Optional[str] = None


def validate_pan(pan: Optional[str]) -> bool:
    if not pan:
        return False
    return PAN_PATTERN.match(pan) is not None


def validate_document(document: Optional[KycDocument]) -> DocumentCheckResult:
    if document is None:
        return DocumentCheckResult(is_valid=False, error="DOCUMENT_MISSING")
    if document.content_type.lower() not in ALLOWED_DOCUMENT_TYPES:
        return DocumentCheckResult(is_valid=False, error="DOCUMENT_TYPE_NOT_ALLOWED")
    if document.size_bytes > MAX_DOCUMENT_BYTES:
        return DocumentCheckResult(is_valid=False, error="DOCUMENT_TOO_LARGE")
    return DocumentCheckResult(is_valid=True)


def require_valid_document(document: Optional[KycDocument]) -> KycDocument:
    result = validate_document(document)
    if not result.is_valid or document is None:
        raise DocumentError(result.error or "DOCUMENT_MISSING")
    return document


def collect_kyc_errors(kyc_form: Mapping[str, Any]) -> tuple[list[str], list[str]]:
    """Return ``(missing, invalid)`` field names for a KYC submission.

    Either a CKYC number or a PAN is required; a PAN, when given, must be
    well formed. A PAN document is always required.
    """
    missing: list[str] = []
    invalid: list[str] = []
    ckyc_number = _text(kyc_form.get("ckyc_number"))
    pan_number = _text(kyc_form.get("pan_number"))

    if pan_number and not validate_pan(pan_number):
        invalid.append("pan_number")
    if not ckyc_number and not pan_number:
        missing.append("ckyc_number_or_pan_number")

    document = _as_document(kyc_form.get("pan_document"))
    if document is None:
        if kyc_form.get("pan_document"):
            invalid.append("pan_document")
        else:
            missing.append("pan_document")
    elif not validate_document(document).is_valid:
        invalid.append("pan_document")
    return missing, invalid


def can_proceed(kyc_form: Mapping[str, Any]) -> bool:
    missing, invalid = collect_kyc_errors(kyc_form)
    return not missing and not invalid


def _as_document(value: Any) -> Optional[KycDocument]:
    if isinstance(value, KycDocument):
        return value
    if not isinstance(value, Mapping):
        return None
    try:
        return KycDocument.model_validate(value)
    except ValueError:
        return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
