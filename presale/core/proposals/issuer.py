import logging
import re
import uuid
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Union

from presale.core.notifications import Notifier
from presale.core.proposals.errors import (
    AlreadyConvertedError,
    NotificationDeliveryError,
    ProposalTransitionError,
)
from presale.core.proposals.models import (
    IssuanceOutcome,
    IssuedPolicyRecord,
    PaymentResult,
    ProposalRecord,
)
from presale.core.proposals.repository import ProposalRepository
from presale.core.proposals.stages import is_converted

logger = logging.getLogger(__name__)

NOTIFICATION_FAILED_WARNING = "POLICY_ISSUED_NOTIFICATION_FAILED"

_TERM_YEARS = re.compile(r"^(?:COMP_)?(\d+)$")


def generate_policy_number() -> str:
    return f"POL{uuid.uuid4().int % 10**12:012d}"


def generate_certificate_number() -> str:
    return f"CERT{uuid.uuid4().int % 10**14:014d}"


def policy_term_years(policy_term: Union[int, str, None]) -> int:
    """Cover length in years; standalone own-damage and unknown terms are one year."""
    if isinstance(policy_term, int) and policy_term > 0:
        return policy_term
    match = _TERM_YEARS.match(str(policy_term or "").strip().upper())
    if match is not None and int(match.group(1)) > 0:
        return int(match.group(1))
    return 1


def add_years(start: date, years: int) -> date:
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        # 29 February in a non-leap target year
        return start.replace(year=start.year + years, day=28)


class PolicyIssuer:
    def __init__(
        self,
        *,
        repository: ProposalRepository,
        notifier: Notifier,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._notifier = notifier
        self._clock = clock or _utc_now

    async def issue(
        self, proposal: ProposalRecord, *, payment: Optional[PaymentResult] = None
    ) -> IssuanceOutcome:
        if is_converted(proposal):
            raise AlreadyConvertedError("PROPOSAL_ALREADY_CONVERTED")
        if proposal.selected_quote is None:
            raise ProposalTransitionError("QUOTE_NOT_SELECTED")

        now = self._clock()
        policy_number = generate_policy_number()
        issued_policy = self._build_snapshot(
            proposal,
            policy_number=policy_number,
            certificate_number=generate_certificate_number(),
            issued_at=now,
            payment=payment,
        )

        converted = proposal.model_copy(deep=True)
        converted.status = "CONVERTED"
        converted.selected_quote.status = "CONVERTED"
        converted.selected_quote.converted_at = now
        converted.selected_quote.policy_number = policy_number
        converted.policy_number = policy_number
        converted.certificate_number = issued_policy.certificate_number
        converted.policy_issued_at = now
        converted.current_stage = "POLICY_ISSUANCE"
        converted.furthest_stage = "POLICY_ISSUANCE"
        converted.updated_at = now
        converted.version = proposal.version + 1

        result = self._repository.convert_proposal(
            proposal=converted,
            issued_policy=issued_policy,
            expected_version=proposal.version,
        )
        logger.info(
            "Proposal converted to policy. proposal_id=%s policy_number=%s",
            proposal.proposal_id,
            policy_number,
            extra={
                "extra_fields": {
                    "proposal_id": proposal.proposal_id,
                    "policy_number": policy_number,
                }
            },
        )

        warnings = []
        if not await self._notify(result.issued_policy, recipient=proposal.customer_info.email):
            warnings.append(NOTIFICATION_FAILED_WARNING)
        return IssuanceOutcome(
            proposal=result.proposal,
            issued_policy=result.issued_policy,
            warnings=warnings,
        )

    async def _notify(self, policy: IssuedPolicyRecord, *, recipient: str) -> bool:
        if not recipient:
            logger.warning("Policy issued without customer email. policy=%s", policy.policy_number)
            return False
        try:
            result = await self._notifier.send("policyIssued", recipient, _email_payload(policy))
        except NotificationDeliveryError:
            result = None
        if result is None or not result.success:
            logger.warning(
                "Policy issued notification failed. policy_number=%s error=%s",
                policy.policy_number,
                result.error if result is not None else "NOTIFIER_RAISED",
            )
            return False
        return True

    def _build_snapshot(
        self,
        proposal: ProposalRecord,
        *,
        policy_number: str,
        certificate_number: str,
        issued_at: datetime,
        payment: Optional[PaymentResult],
    ) -> IssuedPolicyRecord:
        quote = proposal.selected_quote
        policy = proposal.policy_details
        start = issued_at.date()
        end = add_years(start, policy_term_years(policy.policy_term))

        vehicle: dict[str, Any] = {
            "oem": policy.oem,
            "model": policy.model_name,
            "variant": policy.variant,
            "year": policy.year_of_manufacture,
            "registration_city": policy.registration_city,
            "policy_type": policy.policy_type,
            "policy_term": policy.policy_term,
        }
        if proposal.vehicle_details is not None:
            vehicle.update(proposal.vehicle_details.model_dump(mode="json"))

        payment_snapshot: dict[str, Any] = {}
        if proposal.payment_declaration is not None:
            payment_snapshot.update(proposal.payment_declaration.model_dump(mode="json"))
        if payment is not None:
            payment_snapshot.update(
                {
                    "attempt_id": payment.attempt_id,
                    "method": payment.method,
                    "amount": str(payment.amount),
                    "provider_reference": payment.provider_reference,
                }
            )

        kyc: dict[str, Any] = {"kyc_status": proposal.kyc_status}
        if proposal.kyc_details is not None:
            kyc.update(
                {
                    "ckyc_number": proposal.kyc_details.ckyc_number,
                    "pan_number": proposal.kyc_details.pan_number,
                    "pan_holder_name": proposal.kyc_details.pan_holder_name,
                }
            )

        return IssuedPolicyRecord(
            policy_number=policy_number,
            certificate_number=certificate_number,
            proposal_id=proposal.proposal_id,
            issued_at=issued_at,
            customer_name=proposal.customer_info.display_name(),
            insurance_company=quote.company_name,
            premium_amount=quote.total_premium,
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            customer=proposal.customer_info.model_dump(mode="json"),
            vehicle=vehicle,
            nominee=(
                proposal.nomination_details.model_dump(mode="json")
                if proposal.nomination_details is not None
                else {}
            ),
            payment=payment_snapshot,
            kyc=kyc,
            liability=(
                proposal.liability_details.model_dump(mode="json")
                if proposal.liability_details is not None
                else {}
            ),
            add_ons=list(proposal.selected_add_ons),
        )


def _email_payload(policy: IssuedPolicyRecord) -> dict[str, Any]:
    return {
        "policyNumber": policy.policy_number,
        "certificateNumber": policy.certificate_number,
        "customerName": policy.customer_name,
        "insuranceCompany": policy.insurance_company,
        "premiumAmount": str(policy.premium_amount),
        "startDate": policy.start_date,
        "endDate": policy.end_date,
        "vehicleDetails": policy.vehicle,
        "nomineeDetails": policy.nominee,
        "paymentMode": policy.payment.get("payment_mode"),
        "addOns": list(policy.add_ons),
    }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
