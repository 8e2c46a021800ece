import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError

from presale.core.gates.kyc import validate_pan
from presale.core.gates.payment import PAYMENT_METHODS, PaymentGate, PaymentGateway
from presale.core.gates.verification import VerificationGate
from presale.core.notifications import Notifier
from presale.core.proposals.errors import (
    AlreadyConvertedError,
    PaymentFailedError,
    PaymentStateError,
    ProposalNotFoundError,
    ProposalStateConflictError,
    ProposalTransitionError,
    ProposalValidationError,
)
from presale.core.proposals.issuer import PolicyIssuer
from presale.core.proposals.models import (
    IssuedPolicyRecord,
    KycRejectRequest,
    PanValidation,
    PaymentOutcomeResponse,
    PaymentRequest,
    PaymentRetryRequest,
    PaymentStatusResponse,
    ProposalCreateRequest,
    ProposalDetailResponse,
    ProposalImportRequest,
    ProposalListResponse,
    ProposalRecord,
    ProposalSearchQuery,
    ProposalSummary,
    SelectedQuote,
    StageAdvanceRequest,
    StageBackRequest,
    StageNavigationResponse,
    VerificationCheckRequest,
    VerificationCheckResponse,
    VerificationSendResponse,
    WorkflowConfig,
    WorkflowStage,
)
from presale.core.proposals.normalization import load_proposal_record
from presale.core.proposals.repository import ProposalRepository
from presale.core.proposals.stages import (
    STAGE_INDEX,
    STAGE_SECTIONS,
    collect_stage_errors,
    compute_stage_sequence,
    is_converted,
    next_stage,
    resolve_entry_stage,
)

logger = logging.getLogger(__name__)


class ProposalWorkflowService:
    def __init__(
        self,
        *,
        repository: ProposalRepository,
        notifier: Notifier,
        payment_gateway: PaymentGateway,
        config: Optional[WorkflowConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._config = config or WorkflowConfig()
        self._clock = clock or _utc_now
        self._verification = VerificationGate(
            notifier=notifier, config=self._config, clock=self._clock
        )
        self._payments = PaymentGate(
            gateway=payment_gateway, config=self._config, clock=self._clock
        )
        self._issuer = PolicyIssuer(repository=repository, notifier=notifier, clock=self._clock)

    @property
    def config(self) -> WorkflowConfig:
        return self._config

    def create_proposal(self, *, payload: ProposalCreateRequest) -> ProposalDetailResponse:
        now = self._clock()
        policy_details = payload.policy_details.model_copy(deep=True)
        if not policy_details.quotation_date:
            policy_details.quotation_date = now.isoformat()
        selected_quote = None
        if payload.selected_quote is not None:
            selected_quote = SelectedQuote(
                company_name=payload.selected_quote.company_name,
                total_premium=payload.selected_quote.total_premium,
            )
        proposal = ProposalRecord(
            proposal_id=f"pp_{uuid.uuid4().hex[:12]}",
            created_by=payload.created_by,
            customer_info=payload.customer_info.model_copy(deep=True),
            policy_details=policy_details,
            selected_quote=selected_quote,
            selected_add_ons=list(payload.selected_add_ons),
            needs_customer_info=payload.needs_customer_info,
            created_at=now,
            updated_at=now,
        )
        proposal.furthest_stage = self._entry_stage(proposal)
        self._repository.create_proposal(proposal)
        logger.info("Proposal created. proposal_id=%s", proposal.proposal_id)
        return self._to_detail(proposal)

    def import_legacy_proposal(self, *, payload: ProposalImportRequest) -> ProposalDetailResponse:
        try:
            proposal = load_proposal_record(payload.record, created_by=payload.created_by)
        except ValidationError as exc:
            raise ProposalValidationError(
                "INVALID_PROPOSAL_RECORD", invalid_fields=_error_fields(exc)
            ) from exc
        if proposal.furthest_stage is None and not is_converted(proposal):
            proposal.furthest_stage = self._entry_stage(proposal)
        self._repository.create_proposal(proposal)
        logger.info("Legacy proposal imported. proposal_id=%s", proposal.proposal_id)
        return self._to_detail(proposal)

    def get_proposal(self, *, proposal_id: str) -> ProposalDetailResponse:
        return self._to_detail(self._load(proposal_id))

    def list_proposals(
        self,
        *,
        query: Optional[ProposalSearchQuery] = None,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> ProposalListResponse:
        rows, next_cursor = self._repository.list_proposals(
            query=query,
            limit=limit,
            cursor=cursor,
        )
        return ProposalListResponse(
            items=[self._to_summary(row) for row in rows],
            next_cursor=next_cursor,
        )

    def delete_proposal(self, *, proposal_id: str, confirm: bool, confirm_permanent: bool) -> None:
        if not (confirm and confirm_permanent):
            raise ProposalValidationError(
                "DELETE_CONFIRMATION_REQUIRED",
                missing_fields=[
                    name
                    for name, given in (
                        ("confirm", confirm),
                        ("confirm_permanent", confirm_permanent),
                    )
                    if not given
                ],
            )
        if not self._repository.delete_proposal(proposal_id=proposal_id):
            raise ProposalNotFoundError("PROPOSAL_NOT_FOUND")
        self._verification.discard(proposal_id)
        logger.info("Proposal deleted. proposal_id=%s", proposal_id)

    def enter(self, *, proposal_id: str) -> StageNavigationResponse:
        """Open a proposal at the stage its data calls for and remember it."""
        proposal = self._load(proposal_id)
        if is_converted(proposal):
            return self._to_navigation(
                proposal,
                stage="POLICY_ISSUANCE",
                issued_policy=self._issued_policy_for(proposal),
            )

        stage = self._entry_stage(proposal)
        furthest = _later_stage(proposal.furthest_stage, stage)
        if proposal.current_stage == stage and proposal.furthest_stage == furthest:
            return self._to_navigation(proposal, stage=stage)

        updated = proposal.model_copy(deep=True)
        updated.current_stage = stage
        updated.furthest_stage = furthest
        saved = self._save(proposal, updated)
        logger.info("Proposal entered. proposal_id=%s stage=%s", proposal_id, stage)
        return self._to_navigation(saved, stage=stage)

    def get_stage_navigation(self, *, proposal_id: str) -> StageNavigationResponse:
        proposal = self._load(proposal_id)
        if is_converted(proposal):
            return self._to_navigation(
                proposal,
                stage="POLICY_ISSUANCE",
                issued_policy=self._issued_policy_for(proposal),
            )
        return self._to_navigation(proposal)

    def advance(
        self,
        *,
        proposal_id: str,
        stage: WorkflowStage,
        payload: StageAdvanceRequest,
    ) -> StageNavigationResponse:
        proposal = self._load(proposal_id)
        self._ensure_mutable(proposal, expected_version=payload.expected_version)
        if stage == "POLICY_ISSUANCE":
            raise ProposalTransitionError("POLICY_ISSUANCE_REQUIRES_PAYMENT")
        now = self._clock()
        sequence = compute_stage_sequence(
            proposal,
            now=now,
            zero_premium_counts_as_missing=self._config.zero_premium_counts_as_missing,
        )
        if stage not in sequence:
            raise ProposalTransitionError("STAGE_NOT_IN_SEQUENCE")
        furthest = proposal.furthest_stage or self._entry_stage(proposal)
        if STAGE_INDEX[stage] > STAGE_INDEX[furthest]:
            raise ProposalTransitionError("STAGE_NOT_REACHED")
        if stage == "KYC" and not self._verification.is_verified(proposal_id):
            raise ProposalTransitionError("IDENTITY_NOT_VERIFIED")

        updated = proposal.model_copy(deep=True)
        self._apply_stage_input(updated, stage=stage, form_input=payload.form_input)

        following = next_stage(
            compute_stage_sequence(
                updated,
                now=now,
                zero_premium_counts_as_missing=self._config.zero_premium_counts_as_missing,
            ),
            stage,
        )
        updated.current_stage = following
        updated.furthest_stage = _later_stage(furthest, following)
        saved = self._save(proposal, updated)
        logger.info(
            "Proposal stage advanced. proposal_id=%s from=%s to=%s actor=%s",
            proposal_id,
            stage,
            following,
            payload.actor_id,
            extra={
                "extra_fields": {
                    "proposal_id": proposal_id,
                    "from_stage": stage,
                    "to_stage": following,
                }
            },
        )
        return self._to_navigation(saved, stage=following)

    def go_back(
        self,
        *,
        proposal_id: str,
        target_stage: WorkflowStage,
        payload: Optional[StageBackRequest] = None,
    ) -> StageNavigationResponse:
        proposal = self._load(proposal_id)
        expected_version = payload.expected_version if payload is not None else None
        self._ensure_mutable(proposal, expected_version=expected_version)
        sequence = compute_stage_sequence(
            proposal,
            now=self._clock(),
            zero_premium_counts_as_missing=self._config.zero_premium_counts_as_missing,
        )
        if target_stage not in sequence:
            raise ProposalTransitionError("STAGE_NOT_IN_SEQUENCE")
        furthest = proposal.furthest_stage or self._entry_stage(proposal)
        if STAGE_INDEX[target_stage] > STAGE_INDEX[furthest]:
            raise ProposalTransitionError("STAGE_NOT_REACHED")
        if proposal.current_stage == target_stage:
            return self._to_navigation(proposal, stage=target_stage)

        updated = proposal.model_copy(deep=True)
        updated.current_stage = target_stage
        saved = self._save(proposal, updated)
        return self._to_navigation(saved, stage=target_stage)

    async def send_verification_code(self, *, proposal_id: str) -> VerificationSendResponse:
        proposal = self._load(proposal_id)
        self._ensure_mutable(proposal, expected_version=None)
        customer = proposal.customer_info
        if not customer.email:
            raise ProposalValidationError("VERIFICATION_CONTACT_MISSING", missing_fields=["email"])
        await self._verification.issue(
            customer.email,
            proposal_id=proposal_id,
            customer_name=customer.display_name(),
        )
        return VerificationSendResponse(
            proposal_id=proposal_id,
            recipient=_mask_email(customer.email),
            expires_at=self._verification.expires_at(proposal_id),
        )

    def verify_code(
        self, *, proposal_id: str, payload: VerificationCheckRequest
    ) -> VerificationCheckResponse:
        proposal = self._load(proposal_id)
        self._ensure_mutable(proposal, expected_version=None)
        self._verification.check(proposal_id, payload.code)
        return VerificationCheckResponse(proposal_id=proposal_id, verified=True)

    def reject_kyc(self, *, proposal_id: str, payload: KycRejectRequest) -> StageNavigationResponse:
        proposal = self._load(proposal_id)
        self._ensure_mutable(proposal, expected_version=payload.expected_version)
        if STAGE_INDEX[proposal.furthest_stage or self._entry_stage(proposal)] < STAGE_INDEX["KYC"]:
            raise ProposalTransitionError("STAGE_NOT_REACHED")

        updated = proposal.model_copy(deep=True)
        updated.kyc_status = "rejected"
        updated.pan_validation = PanValidation(
            is_valid=False,
            pan_number=proposal.pan_validation.pan_number,
            name=proposal.pan_validation.name,
        )
        updated.current_stage = "KYC"
        saved = self._save(proposal, updated)
        self._verification.discard(proposal_id)
        logger.info(
            "KYC rejected. proposal_id=%s actor=%s reason=%s",
            proposal_id,
            payload.actor_id,
            payload.reason,
        )
        return self._to_navigation(saved, stage="KYC")

    async def process_payment(
        self, *, proposal_id: str, payload: PaymentRequest
    ) -> PaymentOutcomeResponse:
        proposal = self._load(proposal_id)
        self._ensure_mutable(proposal, expected_version=payload.expected_version)
        quote = proposal.selected_quote
        if quote is None:
            raise ProposalTransitionError("QUOTE_NOT_SELECTED")
        if proposal.kyc_status != "verified":
            raise ProposalTransitionError("KYC_NOT_VERIFIED")
        declaration = proposal.payment_declaration
        if declaration is None or any(
            collect_stage_errors("PAYMENT_DECLARATION", declaration.model_dump(mode="python"))
        ):
            raise ProposalTransitionError("PAYMENT_DECLARATION_INCOMPLETE")

        if proposal.payment_status == "completed":
            # settled earlier but issuance did not finish
            return await self._issue(proposal, payment=None)
        if proposal.payment_status == "processing":
            raise PaymentStateError("PAYMENT_ALREADY_PROCESSING")
        if proposal.payment_status == "failed":
            raise PaymentStateError("PAYMENT_RETRY_REQUIRED")
        if payload.payment_method not in PAYMENT_METHODS:
            raise ProposalValidationError(
                "INVALID_PAYMENT_REQUEST", invalid_fields=["payment_method"]
            )
        if quote.total_premium <= 0:
            raise ProposalTransitionError("QUOTE_PREMIUM_NOT_CHARGEABLE")

        processing = proposal.model_copy(deep=True)
        processing.payment_status = self._payments.transition(proposal.payment_status, "processing")
        processing = self._save(proposal, processing)

        try:
            result = await self._payments.process(
                method=payload.payment_method,
                amount=quote.total_premium,
                reference=proposal_id,
            )
        except Exception:
            self._record_payment_status(processing, status="failed", reference=None)
            raise

        settled = self._record_payment_status(
            processing, status=result.status, reference=result.attempt_id
        )
        if result.status == "failed":
            logger.warning(
                "Payment failed. proposal_id=%s attempt_id=%s reason=%s",
                proposal_id,
                result.attempt_id,
                result.failure_reason,
            )
            raise PaymentFailedError(
                f"PAYMENT_FAILED: {result.failure_reason or 'UNKNOWN'}",
                attempt_id=result.attempt_id,
            )
        return await self._issue(settled, payment=result)

    def retry_payment(
        self, *, proposal_id: str, payload: Optional[PaymentRetryRequest] = None
    ) -> PaymentStatusResponse:
        proposal = self._load(proposal_id)
        expected_version = payload.expected_version if payload is not None else None
        self._ensure_mutable(proposal, expected_version=expected_version)
        updated = proposal.model_copy(deep=True)
        updated.payment_status = self._payments.retry(proposal.payment_status)
        saved = self._save(proposal, updated)
        return PaymentStatusResponse(
            proposal_id=proposal_id,
            payment_status=saved.payment_status,
            version=saved.version,
        )

    def get_issued_policy(self, *, policy_number: str) -> IssuedPolicyRecord:
        policy = self._repository.get_issued_policy(policy_number=policy_number)
        if policy is None:
            raise ProposalNotFoundError("POLICY_NOT_FOUND")
        return policy

    async def _issue(self, proposal: ProposalRecord, *, payment) -> PaymentOutcomeResponse:
        outcome = await self._issuer.issue(proposal, payment=payment)
        self._verification.discard(proposal.proposal_id)
        return PaymentOutcomeResponse(
            proposal_id=proposal.proposal_id,
            payment=payment,
            proposal_status=outcome.proposal.status,
            issued_policy=outcome.issued_policy,
            warnings=outcome.warnings,
        )

    def _record_payment_status(
        self, proposal: ProposalRecord, *, status: str, reference: Optional[str]
    ) -> ProposalRecord:
        updated = proposal.model_copy(deep=True)
        updated.payment_status = self._payments.transition(proposal.payment_status, status)
        if reference is not None:
            updated.payment_reference = reference
        return self._save(proposal, updated)

    def _apply_stage_input(
        self, proposal: ProposalRecord, *, stage: WorkflowStage, form_input: dict[str, Any]
    ) -> None:
        attribute, section_model = STAGE_SECTIONS[stage]
        unknown = sorted(set(form_input) - set(section_model.model_fields))
        if unknown:
            raise ProposalValidationError("UNKNOWN_FIELDS", invalid_fields=unknown)

        existing = getattr(proposal, attribute)
        values = existing.model_dump(mode="python") if existing is not None else {}
        values.update(form_input)
        missing, invalid = collect_stage_errors(
            stage,
            values,
            zero_premium_counts_as_missing=self._config.zero_premium_counts_as_missing,
        )
        if missing or invalid:
            raise ProposalValidationError(
                "MISSING_REQUIRED_FIELDS" if missing else "INVALID_FIELDS",
                missing_fields=missing,
                invalid_fields=invalid,
            )
        try:
            section = section_model.model_validate(values)
        except ValidationError as exc:
            raise ProposalValidationError(
                "INVALID_FIELDS", invalid_fields=_error_fields(exc)
            ) from exc
        setattr(proposal, attribute, section)

        if stage == "CUSTOMER_INFO":
            proposal.needs_customer_info = False
        elif stage == "KYC":
            proposal.kyc_status = "verified"
            proposal.pan_validation = PanValidation(
                is_valid=validate_pan(section.pan_number),
                pan_number=section.pan_number,
                name=section.pan_holder_name or proposal.customer_info.display_name(),
            )
        elif stage == "PAYMENT_DECLARATION" and proposal.status == "DRAFT":
            proposal.status = "SUBMITTED"

    def _load(self, proposal_id: str) -> ProposalRecord:
        proposal = self._repository.get_proposal(proposal_id=proposal_id)
        if proposal is None:
            raise ProposalNotFoundError("PROPOSAL_NOT_FOUND")
        return proposal

    def _ensure_mutable(self, proposal: ProposalRecord, *, expected_version: Optional[int]) -> None:
        if is_converted(proposal):
            raise AlreadyConvertedError("PROPOSAL_ALREADY_CONVERTED")
        if expected_version is not None and expected_version != proposal.version:
            raise ProposalStateConflictError("STATE_CONFLICT: version mismatch")

    def _save(self, original: ProposalRecord, updated: ProposalRecord) -> ProposalRecord:
        updated.updated_at = self._clock()
        updated.version = original.version + 1
        self._repository.save_proposal(updated, expected_version=original.version)
        return updated

    def _entry_stage(self, proposal: ProposalRecord) -> WorkflowStage:
        return resolve_entry_stage(
            proposal,
            now=self._clock(),
            zero_premium_counts_as_missing=self._config.zero_premium_counts_as_missing,
        )

    def _issued_policy_for(self, proposal: ProposalRecord) -> Optional[IssuedPolicyRecord]:
        if not proposal.policy_number:
            return None
        return self._repository.get_issued_policy(policy_number=proposal.policy_number)

    def _to_navigation(
        self,
        proposal: ProposalRecord,
        *,
        stage: Optional[WorkflowStage] = None,
        issued_policy: Optional[IssuedPolicyRecord] = None,
    ) -> StageNavigationResponse:
        current = stage or proposal.current_stage or self._entry_stage(proposal)
        return StageNavigationResponse(
            proposal_id=proposal.proposal_id,
            current_stage=current,
            stage_index=STAGE_INDEX[current],
            stage_sequence=self._sequence(proposal),
            furthest_stage=_later_stage(proposal.furthest_stage, current),
            read_only=is_converted(proposal),
            version=proposal.version,
            issued_policy=issued_policy,
        )

    def _to_detail(self, proposal: ProposalRecord) -> ProposalDetailResponse:
        return ProposalDetailResponse(proposal=proposal, stage_sequence=self._sequence(proposal))

    def _sequence(self, proposal: ProposalRecord) -> list[WorkflowStage]:
        return compute_stage_sequence(
            proposal,
            now=self._clock(),
            zero_premium_counts_as_missing=self._config.zero_premium_counts_as_missing,
        )

    def _to_summary(self, proposal: ProposalRecord) -> ProposalSummary:
        customer = proposal.customer_info
        quote = proposal.selected_quote
        return ProposalSummary(
            proposal_id=proposal.proposal_id,
            customer_name=customer.display_name(),
            customer_id=customer.customer_id,
            phone=customer.phone,
            email=customer.email,
            policy_type=proposal.policy_details.policy_type,
            insurance_company=quote.company_name if quote is not None else None,
            total_premium=quote.total_premium if quote is not None else None,
            status=proposal.status,
            kyc_status=proposal.kyc_status,
            policy_number=proposal.policy_number,
            created_at=proposal.created_at.isoformat(),
            updated_at=proposal.updated_at.isoformat(),
        )


def _later_stage(
    current: Optional[WorkflowStage], candidate: WorkflowStage
) -> WorkflowStage:
    if current is None or STAGE_INDEX[candidate] > STAGE_INDEX[current]:
        return candidate
    return current


def _error_fields(exc: ValidationError) -> list[str]:
    return [".".join(str(part) for part in error["loc"]) for error in exc.errors()]


def _mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
