from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status

from presale.api.routers import proposals_config
from presale.api.routers.proposal_http_errors import raise_proposal_http_exception
from presale.api.routers.runtime_utils import (
    assert_feature_enabled,
    normalize_backend_init_error,
)
from presale.core.proposals import (
    IssuedPolicyRecord,
    KycRejectRequest,
    PaymentOutcomeResponse,
    PaymentRequest,
    PaymentRetryRequest,
    PaymentStatusResponse,
    ProposalCreateRequest,
    ProposalDetailResponse,
    ProposalImportRequest,
    ProposalLifecycleError,
    ProposalListResponse,
    ProposalSearchQuery,
    StageAdvanceRequest,
    StageBackRequest,
    StageNavigationResponse,
    VerificationCheckRequest,
    VerificationCheckResponse,
    VerificationSendResponse,
    WorkflowStage,
)
from presale.core.proposals.models import ProposalStatus
from presale.core.proposals.repository import ProposalRepository
from presale.core.proposals.service import ProposalWorkflowService

router = APIRouter(tags=["Pre-Sale Proposal Workflow"])

_REPOSITORY: Optional[ProposalRepository] = None
_SERVICE: Optional[ProposalWorkflowService] = None

ProposalId = Annotated[
    str,
    Path(description="Persisted proposal identifier.", examples=["pp_001"]),
]
StagePath = Annotated[
    WorkflowStage,
    Path(description="Workflow stage name.", examples=["CUSTOMER_INFO"]),
]


def get_proposal_workflow_service() -> ProposalWorkflowService:
    global _REPOSITORY
    global _SERVICE
    if _SERVICE is None:
        try:
            if _REPOSITORY is None:
                _REPOSITORY = proposals_config.build_repository()
        except RuntimeError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=normalize_backend_init_error(
                    detail=str(exc),
                    required_detail="PROPOSAL_POSTGRES_DSN_REQUIRED",
                    fallback_detail="PROPOSAL_POSTGRES_CONNECTION_FAILED",
                ),
            ) from exc
        _SERVICE = ProposalWorkflowService(
            repository=_REPOSITORY,
            notifier=proposals_config.build_notifier(),
            payment_gateway=proposals_config.build_payment_gateway(),
            config=proposals_config.workflow_config(),
        )
    return _SERVICE


def reset_proposal_workflow_service_for_tests() -> None:
    global _REPOSITORY
    global _SERVICE
    _REPOSITORY = None
    _SERVICE = None


def _assert_workflow_enabled() -> None:
    assert_feature_enabled(
        name="PROPOSAL_WORKFLOW_ENABLED",
        default=True,
        detail="PROPOSAL_WORKFLOW_DISABLED",
    )


@router.post(
    "/presale/proposals",
    response_model=ProposalDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Proposal",
    description=(
        "Persists a new proposal from a selected quotation and returns it with the "
        "stage sequence that applies to it."
    ),
)
def create_proposal(
    payload: ProposalCreateRequest,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> ProposalDetailResponse:
    _assert_workflow_enabled()
    try:
        return service.create_proposal(payload=payload)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.post(
    "/presale/proposals/import",
    response_model=ProposalDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Import Legacy Proposal",
    description=(
        "Normalizes a stored proposal in any historical shape (flat or nested, camelCase or "
        "snake_case) into the canonical record and persists it."
    ),
)
def import_legacy_proposal(
    payload: ProposalImportRequest,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> ProposalDetailResponse:
    _assert_workflow_enabled()
    try:
        return service.import_legacy_proposal(payload=payload)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.get(
    "/presale/proposals",
    response_model=ProposalListResponse,
    status_code=status.HTTP_200_OK,
    summary="Search Proposals",
    description=(
        "Lists proposals newest first. Converted proposals are hidden unless "
        "`include_converted=true` or `status=CONVERTED`."
    ),
)
def list_proposals(
    text: Annotated[
        Optional[str],
        Query(
            description="Free text over id, customer name, email and policy number.",
            examples=["asha"],
        ),
    ] = None,
    customer_id: Annotated[
        Optional[str], Query(description="Customer id filter.", examples=["CUST001"])
    ] = None,
    customer_name: Annotated[
        Optional[str], Query(description="Customer name filter.", examples=["Asha Rao"])
    ] = None,
    mobile: Annotated[
        Optional[str], Query(description="Mobile number filter.", examples=["9876543210"])
    ] = None,
    insurance_company: Annotated[
        Optional[str], Query(description="Insurer filter.", examples=["HDFC Ergo"])
    ] = None,
    policy_type: Annotated[
        Optional[str], Query(description="Policy type filter.", examples=["GEN_MOTOR"])
    ] = None,
    quote_id: Annotated[
        Optional[str], Query(description="Proposal/quote id filter.", examples=["pp_001"])
    ] = None,
    status_filter: Annotated[
        Optional[ProposalStatus],
        Query(alias="status", description="Proposal status filter.", examples=["DRAFT"]),
    ] = None,
    include_converted: Annotated[
        bool,
        Query(description="Include converted proposals.", examples=[False]),
    ] = False,
    limit: Annotated[
        int,
        Query(description="Page size.", ge=1, le=100, examples=[20]),
    ] = 20,
    cursor: Annotated[
        Optional[str],
        Query(description="Opaque cursor from previous list response.", examples=["pp_123"]),
    ] = None,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> ProposalListResponse:
    _assert_workflow_enabled()
    query = ProposalSearchQuery(
        text=text,
        customer_id=customer_id,
        customer_name=customer_name,
        mobile=mobile,
        insurance_company=insurance_company,
        policy_type=policy_type,
        quote_id=quote_id,
        status=status_filter,
        include_converted=include_converted,
    )
    try:
        return service.list_proposals(query=query, limit=limit, cursor=cursor)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.get(
    "/presale/proposals/{proposal_id}",
    response_model=ProposalDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Proposal",
    description="Returns the canonical proposal record and its stage sequence.",
)
def get_proposal(
    proposal_id: ProposalId,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> ProposalDetailResponse:
    _assert_workflow_enabled()
    try:
        return service.get_proposal(proposal_id=proposal_id)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.delete(
    "/presale/proposals/{proposal_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Proposal",
    description=(
        "Permanently deletes a non-converted proposal. Requires both `confirm=true` and "
        "`confirm_permanent=true`."
    ),
)
def delete_proposal(
    proposal_id: ProposalId,
    confirm: Annotated[
        bool, Query(description="First delete confirmation.", examples=[True])
    ] = False,
    confirm_permanent: Annotated[
        bool, Query(description="Second, permanent delete confirmation.", examples=[True])
    ] = False,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> Response:
    _assert_workflow_enabled()
    try:
        service.delete_proposal(
            proposal_id=proposal_id,
            confirm=confirm,
            confirm_permanent=confirm_permanent,
        )
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/presale/proposals/{proposal_id}/enter",
    response_model=StageNavigationResponse,
    status_code=status.HTTP_200_OK,
    summary="Enter Proposal Workflow",
    description=(
        "Resolves the stage the proposal opens at and records it. Converted proposals "
        "open read-only at policy issuance with the issued policy attached."
    ),
)
def enter_proposal(
    proposal_id: ProposalId,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> StageNavigationResponse:
    _assert_workflow_enabled()
    try:
        return service.enter(proposal_id=proposal_id)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.get(
    "/presale/proposals/{proposal_id}/stages",
    response_model=StageNavigationResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Stage Navigation",
    description="Returns current stage, stage sequence and furthest reached stage.",
)
def get_stage_navigation(
    proposal_id: ProposalId,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> StageNavigationResponse:
    _assert_workflow_enabled()
    try:
        return service.get_stage_navigation(proposal_id=proposal_id)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.post(
    "/presale/proposals/{proposal_id}/stages/{stage}/advance",
    response_model=StageNavigationResponse,
    status_code=status.HTTP_200_OK,
    summary="Submit Stage",
    description=(
        "Validates the stage form, merges it into the proposal and moves to the next "
        "stage in the sequence. Returns 422 listing missing and invalid fields."
    ),
)
def advance_stage(
    proposal_id: ProposalId,
    stage: StagePath,
    payload: StageAdvanceRequest,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> StageNavigationResponse:
    _assert_workflow_enabled()
    try:
        return service.advance(proposal_id=proposal_id, stage=stage, payload=payload)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.post(
    "/presale/proposals/{proposal_id}/stages/{stage}/back",
    response_model=StageNavigationResponse,
    status_code=status.HTTP_200_OK,
    summary="Navigate Back",
    description="Moves to an already reached stage without validating or discarding data.",
)
def go_back(
    proposal_id: ProposalId,
    stage: StagePath,
    payload: Optional[StageBackRequest] = None,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> StageNavigationResponse:
    _assert_workflow_enabled()
    try:
        return service.go_back(proposal_id=proposal_id, target_stage=stage, payload=payload)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.post(
    "/presale/proposals/{proposal_id}/verification/send",
    response_model=VerificationSendResponse,
    status_code=status.HTTP_200_OK,
    summary="Send Verification Code",
    description="Issues a one-time code to the customer email. Any earlier code is replaced.",
)
async def send_verification_code(
    proposal_id: ProposalId,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> VerificationSendResponse:
    _assert_workflow_enabled()
    try:
        return await service.send_verification_code(proposal_id=proposal_id)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.post(
    "/presale/proposals/{proposal_id}/verification/verify",
    response_model=VerificationCheckResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify Code",
    description="Checks the code entered by the customer. Wrong or expired codes return 422.",
)
def verify_code(
    proposal_id: ProposalId,
    payload: VerificationCheckRequest,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> VerificationCheckResponse:
    _assert_workflow_enabled()
    try:
        return service.verify_code(proposal_id=proposal_id, payload=payload)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.post(
    "/presale/proposals/{proposal_id}/kyc/reject",
    response_model=StageNavigationResponse,
    status_code=status.HTTP_200_OK,
    summary="Reject KYC",
    description="Marks KYC rejected and returns the proposal to the KYC stage.",
)
def reject_kyc(
    proposal_id: ProposalId,
    payload: KycRejectRequest,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> StageNavigationResponse:
    _assert_workflow_enabled()
    try:
        return service.reject_kyc(proposal_id=proposal_id, payload=payload)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.post(
    "/presale/proposals/{proposal_id}/payment",
    response_model=PaymentOutcomeResponse,
    status_code=status.HTTP_200_OK,
    summary="Process Payment",
    description=(
        "Charges the selected quote premium and, on success, converts the proposal into "
        "an issued policy. Failed charges return 402 and require an explicit retry."
    ),
)
async def process_payment(
    proposal_id: ProposalId,
    payload: PaymentRequest,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> PaymentOutcomeResponse:
    _assert_workflow_enabled()
    try:
        return await service.process_payment(proposal_id=proposal_id, payload=payload)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.post(
    "/presale/proposals/{proposal_id}/payment/retry",
    response_model=PaymentStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Retry Payment",
    description="Resets a failed payment to pending so it can be attempted again.",
)
def retry_payment(
    proposal_id: ProposalId,
    payload: Optional[PaymentRetryRequest] = None,
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> PaymentStatusResponse:
    _assert_workflow_enabled()
    try:
        return service.retry_payment(proposal_id=proposal_id, payload=payload)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)


@router.get(
    "/presale/policies/{policy_number}",
    response_model=IssuedPolicyRecord,
    status_code=status.HTTP_200_OK,
    summary="Get Issued Policy",
    description="Returns the immutable issued-policy snapshot.",
)
def get_issued_policy(
    policy_number: Annotated[
        str,
        Path(description="Issued policy number.", examples=["POL482913570216"]),
    ],
    service: Annotated[ProposalWorkflowService, Depends(get_proposal_workflow_service)] = None,
) -> IssuedPolicyRecord:
    _assert_workflow_enabled()
    try:
        return service.get_issued_policy(policy_number=policy_number)
    except ProposalLifecycleError as exc:
        raise_proposal_http_exception(exc)
