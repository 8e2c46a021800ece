from presale.core.proposals.errors import (
    AlreadyConvertedError,
    DocumentError,
    NotificationDeliveryError,
    PaymentFailedError,
    PaymentStateError,
    ProposalLifecycleError,
    ProposalNotFoundError,
    ProposalStateConflictError,
    ProposalStorageError,
    ProposalTransitionError,
    ProposalValidationError,
    VerificationMismatchError,
)
from presale.core.proposals.models import (
    IssuedPolicyRecord,
    KycRejectRequest,
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
    StageAdvanceRequest,
    StageBackRequest,
    StageNavigationResponse,
    VerificationCheckRequest,
    VerificationCheckResponse,
    VerificationSendResponse,
    WorkflowConfig,
    WorkflowStage,
)

__all__ = [
    "AlreadyConvertedError",
    "DocumentError",
    "IssuedPolicyRecord",
    "KycRejectRequest",
    "NotificationDeliveryError",
    "PaymentFailedError",
    "PaymentOutcomeResponse",
    "PaymentRequest",
    "PaymentRetryRequest",
    "PaymentStateError",
    "PaymentStatusResponse",
    "ProposalCreateRequest",
    "ProposalDetailResponse",
    "ProposalImportRequest",
    "ProposalLifecycleError",
    "ProposalListResponse",
    "ProposalNotFoundError",
    "ProposalRecord",
    "ProposalSearchQuery",
    "ProposalStateConflictError",
    "ProposalStorageError",
    "ProposalSummary",
    "ProposalTransitionError",
    "ProposalValidationError",
    "StageAdvanceRequest",
    "StageBackRequest",
    "StageNavigationResponse",
    "VerificationCheckRequest",
    "VerificationCheckResponse",
    "VerificationMismatchError",
    "VerificationSendResponse",
    "WorkflowConfig",
    "WorkflowStage",
]
