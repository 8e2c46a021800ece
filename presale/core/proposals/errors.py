from typing import Iterable, Optional


class ProposalLifecycleError(Exception):
    pass


class ProposalNotFoundError(ProposalLifecycleError):
    pass


class ProposalValidationError(ProposalLifecycleError):
    def __init__(
        self,
        message: str = "MISSING_REQUIRED_FIELDS",
        *,
        missing_fields: Optional[Iterable[str]] = None,
        invalid_fields: Optional[Iterable[str]] = None,
    ) -> None:
        self.missing_fields = list(missing_fields or [])
        self.invalid_fields = list(invalid_fields or [])
        details = []
        if self.missing_fields:
            details.append(f"missing={','.join(self.missing_fields)}")
        if self.invalid_fields:
            details.append(f"invalid={','.join(self.invalid_fields)}")
        super().__init__(f"{message}: {'; '.join(details)}" if details else message)


class ProposalStateConflictError(ProposalLifecycleError):
    pass


class ProposalTransitionError(ProposalLifecycleError):
    pass


class AlreadyConvertedError(ProposalLifecycleError):
    pass


class VerificationMismatchError(ProposalLifecycleError):
    pass


class DocumentError(ProposalLifecycleError):
    pass


class PaymentFailedError(ProposalLifecycleError):
    def __init__(self, message: str, *, attempt_id: Optional[str] = None) -> None:
        self.attempt_id = attempt_id
        super().__init__(message)


class PaymentStateError(ProposalLifecycleError):
    pass


class NotificationDeliveryError(ProposalLifecycleError):
    pass


class ProposalStorageError(ProposalLifecycleError):
    pass
