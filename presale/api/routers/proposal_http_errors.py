from typing import NoReturn

from fastapi import HTTPException, status

from presale.api.http_status import HTTP_422_UNPROCESSABLE
from presale.core.proposals import (
    AlreadyConvertedError,
    DocumentError,
    NotificationDeliveryError,
    PaymentFailedError,
    PaymentStateError,
    ProposalNotFoundError,
    ProposalStateConflictError,
    ProposalStorageError,
    ProposalTransitionError,
    ProposalValidationError,
    VerificationMismatchError,
)


def raise_proposal_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, ProposalNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (AlreadyConvertedError, ProposalStateConflictError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, PaymentFailedError):
        headers = {"X-Payment-Attempt-Id": exc.attempt_id} if exc.attempt_id else None
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=str(exc),
            headers=headers,
        ) from exc
    if isinstance(
        exc,
        (
            DocumentError,
            PaymentStateError,
            ProposalTransitionError,
            ProposalValidationError,
            VerificationMismatchError,
        ),
    ):
        raise HTTPException(
            status_code=HTTP_422_UNPROCESSABLE,
            detail=str(exc),
        ) from exc
    if isinstance(exc, NotificationDeliveryError):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    if isinstance(exc, ProposalStorageError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    raise exc
