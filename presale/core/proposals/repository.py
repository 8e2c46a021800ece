from typing import Optional, Protocol

from presale.core.proposals.errors import (
    AlreadyConvertedError,
    ProposalNotFoundError,
    ProposalStateConflictError,
)
from presale.core.proposals.models import (
    IssuedPolicyRecord,
    ProposalConversionResult,
    ProposalRecord,
    ProposalSearchQuery,
)
from presale.core.proposals.stages import is_converted


class ProposalRepository(Protocol):
    def create_proposal(self, proposal: ProposalRecord) -> None: ...

    def get_proposal(self, *, proposal_id: str) -> Optional[ProposalRecord]: ...

    def save_proposal(self, proposal: ProposalRecord, *, expected_version: int) -> None: ...

    def delete_proposal(self, *, proposal_id: str) -> bool: ...

    def list_proposals(
        self,
        *,
        query: Optional[ProposalSearchQuery],
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[ProposalRecord], Optional[str]]: ...

    def convert_proposal(
        self,
        *,
        proposal: ProposalRecord,
        issued_policy: IssuedPolicyRecord,
        expected_version: int,
    ) -> ProposalConversionResult: ...

    def get_issued_policy(self, *, policy_number: str) -> Optional[IssuedPolicyRecord]: ...


def check_writable(stored: Optional[ProposalRecord], *, expected_version: int) -> None:
    """Compare-and-set precondition shared by every backend."""
    if stored is None:
        raise ProposalNotFoundError("PROPOSAL_NOT_FOUND")
    if is_converted(stored):
        raise AlreadyConvertedError("PROPOSAL_ALREADY_CONVERTED")
    if stored.version != expected_version:
        raise ProposalStateConflictError("STATE_CONFLICT: version mismatch")
