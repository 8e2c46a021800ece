from copy import deepcopy
from threading import Lock
from typing import Optional

from presale.core.proposals.errors import AlreadyConvertedError, ProposalStateConflictError
from presale.core.proposals.models import (
    IssuedPolicyRecord,
    ProposalConversionResult,
    ProposalRecord,
    ProposalSearchQuery,
)
from presale.core.proposals.repository import ProposalRepository, check_writable
from presale.core.proposals.search import filter_proposals, paginate
from presale.core.proposals.stages import is_converted


class InMemoryProposalRepository(ProposalRepository):
    def __init__(self) -> None:
        self._lock = Lock()
        self._proposals: dict[str, ProposalRecord] = {}
        self._issued_policies: dict[str, IssuedPolicyRecord] = {}

    def create_proposal(self, proposal: ProposalRecord) -> None:
        with self._lock:
            if proposal.proposal_id in self._proposals:
                raise ProposalStateConflictError("STATE_CONFLICT: proposal already exists")
            self._proposals[proposal.proposal_id] = deepcopy(proposal)

    def get_proposal(self, *, proposal_id: str) -> Optional[ProposalRecord]:
        with self._lock:
            proposal = self._proposals.get(proposal_id)
            return deepcopy(proposal) if proposal is not None else None

    def save_proposal(self, proposal: ProposalRecord, *, expected_version: int) -> None:
        with self._lock:
            check_writable(
                self._proposals.get(proposal.proposal_id), expected_version=expected_version
            )
            self._proposals[proposal.proposal_id] = deepcopy(proposal)

    def delete_proposal(self, *, proposal_id: str) -> bool:
        with self._lock:
            stored = self._proposals.get(proposal_id)
            if stored is None:
                return False
            if is_converted(stored):
                raise AlreadyConvertedError("PROPOSAL_ALREADY_CONVERTED")
            del self._proposals[proposal_id]
            return True

    def list_proposals(
        self,
        *,
        query: Optional[ProposalSearchQuery],
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[ProposalRecord], Optional[str]]:
        with self._lock:
            rows = list(self._proposals.values())
        page, next_cursor = paginate(filter_proposals(rows, query), limit=limit, cursor=cursor)
        return [deepcopy(row) for row in page], next_cursor

    def convert_proposal(
        self,
        *,
        proposal: ProposalRecord,
        issued_policy: IssuedPolicyRecord,
        expected_version: int,
    ) -> ProposalConversionResult:
        with self._lock:
            check_writable(
                self._proposals.get(proposal.proposal_id), expected_version=expected_version
            )
            if issued_policy.policy_number in self._issued_policies:
                raise ProposalStateConflictError("STATE_CONFLICT: policy number already issued")
            self._proposals[proposal.proposal_id] = deepcopy(proposal)
            self._issued_policies[issued_policy.policy_number] = deepcopy(issued_policy)
        return ProposalConversionResult(
            proposal=deepcopy(proposal),
            issued_policy=deepcopy(issued_policy),
        )

    def get_issued_policy(self, *, policy_number: str) -> Optional[IssuedPolicyRecord]:
        with self._lock:
            policy = self._issued_policies.get(policy_number)
            return deepcopy(policy) if policy is not None else None
