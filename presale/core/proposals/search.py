from typing import Iterable, Optional

from presale.core.proposals.models import ProposalRecord, ProposalSearchQuery


def includes_converted(query: ProposalSearchQuery) -> bool:
    """Converted proposals only show up when asked for or when searching."""
    return query.include_converted or query.status == "CONVERTED" or query.has_search_terms()


def matches_search(proposal: ProposalRecord, query: ProposalSearchQuery) -> bool:
    if proposal.status == "CONVERTED" and not includes_converted(query):
        return False
    if query.status is not None and proposal.status != query.status:
        return False

    customer = proposal.customer_info
    quote = proposal.selected_quote
    if query.text:
        needle = query.text.lower()
        haystack = (
            proposal.proposal_id,
            customer.first_name,
            customer.last_name,
            customer.company_name,
            customer.email,
            proposal.policy_number,
        )
        if not any(_contains(value, needle) for value in haystack):
            return False
    if query.customer_id and not _contains(customer.customer_id, query.customer_id.lower()):
        return False
    if query.customer_name:
        needle = query.customer_name.lower()
        full_name = f"{customer.first_name} {customer.last_name}".strip()
        if not (_contains(full_name, needle) or _contains(customer.company_name, needle)):
            return False
    if query.policy_type and not _contains(
        proposal.policy_details.policy_type, query.policy_type.lower()
    ):
        return False
    if query.quote_id and not _contains(proposal.proposal_id, query.quote_id.lower()):
        return False
    if query.mobile and query.mobile not in (customer.phone or ""):
        return False
    if query.insurance_company:
        company = quote.company_name if quote is not None else None
        if not _contains(company, query.insurance_company.lower()):
            return False
    return True


def filter_proposals(
    proposals: Iterable[ProposalRecord], query: Optional[ProposalSearchQuery]
) -> list[ProposalRecord]:
    """Matching proposals, newest first."""
    resolved = query or ProposalSearchQuery()
    rows = [proposal for proposal in proposals if matches_search(proposal, resolved)]
    return sorted(rows, key=lambda row: (row.created_at, row.proposal_id), reverse=True)


def paginate(
    rows: list[ProposalRecord], *, limit: int, cursor: Optional[str]
) -> tuple[list[ProposalRecord], Optional[str]]:
    if cursor:
        row_ids = [row.proposal_id for row in rows]
        if cursor not in row_ids:
            return [], None
        rows = rows[row_ids.index(cursor) + 1 :]
    page = rows[:limit]
    next_cursor = page[-1].proposal_id if len(rows) > limit else None
    return page, next_cursor


def _contains(value: Optional[str], needle: str) -> bool:
    return needle in (value or "").lower()
