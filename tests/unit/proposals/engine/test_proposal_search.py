from datetime import timedelta
from decimal import Decimal

from presale.core.proposals.models import ProposalSearchQuery, SelectedQuote
from presale.core.proposals.search import filter_proposals, paginate
from tests.factories import FIXED_NOW, customer, proposal


def _rows():
    return [
        proposal("pp_001", created_at=FIXED_NOW - timedelta(days=2)),
        proposal(
            "pp_002",
            created_at=FIXED_NOW - timedelta(days=1),
            customer_info=customer(
                first_name="Vikram", last_name="Shah", phone="9000011111", customer_id="CUST002"
            ),
            quote=SelectedQuote(company_name="Tata AIG", total_premium=Decimal("9000")),
        ),
        proposal(
            "pp_003",
            created_at=FIXED_NOW,
            status="CONVERTED",
            policy_number="POL111122223333",
        ),
    ]


def _ids(rows):
    return [row.proposal_id for row in rows]


def test_default_listing_is_newest_first_and_hides_converted():
    assert _ids(filter_proposals(_rows(), None)) == ["pp_002", "pp_001"]


def test_converted_proposals_listed_on_request():
    rows = filter_proposals(_rows(), ProposalSearchQuery(include_converted=True))
    assert _ids(rows) == ["pp_003", "pp_002", "pp_001"]

    rows = filter_proposals(_rows(), ProposalSearchQuery(status="CONVERTED"))
    assert _ids(rows) == ["pp_003"]


def test_free_text_search_covers_policy_number():
    rows = filter_proposals(_rows(), ProposalSearchQuery(text="pol1111"))

    assert _ids(rows) == ["pp_003"]


def test_search_keys_filter_by_customer_and_insurer():
    rows = _rows()

    assert _ids(filter_proposals(rows, ProposalSearchQuery(customer_name="vikram shah"))) == [
        "pp_002"
    ]
    assert _ids(filter_proposals(rows, ProposalSearchQuery(mobile="00011"))) == ["pp_002"]
    assert _ids(filter_proposals(rows, ProposalSearchQuery(insurance_company="hdfc"))) == [
        "pp_003",
        "pp_001",
    ]
    assert _ids(filter_proposals(rows, ProposalSearchQuery(customer_id="cust002"))) == ["pp_002"]
    assert _ids(filter_proposals(rows, ProposalSearchQuery(quote_id="pp_001"))) == ["pp_001"]


def test_status_filter_applies_alongside_search_terms():
    rows = filter_proposals(_rows(), ProposalSearchQuery(text="asha", status="DRAFT"))

    assert _ids(rows) == ["pp_001"]


def test_cursor_pagination():
    rows = filter_proposals(_rows(), ProposalSearchQuery(include_converted=True))

    page, cursor = paginate(rows, limit=2, cursor=None)
    assert _ids(page) == ["pp_003", "pp_002"]
    assert cursor == "pp_002"

    page, cursor = paginate(rows, limit=2, cursor=cursor)
    assert _ids(page) == ["pp_001"]
    assert cursor is None

    assert paginate(rows, limit=2, cursor="pp_unknown") == ([], None)
