from datetime import datetime, timezone
from decimal import Decimal

from presale.core.proposals.models import KycDocument, LiabilityDetails, NominationDetails
from presale.core.proposals.normalization import (
    load_proposal_record,
    normalize_proposal_payload,
    snake_case,
)
from tests.factories import proposal


def test_snake_case_handles_camel_and_acronyms():
    assert snake_case("firstName") == "first_name"
    assert snake_case("ckycNumber") == "ckyc_number"
    assert snake_case("PANNumber") == "pan_number"
    assert snake_case("already_snake") == "already_snake"


def test_canonical_record_round_trips_unchanged():
    record = proposal(
        selected_add_ons=["ZERO_DEP", "RSA"],
        liability_details=LiabilityDetails(compulsory_pa=True),
        nomination_details=NominationDetails(nominee_name="Ravi Rao", relationship="Spouse"),
        current_stage="KYC",
        furthest_stage="NOMINATION_DETAILS",
        version=4,
    )

    loaded = load_proposal_record(record.model_dump(mode="json"))

    assert loaded == record


def test_flat_legacy_shape_maps_to_canonical_sections():
    legacy = {
        "id": "pp_legacy_1",
        "firstName": "Asha",
        "lastName": "Rao",
        "email": "asha.rao@example.com",
        "mobile": "9876543210",
        "address": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
        "policyType": "GEN_MOTOR",
        "policyFor": "ROLLOVER",
        "vehicleClass": "PRIVATE",
        "vehicleType": "PRIVATE CAR",
        "yearOfManufacture": 2024,
        "policyTerm": "SAOD",
        "selectedCompany": "HDFC Ergo",
        "quotedPremium": 18450,
        "status": "PENDING",
        "kycStatus": "VERIFIED",
        "chassisNumber": "MA3EWDE1S00123456",
        "liabilityCompulsoryPa": True,
        "nomineeName": "Ravi Rao",
        "nomineeContactNo": "9123456780",
        "nomineeDob": "1988-05-14",
        "createdAt": "2025-06-01T10:00:00+00:00",
    }

    record = load_proposal_record(legacy)

    assert record.proposal_id == "pp_legacy_1"
    assert record.status == "DRAFT"
    assert record.created_by == "LEGACY_IMPORT"
    assert record.customer_info.first_name == "Asha"
    assert record.customer_info.phone == "9876543210"
    assert record.policy_details.year_of_manufacture == "2024"
    assert record.policy_details.quotation_date == "2025-06-01T10:00:00+00:00"
    assert record.selected_quote.company_name == "HDFC Ergo"
    assert record.selected_quote.total_premium == Decimal("18450")
    assert record.selected_quote.status == "PENDING"
    assert record.kyc_status == "verified"
    assert record.vehicle_details.chassis_number == "MA3EWDE1S00123456"
    assert record.liability_details.compulsory_pa is True
    assert record.nomination_details.contact_number == "9123456780"
    assert record.nomination_details.date_of_birth == "1988-05-14"
    assert record.updated_at == record.created_at
    assert record.version == 1


def test_nested_camel_case_shape_wins_over_flat_fields():
    legacy = {
        "proposalId": "pp_nested_1",
        "firstName": "Flat",
        "customerInfo": {"firstName": "Nested", "lastName": "Rao"},
        "selectedQuote": {"companyName": "Tata AIG", "totalPremium": "9000.50"},
        "kycDetails": {
            "panNumber": "ABCDE1234F",
            "panDocument": {
                "fileName": "pan.png",
                "contentType": "image/png",
                "sizeBytes": 1000,
            },
        },
        "status": "SUBMITTED",
    }

    record = load_proposal_record(legacy, created_by="agent_9")

    assert record.customer_info.first_name == "Nested"
    assert record.selected_quote.company_name == "Tata AIG"
    assert record.kyc_details.pan_document == KycDocument(
        file_name="pan.png", content_type="image/png", size_bytes=1000
    )
    assert record.status == "SUBMITTED"
    assert record.created_by == "agent_9"


def test_converted_legacy_quote_without_status_is_marked_converted():
    payload = normalize_proposal_payload(
        {
            "id": "pp_legacy_2",
            "status": "CONVERTED",
            "policyNumber": "POL000000000001",
            "selectedQuote": {"companyName": "HDFC Ergo", "totalPremium": 100, "status": "DONE"},
        }
    )

    assert payload["selected_quote"]["status"] == "CONVERTED"
    assert payload["status"] == "CONVERTED"


def test_missing_fields_get_safe_defaults():
    payload = normalize_proposal_payload({})

    assert payload["proposal_id"].startswith("pp_")
    assert payload["status"] == "DRAFT"
    assert payload["policy_details"]["policy_type"] == "GEN_MOTOR"
    assert payload["policy_details"]["policy_term"] == 1
    assert payload["selected_quote"] is None
    assert payload["kyc_details"] is None


def test_date_only_timestamps_load_as_utc():
    loaded = load_proposal_record(
        {"id": "pp_legacy_date", "firstName": "Ravi", "createdAt": "2025-05-01"}
    )

    assert loaded.created_at == datetime(2025, 5, 1, tzinfo=timezone.utc)
    assert loaded.updated_at == loaded.created_at


def test_numeric_text_version_is_accepted():
    loaded = load_proposal_record({"id": "pp_legacy_v", "firstName": "Ravi", "version": "3"})

    assert loaded.version == 3
