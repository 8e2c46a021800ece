from fastapi.testclient import TestClient

from presale.api.main import app
from presale.api.routers import proposals as proposals_router
from presale.infrastructure.notifications import LoggingNotifier
from tests.factories import (
    create_payload,
    customer,
    declaration_form,
    kyc_form,
    liability_form,
    nomination_form,
    previous_policy_form,
    rollover_saod_details,
    vehicle_form,
)


def _advance(client: TestClient, proposal_id: str, stage: str, form_input: dict) -> dict:
    response = client.post(
        f"/presale/proposals/{proposal_id}/stages/{stage}/advance",
        json={"actor_id": "agent_1", "form_input": form_input},
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_rollover_proposal_to_issued_policy_journey(monkeypatch):
    notifier = LoggingNotifier()
    monkeypatch.setattr(proposals_router.proposals_config, "build_notifier", lambda: notifier)
    email = "vikram.shah@example.com"

    with TestClient(app) as client:
        created = client.post(
            "/presale/proposals",
            json=create_payload(
                customer_info=customer(
                    first_name="Vikram", last_name="Shah", email=email, phone=""
                ).model_dump(mode="json"),
                policy_details=rollover_saod_details().model_dump(mode="json"),
            ),
        ).json()
        proposal_id = created["proposal"]["proposal_id"]
        assert created["stage_sequence"][0] == "PREVIOUS_POLICY_DETAILS"

        entered = client.post(f"/presale/proposals/{proposal_id}/enter").json()
        assert entered["current_stage"] == "PREVIOUS_POLICY_DETAILS"

        navigation = _advance(
            client, proposal_id, "PREVIOUS_POLICY_DETAILS", previous_policy_form()
        )
        assert navigation["current_stage"] == "CUSTOMER_INFO"

        navigation = _advance(client, proposal_id, "CUSTOMER_INFO", {"phone": "9000011111"})
        assert navigation["current_stage"] == "KYC"

        sent = client.post(f"/presale/proposals/{proposal_id}/verification/send").json()
        assert sent["recipient"] == "v***@example.com"
        code = notifier.last_message(kind="otpVerification", recipient=email)["data"]["otpCode"]
        verified = client.post(
            f"/presale/proposals/{proposal_id}/verification/verify", json={"code": code}
        )
        assert verified.json()["verified"] is True

        _advance(client, proposal_id, "KYC", kyc_form(pan_holder_name="Vikram Shah"))
        _advance(client, proposal_id, "OTHER_VEHICLE_DETAILS", vehicle_form())
        _advance(client, proposal_id, "LIABILITY_DETAILS", liability_form())
        _advance(client, proposal_id, "NOMINATION_DETAILS", nomination_form())
        navigation = _advance(client, proposal_id, "PAYMENT_DECLARATION", declaration_form())
        assert navigation["current_stage"] == "POLICY_ISSUANCE"

        submitted = client.get(f"/presale/proposals/{proposal_id}").json()["proposal"]
        assert submitted["status"] == "SUBMITTED"
        assert submitted["kyc_status"] == "verified"

        paid = client.post(
            f"/presale/proposals/{proposal_id}/payment",
            json={"payment_method": "NET_BANKING", "expected_version": submitted["version"]},
        )
        assert paid.status_code == 200, paid.text
        outcome = paid.json()
        policy_number = outcome["issued_policy"]["policy_number"]

        policy = client.get(f"/presale/policies/{policy_number}").json()
        search = client.get("/presale/proposals", params={"text": policy_number}).json()
        reopened = client.post(f"/presale/proposals/{proposal_id}/enter").json()

    assert outcome["proposal_status"] == "CONVERTED"
    assert outcome["warnings"] == []
    assert policy["customer_name"] == "Vikram Shah"
    assert policy["kyc"]["pan_holder_name"] == "Vikram Shah"
    assert policy["payment"]["payment_mode"] == "online"
    assert policy["payment"]["method"] == "NET_BANKING"
    assert [item["proposal_id"] for item in search["items"]] == [proposal_id]
    assert reopened["read_only"] is True
    assert reopened["issued_policy"]["policy_number"] == policy_number

    issued_mail = notifier.last_message(kind="policyIssued", recipient=email)
    assert issued_mail["data"]["policyNumber"] == policy_number
    assert "otpCode" not in issued_mail["data"]
