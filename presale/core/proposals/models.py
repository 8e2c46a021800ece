from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

ProposalStatus = Literal["DRAFT", "SUBMITTED", "APPROVED", "REJECTED", "CONVERTED"]
QuoteStatus = Literal["PENDING", "CONVERTED"]
KycStatus = Literal["pending", "verified", "rejected"]
PaymentStatus = Literal["pending", "processing", "completed", "failed"]
CustomerType = Literal["INDIVIDUAL", "CORPORATE"]

WorkflowStage = Literal[
    "PREVIOUS_POLICY_DETAILS",
    "CUSTOMER_INFO",
    "KYC",
    "OTHER_VEHICLE_DETAILS",
    "LIABILITY_DETAILS",
    "NOMINATION_DETAILS",
    "PAYMENT_DECLARATION",
    "POLICY_ISSUANCE",
]


class WorkflowConfig(BaseModel):
    model_config = {"frozen": True}

    allow_gate_bypass: bool = Field(
        default=False,
        description=(
            "Skip OTP comparison and identity-verification gating. "
            "Rejected by the PRODUCTION persistence profile."
        ),
        examples=[False],
    )
    otp_ttl_seconds: int = Field(
        default=300,
        ge=1,
        description="Validity window of an issued verification code.",
        examples=[300],
    )
    payment_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound on a single payment attempt before it resolves to failed.",
        examples=[30.0],
    )
    zero_premium_counts_as_missing: bool = Field(
        default=False,
        description=(
            "Treat a previous premium of zero as missing on the previous-policy stage "
            "(legacy behaviour)."
        ),
        examples=[False],
    )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps from legacy records are read as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CustomerInfo(BaseModel):
    customer_type: CustomerType = "INDIVIDUAL"
    first_name: str = ""
    last_name: str = ""
    company_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    customer_id: Optional[str] = None

    def display_name(self) -> str:
        if self.customer_type == "INDIVIDUAL":
            return f"{self.first_name} {self.last_name}".strip()
        return self.company_name


class PolicyDetails(BaseModel):
    policy_type: str = "GEN_MOTOR"
    policy_for: Optional[str] = None
    vehicle_class: Optional[str] = None
    vehicle_type: Optional[str] = None
    oem: Optional[str] = None
    model_name: Optional[str] = None
    variant: Optional[str] = None
    year_of_manufacture: Optional[str] = None
    registration_city: Optional[str] = None
    ex_showroom_price: Optional[Decimal] = None
    policy_term: Union[int, str] = 1
    quotation_date: Optional[str] = None

    @field_validator("year_of_manufacture", mode="before")
    @classmethod
    def _year_as_text(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


class SelectedQuote(BaseModel):
    company_name: str
    total_premium: Decimal = Decimal("0")
    status: QuoteStatus = "PENDING"
    converted_at: Optional[datetime] = None
    policy_number: Optional[str] = None

    @field_validator("converted_at")
    @classmethod
    def _converted_at_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class PanValidation(BaseModel):
    is_valid: bool = False
    pan_number: str = ""
    name: str = ""


class KycDocument(BaseModel):
    file_name: str
    content_type: str
    size_bytes: int = Field(ge=0)


class KycDetails(BaseModel):
    ckyc_number: str = ""
    pan_number: str = ""
    pan_holder_name: str = ""
    pan_document: Optional[KycDocument] = None


class PreviousPolicyDetails(BaseModel):
    previous_od_policy_number: str = ""
    previous_od_insurer: str = ""
    previous_od_policy_from: str = ""
    previous_od_policy_to: str = ""
    previous_tp_policy_number: str = ""
    previous_tp_insurer: str = ""
    previous_tp_policy_from: str = ""
    previous_tp_policy_to: str = ""
    previous_premium_paid: Optional[Decimal] = None


class OtherVehicleDetails(BaseModel):
    chassis_number: str = ""
    engine_number: str = ""
    electrical_accessories: str = ""
    electrical_accessories_value: Optional[Decimal] = None
    non_electrical_accessories: str = ""
    non_electrical_accessories_value: Optional[Decimal] = None
    discount_anti_theft: bool = False
    discount_anti_theft_price: Optional[Decimal] = None
    discount_handicapped: bool = False
    discount_voluntary: bool = False
    discount_aa_membership: bool = False
    discount_aa_membership_no: str = ""
    discount_geo_extension: bool = False
    discount_geo_countries: List[str] = Field(default_factory=list)


class LiabilityDetails(BaseModel):
    compulsory_pa: bool = False
    tppd_extension: bool = False
    driver_cover: bool = False
    cleaner_cover: bool = False


class NominationDetails(BaseModel):
    nominee_name: str = ""
    relationship: str = ""
    contact_number: str = ""
    email: str = ""
    sex: str = ""
    date_of_birth: str = ""


class PaymentDeclaration(BaseModel):
    payment_mode: str = ""
    additional_info: str = ""
    declaration_accepted: bool = False


class ProposalRecord(BaseModel):
    proposal_id: str = Field(description="Internal proposal identifier.", examples=["pp_001"])
    created_by: str = Field(description="Internal creator actor id.", examples=["agent_1"])
    customer_info: CustomerInfo = Field(default_factory=CustomerInfo)
    policy_details: PolicyDetails = Field(default_factory=PolicyDetails)
    selected_quote: Optional[SelectedQuote] = None
    selected_add_ons: List[str] = Field(default_factory=list)
    kyc_status: KycStatus = "pending"
    pan_validation: PanValidation = Field(default_factory=PanValidation)
    kyc_details: Optional[KycDetails] = None
    previous_policy_details: Optional[PreviousPolicyDetails] = None
    vehicle_details: Optional[OtherVehicleDetails] = None
    liability_details: Optional[LiabilityDetails] = None
    nomination_details: Optional[NominationDetails] = None
    payment_declaration: Optional[PaymentDeclaration] = None
    payment_status: PaymentStatus = "pending"
    payment_reference: Optional[str] = None
    status: ProposalStatus = "DRAFT"
    needs_customer_info: bool = False
    current_stage: Optional[WorkflowStage] = None
    furthest_stage: Optional[WorkflowStage] = None
    policy_number: Optional[str] = None
    certificate_number: Optional[str] = None
    policy_issued_at: Optional[datetime] = None
    created_at: datetime = Field(
        description="Internal creation timestamp.", examples=["2026-02-19T12:00:00+00:00"]
    )
    updated_at: datetime = Field(
        description="Internal last-mutation timestamp.", examples=["2026-02-19T12:05:00+00:00"]
    )
    version: int = Field(default=1, ge=1, description="Optimistic concurrency version.")

    @field_validator("created_at", "updated_at", "policy_issued_at")
    @classmethod
    def _timestamps_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @field_validator("selected_add_ons")
    @classmethod
    def _dedupe_add_ons(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))


class IssuedPolicyRecord(BaseModel):
    model_config = {"frozen": True}

    policy_number: str = Field(
        description="Generated policy number.", examples=["POL482913570216"]
    )
    certificate_number: str = Field(
        description="Generated certificate number.", examples=["CERT73920148265013"]
    )
    proposal_id: str = Field(description="Source proposal back-reference.", examples=["pp_001"])
    issued_at: datetime = Field(
        description="UTC issuance timestamp.", examples=["2026-02-19T12:30:00+00:00"]
    )
    customer_name: str = Field(description="Insured name at issuance.", examples=["Asha Rao"])
    insurance_company: str = Field(description="Issuing insurer.", examples=["HDFC Ergo"])
    premium_amount: Decimal = Field(description="Premium charged.", examples=["18450.00"])
    start_date: str = Field(description="Cover start date (ISO).", examples=["2026-02-19"])
    end_date: str = Field(description="Cover end date (ISO).", examples=["2027-02-19"])
    customer: Dict[str, Any] = Field(description="Frozen customer snapshot.")
    vehicle: Dict[str, Any] = Field(description="Frozen vehicle snapshot.")
    nominee: Dict[str, Any] = Field(default_factory=dict, description="Frozen nominee snapshot.")
    payment: Dict[str, Any] = Field(default_factory=dict, description="Frozen payment snapshot.")
    kyc: Dict[str, Any] = Field(default_factory=dict, description="Frozen KYC snapshot.")
    liability: Dict[str, Any] = Field(default_factory=dict, description="Frozen liability cover.")
    add_ons: List[str] = Field(default_factory=list, description="Add-ons at issuance.")


class ProposalSearchQuery(BaseModel):
    status: Optional[ProposalStatus] = None
    include_converted: bool = False
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    mobile: Optional[str] = None
    insurance_company: Optional[str] = None
    policy_type: Optional[str] = None
    quote_id: Optional[str] = None
    text: Optional[str] = None

    def has_search_terms(self) -> bool:
        return any(
            value
            for value in (
                self.customer_id,
                self.customer_name,
                self.mobile,
                self.insurance_company,
                self.policy_type,
                self.quote_id,
                self.text,
            )
        )


class ProposalConversionResult(BaseModel):
    proposal: ProposalRecord
    issued_policy: IssuedPolicyRecord


class IssuanceOutcome(BaseModel):
    proposal: ProposalRecord
    issued_policy: IssuedPolicyRecord
    warnings: List[str] = Field(
        default_factory=list, examples=[["POLICY_ISSUED_NOTIFICATION_FAILED"]]
    )


class QuoteSelection(BaseModel):
    company_name: str = Field(description="Insurer offering the quote.", examples=["HDFC Ergo"])
    total_premium: Decimal = Field(description="Total premium offered.", examples=["18450.00"])


class ProposalCreateRequest(BaseModel):
    created_by: str = Field(
        description="Agent id creating the proposal from a quotation.",
        examples=["agent_123"],
    )
    customer_info: CustomerInfo = Field(
        default_factory=CustomerInfo,
        description="Customer contact details captured at quotation time; may be partial.",
        examples=[
            {
                "customer_type": "INDIVIDUAL",
                "first_name": "Asha",
                "last_name": "Rao",
                "email": "asha.rao@example.com",
                "phone": "9876543210",
            }
        ],
    )
    policy_details: PolicyDetails = Field(
        description="Policy and vehicle attributes from the quotation.",
        examples=[
            {
                "policy_type": "GEN_MOTOR",
                "policy_for": "ROLLOVER",
                "vehicle_class": "PRIVATE",
                "vehicle_type": "PRIVATE CAR",
                "oem": "Maruti Suzuki",
                "model_name": "Baleno",
                "year_of_manufacture": "2024",
                "policy_term": "SAOD",
            }
        ],
    )
    selected_quote: Optional[QuoteSelection] = Field(
        default=None,
        description="Chosen insurer offer, when the agent already picked one.",
        examples=[{"company_name": "HDFC Ergo", "total_premium": "18450.00"}],
    )
    selected_add_ons: List[str] = Field(
        default_factory=list,
        description="Add-on identifiers chosen by the customer.",
        examples=[["Zero Depreciation", "Engine Protection"]],
    )
    needs_customer_info: bool = Field(
        default=False,
        description="Customer information was deferred (e.g. rollover flow).",
        examples=[True],
    )


class ProposalImportRequest(BaseModel):
    created_by: str = Field(description="Agent id importing the record.", examples=["agent_123"])
    record: Dict[str, Any] = Field(
        description="Proposal record in any supported legacy or canonical shape.",
        examples=[
            {
                "id": "QT1712345678",
                "firstName": "Asha",
                "lastName": "Rao",
                "email": "asha.rao@example.com",
                "selectedCompany": "HDFC Ergo",
                "quotedPremium": 18450,
            }
        ],
    )


class StageAdvanceRequest(BaseModel):
    actor_id: str = Field(description="Agent advancing the stage.", examples=["agent_123"])
    form_input: Dict[str, Any] = Field(
        default_factory=dict,
        description="Stage form values merged into the proposal on success.",
        examples=[{"chassis_number": "MA3EWDE1S00123456", "engine_number": "K12MN1234567"}],
    )
    expected_version: Optional[int] = Field(
        default=None,
        description="Optimistic concurrency check against the stored proposal version.",
        examples=[3],
    )


class StageBackRequest(BaseModel):
    expected_version: Optional[int] = Field(
        default=None,
        description="Optimistic concurrency check against the stored proposal version.",
        examples=[4],
    )


class KycRejectRequest(BaseModel):
    actor_id: str = Field(description="Agent rejecting KYC.", examples=["agent_123"])
    reason: str = Field(description="Rejection reason.", examples=["PAN name mismatch"])
    expected_version: Optional[int] = Field(default=None, examples=[5])


class VerificationSendResponse(BaseModel):
    proposal_id: str = Field(examples=["pp_001"])
    recipient: str = Field(description="Where the code was sent.", examples=["a***@example.com"])
    expires_at: datetime = Field(
        description="UTC expiry of the issued code.", examples=["2026-02-19T12:05:00+00:00"]
    )


class VerificationCheckRequest(BaseModel):
    code: str = Field(description="Code entered by the customer.", examples=["482913"])


class VerificationCheckResponse(BaseModel):
    proposal_id: str = Field(examples=["pp_001"])
    verified: bool = Field(examples=[True])


class PaymentRequest(BaseModel):
    payment_method: str = Field(
        description="Payment instrument.",
        examples=["UPI"],
    )
    expected_version: Optional[int] = Field(default=None, examples=[7])


class PaymentRetryRequest(BaseModel):
    expected_version: Optional[int] = Field(default=None, examples=[8])


class PaymentResult(BaseModel):
    attempt_id: str = Field(examples=["pay_3f9a1c2b7d10"])
    status: PaymentStatus = Field(examples=["completed"])
    method: str = Field(examples=["UPI"])
    amount: Decimal = Field(examples=["18450.00"])
    provider_reference: Optional[str] = Field(default=None, examples=["gw_98a1"])
    failure_reason: Optional[str] = Field(default=None, examples=["CARD_DECLINED"])
    started_at: datetime
    finished_at: Optional[datetime] = None


class ProposalSummary(BaseModel):
    proposal_id: str = Field(examples=["pp_001"])
    customer_name: str = Field(examples=["Asha Rao"])
    customer_id: Optional[str] = Field(default=None, examples=["CUST001"])
    phone: str = Field(examples=["9876543210"])
    email: str = Field(examples=["asha.rao@example.com"])
    policy_type: str = Field(examples=["GEN_MOTOR"])
    insurance_company: Optional[str] = Field(default=None, examples=["HDFC Ergo"])
    total_premium: Optional[Decimal] = Field(default=None, examples=["18450.00"])
    status: ProposalStatus = Field(examples=["DRAFT"])
    kyc_status: KycStatus = Field(examples=["pending"])
    policy_number: Optional[str] = Field(default=None, examples=["POL482913570216"])
    created_at: str = Field(examples=["2026-02-19T12:00:00+00:00"])
    updated_at: str = Field(examples=["2026-02-19T12:05:00+00:00"])


class ProposalListResponse(BaseModel):
    items: List[ProposalSummary] = Field(description="Newest proposals first.")
    next_cursor: Optional[str] = Field(default=None, examples=["pp_001"])


class ProposalDetailResponse(BaseModel):
    proposal: ProposalRecord
    stage_sequence: List[WorkflowStage] = Field(
        description="Ordered stages that apply to this proposal.",
        examples=[["CUSTOMER_INFO", "KYC", "OTHER_VEHICLE_DETAILS"]],
    )


class StageNavigationResponse(BaseModel):
    proposal_id: str = Field(examples=["pp_001"])
    current_stage: WorkflowStage = Field(examples=["KYC"])
    stage_index: int = Field(description="Display index; -1 for the conditional stage.")
    stage_sequence: List[WorkflowStage]
    furthest_stage: WorkflowStage = Field(examples=["KYC"])
    read_only: bool = Field(
        default=False, description="True when the proposal is already an issued policy."
    )
    version: int = Field(examples=[2])
    issued_policy: Optional[IssuedPolicyRecord] = None


class PaymentOutcomeResponse(BaseModel):
    proposal_id: str = Field(examples=["pp_001"])
    payment: Optional[PaymentResult] = Field(
        default=None, description="Attempt settled by this call; empty when resuming issuance."
    )
    proposal_status: ProposalStatus = Field(examples=["CONVERTED"])
    issued_policy: Optional[IssuedPolicyRecord] = None
    warnings: List[str] = Field(
        default_factory=list, examples=[["POLICY_ISSUED_NOTIFICATION_FAILED"]]
    )


class PaymentStatusResponse(BaseModel):
    proposal_id: str = Field(examples=["pp_001"])
    payment_status: PaymentStatus = Field(examples=["pending"])
    version: int = Field(examples=[9])
