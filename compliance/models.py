from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, ValidationError
from pydantic.alias_generators import to_camel

ControlledSchedule = Literal["non_controlled", "schedule_iii_v", "schedule_ii"]
VerificationStatus = Literal["registry_verified", "needs_manual_review"]
AttestationStatus = Literal["validated", "expired"]
Quantity = Union[StrictInt, StrictFloat]


class WireModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ComplianceIssue(WireModel):
    """A single reason a request was rejected"""
    field: str
    code: str
    message: str


# ---------------------------------------------------------------------------
# Wallet proofs
# ---------------------------------------------------------------------------

class PatientWalletProof(WireModel):
    """Detached wallet signature carried in a patient request body"""
    version: str = ""
    monad_wallet: str = ""
    request_ts: str = ""
    request_nonce: str = ""
    signature: str = ""


class PatientWorkspaceWalletProof(PatientWalletProof):
    action: str = ""
    resource: str = ""


class WalletProofMetadata(WireModel):
    """Proof fields kept on an approval request after verification"""
    monad_wallet: str
    request_ts: str
    request_nonce: str
    signature: str
    signer_verified: bool = True


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class LegalIdentityInput(WireModel):
    legal_name: str
    dob: str  # YYYY-MM-DD
    patient_state: str  # 2-letter
    health_card_number: str


class ComplianceIntakeRequest(WireModel):
    """Legacy self-service intake carrying the full prescription"""
    patient_wallet: str
    patient_full_name: str
    patient_dob: str
    patient_state: str
    doctor_npi: str
    doctor_dea: Optional[str] = None
    prescription_id: str
    quantity: Quantity
    pickup_window_iso: str
    medication_category: str
    controlled_schedule: ControlledSchedule


class DoctorRegisterPatientRequest(LegalIdentityInput):
    doctor_wallet: str
    doctor_name: Optional[str] = None
    patient_wallet: str
    registry_relay_id: str


class PatientDoctorApprovalRequest(LegalIdentityInput):
    doctor_wallet: str
    patient_wallet: str
    medication_code: str
    request_relay_id: str
    wallet_proof: Optional[PatientWalletProof] = None


class DoctorFileAttestationRequest(WireModel):
    request_id: Optional[str] = None
    doctor_wallet: str
    doctor_npi: str
    doctor_dea: Optional[str] = None
    patient_wallet: str
    medication_code: str
    medication_category: str = ""
    controlled_schedule: ControlledSchedule
    quantity: Quantity
    valid_until_iso: str
    can_purchase: bool


class DoctorConfirmAttestationRequest(WireModel):
    approval_code: str
    patient_wallet: str
    wallet_proof: Optional[PatientWalletProof] = None


class PatientApprovalsRequest(WireModel):
    patient_wallet: str
    wallet_proof: Optional[PatientWorkspaceWalletProof] = None


class UpdatePatientWalletRequest(WireModel):
    doctor_wallet: str
    old_patient_wallet: str
    new_patient_wallet: str


# ---------------------------------------------------------------------------
# Issued records
# ---------------------------------------------------------------------------

class ComplianceAttestation(WireModel):
    """Public attestation shape handed to patients and the order flow"""
    attestation_id: str
    status: Literal["validated"] = "validated"
    validation_version: str
    patient_token: str
    doctor_token: str
    issued_at: str
    expires_at: str
    signature: str = ""


class ChainAnchor(WireModel):
    network: str
    anchor_hash: str
    anchor_tx_hash: str
    finality_ms: int
    anchored_at: str


class DoctorFiledAttestation(WireModel):
    approval_code: str
    attestation_id: str
    request_id: str
    doctor_wallet: str
    patient_wallet: str
    patient_token: str
    doctor_token: str
    medication_code: str
    medication_category: str
    prescription_hash: str
    controlled_schedule: ControlledSchedule
    quantity: Quantity
    can_purchase: bool
    issued_at: str
    valid_until_iso: str
    chain_anchor: ChainAnchor
    signature: str = ""


class OrderPolicy(WireModel):
    """Subset of an attestation the order flow binds against"""
    medication_code: str
    medication_category: str
    controlled_schedule: ControlledSchedule
    quantity: Quantity
    prescription_hash: str


class DoctorRegisterPatientRecord(WireModel):
    registry_id: str
    doctor_wallet: str
    doctor_name: Optional[str] = None
    patient_wallet: str
    registry_relay_id: str
    patient_token: str
    legal_identity_hash: str
    verified_at: str
    signature: str = ""


class PatientDoctorApprovalRequestRecord(WireModel):
    request_id: str
    doctor_wallet: str
    patient_wallet: str
    patient_token: str
    legal_identity_hash: str
    medication_code: str
    medication_category: str
    request_relay_id: str
    relay_status: Literal["submitted"] = "submitted"
    verification_status: VerificationStatus
    wallet_proof: WalletProofMetadata
    created_at: str


class PatientApprovedMedication(WireModel):
    approval_code: str
    attestation_id: str
    doctor_wallet: str
    medication_code: str
    medication_category: str
    controlled_schedule: ControlledSchedule
    quantity: Quantity
    valid_until_iso: str
    patient_token: str
    doctor_token: str
    signature: str


# ---------------------------------------------------------------------------
# Pharmacy handoff
# ---------------------------------------------------------------------------

class HandoffPrescription(WireModel):
    prescription_id: str
    medication_code: str
    prescription_hash: Optional[str] = None
    medication_category: str
    controlled_schedule: ControlledSchedule
    quantity: Quantity
    pickup_window_iso: str


class HandoffPatient(WireModel):
    token: str
    wallet: str
    legal_verification_status: Literal["registry_verified", "manual_review"]
    legal_identity_hash: Optional[str] = None
    full_name: Optional[str] = None
    dob: Optional[str] = None
    state: Optional[str] = None


class HandoffDoctor(WireModel):
    token: str
    wallet: str
    provider_verification_status: Literal["npi_validated"] = "npi_validated"
    npi: Optional[str] = None
    dea: Optional[str] = None


class PharmacyHandoff(WireModel):
    """Signed pharmacy-facing payload, sealed inside the envelope"""
    ok: bool = True
    attestation_id: str
    attestation_status: AttestationStatus
    issued_at: str
    expires_at: str
    prescription: HandoffPrescription
    patient: HandoffPatient
    doctor: HandoffDoctor
    signature: str = ""


class PharmacyHandoffEnvelope(WireModel):
    ok: bool = True
    transport: str
    key_id: str
    attestation_id: str
    sealed_payload: str
    signature: str


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------

class IntakeAttestationRecord(WireModel):
    kind: Literal["intake"] = "intake"
    attestation: ComplianceAttestation
    patient_wallet: str
    encrypted_phi: str
    created_at: int


class DoctorAttestationRecord(WireModel):
    kind: Literal["doctor_filed"] = "doctor_filed"
    attestation: DoctorFiledAttestation
    encrypted_prescription: str
    created_at: int


StoredAttestation = Annotated[
    Union[IntakeAttestationRecord, DoctorAttestationRecord],
    Field(discriminator="kind"),
]


class VerifiedPatientEntry(WireModel):
    record: DoctorRegisterPatientRecord
    created_at: int


class ApprovalRequestEntry(WireModel):
    request: PatientDoctorApprovalRequestRecord
    created_at: int


class AuditEvent(WireModel):
    at: str
    type: str
    actor: Literal["patient", "platform", "pharmacy", "doctor"]
    attestation_id: Optional[str] = None
    request_ip_hash: Optional[str] = None
    details: Dict[str, Union[str, int, float, bool, None]] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------

class IntakeResult(WireModel):
    ok: bool
    attestation: Optional[ComplianceAttestation] = None
    issues: List[ComplianceIssue] = Field(default_factory=list)


class RegisterPatientResult(WireModel):
    ok: bool
    record: Optional[DoctorRegisterPatientRecord] = None
    issues: List[ComplianceIssue] = Field(default_factory=list)


class ApprovalRequestResult(WireModel):
    ok: bool
    request: Optional[PatientDoctorApprovalRequestRecord] = None
    issues: List[ComplianceIssue] = Field(default_factory=list)


class FileAttestationResult(WireModel):
    ok: bool
    attestation: Optional[DoctorFiledAttestation] = None
    issues: List[ComplianceIssue] = Field(default_factory=list)


class ConfirmResult(WireModel):
    ok: bool
    attestation: Optional[ComplianceAttestation] = None
    order_policy: Optional[OrderPolicy] = None
    error: Optional[str] = None
    reason: Optional[Literal["not_found", "wallet_mismatch", "not_purchasable", "expired"]] = None


class WalletCorrectionResult(WireModel):
    ok: bool
    record: Optional[DoctorRegisterPatientRecord] = None
    attestations_updated: int = 0
    error: Optional[str] = None
    reason: Optional[Literal["missing_fields", "invalid_wallet", "same_wallet", "not_found"]] = None


class HandoffResult(WireModel):
    ok: bool
    envelope: Optional[PharmacyHandoffEnvelope] = None
    attestation_status: Optional[AttestationStatus] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Boundary parsing
# ---------------------------------------------------------------------------

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_request(model: Type[ModelT], body: Any) -> Tuple[Optional[ModelT], List[ComplianceIssue]]:
    """
    Parse an untrusted JSON body into a request model.

    Args:
        model: The request model class
        body: The decoded JSON body

    Returns:
        tuple: (parsed model or None, list of issues describing schema failures)
    """
    if not isinstance(body, dict):
        return None, [ComplianceIssue(
            field="body",
            code="INVALID_FIELD",
            message="Request body must be a JSON object.",
        )]

    try:
        return model.model_validate(body), []
    except ValidationError as e:
        issues = []
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "body"
            issues.append(ComplianceIssue(
                field=field,
                code="MISSING_FIELD" if error["type"] == "missing" else "INVALID_FIELD",
                message=error["msg"],
            ))
        return None, issues
