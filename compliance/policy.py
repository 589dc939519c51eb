"""
Compliance policy validation.

Each validator takes a parsed request and returns a list of ComplianceIssue.
An empty list means the request is acceptable. Validators never raise.
"""

import math
import re
from datetime import date, datetime, timezone
from typing import List, Optional

from compliance.constants import (
    MAX_ATTESTATION_VALIDITY_DAYS,
    MAX_PICKUP_WINDOW_DAYS,
    MAX_QUANTITY,
    MIN_HEALTH_CARD_LENGTH,
    MIN_LEGAL_NAME_LENGTH,
    MIN_PATIENT_AGE_YEARS,
    MIN_PRESCRIPTION_ID_LENGTH,
    MIN_QUANTITY,
    MIN_REQUEST_ID_LENGTH,
    NON_CONTROLLED,
    PATIENT_DOCTOR_WALLET_PROOF_VERSION,
)
from compliance.medications import get_medication_by_code
from compliance.messages import is_hex_ecdsa_signature, is_hex_evm_address
from compliance.models import (
    ComplianceIntakeRequest,
    ComplianceIssue,
    DoctorFileAttestationRequest,
    DoctorRegisterPatientRequest,
    LegalIdentityInput,
    PatientDoctorApprovalRequest,
    PatientWalletProof,
)
from compliance.timeutil import now_ms, parse_iso_ms, parse_request_ts

US_STATE = re.compile(r"[A-Z]{2}")
DEA = re.compile(r"[A-Z]{2}\d{7}")
UNLINK_WALLET = re.compile(r"unlink1[qpzry9x8gf2tvdw0s3jn54khce6mua7l]+")
EVM_WALLET = re.compile(r"0x[a-fA-F0-9]{40}")
RELAY_ID = re.compile(r"[a-zA-Z0-9_-]{6,120}")
NONCE = re.compile(r"[a-zA-Z0-9_-]{12,120}")

DAY_MS = 24 * 60 * 60 * 1000


def _issue(field: str, code: str, message: str) -> ComplianceIssue:
    return ComplianceIssue(field=field, code=code, message=message)


def is_client_wallet(value: Optional[str]) -> bool:
    """A client wallet is either a bech32-style unlink1... address or a hex EVM address"""
    if not isinstance(value, str):
        return False
    normalized = value.strip()
    return UNLINK_WALLET.fullmatch(normalized) is not None or EVM_WALLET.fullmatch(normalized) is not None


def age_in_years(born: date, today: date) -> int:
    """Whole calendar years between two dates"""
    years = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        years -= 1
    return years


def _parse_dob(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value.strip())
    except (ValueError, AttributeError):
        return None


def _today() -> date:
    return datetime.now(timezone.utc).date()


def validate_quantity(quantity) -> bool:
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        return False
    return math.isfinite(quantity) and MIN_QUANTITY <= quantity <= MAX_QUANTITY


def validate_core_prescription_fields(
    controlled_schedule: str,
    doctor_npi: str,
    doctor_dea: Optional[str],
    quantity,
    medication_category: str,
    prescription_id: Optional[str] = None,
    require_prescription_id: bool = True,
) -> List[ComplianceIssue]:
    """Prescriber, schedule, quantity and category rules shared by intake and filing"""
    issues = []

    if not (doctor_npi or "").strip():
        issues.append(_issue("doctorNpi", "INVALID_NPI", "Prescriber ID is required."))

    if controlled_schedule != NON_CONTROLLED:
        if not doctor_dea or DEA.fullmatch(doctor_dea.strip().upper()) is None:
            issues.append(_issue(
                "doctorDea",
                "INVALID_DEA",
                "For controlled prescriptions, add the prescriber controlled-med ID (DEA).",
            ))

    if require_prescription_id and len((prescription_id or "").strip()) < MIN_PRESCRIPTION_ID_LENGTH:
        issues.append(_issue("prescriptionId", "INVALID_RX_ID", "Please enter a valid prescription number."))

    if not validate_quantity(quantity):
        issues.append(_issue(
            "quantity",
            "INVALID_QUANTITY",
            f"Quantity must be between {MIN_QUANTITY} and {MAX_QUANTITY}.",
        ))

    if not (medication_category or "").strip():
        issues.append(_issue("medicationCategory", "MISSING_MEDICATION_CATEGORY", "Medication category is required."))

    return issues


def validate_legal_identity(identity: LegalIdentityInput, today: Optional[date] = None) -> List[ComplianceIssue]:
    """
    Validate the legal identity fields of a patient.

    Args:
        identity: Name, date of birth, state and health card
        today: The reference date for the age check (defaults to the current UTC date)

    Returns:
        list: Issues found, empty when the identity is acceptable
    """
    issues = []
    today = today or _today()

    if len(identity.legal_name.strip()) < MIN_LEGAL_NAME_LENGTH:
        issues.append(_issue("legalName", "INVALID_LEGAL_NAME", "Legal name is required."))

    born = _parse_dob(identity.dob)
    if born is None:
        issues.append(_issue("dob", "INVALID_DOB", "DOB must be in YYYY-MM-DD format."))
    elif age_in_years(born, today) < MIN_PATIENT_AGE_YEARS:
        issues.append(_issue(
            "dob",
            "UNDERAGE",
            f"Patient must be at least {MIN_PATIENT_AGE_YEARS} for this delivery workflow.",
        ))

    if US_STATE.fullmatch(identity.patient_state.strip().upper()) is None:
        issues.append(_issue("patientState", "INVALID_STATE", "State must be a 2-letter code."))

    if len(identity.health_card_number.strip()) < MIN_HEALTH_CARD_LENGTH:
        issues.append(_issue("healthCardNumber", "INVALID_HEALTH_CARD", "Health card number appears invalid."))

    return issues


def _validate_medication_code(medication_code: str, missing_message: str) -> List[ComplianceIssue]:
    if not (medication_code or "").strip():
        return [_issue("medicationCode", "MISSING_MEDICATION_CODE", missing_message)]
    if get_medication_by_code(medication_code) is None:
        return [_issue("medicationCode", "INVALID_MEDICATION_CODE", "Selected medication is not in the approved catalog.")]
    return []


def validate_compliance_intake(
    intake: ComplianceIntakeRequest,
    now: Optional[int] = None,
    today: Optional[date] = None,
) -> List[ComplianceIssue]:
    """Validate a legacy self-service intake"""
    issues = []
    now = now_ms() if now is None else now

    if not is_client_wallet(intake.patient_wallet):
        issues.append(_issue("patientWallet", "INVALID_WALLET", "Use a valid client wallet: unlink1... or 0x..."))

    # The intake does not collect a health card, so that rule is satisfied with a placeholder
    identity = LegalIdentityInput(
        legal_name=intake.patient_full_name,
        dob=intake.patient_dob,
        patient_state=intake.patient_state,
        health_card_number="masked",
    )
    renamed = {"legalName": "patientFullName", "dob": "patientDob"}
    for issue in validate_legal_identity(identity, today):
        issues.append(issue.model_copy(update={"field": renamed.get(issue.field, issue.field)}))

    issues.extend(validate_core_prescription_fields(
        controlled_schedule=intake.controlled_schedule,
        doctor_npi=intake.doctor_npi,
        doctor_dea=intake.doctor_dea,
        quantity=intake.quantity,
        medication_category=intake.medication_category,
        prescription_id=intake.prescription_id,
        require_prescription_id=True,
    ))

    pickup = parse_iso_ms(intake.pickup_window_iso)
    if pickup is None:
        issues.append(_issue("pickupWindowIso", "INVALID_PICKUP_WINDOW", "Pickup window must be a valid ISO date."))
    else:
        if pickup <= now:
            issues.append(_issue("pickupWindowIso", "PICKUP_IN_PAST", "Pickup window must be in the future."))
        if pickup > now + MAX_PICKUP_WINDOW_DAYS * DAY_MS:
            issues.append(_issue(
                "pickupWindowIso",
                "PICKUP_TOO_FAR",
                f"Pickup window must be within {MAX_PICKUP_WINDOW_DAYS} days.",
            ))

    return issues


def validate_doctor_file_attestation(
    request: DoctorFileAttestationRequest,
    now: Optional[int] = None,
) -> List[ComplianceIssue]:
    """Validate the fields of a doctor filing, independent of request/registry linkage"""
    issues = []
    now = now_ms() if now is None else now

    request_id = (request.request_id or "").strip()
    if request_id and len(request_id) < MIN_REQUEST_ID_LENGTH:
        issues.append(_issue(
            "requestId",
            "INVALID_REQUEST_ID",
            f"Doctor request reference must be at least {MIN_REQUEST_ID_LENGTH} characters when provided.",
        ))

    if not is_client_wallet(request.doctor_wallet):
        issues.append(_issue("doctorWallet", "INVALID_DOCTOR_WALLET", "Doctor wallet must be unlink1... or 0x... format."))

    if not is_client_wallet(request.patient_wallet):
        issues.append(_issue("patientWallet", "INVALID_PATIENT_WALLET", "Patient wallet must be unlink1... or 0x... format."))

    if not request.can_purchase:
        issues.append(_issue("canPurchase", "NOT_APPROVED", "Attestation must explicitly mark patient as eligible."))

    issues.extend(validate_core_prescription_fields(
        controlled_schedule=request.controlled_schedule,
        doctor_npi=request.doctor_npi,
        doctor_dea=request.doctor_dea,
        quantity=request.quantity,
        medication_category=request.medication_category,
        require_prescription_id=False,
    ))

    issues.extend(_validate_medication_code(request.medication_code, "Medication selection is required."))

    valid_until = parse_iso_ms(request.valid_until_iso)
    if valid_until is None:
        issues.append(_issue("validUntilIso", "INVALID_VALID_UNTIL", "validUntilIso must be a valid ISO date."))
    else:
        if valid_until <= now:
            issues.append(_issue("validUntilIso", "ALREADY_EXPIRED", "Attestation expiry must be in the future."))
        if valid_until > now + MAX_ATTESTATION_VALIDITY_DAYS * DAY_MS:
            issues.append(_issue(
                "validUntilIso",
                "EXPIRY_TOO_FAR",
                f"Attestation validity window cannot exceed {MAX_ATTESTATION_VALIDITY_DAYS} days.",
            ))

    return issues


def validate_doctor_register_patient(
    request: DoctorRegisterPatientRequest,
    today: Optional[date] = None,
) -> List[ComplianceIssue]:
    issues = []

    if not is_client_wallet(request.doctor_wallet):
        issues.append(_issue("doctorWallet", "INVALID_DOCTOR_WALLET", "Doctor wallet must be unlink1... or 0x... format."))

    if not is_client_wallet(request.patient_wallet):
        issues.append(_issue("patientWallet", "INVALID_PATIENT_WALLET", "Patient wallet must be unlink1... or 0x... format."))

    if RELAY_ID.fullmatch(request.registry_relay_id.strip()) is None:
        issues.append(_issue(
            "registryRelayId",
            "INVALID_REGISTRY_RELAY_ID",
            "On-chain registry proof relay id is required.",
        ))

    issues.extend(validate_legal_identity(request, today))
    return issues


def validate_wallet_proof_structure(proof: Optional[PatientWalletProof]) -> List[ComplianceIssue]:
    """
    Check the shape of a doctor-request wallet proof without verifying the signature.

    Lets a request be rejected with a precise structural reason before any
    signature recovery is attempted.
    """
    if proof is None:
        return [_issue(
            "walletProof",
            "MISSING_WALLET_PROOF",
            "A wallet signature proof is required for doctor request submission.",
        )]

    issues = []
    if proof.version != PATIENT_DOCTOR_WALLET_PROOF_VERSION:
        issues.append(_issue("walletProof.version", "INVALID_WALLET_PROOF_VERSION", "Wallet proof version is invalid."))

    if not is_hex_evm_address(proof.monad_wallet):
        issues.append(_issue(
            "walletProof.monadWallet",
            "INVALID_MONAD_WALLET",
            "Monad wallet must be a 0x-prefixed EVM address.",
        ))

    if NONCE.fullmatch(proof.request_nonce.strip()) is None:
        issues.append(_issue("walletProof.requestNonce", "INVALID_WALLET_PROOF_NONCE", "Wallet proof nonce is invalid."))

    if parse_request_ts(proof.request_ts) is None:
        issues.append(_issue("walletProof.requestTs", "INVALID_WALLET_PROOF_TS", "Wallet proof timestamp is invalid."))

    if not is_hex_ecdsa_signature(proof.signature):
        issues.append(_issue(
            "walletProof.signature",
            "INVALID_WALLET_PROOF_SIGNATURE",
            "Wallet proof signature must be a 65-byte hex signature.",
        ))

    return issues


def validate_patient_doctor_approval_request(
    request: PatientDoctorApprovalRequest,
    today: Optional[date] = None,
) -> List[ComplianceIssue]:
    issues = []

    if not is_client_wallet(request.doctor_wallet):
        issues.append(_issue("doctorWallet", "INVALID_DOCTOR_WALLET", "Doctor wallet must be unlink1... or 0x... format."))

    if not is_client_wallet(request.patient_wallet):
        issues.append(_issue("patientWallet", "INVALID_PATIENT_WALLET", "Patient wallet must be unlink1... or 0x... format."))

    if RELAY_ID.fullmatch(request.request_relay_id.strip()) is None:
        issues.append(_issue("requestRelayId", "INVALID_RELAY_ID", "A valid wallet transaction relay id is required."))

    issues.extend(_validate_medication_code(request.medication_code, "Select a medication from the dropdown list."))
    issues.extend(validate_wallet_proof_structure(request.wallet_proof))
    issues.extend(validate_legal_identity(request, today))
    return issues
