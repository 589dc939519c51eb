"""
Attestation service for the compliance layer.

This module implements the attestation state machine: doctors register verified
patients, patients submit approval requests, doctors file signed attestations,
patients redeem them by approval code, and pharmacies receive sealed handoffs.
Expected failures are returned as result objects; only integrity failures
(e.g. a sealed payload that does not decrypt) raise.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from compliance.config import ComplianceConfig
from compliance.constants import (
    CHAIN_FINALITY_MS,
    CHAIN_NETWORK,
    DOCTOR_FILED_VALIDATION_VERSION,
    INTAKE_VALIDATION_VERSION,
    MANUAL_REVIEW,
    NEEDS_MANUAL_REVIEW,
    REGISTRY_VERIFIED,
)
from compliance.crypto import decrypt_json, encrypt_json, legal_identity_hash, sha256_hex, sign_payload, tokenize
from compliance.handoff import seal_pharmacy_handoff, sign_handoff
from compliance.medications import get_medication_by_code
from compliance.models import (
    ApprovalRequestResult,
    ChainAnchor,
    ComplianceAttestation,
    ComplianceIntakeRequest,
    ComplianceIssue,
    ConfirmResult,
    DoctorAttestationRecord,
    DoctorConfirmAttestationRequest,
    DoctorFileAttestationRequest,
    DoctorFiledAttestation,
    DoctorRegisterPatientRecord,
    DoctorRegisterPatientRequest,
    FileAttestationResult,
    HandoffDoctor,
    HandoffPatient,
    HandoffPrescription,
    HandoffResult,
    IntakeAttestationRecord,
    IntakeResult,
    OrderPolicy,
    PatientApprovedMedication,
    PatientDoctorApprovalRequest,
    PatientDoctorApprovalRequestRecord,
    PharmacyHandoff,
    RegisterPatientResult,
    WalletCorrectionResult,
    WalletProofMetadata,
)
from compliance.policy import (
    EVM_WALLET,
    validate_compliance_intake,
    validate_doctor_file_attestation,
    validate_doctor_register_patient,
    validate_patient_doctor_approval_request,
)
from compliance.store import ComplianceStore
from compliance.timeutil import now_ms, parse_iso_ms, to_iso

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
LEGACY_MEDICATION_CODE = "legacy_manual"
REDACTED_DOCTOR_WALLET = "unlink1redacted"
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def _number_text(value) -> str:
    """Render a quantity the way it appears in hashed seeds (30, not 30.0)"""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _same_wallet(a: Optional[str], b: Optional[str]) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


def build_approval_code(now: int) -> str:
    """DOC-<base36 ms timestamp>-<10 random hex chars>, uppercased"""
    return f"DOC-{_base36(now).upper()}-{uuid.uuid4().hex[:10].upper()}"


def build_chain_anchor(seed: str, secret: str, anchored_at: str) -> ChainAnchor:
    """
    Derive a deterministic pseudo-chain anchor.

    No transaction is submitted; the anchor hash binds the seed to the platform
    secret and the synthetic tx hash binds it to the anchoring time.
    """
    return ChainAnchor(
        network=CHAIN_NETWORK,
        anchor_hash=sha256_hex(f"{seed}|{secret}"),
        anchor_tx_hash="0x" + sha256_hex(f"monad:{seed}:{anchored_at}"),
        finality_ms=CHAIN_FINALITY_MS,
        anchored_at=anchored_at,
    )


def attestation_signing_payload(attestation: DoctorFiledAttestation) -> Dict[str, Any]:
    """The fields of a doctor-filed attestation covered by its signature"""
    return {
        "approvalCode": attestation.approval_code,
        "attestationId": attestation.attestation_id,
        "requestId": attestation.request_id,
        "patientToken": attestation.patient_token,
        "doctorToken": attestation.doctor_token,
        "medicationCode": attestation.medication_code,
        "medicationCategory": attestation.medication_category,
        "prescriptionHash": attestation.prescription_hash,
        "controlledSchedule": attestation.controlled_schedule,
        "quantity": attestation.quantity,
        "canPurchase": attestation.can_purchase,
        "validUntilIso": attestation.valid_until_iso,
        "chainAnchor": attestation.chain_anchor.to_wire(),
    }


def registry_signing_payload(record: DoctorRegisterPatientRecord) -> Dict[str, Any]:
    return {
        "registryId": record.registry_id,
        "doctorWallet": record.doctor_wallet,
        "patientWallet": record.patient_wallet,
        "registryRelayId": record.registry_relay_id,
        "patientToken": record.patient_token,
        "legalIdentityHash": record.legal_identity_hash,
        "verifiedAt": record.verified_at,
    }


def intake_signing_payload(attestation: ComplianceAttestation) -> Dict[str, Any]:
    return {
        "attestationId": attestation.attestation_id,
        "status": attestation.status,
        "validationVersion": attestation.validation_version,
        "patientToken": attestation.patient_token,
        "doctorToken": attestation.doctor_token,
        "issuedAt": attestation.issued_at,
        "expiresAt": attestation.expires_at,
    }


class AttestationService:
    """Operations on attestations, the verified-patient registry and approval requests"""

    def __init__(self, config: ComplianceConfig, store: Optional[ComplianceStore] = None):
        self.config = config
        self.store = store if store is not None else ComplianceStore(config.store_path)

    # ------------------------------------------------------------------
    # Legacy intake
    # ------------------------------------------------------------------

    def issue_compliance_attestation(self, intake: ComplianceIntakeRequest, now: Optional[int] = None) -> IntakeResult:
        """
        Issue a legacy attestation from a self-service intake.

        Args:
            intake: The parsed intake request
            now: Current time in ms (defaults to the wall clock)

        Returns:
            IntakeResult: The signed attestation, or the validation issues
        """
        now = now_ms() if now is None else now
        issues = validate_compliance_intake(intake, now=now)
        if issues:
            return IntakeResult(ok=False, issues=issues)

        secret = self.config.attestation_secret
        patient_state = intake.patient_state.strip().upper()
        doctor_dea = intake.doctor_dea.strip().upper() if intake.doctor_dea else None

        attestation = ComplianceAttestation(
            attestation_id=f"att_{uuid.uuid4().hex}",
            validation_version=INTAKE_VALIDATION_VERSION,
            patient_token=tokenize(
                f"{intake.patient_full_name}|{intake.patient_dob}|{intake.patient_wallet}", secret, "ptok"
            ),
            doctor_token=tokenize(f"{intake.doctor_npi}|{doctor_dea or ''}|{intake.patient_wallet}", secret, "dtok"),
            issued_at=to_iso(now),
            expires_at=to_iso(now + int(self.config.attestation_ttl_hours * HOUR_MS)),
        )
        attestation = attestation.model_copy(
            update={"signature": sign_payload(intake_signing_payload(attestation), secret)}
        )

        phi = {
            "patientFullName": intake.patient_full_name,
            "patientDob": intake.patient_dob,
            "patientState": patient_state,
            "doctorNpi": intake.doctor_npi,
            "doctorDea": doctor_dea,
            "prescriptionId": intake.prescription_id,
            "medicationCategory": intake.medication_category,
            "controlledSchedule": intake.controlled_schedule,
            "quantity": intake.quantity,
            "pickupWindowIso": intake.pickup_window_iso,
        }
        self.store.save_compliance_record(IntakeAttestationRecord(
            attestation=attestation,
            patient_wallet=intake.patient_wallet,
            encrypted_phi=encrypt_json(phi, self.config.encryption_secret),
            created_at=now,
        ))

        logger.info(f"Issued intake attestation {attestation.attestation_id}")
        return IntakeResult(ok=True, attestation=attestation)

    # ------------------------------------------------------------------
    # Verified-patient registry
    # ------------------------------------------------------------------

    def register_verified_patient(
        self,
        request: DoctorRegisterPatientRequest,
        now: Optional[int] = None,
    ) -> RegisterPatientResult:
        """Record that a doctor verified a patient's legal identity for a wallet"""
        now = now_ms() if now is None else now
        issues = validate_doctor_register_patient(request)
        if issues:
            return RegisterPatientResult(ok=False, issues=issues)

        secret = self.config.attestation_secret
        record = DoctorRegisterPatientRecord(
            registry_id=f"reg_{uuid.uuid4().hex}",
            doctor_wallet=request.doctor_wallet,
            doctor_name=(request.doctor_name or "").strip() or None,
            patient_wallet=request.patient_wallet,
            registry_relay_id=request.registry_relay_id,
            patient_token=tokenize(f"{request.patient_wallet}|{request.legal_name}|{request.dob}", secret, "ptok"),
            legal_identity_hash=legal_identity_hash(
                request.legal_name, request.dob, request.patient_state, request.health_card_number
            ),
            verified_at=to_iso(now),
        )
        record = record.model_copy(update={"signature": sign_payload(registry_signing_payload(record), secret)})

        self.store.save_verified_patient(record, created_at=now)
        logger.info(f"Registered patient {record.patient_wallet} for doctor {record.doctor_wallet}")
        return RegisterPatientResult(ok=True, record=record)

    # ------------------------------------------------------------------
    # Approval requests
    # ------------------------------------------------------------------

    def create_approval_request(
        self,
        request: PatientDoctorApprovalRequest,
        now: Optional[int] = None,
    ) -> ApprovalRequestResult:
        """
        Store a patient's request for a medication from a doctor.

        The request is registry_verified when the doctor has registered this
        patient wallet with the same legal identity, needs_manual_review otherwise.
        The wallet proof is expected to have been verified by the caller.
        """
        now = now_ms() if now is None else now
        issues = validate_patient_doctor_approval_request(request)
        if issues:
            return ApprovalRequestResult(ok=False, issues=issues)

        medication = get_medication_by_code(request.medication_code)
        identity_hash = legal_identity_hash(
            request.legal_name, request.dob, request.patient_state, request.health_card_number
        )
        registry = self.store.get_verified_patient(request.doctor_wallet, request.patient_wallet)
        if registry is not None and registry.record.legal_identity_hash == identity_hash:
            verification_status = REGISTRY_VERIFIED
        else:
            verification_status = NEEDS_MANUAL_REVIEW

        proof = request.wallet_proof
        record = PatientDoctorApprovalRequestRecord(
            request_id=f"req_{uuid.uuid4().hex}",
            doctor_wallet=request.doctor_wallet,
            patient_wallet=request.patient_wallet,
            patient_token=tokenize(
                f"{request.patient_wallet}|{request.request_relay_id}", self.config.attestation_secret, "ptok"
            ),
            legal_identity_hash=identity_hash,
            medication_code=medication.code,
            medication_category=medication.label,
            request_relay_id=request.request_relay_id,
            verification_status=verification_status,
            wallet_proof=WalletProofMetadata(
                monad_wallet=proof.monad_wallet,
                request_ts=proof.request_ts,
                request_nonce=proof.request_nonce,
                signature=proof.signature,
            ),
            created_at=to_iso(now),
        )

        self.store.save_approval_request(record, created_at=now)
        logger.info(f"Approval request {record.request_id} submitted ({verification_status})")
        return ApprovalRequestResult(ok=True, request=record)

    def list_approval_requests_for_doctor(self, doctor_wallet: str) -> List[PatientDoctorApprovalRequestRecord]:
        return [entry.request for entry in self.store.approval_requests_by_doctor(doctor_wallet)]

    # ------------------------------------------------------------------
    # Doctor-filed attestations
    # ------------------------------------------------------------------

    def _linkage_issues(self, request: DoctorFileAttestationRequest, request_id: str) -> List[ComplianceIssue]:
        if not request_id:
            if self.store.get_verified_patient(request.doctor_wallet, request.patient_wallet) is None:
                return [ComplianceIssue(
                    field="requestId",
                    code="MISSING_REQUEST_OR_VERIFIED_LINK",
                    message="No patient request provided. Register this patient first, or file using a request ID.",
                )]
            return []

        entry = self.store.get_approval_request(request_id)
        if entry is None:
            return [ComplianceIssue(field="requestId", code="REQUEST_NOT_FOUND", message="Doctor request was not found.")]

        issues = []
        linked = entry.request
        if not _same_wallet(linked.doctor_wallet, request.doctor_wallet):
            issues.append(ComplianceIssue(
                field="doctorWallet",
                code="REQUEST_DOCTOR_MISMATCH",
                message="Request is not assigned to this doctor wallet.",
            ))
        if not _same_wallet(linked.patient_wallet, request.patient_wallet):
            issues.append(ComplianceIssue(
                field="patientWallet",
                code="REQUEST_PATIENT_MISMATCH",
                message="Request is not linked to this patient wallet.",
            ))
        if linked.verification_status != REGISTRY_VERIFIED:
            issues.append(ComplianceIssue(
                field="requestId",
                code="REQUEST_NOT_VERIFIED",
                message="Patient legal identity is not registry-verified for this request.",
            ))
        if linked.medication_code != request.medication_code.strip():
            issues.append(ComplianceIssue(
                field="medicationCode",
                code="REQUEST_MEDICATION_MISMATCH",
                message="Attestation medication must match the medication requested by the patient.",
            ))
        return issues

    def file_doctor_attestation(
        self,
        request: DoctorFileAttestationRequest,
        now: Optional[int] = None,
    ) -> FileAttestationResult:
        """
        File a signed attestation for a patient.

        The filing must reference a registry-verified approval request for the
        same doctor, patient and medication, or, without a request id, the
        doctor must have registered this patient wallet.

        Args:
            request: The parsed filing request
            now: Current time in ms (defaults to the wall clock)

        Returns:
            FileAttestationResult: The attestation with its approval code, or the issues
        """
        now = now_ms() if now is None else now
        request_id = (request.request_id or "").strip()
        issues = validate_doctor_file_attestation(request, now=now)
        issues.extend(self._linkage_issues(request, request_id))
        if issues:
            return FileAttestationResult(ok=False, issues=issues)

        secret = self.config.attestation_secret
        medication = get_medication_by_code(request.medication_code)
        resolved_request_id = request_id or f"manual_{uuid.uuid4().hex[:18]}"
        attestation_id = f"att_{uuid.uuid4().hex}"
        quantity = _number_text(request.quantity)

        prescription_hash = sha256_hex(
            f"{resolved_request_id}|{request.patient_wallet}|{request.doctor_wallet}|"
            f"{medication.code}|{quantity}|{request.doctor_npi}"
        )
        chain_anchor = build_chain_anchor(
            f"{attestation_id}|{request.patient_wallet}|{medication.code}|{quantity}|{resolved_request_id}",
            secret,
            to_iso(now),
        )

        attestation = DoctorFiledAttestation(
            approval_code=build_approval_code(now),
            attestation_id=attestation_id,
            request_id=resolved_request_id,
            doctor_wallet=request.doctor_wallet,
            patient_wallet=request.patient_wallet,
            patient_token=tokenize(f"{request.patient_wallet}|{medication.code}|{resolved_request_id}", secret, "ptok"),
            doctor_token=tokenize(f"{request.doctor_wallet}|{request.doctor_npi}|{request.doctor_dea or ''}", secret, "dtok"),
            medication_code=medication.code,
            medication_category=medication.label,
            prescription_hash=prescription_hash,
            controlled_schedule=request.controlled_schedule,
            quantity=request.quantity,
            can_purchase=request.can_purchase,
            issued_at=to_iso(now),
            valid_until_iso=to_iso(parse_iso_ms(request.valid_until_iso)),
            chain_anchor=chain_anchor,
        )
        attestation = attestation.model_copy(
            update={"signature": sign_payload(attestation_signing_payload(attestation), secret)}
        )

        prescription = {
            "requestId": resolved_request_id,
            "prescriptionHash": prescription_hash,
            "doctorNpi": request.doctor_npi,
            "doctorDea": request.doctor_dea,
            "patientWallet": request.patient_wallet,
            "doctorWallet": request.doctor_wallet,
            "medicationCode": medication.code,
            "medicationCategory": medication.label,
            "controlledSchedule": request.controlled_schedule,
            "quantity": request.quantity,
        }
        self.store.save_doctor_attestation(DoctorAttestationRecord(
            attestation=attestation,
            encrypted_prescription=encrypt_json(prescription, self.config.encryption_secret),
            created_at=now,
        ))

        logger.info(f"Filed attestation {attestation.attestation_id} for patient {attestation.patient_wallet}")
        return FileAttestationResult(ok=True, attestation=attestation)

    def confirm_doctor_attestation(
        self,
        request: DoctorConfirmAttestationRequest,
        now: Optional[int] = None,
    ) -> ConfirmResult:
        """
        Redeem an approval code for the patient wallet it was issued to.

        Returns:
            ConfirmResult: The redemption view and order policy, or an error with
            reason not_found, wallet_mismatch, not_purchasable or expired
        """
        now = now_ms() if now is None else now
        record = self.store.get_doctor_attestation(request.approval_code.strip().upper())
        if record is None:
            return ConfirmResult(
                ok=False,
                reason="not_found",
                error="Approval code was not found. Ask your doctor to re-issue.",
            )

        filed = record.attestation
        if not _same_wallet(filed.patient_wallet, request.patient_wallet):
            return ConfirmResult(
                ok=False,
                reason="wallet_mismatch",
                error="This approval code is not linked to your connected wallet.",
            )

        if not filed.can_purchase:
            return ConfirmResult(
                ok=False,
                reason="not_purchasable",
                error="Doctor marked this prescription as not eligible for purchase.",
            )

        expires_at = parse_iso_ms(filed.valid_until_iso)
        if expires_at is None or expires_at <= now:
            return ConfirmResult(
                ok=False,
                reason="expired",
                error="This approval code has expired. Ask your doctor for a new one.",
            )

        logger.info(f"Attestation {filed.attestation_id} confirmed by patient")
        return ConfirmResult(
            ok=True,
            attestation=ComplianceAttestation(
                attestation_id=filed.attestation_id,
                validation_version=DOCTOR_FILED_VALIDATION_VERSION,
                patient_token=filed.patient_token,
                doctor_token=filed.doctor_token,
                issued_at=filed.issued_at,
                expires_at=filed.valid_until_iso,
                signature=filed.signature,
            ),
            order_policy=OrderPolicy(
                medication_code=filed.medication_code,
                medication_category=filed.medication_category,
                controlled_schedule=filed.controlled_schedule,
                quantity=filed.quantity,
                prescription_hash=filed.prescription_hash,
            ),
        )

    def get_patient_approved_medications(
        self,
        patient_wallet: str,
        now: Optional[int] = None,
    ) -> List[PatientApprovedMedication]:
        """Purchasable, unexpired attestations for a patient, without prescriber identifiers"""
        now = now_ms() if now is None else now
        approvals = []
        for record in self.store.doctor_attestations_by_patient(patient_wallet):
            filed = record.attestation
            if not filed.can_purchase:
                continue
            expires_at = parse_iso_ms(filed.valid_until_iso)
            if expires_at is None or expires_at <= now:
                continue
            approvals.append(PatientApprovedMedication(
                approval_code=filed.approval_code,
                attestation_id=filed.attestation_id,
                doctor_wallet=filed.doctor_wallet,
                medication_code=filed.medication_code,
                medication_category=filed.medication_category,
                controlled_schedule=filed.controlled_schedule,
                quantity=filed.quantity,
                valid_until_iso=filed.valid_until_iso,
                patient_token=filed.patient_token,
                doctor_token=filed.doctor_token,
                signature=filed.signature,
            ))
        return approvals

    # ------------------------------------------------------------------
    # Pharmacy handoff
    # ------------------------------------------------------------------

    def _intake_handoff(self, record: IntakeAttestationRecord, now: int) -> PharmacyHandoff:
        phi = decrypt_json(record.encrypted_phi, self.config.encryption_secret)
        attestation = record.attestation
        expires_at = parse_iso_ms(attestation.expires_at)
        return PharmacyHandoff(
            attestation_id=attestation.attestation_id,
            attestation_status="expired" if expires_at is None or expires_at < now else "validated",
            issued_at=attestation.issued_at,
            expires_at=attestation.expires_at,
            prescription=HandoffPrescription(
                prescription_id=phi["prescriptionId"],
                medication_code=LEGACY_MEDICATION_CODE,
                prescription_hash=sha256_hex(phi["prescriptionId"]),
                medication_category=phi["medicationCategory"],
                controlled_schedule=phi["controlledSchedule"],
                quantity=phi["quantity"],
                pickup_window_iso=phi["pickupWindowIso"],
            ),
            patient=HandoffPatient(
                token=attestation.patient_token,
                wallet=record.patient_wallet,
                legal_verification_status=MANUAL_REVIEW,
                full_name=phi["patientFullName"],
                dob=phi["patientDob"],
                state=phi["patientState"],
            ),
            doctor=HandoffDoctor(
                token=attestation.doctor_token,
                wallet=REDACTED_DOCTOR_WALLET,
                npi=phi["doctorNpi"],
                dea=phi.get("doctorDea"),
            ),
        )

    def _doctor_filed_handoff(self, record: DoctorAttestationRecord, now: int) -> PharmacyHandoff:
        prescription = decrypt_json(record.encrypted_prescription, self.config.encryption_secret)
        filed = record.attestation
        expires_at = parse_iso_ms(filed.valid_until_iso)
        linked = self.store.get_approval_request(filed.request_id)
        verified = linked is not None and linked.request.verification_status == REGISTRY_VERIFIED
        return PharmacyHandoff(
            attestation_id=filed.attestation_id,
            attestation_status="expired" if expires_at is None or expires_at < now else "validated",
            issued_at=filed.issued_at,
            expires_at=filed.valid_until_iso,
            prescription=HandoffPrescription(
                prescription_id=prescription["prescriptionHash"],
                medication_code=prescription["medicationCode"],
                prescription_hash=prescription["prescriptionHash"],
                medication_category=prescription["medicationCategory"],
                controlled_schedule=prescription["controlledSchedule"],
                quantity=prescription["quantity"],
                pickup_window_iso=filed.valid_until_iso,
            ),
            patient=HandoffPatient(
                token=filed.patient_token,
                wallet=filed.patient_wallet,
                legal_verification_status=REGISTRY_VERIFIED if verified else MANUAL_REVIEW,
                legal_identity_hash=linked.request.legal_identity_hash if linked is not None else None,
            ),
            doctor=HandoffDoctor(
                token=filed.doctor_token,
                wallet=filed.doctor_wallet,
                npi=prescription["doctorNpi"],
                dea=prescription.get("doctorDea"),
            ),
        )

    def build_pharmacy_handoff(self, attestation_id: str, now: Optional[int] = None) -> Optional[PharmacyHandoff]:
        """
        Build the signed pharmacy payload for an attestation of either kind.

        Returns:
            PharmacyHandoff: The signed payload, or None if no attestation has this id

        Raises:
            SealedPayloadError: If the stored side-channel payload does not decrypt
        """
        now = now_ms() if now is None else now
        record = self.store.find_attestation(attestation_id)
        if record is None:
            return None

        if record.kind == "intake":
            handoff = self._intake_handoff(record, now)
        else:
            handoff = self._doctor_filed_handoff(record, now)
        return sign_handoff(handoff, self.config.attestation_secret)

    def seal_pharmacy_handoff(self, attestation_id: str, now: Optional[int] = None) -> HandoffResult:
        """Build, sign and seal the handoff envelope for a pharmacy"""
        handoff = self.build_pharmacy_handoff(attestation_id, now=now)
        if handoff is None:
            return HandoffResult(ok=False, error="Attestation not found")

        envelope = seal_pharmacy_handoff(handoff, self.config.transport_secret, self.config.attestation_secret)
        logger.info(f"Sealed pharmacy handoff for {attestation_id} ({handoff.attestation_status})")
        return HandoffResult(ok=True, envelope=envelope, attestation_status=handoff.attestation_status)

    # ------------------------------------------------------------------
    # Wallet correction
    # ------------------------------------------------------------------

    def correct_patient_wallet(
        self,
        doctor_wallet: str,
        old_patient_wallet: str,
        new_patient_wallet: str,
    ) -> WalletCorrectionResult:
        """
        Move a registered patient, and the doctor's attestations for them, to a new wallet.

        Attestation and registry signatures are left as issued unless
        resign_corrected_attestations is enabled in the configuration.
        """
        if not doctor_wallet or not old_patient_wallet or not new_patient_wallet:
            return WalletCorrectionResult(ok=False, reason="missing_fields", error="Missing required fields")

        if EVM_WALLET.fullmatch(new_patient_wallet.strip()) is None:
            return WalletCorrectionResult(ok=False, reason="invalid_wallet", error="Invalid wallet address format")

        if _same_wallet(old_patient_wallet, new_patient_wallet):
            return WalletCorrectionResult(
                ok=False,
                reason="same_wallet",
                error="New wallet is the same as the old wallet",
            )

        secret = self.config.attestation_secret

        def resign_record(record: DoctorRegisterPatientRecord) -> str:
            return sign_payload(registry_signing_payload(record), secret)

        def resign_attestation(filed: DoctorFiledAttestation) -> str:
            return sign_payload(attestation_signing_payload(filed), secret)

        resign = self.config.resign_corrected_attestations
        migrated, updated = self.store.migrate_patient_wallet(
            doctor_wallet,
            old_patient_wallet,
            new_patient_wallet.strip(),
            resign_record=resign_record if resign else None,
            resign_attestation=resign_attestation if resign else None,
        )
        if migrated is None:
            return WalletCorrectionResult(ok=False, reason="not_found", error="Patient record not found")

        logger.info(f"Moved patient of doctor {doctor_wallet} to a new wallet ({updated} attestations updated)")
        return WalletCorrectionResult(ok=True, record=migrated.record, attestations_updated=updated)

    # ------------------------------------------------------------------
    # Doctor views
    # ------------------------------------------------------------------

    def doctor_records(self, doctor_wallet: str) -> Dict[str, Any]:
        """Latest attestations, requests and registered patients for a doctor"""
        attestations = self.store.doctor_attestations_by_doctor(doctor_wallet)[:50]
        requests = self.list_approval_requests_for_doctor(doctor_wallet)[:100]
        patients = self.store.verified_patients_by_doctor(doctor_wallet)[:100]
        return {
            "records": [record.attestation.to_wire() for record in attestations],
            "requests": [request.to_wire() for request in requests],
            "verifiedPatients": [entry.record.to_wire() for entry in patients],
        }

    def doctor_audit_summary(self, doctor_wallet: str) -> Dict[str, Any]:
        """Prescription history and distinct patient count for a doctor"""
        prescriptions = [record.attestation for record in self.store.doctor_attestations_by_doctor(doctor_wallet)]
        registered = [entry.record for entry in self.store.verified_patients_by_doctor(doctor_wallet)]
        doctor_name = next((record.doctor_name for record in registered if record.doctor_name), None)
        patients = {filed.patient_wallet.strip().lower() for filed in prescriptions}

        return {
            "doctorWallet": doctor_wallet,
            "doctorName": doctor_name,
            "summary": {
                "prescriptionCount": len(prescriptions),
                "patientCount": len(patients),
            },
            "prescriptions": [
                {
                    "approvalCode": filed.approval_code,
                    "attestationId": filed.attestation_id,
                    "patientWallet": filed.patient_wallet,
                    "medicationCode": filed.medication_code,
                    "medicationCategory": filed.medication_category,
                    "quantity": filed.quantity,
                    "canPurchase": filed.can_purchase,
                    "issuedAt": filed.issued_at,
                    "validUntilIso": filed.valid_until_iso,
                }
                for filed in prescriptions
            ],
        }

    def reset(self) -> None:
        self.store.reset()
