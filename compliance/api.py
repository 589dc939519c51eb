"""
HTTP API for the compliance attestation layer.

Routes authenticate each role the way it signs: doctors with wallet signature
headers, patients with wallet proofs in the request body, pharmacies with an
API key plus an HMAC over the request, and operators with the admin key.
Authentication failures are answered with a generic error; the specific reason
is only written to the audit trail.
"""

import hmac
import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from compliance.audit import AuditLog, get_audit_log, hash_ip
from compliance.auth import (
    AuthResult,
    verify_doctor_wallet_auth,
    verify_patient_confirm_auth,
    verify_patient_request_proof,
    verify_patient_workspace_auth,
    verify_pharmacy_request,
)
from compliance.config import ComplianceConfig, get_compliance_config
from compliance.constants import (
    DOCTOR_ACTION_FILE_ATTESTATION,
    DOCTOR_ACTION_REGISTER_PATIENT,
    DOCTOR_ACTION_UPDATE_PATIENT,
    ROLES,
)
from compliance.exceptions import ComplianceError, SealedPayloadError
from compliance.medications import list_medication_catalog
from compliance.models import (
    ComplianceIntakeRequest,
    ComplianceIssue,
    DoctorConfirmAttestationRequest,
    DoctorFileAttestationRequest,
    DoctorRegisterPatientRequest,
    PatientApprovalsRequest,
    PatientDoctorApprovalRequest,
    UpdatePatientWalletRequest,
    parse_request,
)
from compliance.nonce import NonceCache, get_nonce_cache
from compliance.policy import validate_wallet_proof_structure
from compliance.service import AttestationService
from compliance.store import ComplianceStore
from compliance.timeutil import now_ms, to_iso

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

INVALID_JSON = "Invalid JSON payload"
UNAUTHORIZED = "Unauthorized"


# Standard API response helpers
def success_response(data: Optional[Dict[str, Any]] = None, status_code: int = 200) -> JSONResponse:
    """
    Create a standardized success response.

    Args:
        data: Fields to include next to "ok"
        status_code: HTTP status code

    Returns:
        JSONResponse: {"ok": true, ...data}
    """
    content = {"ok": True}
    if data:
        content.update(data)
    return JSONResponse(content=content, status_code=status_code)


def error_response(
    message: Optional[str] = None,
    status_code: int = 400,
    issues: Optional[List[ComplianceIssue]] = None,
    **extra: Any,
) -> JSONResponse:
    """
    Create a standardized error response.

    Args:
        message: Human readable error
        status_code: HTTP status code
        issues: Validation issues to return instead of (or next to) the message

    Returns:
        JSONResponse: {"ok": false, "error": ..., "issues": [...]}
    """
    content: Dict[str, Any] = {"ok": False}
    if message is not None:
        content["error"] = message
    if issues is not None:
        content["issues"] = [issue.to_wire() for issue in issues]
    content.update({key: value for key, value in extra.items() if value is not None})
    return JSONResponse(content=content, status_code=status_code)


def _field(body: Any, key: str) -> str:
    """Read a raw body field as text for signature binding, before schema parsing"""
    if not isinstance(body, dict):
        return ""
    value = body.get(key)
    return "" if value is None else str(value)


async def _read_json(request: Request) -> Tuple[Any, bool]:
    try:
        return await request.json(), True
    except ValueError:
        return None, False


def create_app(
    config: Optional[ComplianceConfig] = None,
    store: Optional[ComplianceStore] = None,
    nonce_cache: Optional[NonceCache] = None,
    audit_log: Optional[AuditLog] = None,
) -> FastAPI:
    """
    Build the API with its collaborators.

    Args:
        config: Configuration (read from the environment when omitted)
        store: Durable store (built from config.store_path when omitted)
        nonce_cache: Replay cache (process-wide cache when omitted)
        audit_log: Audit sink (process-wide log when omitted)

    Returns:
        FastAPI: The configured application
    """
    config = config or get_compliance_config()
    service = AttestationService(config, store)
    nonce_cache = nonce_cache if nonce_cache is not None else get_nonce_cache()
    audit_log = audit_log if audit_log is not None else get_audit_log()

    app = FastAPI(title="Compliance Attestation API")
    app.state.config = config
    app.state.service = service
    app.state.nonce_cache = nonce_cache
    app.state.audit_log = audit_log

    # Enable CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ComplianceError)
    async def compliance_error_handler(request: Request, exc: ComplianceError):
        logger.error(f"Integrity failure on {request.url.path}: {type(exc).__name__}")
        return error_response("Internal server error", 500)

    def ip_hash(request: Request) -> Optional[str]:
        return hash_ip(request.headers.get("x-forwarded-for"), config.attestation_secret)

    def audit(request: Request, event_type: str, actor: str, details: Dict[str, Any], attestation_id: Optional[str] = None):
        audit_log.record(
            event_type,
            actor,
            details=details,
            attestation_id=attestation_id,
            request_ip_hash=ip_hash(request),
        )

    def is_admin(request: Request) -> bool:
        provided = request.headers.get("x-compliance-admin-key") or ""
        return bool(provided) and hmac.compare_digest(provided.encode("utf-8"), config.admin_api_key.encode("utf-8"))

    def doctor_auth(request: Request, body: Any, action: str, resource: str) -> AuthResult:
        return verify_doctor_wallet_auth(
            doctor_wallet=_field(body, "doctorWallet"),
            monad_wallet=request.headers.get("x-doctor-monad-wallet") or "",
            action=action,
            resource=resource,
            request_ts=request.headers.get("x-doctor-request-ts") or "",
            request_nonce=request.headers.get("x-doctor-request-nonce") or "",
            signature=request.headers.get("x-doctor-request-signature") or "",
            request_window_ms=config.request_window_ms,
            nonce_cache=nonce_cache,
        )

    # Health check endpoint
    @app.get("/health")
    @app.get("/api/health")
    async def health_check():
        """Health check endpoint"""
        return success_response({"timestamp": now_ms()})

    @app.post("/api/compliance/attest")
    async def issue_attestation(request: Request):
        """Issue a legacy intake attestation"""
        body, ok = await _read_json(request)
        if not ok:
            return error_response(INVALID_JSON, 400)

        intake, issues = parse_request(ComplianceIntakeRequest, body)
        result = service.issue_compliance_attestation(intake) if intake is not None else None
        if result is None or not result.ok:
            issues = issues if result is None else result.issues
            audit(request, "compliance_attest_failed", ROLES["PATIENT"], {"issueCount": len(issues)})
            return error_response(issues=issues, status_code=422)

        attestation = result.attestation
        audit(
            request,
            "compliance_attest_issued",
            ROLES["PLATFORM"],
            {"status": attestation.status, "validationVersion": attestation.validation_version},
            attestation_id=attestation.attestation_id,
        )
        return success_response({"attestation": attestation.to_wire()})

    @app.post("/api/compliance/doctor/register-patient")
    async def register_patient(request: Request):
        """Register a verified patient wallet for the signing doctor"""
        body, ok = await _read_json(request)
        if not ok:
            return error_response(INVALID_JSON, 400)

        resource = f"{_field(body, 'patientWallet')}|{_field(body, 'dob')}|{_field(body, 'registryRelayId')}"
        auth = doctor_auth(request, body, DOCTOR_ACTION_REGISTER_PATIENT, resource)
        if not auth.ok:
            audit(request, "doctor_registry_denied", ROLES["DOCTOR"], {
                "reason": auth.reason or "unauthorized",
                "doctorWallet": _field(body, "doctorWallet"),
            })
            return error_response(UNAUTHORIZED, 401)

        parsed, issues = parse_request(DoctorRegisterPatientRequest, body)
        result = service.register_verified_patient(parsed) if parsed is not None else None
        if result is None or not result.ok:
            issues = issues if result is None else result.issues
            audit(request, "doctor_registry_rejected", ROLES["DOCTOR"], {"issueCount": len(issues)})
            return error_response(issues=issues, status_code=422)

        record = result.record
        audit(request, "doctor_registry_verified_patient", ROLES["DOCTOR"], {
            "registryId": record.registry_id,
            "doctorWallet": record.doctor_wallet,
            "patientWallet": record.patient_wallet,
            "registryRelayId": record.registry_relay_id,
            "monadWalletSigner": auth.signer,
        })
        return success_response({"record": record.to_wire()})

    @app.post("/api/compliance/doctor/request")
    async def submit_approval_request(request: Request):
        """Patient asks a doctor for a medication approval"""
        body, ok = await _read_json(request)
        if not ok:
            return error_response(INVALID_JSON, 400)

        parsed, issues = parse_request(PatientDoctorApprovalRequest, body)
        if parsed is None:
            audit(request, "patient_doctor_request_rejected", ROLES["PATIENT"], {"issueCount": len(issues)})
            return error_response(issues=issues, status_code=422)

        proof_issues = validate_wallet_proof_structure(parsed.wallet_proof)
        if proof_issues:
            audit(request, "patient_doctor_request_rejected", ROLES["PATIENT"], {"issueCount": len(proof_issues)})
            return error_response(issues=proof_issues, status_code=422)

        proof = verify_patient_request_proof(parsed, config.request_window_ms, nonce_cache=nonce_cache)
        if not proof.ok:
            audit(request, "patient_doctor_request_denied", ROLES["PATIENT"], {
                "reason": proof.reason or "invalid_wallet_proof",
                "doctorWallet": parsed.doctor_wallet or None,
                "patientWallet": parsed.patient_wallet or None,
                "medicationCode": parsed.medication_code or None,
            })
            return error_response("Wallet signature verification failed for this doctor request.", 401)

        result = service.create_approval_request(parsed)
        if not result.ok:
            audit(request, "patient_doctor_request_rejected", ROLES["PATIENT"], {"issueCount": len(result.issues)})
            return error_response(issues=result.issues, status_code=422)

        record = result.request
        audit(request, "patient_doctor_request_submitted", ROLES["PATIENT"], {
            "requestId": record.request_id,
            "doctorWallet": record.doctor_wallet,
            "patientWallet": record.patient_wallet,
            "verificationStatus": record.verification_status,
            "medicationCode": record.medication_code,
            "monadWalletSigner": proof.signer,
        })
        return success_response({"request": record.to_wire()})

    @app.post("/api/compliance/doctor/file")
    async def file_attestation(request: Request):
        """Doctor files a signed attestation"""
        body, ok = await _read_json(request)
        if not ok:
            return error_response(INVALID_JSON, 400)

        resource = f"{_field(body, 'requestId')}|{_field(body, 'patientWallet')}|{_field(body, 'medicationCode')}"
        auth = doctor_auth(request, body, DOCTOR_ACTION_FILE_ATTESTATION, resource)
        if not auth.ok:
            audit(request, "doctor_attestation_denied", ROLES["DOCTOR"], {
                "reason": auth.reason or "unauthorized",
                "doctorWallet": _field(body, "doctorWallet"),
            })
            return error_response(UNAUTHORIZED, 401)

        parsed, issues = parse_request(DoctorFileAttestationRequest, body)
        result = service.file_doctor_attestation(parsed) if parsed is not None else None
        if result is None or not result.ok:
            issues = issues if result is None else result.issues
            audit(request, "doctor_attestation_rejected", ROLES["DOCTOR"], {"issueCount": len(issues)})
            return error_response(issues=issues, status_code=422)

        attestation = result.attestation
        audit(request, "doctor_attestation_filed", ROLES["DOCTOR"], {
            "approvalCode": attestation.approval_code,
            "medicationCategory": attestation.medication_category,
            "canPurchase": attestation.can_purchase,
            "monadWalletSigner": auth.signer,
        }, attestation_id=attestation.attestation_id)
        return success_response({"attestation": attestation.to_wire()})

    @app.post("/api/compliance/doctor/confirm")
    async def confirm_attestation(request: Request):
        """Patient redeems an approval code"""
        body, ok = await _read_json(request)
        if not ok:
            return error_response(INVALID_JSON, 400)

        parsed, issues = parse_request(DoctorConfirmAttestationRequest, body)
        if parsed is None:
            return error_response(issues=issues, status_code=422)

        auth = verify_patient_confirm_auth(
            parsed.patient_wallet,
            parsed.approval_code,
            parsed.wallet_proof,
            config.request_window_ms,
            nonce_cache=nonce_cache,
        )
        if not auth.ok:
            audit(request, "doctor_attestation_confirm_denied", ROLES["PATIENT"], {
                "approvalCode": parsed.approval_code,
                "reason": auth.reason or "invalid_wallet_auth",
            })
            return error_response("Wallet signature verification failed for approval confirmation.", 401)

        result = service.confirm_doctor_attestation(parsed)
        if not result.ok:
            audit(request, "doctor_attestation_confirm_failed", ROLES["PATIENT"], {
                "approvalCode": parsed.approval_code,
                "reason": result.reason,
            })
            return error_response(result.error, 422, reason=result.reason)

        audit(request, "doctor_attestation_confirmed", ROLES["PATIENT"], {
            "approvalCode": parsed.approval_code,
            "monadWalletSigner": auth.signer,
        }, attestation_id=result.attestation.attestation_id)
        return JSONResponse(content=result.to_wire(), status_code=200)

    @app.get("/api/compliance/doctor/records")
    async def doctor_records(request: Request, doctorWallet: str = ""):
        """Latest attestations, approval requests and registered patients for a doctor"""
        doctor_wallet = doctorWallet.strip()
        if not doctor_wallet:
            return error_response("doctorWallet query param required", 400)
        return success_response(service.doctor_records(doctor_wallet))

    @app.put("/api/compliance/doctor/update-patient")
    async def update_patient_wallet(request: Request):
        """Move a registered patient to a new wallet"""
        body, ok = await _read_json(request)
        if not ok:
            return error_response(INVALID_JSON, 400)

        parsed, _ = parse_request(UpdatePatientWalletRequest, body)
        if parsed is None:
            return error_response("Missing required fields", 400)

        resource = f"{parsed.old_patient_wallet}|{parsed.new_patient_wallet}"
        auth = doctor_auth(request, body, DOCTOR_ACTION_UPDATE_PATIENT, resource)
        if not auth.ok:
            audit(request, "doctor_update_patient_denied", ROLES["DOCTOR"], {
                "reason": auth.reason or "unauthorized",
                "doctorWallet": parsed.doctor_wallet,
            })
            return error_response(UNAUTHORIZED, 401)

        result = service.correct_patient_wallet(
            parsed.doctor_wallet, parsed.old_patient_wallet, parsed.new_patient_wallet
        )
        if not result.ok:
            return error_response(result.error, 404 if result.reason == "not_found" else 400)

        audit(request, "doctor_update_patient_wallet", ROLES["DOCTOR"], {
            "doctorWallet": parsed.doctor_wallet,
            "oldPatientWallet": parsed.old_patient_wallet,
            "newPatientWallet": parsed.new_patient_wallet,
            "attestationsUpdated": result.attestations_updated,
        })
        return success_response({
            "record": result.record.to_wire(),
            "attestationsUpdated": result.attestations_updated,
        })

    @app.get("/api/compliance/doctor/medications")
    async def medications(q: str = ""):
        """Search the medication catalog"""
        query = q.strip()
        if query and len(query) < 2:
            return error_response("Query must be at least 2 characters", 400)
        return success_response({"medications": [item.to_wire() for item in list_medication_catalog(query)]})

    @app.post("/api/compliance/patient/approvals")
    async def patient_approvals(request: Request):
        """List a patient's purchasable approvals"""
        body, ok = await _read_json(request)
        if not ok:
            return error_response(INVALID_JSON, 400)

        patient_wallet = _field(body, "patientWallet").strip()
        if not patient_wallet:
            return error_response("patientWallet is required", 400)

        parsed, issues = parse_request(PatientApprovalsRequest, body)
        if parsed is None:
            return error_response(issues=issues, status_code=422)

        auth = verify_patient_workspace_auth(
            patient_wallet, parsed.wallet_proof, config.request_window_ms, nonce_cache=nonce_cache
        )
        if not auth.ok:
            audit(request, "patient_workspace_denied", ROLES["PATIENT"], {
                "patientWallet": patient_wallet,
                "reason": auth.reason or "unauthorized",
            })
            return error_response(UNAUTHORIZED, 401)

        approvals = service.get_patient_approved_medications(patient_wallet)
        return success_response({
            "patientWallet": patient_wallet,
            "approvals": [approval.to_wire() for approval in approvals],
        })

    @app.get("/api/compliance/pharmacy/{attestation_id}")
    async def pharmacy_handoff(attestation_id: str, request: Request):
        """Return the sealed handoff envelope for an attestation"""
        auth = verify_pharmacy_request(
            attestation_id=attestation_id,
            api_key=request.headers.get("x-pharmacy-api-key") or "",
            expected_api_key=config.pharmacy_api_key,
            request_ts=request.headers.get("x-request-ts") or "",
            request_nonce=request.headers.get("x-request-nonce") or "",
            signature=request.headers.get("x-request-signature") or "",
            transport_secret=config.transport_secret,
            request_window_ms=config.request_window_ms,
            nonce_cache=nonce_cache,
        )
        if not auth.ok:
            audit(request, "pharmacy_handoff_denied", ROLES["PHARMACY"], {"reason": auth.reason},
                  attestation_id=attestation_id)
            return error_response(UNAUTHORIZED, 401)

        try:
            result = service.seal_pharmacy_handoff(attestation_id)
        except SealedPayloadError as e:
            logger.error(f"Stored payload for {attestation_id} failed to open: {str(e)}")
            audit(request, "pharmacy_handoff_error", ROLES["PLATFORM"], {"error": "Failed to resolve attestation"},
                  attestation_id=attestation_id)
            return error_response("Failed to resolve attestation", 404)

        if not result.ok:
            audit(request, "pharmacy_handoff_error", ROLES["PLATFORM"], {"error": result.error},
                  attestation_id=attestation_id)
            return error_response(result.error, 404)

        audit(request, "pharmacy_handoff_served", ROLES["PLATFORM"], {"attestationStatus": result.attestation_status},
              attestation_id=attestation_id)
        return JSONResponse(content=result.envelope.to_wire(), status_code=200)

    @app.get("/api/compliance/audit")
    async def audit_events(request: Request, limit: str = "100"):
        """Recent audit events (admin)"""
        if not is_admin(request):
            audit(request, "compliance_audit_denied", ROLES["PLATFORM"], {"reason": "bad_admin_key"})
            return error_response(UNAUTHORIZED, 401)

        try:
            count = int(limit)
        except ValueError:
            count = 100
        events = audit_log.recent(count)
        return success_response({"count": len(events), "events": [event.to_wire() for event in events]})

    @app.get("/api/compliance/audit/doctor")
    async def doctor_audit(request: Request, doctorWallet: str = ""):
        """Prescription history for one doctor (admin)"""
        if not is_admin(request):
            audit(request, "doctor_audit_denied", ROLES["PLATFORM"], {"reason": "bad_admin_key"})
            return error_response(UNAUTHORIZED, 401)

        doctor_wallet = doctorWallet.strip()
        if not doctor_wallet:
            return error_response("doctorWallet query param required", 400)

        summary = service.doctor_audit_summary(doctor_wallet)
        audit(request, "doctor_audit_served", ROLES["PLATFORM"], {
            "doctorWallet": doctor_wallet,
            "prescriptionCount": summary["summary"]["prescriptionCount"],
            "patientCount": summary["summary"]["patientCount"],
        })
        return success_response(summary)

    @app.post("/api/compliance/admin/reset")
    async def reset(request: Request):
        """Clear the store, the nonce cache and the audit buffer (admin)"""
        if not is_admin(request):
            audit(request, "compliance_reset_denied", ROLES["PLATFORM"], {"reason": "bad_admin_key"})
            return error_response(UNAUTHORIZED, 401)

        service.reset()
        nonce_cache.clear()
        audit_log.reset()
        audit(request, "compliance_reset_executed", ROLES["PLATFORM"], {"scope": "compliance-store+nonce+audit"})
        return success_response({"resetAt": to_iso(now_ms())})

    return app


app = create_app()
