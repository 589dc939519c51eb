"""
Wallet-signature authentication for doctors, patients and pharmacies.

Every authenticator runs a fixed sequence of fail-fast gates and returns an
AuthResult instead of raising. The reason code of the first failing gate is
kept so the caller can write it to the audit trail; end users only ever see a
generic "Unauthorized".

Gate order for wallet signatures:
    1. request timestamp within the freshness window
    2. signer wallet is a hex EVM address
    3. signature is a 65-byte hex signature
    4. nonce is long enough and not yet consumed (namespaced per role and wallet)
    5. signer recovered from the canonical message equals the claimed wallet
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from compliance.constants import (
    MIN_NONCE_LENGTH,
    NONCE_NAMESPACE_DOCTOR,
    NONCE_NAMESPACE_PATIENT_CONFIRM,
    NONCE_NAMESPACE_PATIENT_PROOF,
    NONCE_NAMESPACE_PATIENT_WORKSPACE,
    NONCE_NAMESPACE_PHARMACY,
    PATIENT_CONFIRM_WALLET_PROOF_VERSION,
    PATIENT_WORKSPACE_AUTH_VERSION,
)
from compliance.crypto import recover_signer, to_checksum, verify_signature
from compliance.messages import (
    build_doctor_wallet_auth_message,
    build_patient_confirm_auth_message,
    build_patient_doctor_request_proof_message,
    build_patient_workspace_auth_message,
    is_hex_ecdsa_signature,
    is_hex_evm_address,
)
from compliance.models import PatientDoctorApprovalRequest, PatientWalletProof, PatientWorkspaceWalletProof
from compliance.nonce import NonceCache, get_nonce_cache
from compliance.timeutil import is_fresh, now_ms

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    ok: bool
    reason: Optional[str] = None
    signer: Optional[str] = None


def _deny(reason: str, subject: str) -> AuthResult:
    logger.warning(f"Authentication rejected for {subject}: {reason}")
    return AuthResult(ok=False, reason=reason)


def _consume(nonce_cache: Optional[NonceCache], namespace: str, nonce: str, now: int, ttl_ms: int) -> bool:
    nonce = (nonce or "").strip()
    if len(nonce) < MIN_NONCE_LENGTH:
        return False
    cache = nonce_cache if nonce_cache is not None else get_nonce_cache()
    return cache.consume(f"{namespace}:{nonce}", now, ttl_ms)


def _recover_and_compare(message: str, signature: str, claimed_wallet: str):
    """
    Recover the signer of a canonical message and compare it with the claimed wallet.

    Returns:
        tuple: (recovered checksummed address, True if it matches the claimed wallet)

    Raises:
        Exception: If the signature cannot be recovered or the claimed wallet is not an address
    """
    recovered = recover_signer(message, signature)
    claimed = to_checksum(claimed_wallet)
    return recovered, recovered == claimed


def verify_doctor_wallet_auth(
    doctor_wallet: str,
    monad_wallet: str,
    action: str,
    resource: str,
    request_ts: str,
    request_nonce: str,
    signature: str,
    request_window_ms: int,
    nonce_cache: Optional[NonceCache] = None,
    now: Optional[int] = None,
) -> AuthResult:
    """
    Verify a doctor's signed request.

    Args:
        doctor_wallet: The doctor wallet the request acts for
        monad_wallet: The wallet that signed the request
        action: Action bound into the signature, e.g. "file_attestation"
        resource: Resource string bound into the signature
        request_ts: Request timestamp in ms since epoch (decimal string)
        request_nonce: Single-use nonce
        signature: 0x-prefixed 65-byte signature over the canonical message
        request_window_ms: Freshness window for the timestamp and nonce
        nonce_cache: Cache to consume the nonce in (process-wide cache by default)
        now: Current time in ms (defaults to the wall clock)

    Returns:
        AuthResult: ok with the recovered signer, or the reason of the first failing gate
    """
    now = now_ms() if now is None else now
    doctor_wallet = doctor_wallet or ""

    if not is_fresh(request_ts, request_window_ms, now):
        return _deny("expired_or_invalid_timestamp", doctor_wallet)

    if not is_hex_evm_address(monad_wallet):
        return _deny("invalid_monad_wallet", doctor_wallet)

    if not is_hex_ecdsa_signature(signature):
        return _deny("invalid_signature_format", doctor_wallet)

    namespace = f"{NONCE_NAMESPACE_DOCTOR}:{doctor_wallet.lower()}"
    if not _consume(nonce_cache, namespace, request_nonce, now, request_window_ms):
        return _deny("replay_or_bad_nonce", doctor_wallet)

    try:
        message = build_doctor_wallet_auth_message(
            doctor_wallet, monad_wallet, action, resource, request_ts, request_nonce
        )
        recovered, matches = _recover_and_compare(message, signature, monad_wallet)
    except Exception as e:
        logger.warning(f"Doctor signature recovery failed: {str(e)}")
        return _deny("verification_failed", doctor_wallet)

    if not matches:
        return _deny("signer_mismatch", doctor_wallet)

    return AuthResult(ok=True, signer=recovered)


def verify_patient_confirm_auth(
    patient_wallet: str,
    approval_code: str,
    wallet_proof: Optional[PatientWalletProof],
    request_window_ms: int,
    nonce_cache: Optional[NonceCache] = None,
    now: Optional[int] = None,
) -> AuthResult:
    """
    Verify the wallet proof a patient attaches when redeeming an approval code.

    The proof version is checked before the common gates.
    """
    now = now_ms() if now is None else now
    patient_wallet = patient_wallet or ""

    if wallet_proof is None:
        return _deny("missing_wallet_proof", patient_wallet)

    if wallet_proof.version != PATIENT_CONFIRM_WALLET_PROOF_VERSION:
        return _deny("invalid_wallet_proof_version", patient_wallet)

    if not is_fresh(wallet_proof.request_ts, request_window_ms, now):
        return _deny("expired_or_invalid_timestamp", patient_wallet)

    if not is_hex_evm_address(wallet_proof.monad_wallet):
        return _deny("invalid_monad_wallet", patient_wallet)

    if not is_hex_ecdsa_signature(wallet_proof.signature):
        return _deny("invalid_signature_format", patient_wallet)

    namespace = f"{NONCE_NAMESPACE_PATIENT_CONFIRM}:{patient_wallet.lower()}"
    if not _consume(nonce_cache, namespace, wallet_proof.request_nonce, now, request_window_ms):
        return _deny("replay_or_bad_nonce", patient_wallet)

    try:
        message = build_patient_confirm_auth_message(
            patient_wallet,
            approval_code,
            wallet_proof.monad_wallet,
            wallet_proof.request_ts,
            wallet_proof.request_nonce,
        )
        recovered, matches = _recover_and_compare(message, wallet_proof.signature, wallet_proof.monad_wallet)
    except Exception as e:
        logger.warning(f"Patient confirm signature recovery failed: {str(e)}")
        return _deny("verification_failed", patient_wallet)

    if not matches:
        return _deny("signer_mismatch", patient_wallet)

    return AuthResult(ok=True, signer=recovered)


def verify_patient_workspace_auth(
    patient_wallet: str,
    wallet_proof: Optional[PatientWorkspaceWalletProof],
    request_window_ms: int,
    nonce_cache: Optional[NonceCache] = None,
    now: Optional[int] = None,
) -> AuthResult:
    """
    Verify a patient workspace proof.

    On top of the common gates the recovered signer must be the patient wallet
    itself, so no other wallet can read a patient's approvals.
    """
    now = now_ms() if now is None else now
    patient_wallet = patient_wallet or ""

    if wallet_proof is None:
        return _deny("missing_wallet_proof", patient_wallet)

    if wallet_proof.version != PATIENT_WORKSPACE_AUTH_VERSION:
        return _deny("invalid_wallet_proof_version", patient_wallet)

    if not is_fresh(wallet_proof.request_ts, request_window_ms, now):
        return _deny("expired_or_invalid_timestamp", patient_wallet)

    if not is_hex_evm_address(wallet_proof.monad_wallet):
        return _deny("invalid_monad_wallet", patient_wallet)

    if not is_hex_ecdsa_signature(wallet_proof.signature):
        return _deny("invalid_signature_format", patient_wallet)

    namespace = f"{NONCE_NAMESPACE_PATIENT_WORKSPACE}:{patient_wallet.lower()}"
    if not _consume(nonce_cache, namespace, wallet_proof.request_nonce, now, request_window_ms):
        return _deny("replay_or_bad_nonce", patient_wallet)

    try:
        message = build_patient_workspace_auth_message(
            patient_wallet,
            wallet_proof.monad_wallet,
            wallet_proof.action,
            wallet_proof.resource,
            wallet_proof.request_ts,
            wallet_proof.request_nonce,
        )
        recovered, matches = _recover_and_compare(message, wallet_proof.signature, wallet_proof.monad_wallet)
    except Exception as e:
        logger.warning(f"Patient workspace signature recovery failed: {str(e)}")
        return _deny("verification_failed", patient_wallet)

    if not matches:
        return _deny("signer_mismatch", patient_wallet)

    if recovered.lower() != patient_wallet.strip().lower():
        return _deny("patient_wallet_mismatch", patient_wallet)

    return AuthResult(ok=True, signer=recovered)


def verify_patient_request_proof(
    request: PatientDoctorApprovalRequest,
    request_window_ms: int,
    nonce_cache: Optional[NonceCache] = None,
    now: Optional[int] = None,
) -> AuthResult:
    """
    Verify the wallet proof on a patient's approval request.

    The signed message binds the requested doctor, medication and relay id as
    well as the patient's legal identity (health card reduced to its last four
    characters).
    """
    now = now_ms() if now is None else now
    proof = request.wallet_proof
    subject = request.patient_wallet or ""

    if proof is None:
        return _deny("missing_wallet_proof", subject)

    if not proof.request_ts or not proof.request_nonce or not proof.signature:
        return _deny("incomplete_wallet_proof", subject)

    if not is_fresh(proof.request_ts, request_window_ms, now):
        return _deny("expired_or_invalid_wallet_proof_ts", subject)

    if not is_hex_evm_address(proof.monad_wallet):
        return _deny("invalid_monad_wallet", subject)

    if not is_hex_ecdsa_signature(proof.signature):
        return _deny("invalid_signature_format", subject)

    if not _consume(nonce_cache, NONCE_NAMESPACE_PATIENT_PROOF, proof.request_nonce, now, request_window_ms):
        return _deny("replay_or_bad_wallet_proof_nonce", subject)

    try:
        message = build_patient_doctor_request_proof_message(
            patient_wallet=request.patient_wallet,
            doctor_wallet=request.doctor_wallet,
            medication_code=request.medication_code,
            request_relay_id=request.request_relay_id,
            legal_name=request.legal_name,
            dob=request.dob,
            patient_state=request.patient_state,
            health_card_number=request.health_card_number,
            monad_wallet=proof.monad_wallet,
            request_ts=proof.request_ts,
            request_nonce=proof.request_nonce,
        )
        recovered, matches = _recover_and_compare(message, proof.signature, proof.monad_wallet)
    except Exception as e:
        logger.warning(f"Patient request proof recovery failed: {str(e)}")
        return _deny("wallet_proof_verification_failed", subject)

    if not matches:
        return _deny("wallet_proof_signer_mismatch", subject)

    return AuthResult(ok=True, signer=recovered)


def verify_pharmacy_request(
    attestation_id: str,
    api_key: str,
    expected_api_key: str,
    request_ts: str,
    request_nonce: str,
    signature: str,
    transport_secret: str,
    request_window_ms: int,
    nonce_cache: Optional[NonceCache] = None,
    now: Optional[int] = None,
) -> AuthResult:
    """
    Verify a pharmacy handoff request.

    The pharmacy proves possession of the API key and of the transport secret:
    the request signature is an HMAC over {attestationId, requestTs, requestNonce}.

    Returns:
        AuthResult: ok, or one of bad_api_key, expired_or_invalid_timestamp,
        replay_or_bad_nonce, bad_signature
    """
    now = now_ms() if now is None else now
    subject = f"pharmacy request for {attestation_id}"

    if not api_key or not hmac.compare_digest(api_key.encode("utf-8"), expected_api_key.encode("utf-8")):
        return _deny("bad_api_key", subject)

    if not is_fresh(request_ts, request_window_ms, now):
        return _deny("expired_or_invalid_timestamp", subject)

    if not _consume(nonce_cache, NONCE_NAMESPACE_PHARMACY, request_nonce, now, request_window_ms):
        return _deny("replay_or_bad_nonce", subject)

    signed = {"attestationId": attestation_id, "requestTs": request_ts, "requestNonce": request_nonce}
    if not verify_signature(signed, signature, transport_secret):
        return _deny("bad_signature", subject)

    return AuthResult(ok=True)
