"""
Canonical messages signed by wallets.

Each builder turns structured fields into a newline-joined list of
"name:value" lines starting with a fixed protocol tag. The exact field order
and normalization are the signature contract: clients sign the same bytes, so
any change here invalidates every outstanding signature.
"""

import re
from typing import Any

from compliance.constants import (
    DOCTOR_AUTH_TAG,
    DOCTOR_REQUEST_PROOF_TAG,
    PATIENT_CONFIRM_AUTH_TAG,
    PATIENT_CONFIRM_WALLET_PROOF_VERSION,
    PATIENT_DOCTOR_WALLET_PROOF_VERSION,
    PATIENT_WORKSPACE_AUTH_TAG,
    PATIENT_WORKSPACE_AUTH_VERSION,
)

HEX_EVM_ADDRESS = re.compile(r"0x[a-fA-F0-9]{40}")
HEX_ECDSA_SIGNATURE = re.compile(r"0x[a-fA-F0-9]{130}")
_WHITESPACE = re.compile(r"\s+")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def compact(value: Any) -> str:
    """Trim and collapse internal whitespace runs to a single space"""
    return _WHITESPACE.sub(" ", _text(value).strip())


def normalize_address(value: Any) -> str:
    return _text(value).strip().lower()


def health_card_last4(value: Any) -> str:
    """Keep only the last four characters of the compacted, uppercased card number"""
    card = _WHITESPACE.sub("", _text(value).strip().upper())
    return card[-4:]


def is_hex_evm_address(value: Any) -> bool:
    return HEX_EVM_ADDRESS.fullmatch(_text(value).strip()) is not None


def is_hex_ecdsa_signature(value: Any) -> bool:
    return HEX_ECDSA_SIGNATURE.fullmatch(_text(value).strip()) is not None


def build_doctor_wallet_auth_message(
    doctor_wallet: str,
    monad_wallet: str,
    action: str,
    resource: str,
    request_ts: str,
    request_nonce: str,
) -> str:
    return "\n".join([
        DOCTOR_AUTH_TAG,
        f"doctorWallet:{compact(doctor_wallet).lower()}",
        f"monadWallet:{compact(monad_wallet).lower()}",
        f"action:{compact(action).lower()}",
        f"resource:{compact(resource)}",
        f"requestTs:{compact(request_ts)}",
        f"requestNonce:{compact(request_nonce)}",
    ])


def build_patient_confirm_auth_message(
    patient_wallet: str,
    approval_code: str,
    monad_wallet: str,
    request_ts: str,
    request_nonce: str,
) -> str:
    return "\n".join([
        PATIENT_CONFIRM_AUTH_TAG,
        f"version:{PATIENT_CONFIRM_WALLET_PROOF_VERSION}",
        f"patientWallet:{compact(patient_wallet).lower()}",
        f"approvalCode:{compact(approval_code).upper()}",
        f"monadWallet:{compact(monad_wallet).lower()}",
        f"requestTs:{compact(request_ts)}",
        f"requestNonce:{compact(request_nonce)}",
    ])


def build_patient_workspace_auth_message(
    patient_wallet: str,
    monad_wallet: str,
    action: str,
    resource: str,
    request_ts: str,
    request_nonce: str,
) -> str:
    return "\n".join([
        PATIENT_WORKSPACE_AUTH_TAG,
        f"version:{PATIENT_WORKSPACE_AUTH_VERSION}",
        f"patientWallet:{compact(patient_wallet).lower()}",
        f"monadWallet:{compact(monad_wallet).lower()}",
        f"action:{compact(action).lower()}",
        f"resource:{compact(resource)}",
        f"requestTs:{compact(request_ts)}",
        f"requestNonce:{compact(request_nonce)}",
    ])


def build_patient_doctor_request_proof_message(
    patient_wallet: str,
    doctor_wallet: str,
    medication_code: str,
    request_relay_id: str,
    legal_name: str,
    dob: str,
    patient_state: str,
    health_card_number: str,
    monad_wallet: str,
    request_ts: str,
    request_nonce: str,
) -> str:
    """
    Build the message a patient signs when asking a doctor for approval.

    The legal identity is bound into the signature, but only the last four
    characters of the health-card number appear in the message itself.
    """
    return "\n".join([
        DOCTOR_REQUEST_PROOF_TAG,
        f"version:{PATIENT_DOCTOR_WALLET_PROOF_VERSION}",
        f"patientWallet:{normalize_address(patient_wallet)}",
        f"doctorWallet:{normalize_address(doctor_wallet)}",
        f"medicationCode:{compact(medication_code).lower()}",
        f"requestRelayId:{compact(request_relay_id)}",
        f"monadWallet:{normalize_address(monad_wallet)}",
        f"legalName:{compact(legal_name).upper()}",
        f"dob:{_text(dob).strip()}",
        f"patientState:{_text(patient_state).strip().upper()}",
        f"healthCardLast4:{health_card_last4(health_card_number)}",
        f"requestTs:{_text(request_ts).strip()}",
        f"requestNonce:{_text(request_nonce).strip()}",
    ])
