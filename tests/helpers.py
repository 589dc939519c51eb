"""
Shared fixtures for the compliance tests: local test accounts, a test
configuration and builders for signed headers and wallet proofs.
"""

import logging
import uuid
from typing import Dict, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from compliance.config import ComplianceConfig
from compliance.constants import (
    PATIENT_CONFIRM_WALLET_PROOF_VERSION,
    PATIENT_DOCTOR_WALLET_PROOF_VERSION,
    PATIENT_WORKSPACE_AUTH_VERSION,
)
from compliance.crypto import sign_payload
from compliance.messages import (
    build_doctor_wallet_auth_message,
    build_patient_confirm_auth_message,
    build_patient_doctor_request_proof_message,
    build_patient_workspace_auth_message,
)
from compliance.timeutil import now_ms, to_iso

logging.getLogger("compliance").setLevel(logging.CRITICAL)

DAY_MS = 24 * 60 * 60 * 1000

# Well-known local development keys (never funded outside a dev chain)
_TEST_KEYS = {
    "Doctor 1": "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80",
    "Doctor 2": "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d",
    "Patient 1": "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a",
    "Patient 2": "0x7c852118294e51e653712a81e05800f419141751be58f605c371e15141b007a6",
    "Patient 3": "0x47e179ec197488593b187f80a00eb0da91f1b9d0b13f8733639f19c30a34926a",
}

# Test accounts
TEST_ACCOUNTS = {
    name: {"address": Account.from_key(private_key).address, "private_key": private_key}
    for name, private_key in _TEST_KEYS.items()
}

DOCTOR = TEST_ACCOUNTS["Doctor 1"]
OTHER_DOCTOR = TEST_ACCOUNTS["Doctor 2"]
PATIENT = TEST_ACCOUNTS["Patient 1"]
OTHER_PATIENT = TEST_ACCOUNTS["Patient 2"]
NEW_PATIENT_WALLET = TEST_ACCOUNTS["Patient 3"]

LEGAL_IDENTITY = {
    "legalName": "Jane Q Public",
    "dob": "1985-04-12",
    "patientState": "CA",
    "healthCardNumber": "HC-9988776655",
}

MEDICATION_CODE = "atorvastatin_20mg_tablet"


def make_config(**overrides) -> ComplianceConfig:
    values = dict(
        attestation_secret="test-attestation-secret",
        encryption_secret="test-encryption-secret",
        transport_secret="test-transport-secret",
        pharmacy_api_key="test-pharmacy-key",
        admin_api_key="test-admin-key",
    )
    values.update(overrides)
    return ComplianceConfig(**values)


def new_nonce() -> str:
    return uuid.uuid4().hex


def sign_text(private_key: str, message: str) -> str:
    """Sign a text message the way a browser wallet does (EIP-191 personal_sign)"""
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    return Web3.to_hex(signed.signature)


def doctor_headers(
    account: Dict[str, str],
    doctor_wallet: str,
    action: str,
    resource: str,
    request_ts: Optional[str] = None,
    request_nonce: Optional[str] = None,
) -> Dict[str, str]:
    request_ts = request_ts or str(now_ms())
    request_nonce = request_nonce or new_nonce()
    message = build_doctor_wallet_auth_message(
        doctor_wallet, account["address"], action, resource, request_ts, request_nonce
    )
    return {
        "x-doctor-monad-wallet": account["address"],
        "x-doctor-request-ts": request_ts,
        "x-doctor-request-nonce": request_nonce,
        "x-doctor-request-signature": sign_text(account["private_key"], message),
    }


def confirm_proof(
    account: Dict[str, str],
    patient_wallet: str,
    approval_code: str,
    request_ts: Optional[str] = None,
    request_nonce: Optional[str] = None,
) -> Dict[str, str]:
    request_ts = request_ts or str(now_ms())
    request_nonce = request_nonce or new_nonce()
    message = build_patient_confirm_auth_message(
        patient_wallet, approval_code, account["address"], request_ts, request_nonce
    )
    return {
        "version": PATIENT_CONFIRM_WALLET_PROOF_VERSION,
        "monadWallet": account["address"],
        "requestTs": request_ts,
        "requestNonce": request_nonce,
        "signature": sign_text(account["private_key"], message),
    }


def workspace_proof(
    account: Dict[str, str],
    patient_wallet: str,
    action: str = "list_approvals",
    resource: str = "patient_approvals",
    request_ts: Optional[str] = None,
    request_nonce: Optional[str] = None,
) -> Dict[str, str]:
    request_ts = request_ts or str(now_ms())
    request_nonce = request_nonce or new_nonce()
    message = build_patient_workspace_auth_message(
        patient_wallet, account["address"], action, resource, request_ts, request_nonce
    )
    return {
        "version": PATIENT_WORKSPACE_AUTH_VERSION,
        "monadWallet": account["address"],
        "action": action,
        "resource": resource,
        "requestTs": request_ts,
        "requestNonce": request_nonce,
        "signature": sign_text(account["private_key"], message),
    }


def approval_request_body(
    account: Dict[str, str],
    doctor_wallet: str,
    medication_code: str = MEDICATION_CODE,
    identity: Optional[Dict[str, str]] = None,
    request_ts: Optional[str] = None,
    request_nonce: Optional[str] = None,
    relay_id: Optional[str] = None,
) -> Dict:
    """A patient approval request body with a valid wallet proof"""
    identity = identity or LEGAL_IDENTITY
    request_ts = request_ts or str(now_ms())
    request_nonce = request_nonce or new_nonce()
    relay_id = relay_id or f"relay_{new_nonce()[:12]}"
    message = build_patient_doctor_request_proof_message(
        patient_wallet=account["address"],
        doctor_wallet=doctor_wallet,
        medication_code=medication_code,
        request_relay_id=relay_id,
        legal_name=identity["legalName"],
        dob=identity["dob"],
        patient_state=identity["patientState"],
        health_card_number=identity["healthCardNumber"],
        monad_wallet=account["address"],
        request_ts=request_ts,
        request_nonce=request_nonce,
    )
    return {
        "doctorWallet": doctor_wallet,
        "patientWallet": account["address"],
        "medicationCode": medication_code,
        "requestRelayId": relay_id,
        **identity,
        "walletProof": {
            "version": PATIENT_DOCTOR_WALLET_PROOF_VERSION,
            "monadWallet": account["address"],
            "requestTs": request_ts,
            "requestNonce": request_nonce,
            "signature": sign_text(account["private_key"], message),
        },
    }


def register_patient_body(
    doctor_wallet: str,
    patient_wallet: str,
    identity: Optional[Dict[str, str]] = None,
    registry_relay_id: Optional[str] = None,
) -> Dict:
    return {
        "doctorWallet": doctor_wallet,
        "doctorName": "Dr. Ada Lovelace",
        "patientWallet": patient_wallet,
        "registryRelayId": registry_relay_id or f"registry_{new_nonce()[:12]}",
        **(identity or LEGAL_IDENTITY),
    }


def file_attestation_body(
    doctor_wallet: str,
    patient_wallet: str,
    request_id: Optional[str] = None,
    medication_code: str = MEDICATION_CODE,
    valid_until_ms: Optional[int] = None,
    **overrides,
) -> Dict:
    valid_until_ms = valid_until_ms or now_ms() + 7 * DAY_MS
    body = {
        "doctorWallet": doctor_wallet,
        "doctorNpi": "1234567893",
        "patientWallet": patient_wallet,
        "medicationCode": medication_code,
        "medicationCategory": "Cardiovascular",
        "controlledSchedule": "non_controlled",
        "quantity": 30,
        "validUntilIso": to_iso(valid_until_ms),
        "canPurchase": True,
    }
    if request_id is not None:
        body["requestId"] = request_id
    body.update(overrides)
    return body


def pharmacy_headers(
    attestation_id: str,
    config: ComplianceConfig,
    request_ts: Optional[str] = None,
    request_nonce: Optional[str] = None,
    api_key: Optional[str] = None,
) -> Dict[str, str]:
    request_ts = request_ts or str(now_ms())
    request_nonce = request_nonce or new_nonce()
    signature = sign_payload(
        {"attestationId": attestation_id, "requestTs": request_ts, "requestNonce": request_nonce},
        config.transport_secret,
    )
    return {
        "x-pharmacy-api-key": api_key if api_key is not None else config.pharmacy_api_key,
        "x-request-ts": request_ts,
        "x-request-nonce": request_nonce,
        "x-request-signature": signature,
    }
