"""
Constants for the compliance attestation layer.

This module defines the protocol tags and versions that are part of the signed
message contract, role names used in the audit trail, and the policy bounds
enforced by the validators.
"""

# Role definitions
ROLES = {
    "PATIENT": "patient",
    "DOCTOR": "doctor",
    "PHARMACY": "pharmacy",
    "PLATFORM": "platform",
}

# Canonical message protocol tags (first line of every signed message)
DOCTOR_AUTH_TAG = "PHANTOMDROP_DOCTOR_AUTH"
PATIENT_CONFIRM_AUTH_TAG = "PHANTOMDROP_PATIENT_CONFIRM_AUTH"
PATIENT_WORKSPACE_AUTH_TAG = "PHANTOMDROP_PATIENT_WORKSPACE_AUTH"
DOCTOR_REQUEST_PROOF_TAG = "PHANTOMDROP_DOCTOR_REQUEST_PROOF"

# Wallet proof versions
PATIENT_CONFIRM_WALLET_PROOF_VERSION = "patient_confirm_v1"
PATIENT_WORKSPACE_AUTH_VERSION = "patient_workspace_v1"
PATIENT_DOCTOR_WALLET_PROOF_VERSION = "doctor_request_v1"

# Nonce cache namespaces, one per authenticator
NONCE_NAMESPACE_DOCTOR = "doctor-wallet"
NONCE_NAMESPACE_PATIENT_CONFIRM = "patient-confirm"
NONCE_NAMESPACE_PATIENT_WORKSPACE = "patient-workspace"
NONCE_NAMESPACE_PATIENT_PROOF = "patient-proof"
NONCE_NAMESPACE_PHARMACY = "pharmacy-handoff"

MIN_NONCE_LENGTH = 12

# Doctor wallet actions bound into the doctor auth message
DOCTOR_ACTION_REGISTER_PATIENT = "register_patient"
DOCTOR_ACTION_FILE_ATTESTATION = "file_attestation"
DOCTOR_ACTION_UPDATE_PATIENT = "update_patient"

# Pseudo-chain anchoring
CHAIN_NETWORK = "monad-testnet"
CHAIN_FINALITY_MS = 800

# Pharmacy handoff transport
HANDOFF_TRANSPORT = "sealed-v1"
HANDOFF_KEY_ID = "platform-transport-v1"

# Attestation validation versions
INTAKE_VALIDATION_VERSION = "v1.0.0"
DOCTOR_FILED_VALIDATION_VERSION = "doctor-filed-v2"

# Policy bounds
MIN_PATIENT_AGE_YEARS = 18
MIN_QUANTITY = 1
MAX_QUANTITY = 365
MAX_ATTESTATION_VALIDITY_DAYS = 90
MAX_PICKUP_WINDOW_DAYS = 45
MIN_LEGAL_NAME_LENGTH = 3
MIN_HEALTH_CARD_LENGTH = 5
MIN_PRESCRIPTION_ID_LENGTH = 6
MIN_REQUEST_ID_LENGTH = 8

NON_CONTROLLED = "non_controlled"
CONTROLLED_SCHEDULES = ("non_controlled", "schedule_iii_v", "schedule_ii")

# Verification states
REGISTRY_VERIFIED = "registry_verified"
NEEDS_MANUAL_REVIEW = "needs_manual_review"
MANUAL_REVIEW = "manual_review"

# Audit buffer bounds
AUDIT_BUFFER_SIZE = 2000
AUDIT_MAX_LIMIT = 500

# Durable store snapshot format
STORE_SNAPSHOT_VERSION = 1
