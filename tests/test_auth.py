"""
Authentication tests: doctor wallet headers, patient wallet proofs and
pharmacy HMAC requests.
"""

import unittest

from compliance.auth import (
    verify_doctor_wallet_auth,
    verify_patient_confirm_auth,
    verify_patient_request_proof,
    verify_patient_workspace_auth,
    verify_pharmacy_request,
)
from compliance.models import (
    PatientDoctorApprovalRequest,
    PatientWalletProof,
    PatientWorkspaceWalletProof,
)
from compliance.nonce import NonceCache
from compliance.timeutil import now_ms

from tests.helpers import (
    DOCTOR,
    OTHER_DOCTOR,
    OTHER_PATIENT,
    PATIENT,
    approval_request_body,
    confirm_proof,
    doctor_headers,
    make_config,
    new_nonce,
    pharmacy_headers,
    workspace_proof,
)

WINDOW_MS = 5 * 60 * 1000
RESOURCE = "req_12345678|0xabc|atorvastatin_20mg_tablet"


class TestDoctorWalletAuth(unittest.TestCase):
    def setUp(self):
        self.cache = NonceCache()

    def verify(self, headers, doctor_wallet=None, action="file_attestation", resource=RESOURCE, now=None):
        return verify_doctor_wallet_auth(
            doctor_wallet=doctor_wallet or DOCTOR["address"],
            monad_wallet=headers["x-doctor-monad-wallet"],
            action=action,
            resource=resource,
            request_ts=headers["x-doctor-request-ts"],
            request_nonce=headers["x-doctor-request-nonce"],
            signature=headers["x-doctor-request-signature"],
            request_window_ms=WINDOW_MS,
            nonce_cache=self.cache,
            now=now,
        )

    def test_valid_signature(self):
        headers = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE)
        result = self.verify(headers)
        self.assertTrue(result.ok)
        self.assertEqual(result.signer, DOCTOR["address"])

    def test_stale_timestamp(self):
        stale = str(now_ms() - WINDOW_MS - 1000)
        headers = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE, request_ts=stale)
        self.assertEqual(self.verify(headers).reason, "expired_or_invalid_timestamp")

    def test_non_numeric_timestamp(self):
        headers = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE, request_ts="yesterday")
        self.assertEqual(self.verify(headers).reason, "expired_or_invalid_timestamp")

    def test_invalid_monad_wallet(self):
        headers = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE)
        headers["x-doctor-monad-wallet"] = "0x1234"
        self.assertEqual(self.verify(headers).reason, "invalid_monad_wallet")

    def test_invalid_signature_format(self):
        headers = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE)
        headers["x-doctor-request-signature"] = "0xdeadbeef"
        self.assertEqual(self.verify(headers).reason, "invalid_signature_format")

    def test_replay_is_rejected(self):
        headers = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE)
        self.assertTrue(self.verify(headers).ok)
        self.assertEqual(self.verify(headers).reason, "replay_or_bad_nonce")

    def test_short_nonce_is_rejected(self):
        headers = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE, request_nonce="short")
        self.assertEqual(self.verify(headers).reason, "replay_or_bad_nonce")

    def test_nonce_is_scoped_to_doctor_wallet(self):
        nonce = new_nonce()
        first = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE, request_nonce=nonce)
        second = doctor_headers(OTHER_DOCTOR, OTHER_DOCTOR["address"], "file_attestation", RESOURCE, request_nonce=nonce)
        self.assertTrue(self.verify(first).ok)
        self.assertTrue(self.verify(second, doctor_wallet=OTHER_DOCTOR["address"]).ok)

    def test_signer_mismatch(self):
        headers = doctor_headers(OTHER_DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE)
        headers["x-doctor-monad-wallet"] = DOCTOR["address"]
        self.assertEqual(self.verify(headers).reason, "signer_mismatch")

    def test_resource_is_bound_into_signature(self):
        headers = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE)
        self.assertEqual(self.verify(headers, resource="req_other|0xabc|x").reason, "signer_mismatch")

    def test_action_is_bound_into_signature(self):
        headers = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE)
        self.assertEqual(self.verify(headers, action="register_patient").reason, "signer_mismatch")

    def test_timestamp_is_bound_into_signature(self):
        headers = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE)
        headers["x-doctor-request-ts"] = str(int(headers["x-doctor-request-ts"]) - 1000)
        self.assertEqual(self.verify(headers).reason, "signer_mismatch")

    def test_nonce_is_bound_into_signature(self):
        headers = doctor_headers(DOCTOR, DOCTOR["address"], "file_attestation", RESOURCE)
        headers["x-doctor-request-nonce"] = new_nonce()
        self.assertEqual(self.verify(headers).reason, "signer_mismatch")


class TestPatientConfirmAuth(unittest.TestCase):
    def setUp(self):
        self.cache = NonceCache()
        self.code = "DOC-ABC123-0123456789"

    def verify(self, proof, patient_wallet=None, code=None):
        return verify_patient_confirm_auth(
            patient_wallet or PATIENT["address"],
            code or self.code,
            PatientWalletProof.model_validate(proof) if proof is not None else None,
            WINDOW_MS,
            nonce_cache=self.cache,
        )

    def test_valid_proof(self):
        result = self.verify(confirm_proof(PATIENT, PATIENT["address"], self.code))
        self.assertTrue(result.ok)
        self.assertEqual(result.signer, PATIENT["address"])

    def test_approval_code_case_is_normalized(self):
        proof = confirm_proof(PATIENT, PATIENT["address"], self.code.lower())
        self.assertTrue(self.verify(proof).ok)

    def test_missing_proof(self):
        self.assertEqual(self.verify(None).reason, "missing_wallet_proof")

    def test_wrong_version_is_checked_first(self):
        proof = confirm_proof(PATIENT, PATIENT["address"], self.code, request_ts="not-a-ts")
        proof["version"] = "patient_confirm_v0"
        self.assertEqual(self.verify(proof).reason, "invalid_wallet_proof_version")

    def test_proof_for_other_code_fails(self):
        proof = confirm_proof(PATIENT, PATIENT["address"], "DOC-OTHER-0000000000")
        self.assertEqual(self.verify(proof).reason, "signer_mismatch")

    def test_replay(self):
        proof = confirm_proof(PATIENT, PATIENT["address"], self.code)
        self.assertTrue(self.verify(proof).ok)
        self.assertEqual(self.verify(proof).reason, "replay_or_bad_nonce")

    def test_timestamp_is_bound_into_signature(self):
        proof = confirm_proof(PATIENT, PATIENT["address"], self.code)
        proof["requestTs"] = str(int(proof["requestTs"]) - 1000)
        self.assertEqual(self.verify(proof).reason, "signer_mismatch")

    def test_nonce_is_bound_into_signature(self):
        proof = confirm_proof(PATIENT, PATIENT["address"], self.code)
        proof["requestNonce"] = new_nonce()
        self.assertEqual(self.verify(proof).reason, "signer_mismatch")


class TestPatientWorkspaceAuth(unittest.TestCase):
    def setUp(self):
        self.cache = NonceCache()

    def verify(self, patient_wallet, proof):
        return verify_patient_workspace_auth(
            patient_wallet,
            PatientWorkspaceWalletProof.model_validate(proof),
            WINDOW_MS,
            nonce_cache=self.cache,
        )

    def test_valid_proof(self):
        self.assertTrue(self.verify(PATIENT["address"], workspace_proof(PATIENT, PATIENT["address"])).ok)

    def test_signer_must_be_the_patient_wallet(self):
        proof = workspace_proof(OTHER_PATIENT, PATIENT["address"])
        self.assertEqual(self.verify(PATIENT["address"], proof).reason, "patient_wallet_mismatch")

    def test_wrong_version(self):
        proof = workspace_proof(PATIENT, PATIENT["address"])
        proof["version"] = "patient_confirm_v1"
        self.assertEqual(self.verify(PATIENT["address"], proof).reason, "invalid_wallet_proof_version")

    def test_timestamp_is_bound_into_signature(self):
        proof = workspace_proof(PATIENT, PATIENT["address"])
        proof["requestTs"] = str(int(proof["requestTs"]) - 1000)
        self.assertEqual(self.verify(PATIENT["address"], proof).reason, "signer_mismatch")

    def test_nonce_is_bound_into_signature(self):
        proof = workspace_proof(PATIENT, PATIENT["address"])
        proof["requestNonce"] = new_nonce()
        self.assertEqual(self.verify(PATIENT["address"], proof).reason, "signer_mismatch")


class TestPatientRequestProof(unittest.TestCase):
    def setUp(self):
        self.cache = NonceCache()

    def verify(self, body):
        request = PatientDoctorApprovalRequest.model_validate(body)
        return verify_patient_request_proof(request, WINDOW_MS, nonce_cache=self.cache)

    def test_valid_proof(self):
        result = self.verify(approval_request_body(PATIENT, DOCTOR["address"]))
        self.assertTrue(result.ok)
        self.assertEqual(result.signer, PATIENT["address"])

    def test_missing_proof(self):
        body = approval_request_body(PATIENT, DOCTOR["address"])
        del body["walletProof"]
        self.assertEqual(self.verify(body).reason, "missing_wallet_proof")

    def test_incomplete_proof(self):
        body = approval_request_body(PATIENT, DOCTOR["address"])
        body["walletProof"]["signature"] = ""
        self.assertEqual(self.verify(body).reason, "incomplete_wallet_proof")

    def test_stale_proof(self):
        body = approval_request_body(PATIENT, DOCTOR["address"], request_ts=str(now_ms() - WINDOW_MS - 1000))
        self.assertEqual(self.verify(body).reason, "expired_or_invalid_wallet_proof_ts")

    def test_invalid_monad_wallet_keeps_nonce(self):
        body = approval_request_body(PATIENT, DOCTOR["address"])
        body["walletProof"]["monadWallet"] = "0x1234"
        self.assertEqual(self.verify(body).reason, "invalid_monad_wallet")
        self.assertEqual(len(self.cache), 0)

    def test_invalid_signature_format_keeps_nonce(self):
        body = approval_request_body(PATIENT, DOCTOR["address"])
        body["walletProof"]["signature"] = "0x1234"
        self.assertEqual(self.verify(body).reason, "invalid_signature_format")
        self.assertEqual(len(self.cache), 0)

    def test_timestamp_is_bound_into_signature(self):
        body = approval_request_body(PATIENT, DOCTOR["address"])
        body["walletProof"]["requestTs"] = str(int(body["walletProof"]["requestTs"]) - 1000)
        self.assertEqual(self.verify(body).reason, "wallet_proof_signer_mismatch")

    def test_nonce_is_bound_into_signature(self):
        body = approval_request_body(PATIENT, DOCTOR["address"])
        body["walletProof"]["requestNonce"] = new_nonce()
        self.assertEqual(self.verify(body).reason, "wallet_proof_signer_mismatch")

    def test_replay(self):
        body = approval_request_body(PATIENT, DOCTOR["address"])
        self.assertTrue(self.verify(body).ok)
        self.assertEqual(self.verify(body).reason, "replay_or_bad_wallet_proof_nonce")

    def test_changed_medication_breaks_signature(self):
        body = approval_request_body(PATIENT, DOCTOR["address"])
        body["medicationCode"] = "metformin_500mg_tablet"
        self.assertEqual(self.verify(body).reason, "wallet_proof_signer_mismatch")

    def test_changed_identity_breaks_signature(self):
        body = approval_request_body(PATIENT, DOCTOR["address"])
        body["legalName"] = "John Q Public"
        self.assertEqual(self.verify(body).reason, "wallet_proof_signer_mismatch")


class TestPharmacyRequest(unittest.TestCase):
    def setUp(self):
        self.cache = NonceCache()
        self.config = make_config()
        self.attestation_id = "att_0123456789abcdef"

    def verify(self, headers, attestation_id=None):
        return verify_pharmacy_request(
            attestation_id=attestation_id or self.attestation_id,
            api_key=headers["x-pharmacy-api-key"],
            expected_api_key=self.config.pharmacy_api_key,
            request_ts=headers["x-request-ts"],
            request_nonce=headers["x-request-nonce"],
            signature=headers["x-request-signature"],
            transport_secret=self.config.transport_secret,
            request_window_ms=WINDOW_MS,
            nonce_cache=self.cache,
        )

    def test_valid_request(self):
        self.assertTrue(self.verify(pharmacy_headers(self.attestation_id, self.config)).ok)

    def test_bad_api_key(self):
        headers = pharmacy_headers(self.attestation_id, self.config, api_key="wrong-key")
        self.assertEqual(self.verify(headers).reason, "bad_api_key")

    def test_empty_api_key(self):
        headers = pharmacy_headers(self.attestation_id, self.config, api_key="")
        self.assertEqual(self.verify(headers).reason, "bad_api_key")

    def test_stale_timestamp(self):
        headers = pharmacy_headers(self.attestation_id, self.config, request_ts=str(now_ms() - WINDOW_MS - 1))
        self.assertEqual(self.verify(headers).reason, "expired_or_invalid_timestamp")

    def test_replay(self):
        headers = pharmacy_headers(self.attestation_id, self.config)
        self.assertTrue(self.verify(headers).ok)
        self.assertEqual(self.verify(headers).reason, "replay_or_bad_nonce")

    def test_signature_for_other_attestation(self):
        headers = pharmacy_headers("att_other", self.config)
        self.assertEqual(self.verify(headers).reason, "bad_signature")

    def test_replay_is_reported_before_signature(self):
        headers = pharmacy_headers(self.attestation_id, self.config)
        self.assertTrue(self.verify(headers).ok)
        headers["x-request-signature"] = "00" * 32
        self.assertEqual(self.verify(headers).reason, "replay_or_bad_nonce")


if __name__ == "__main__":
    unittest.main()
