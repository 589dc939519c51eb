import unittest
from datetime import date

from compliance.models import (
    ComplianceIntakeRequest,
    DoctorFileAttestationRequest,
    DoctorRegisterPatientRequest,
    LegalIdentityInput,
    PatientDoctorApprovalRequest,
    parse_request,
)
from compliance.policy import (
    DAY_MS,
    age_in_years,
    is_client_wallet,
    validate_compliance_intake,
    validate_doctor_file_attestation,
    validate_doctor_register_patient,
    validate_legal_identity,
    validate_patient_doctor_approval_request,
    validate_quantity,
    validate_wallet_proof_structure,
)
from compliance.timeutil import to_iso

from tests.helpers import DOCTOR, PATIENT, approval_request_body, file_attestation_body, register_patient_body

TODAY = date(2026, 10, 17)
NOW = 1_790_000_000_000


def codes(issues):
    return {issue.code for issue in issues}


def identity(**overrides):
    values = dict(legal_name="Jane Q Public", dob="1985-04-12", patient_state="CA", health_card_number="HC12345")
    values.update(overrides)
    return LegalIdentityInput(**values)


class TestHelpers(unittest.TestCase):
    def test_client_wallet_formats(self):
        self.assertTrue(is_client_wallet(PATIENT["address"]))
        self.assertTrue(is_client_wallet(" unlink1qpzry9x8gf2tvdw0s3jn54khce6mua7l "))
        self.assertFalse(is_client_wallet("unlink1ABC"))
        self.assertFalse(is_client_wallet("0x1234"))
        self.assertFalse(is_client_wallet(None))

    def test_age_in_years(self):
        self.assertEqual(age_in_years(date(2008, 10, 17), TODAY), 18)
        self.assertEqual(age_in_years(date(2008, 10, 18), TODAY), 17)

    def test_quantity_bounds(self):
        for good in (1, 30, 365, 2.5):
            self.assertTrue(validate_quantity(good), good)
        for bad in (0, 366, -1, float("nan"), float("inf"), True, "30", None):
            self.assertFalse(validate_quantity(bad), bad)


class TestLegalIdentity(unittest.TestCase):
    def test_valid_identity(self):
        self.assertEqual(validate_legal_identity(identity(), TODAY), [])

    def test_eighteenth_birthday_is_accepted(self):
        self.assertEqual(validate_legal_identity(identity(dob="2008-10-17"), TODAY), [])

    def test_one_day_short_of_eighteen_is_underage(self):
        self.assertEqual(codes(validate_legal_identity(identity(dob="2008-10-18"), TODAY)), {"UNDERAGE"})

    def test_field_rules(self):
        issues = validate_legal_identity(
            identity(legal_name="J", dob="12/04/1985", patient_state="California", health_card_number="123"),
            TODAY,
        )
        self.assertEqual(
            codes(issues),
            {"INVALID_LEGAL_NAME", "INVALID_DOB", "INVALID_STATE", "INVALID_HEALTH_CARD"},
        )

    def test_state_is_case_insensitive(self):
        self.assertEqual(validate_legal_identity(identity(patient_state="ny"), TODAY), [])


class TestFileAttestationPolicy(unittest.TestCase):
    def request(self, **overrides):
        body = file_attestation_body(
            DOCTOR["address"],
            PATIENT["address"],
            request_id="req_0123456789",
            valid_until_ms=NOW + 7 * DAY_MS,
        )
        body.update(overrides)
        return DoctorFileAttestationRequest.model_validate(body)

    def test_valid_request(self):
        self.assertEqual(validate_doctor_file_attestation(self.request(), now=NOW), [])

    def test_controlled_schedule_requires_dea(self):
        issues = validate_doctor_file_attestation(self.request(controlledSchedule="schedule_ii"), now=NOW)
        self.assertEqual(codes(issues), {"INVALID_DEA"})

        issues = validate_doctor_file_attestation(
            self.request(controlledSchedule="schedule_ii", doctorDea="ab1234567"), now=NOW
        )
        self.assertEqual(issues, [])

    def test_must_be_purchasable(self):
        issues = validate_doctor_file_attestation(self.request(canPurchase=False), now=NOW)
        self.assertEqual(codes(issues), {"NOT_APPROVED"})

    def test_short_request_id(self):
        issues = validate_doctor_file_attestation(self.request(requestId="req_1"), now=NOW)
        self.assertEqual(codes(issues), {"INVALID_REQUEST_ID"})

    def test_validity_window(self):
        past = validate_doctor_file_attestation(self.request(validUntilIso=to_iso(NOW - 1)), now=NOW)
        self.assertEqual(codes(past), {"ALREADY_EXPIRED"})

        too_far = validate_doctor_file_attestation(self.request(validUntilIso=to_iso(NOW + 91 * DAY_MS)), now=NOW)
        self.assertEqual(codes(too_far), {"EXPIRY_TOO_FAR"})

        garbage = validate_doctor_file_attestation(self.request(validUntilIso="next week"), now=NOW)
        self.assertEqual(codes(garbage), {"INVALID_VALID_UNTIL"})

    def test_unknown_medication(self):
        issues = validate_doctor_file_attestation(self.request(medicationCode="unobtainium"), now=NOW)
        self.assertEqual(codes(issues), {"INVALID_MEDICATION_CODE"})

    def test_quantity_and_wallets(self):
        issues = validate_doctor_file_attestation(
            self.request(quantity=0, doctorWallet="not-a-wallet", patientWallet="0x12"), now=NOW
        )
        self.assertEqual(codes(issues), {"INVALID_QUANTITY", "INVALID_DOCTOR_WALLET", "INVALID_PATIENT_WALLET"})

    def test_boolean_quantity_is_not_a_number(self):
        body = file_attestation_body(DOCTOR["address"], PATIENT["address"], quantity=True)
        parsed, issues = parse_request(DoctorFileAttestationRequest, body)
        self.assertIsNone(parsed)
        self.assertEqual(codes(issues), {"INVALID_FIELD"})
        self.assertTrue(all(issue.field.startswith("quantity") for issue in issues))

    def test_fractional_quantity_is_kept(self):
        parsed, issues = parse_request(
            DoctorFileAttestationRequest, file_attestation_body(DOCTOR["address"], PATIENT["address"], quantity=2.5)
        )
        self.assertEqual(issues, [])
        self.assertEqual(parsed.quantity, 2.5)


class TestRegisterAndRequestPolicy(unittest.TestCase):
    def test_register_patient(self):
        body = register_patient_body(DOCTOR["address"], PATIENT["address"])
        self.assertEqual(validate_doctor_register_patient(DoctorRegisterPatientRequest.model_validate(body), TODAY), [])

        body["registryRelayId"] = "abc"
        issues = validate_doctor_register_patient(DoctorRegisterPatientRequest.model_validate(body), TODAY)
        self.assertEqual(codes(issues), {"INVALID_REGISTRY_RELAY_ID"})

    def test_approval_request(self):
        body = approval_request_body(PATIENT, DOCTOR["address"])
        request = PatientDoctorApprovalRequest.model_validate(body)
        self.assertEqual(validate_patient_doctor_approval_request(request, TODAY), [])

    def test_approval_request_structural_proof_issues(self):
        body = approval_request_body(PATIENT, DOCTOR["address"])
        body["walletProof"].update(version="v0", requestNonce="bad nonce!", signature="0x00")
        request = PatientDoctorApprovalRequest.model_validate(body)
        self.assertEqual(
            codes(validate_patient_doctor_approval_request(request, TODAY)),
            {"INVALID_WALLET_PROOF_VERSION", "INVALID_WALLET_PROOF_NONCE", "INVALID_WALLET_PROOF_SIGNATURE"},
        )

    def test_missing_wallet_proof(self):
        self.assertEqual(codes(validate_wallet_proof_structure(None)), {"MISSING_WALLET_PROOF"})


class TestIntakePolicy(unittest.TestCase):
    def intake(self, **overrides):
        values = dict(
            patient_wallet=PATIENT["address"],
            patient_full_name="Jane Q Public",
            patient_dob="1985-04-12",
            patient_state="CA",
            doctor_npi="1234567893",
            prescription_id="RX-123456",
            quantity=30,
            pickup_window_iso=to_iso(NOW + 2 * DAY_MS),
            medication_category="Cardiovascular",
            controlled_schedule="non_controlled",
        )
        values.update(overrides)
        return ComplianceIntakeRequest(**values)

    def test_valid_intake(self):
        self.assertEqual(validate_compliance_intake(self.intake(), now=NOW, today=TODAY), [])

    def test_identity_issues_use_intake_field_names(self):
        issues = validate_compliance_intake(self.intake(patient_full_name="J", patient_dob="2010-01-01"), now=NOW, today=TODAY)
        self.assertEqual({issue.field for issue in issues}, {"patientFullName", "patientDob"})

    def test_pickup_window(self):
        past = validate_compliance_intake(self.intake(pickup_window_iso=to_iso(NOW - 1)), now=NOW, today=TODAY)
        self.assertEqual(codes(past), {"PICKUP_IN_PAST"})
        far = validate_compliance_intake(self.intake(pickup_window_iso=to_iso(NOW + 46 * DAY_MS)), now=NOW, today=TODAY)
        self.assertEqual(codes(far), {"PICKUP_TOO_FAR"})

    def test_short_prescription_id(self):
        issues = validate_compliance_intake(self.intake(prescription_id="RX1"), now=NOW, today=TODAY)
        self.assertEqual(codes(issues), {"INVALID_RX_ID"})


if __name__ == "__main__":
    unittest.main()
