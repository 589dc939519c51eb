"""
Durable store for attestations, the verified-patient registry and approval requests.

The four collections live in memory and are mirrored to a single versioned JSON
snapshot. Every write replaces the whole snapshot atomically (temp file, fsync,
rename), so a reader never sees a partially written file. Without a store path
the store is purely in-memory.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from compliance.constants import STORE_SNAPSHOT_VERSION
from compliance.exceptions import StorePersistenceError
from compliance.models import (
    ApprovalRequestEntry,
    DoctorAttestationRecord,
    DoctorFiledAttestation,
    DoctorRegisterPatientRecord,
    IntakeAttestationRecord,
    PatientDoctorApprovalRequestRecord,
    StoredAttestation,
    VerifiedPatientEntry,
)
from compliance.timeutil import now_ms

logger = logging.getLogger(__name__)

# In-memory collection name -> snapshot key
_SNAPSHOT_KEYS = {
    "compliance_records": "complianceRecords",
    "doctor_attestations": "doctorAttestations",
    "verified_patients": "doctorVerifiedPatients",
    "approval_requests": "doctorApprovalRequests",
}


def verified_patient_key(doctor_wallet: str, patient_wallet: str) -> str:
    return f"{doctor_wallet.strip().lower()}::{patient_wallet.strip().lower()}"


def _same_wallet(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


class ComplianceStore:
    """Keyed collections of compliance records with atomic snapshot persistence"""

    def __init__(self, store_path: Optional[Union[str, Path]] = None):
        self.store_path = Path(store_path) if store_path else None
        self._compliance_records: Dict[str, IntakeAttestationRecord] = {}
        self._doctor_attestations: Dict[str, DoctorAttestationRecord] = {}
        self._verified_patients: Dict[str, VerifiedPatientEntry] = {}
        self._approval_requests: Dict[str, ApprovalRequestEntry] = {}
        self._lock = threading.RLock()
        self._hydrated = False

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------

    def _ensure_hydrated(self) -> None:
        if self._hydrated:
            return
        self._hydrated = True
        if self.store_path is None or not self.store_path.exists():
            return

        try:
            with open(self.store_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Compliance store at {self.store_path} is unreadable, starting empty: {e}")
            return

        if not isinstance(data, dict) or data.get("version") != STORE_SNAPSHOT_VERSION:
            logger.warning(f"Compliance store at {self.store_path} has an unsupported version, starting empty")
            return

        try:
            compliance_records = {
                key: IntakeAttestationRecord.model_validate(value)
                for key, value in data.get("complianceRecords", [])
            }
            doctor_attestations = {
                key: DoctorAttestationRecord.model_validate(value)
                for key, value in data.get("doctorAttestations", [])
            }
            verified_patients = {
                key: VerifiedPatientEntry.model_validate(value)
                for key, value in data.get("doctorVerifiedPatients", [])
            }
            approval_requests = {
                key: ApprovalRequestEntry.model_validate(value)
                for key, value in data.get("doctorApprovalRequests", [])
            }
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning(f"Compliance store at {self.store_path} is malformed, starting empty: {e}")
            return

        self._compliance_records = compliance_records
        self._doctor_attestations = doctor_attestations
        self._verified_patients = verified_patients
        self._approval_requests = approval_requests
        logger.info(
            f"Loaded compliance store (intake={len(compliance_records)} "
            f"attestations={len(doctor_attestations)} registry={len(verified_patients)} "
            f"requests={len(approval_requests)})"
        )

    def snapshot(self) -> Dict:
        """Return the persisted representation of the store"""
        with self._lock:
            self._ensure_hydrated()
            return self._snapshot_of(self._collections())

    def _collections(self) -> Dict[str, Dict]:
        return {name: getattr(self, f"_{name}") for name in _SNAPSHOT_KEYS}

    @staticmethod
    def _snapshot_of(collections: Dict[str, Dict]) -> Dict:
        snapshot = {"version": STORE_SNAPSHOT_VERSION}
        for name, wire_key in _SNAPSHOT_KEYS.items():
            snapshot[wire_key] = [[k, v.to_wire()] for k, v in collections[name].items()]
        return snapshot

    def _write_snapshot(self, snapshot: Dict) -> None:
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            prefix=f".{self.store_path.name}.",
            suffix=".tmp",
            dir=str(self.store_path.parent),
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.store_path)
        finally:
            if os.path.exists(temp_path):
                os.remove(temp_path)
        logger.debug(f"Persisted compliance store to {self.store_path}")

    def _commit(self, **replacements: Dict) -> None:
        """
        Persist replacement collections, then swap them in.

        Args:
            **replacements: New dicts keyed by collection name (e.g. doctor_attestations)

        Raises:
            StorePersistenceError: If the snapshot could not be written; memory is left untouched
        """
        if self.store_path is not None:
            collections = self._collections()
            collections.update(replacements)
            try:
                self._write_snapshot(self._snapshot_of(collections))
            except OSError as e:
                logger.error(f"Failed to persist compliance store to {self.store_path}: {str(e)}")
                raise StorePersistenceError(f"Failed to persist compliance store: {e}") from e

        for name, collection in replacements.items():
            setattr(self, f"_{name}", collection)

    # ------------------------------------------------------------------
    # Legacy intake attestations (keyed by attestation id)
    # ------------------------------------------------------------------

    def save_compliance_record(self, record: IntakeAttestationRecord) -> None:
        with self._lock:
            self._ensure_hydrated()
            records = dict(self._compliance_records)
            records[record.attestation.attestation_id] = record
            self._commit(compliance_records=records)

    def get_compliance_record(self, attestation_id: str) -> Optional[IntakeAttestationRecord]:
        with self._lock:
            self._ensure_hydrated()
            return self._compliance_records.get(attestation_id)

    # ------------------------------------------------------------------
    # Doctor-filed attestations (keyed by approval code)
    # ------------------------------------------------------------------

    def save_doctor_attestation(self, record: DoctorAttestationRecord) -> None:
        with self._lock:
            self._ensure_hydrated()
            attestations = dict(self._doctor_attestations)
            attestations[record.attestation.approval_code] = record
            self._commit(doctor_attestations=attestations)

    def get_doctor_attestation(self, approval_code: str) -> Optional[DoctorAttestationRecord]:
        with self._lock:
            self._ensure_hydrated()
            return self._doctor_attestations.get(approval_code)

    def get_doctor_attestation_by_attestation_id(self, attestation_id: str) -> Optional[DoctorAttestationRecord]:
        with self._lock:
            self._ensure_hydrated()
            for record in self._doctor_attestations.values():
                if record.attestation.attestation_id == attestation_id:
                    return record
            return None

    def find_attestation(self, attestation_id: str) -> Optional[StoredAttestation]:
        """
        Resolve an id to either stored attestation variant.

        Legacy intake records are checked first, then doctor-filed records by
        attestation id, then by approval code.
        """
        with self._lock:
            return (
                self.get_compliance_record(attestation_id)
                or self.get_doctor_attestation_by_attestation_id(attestation_id)
                or self.get_doctor_attestation(attestation_id)
            )

    def doctor_attestations_by_doctor(self, doctor_wallet: str) -> List[DoctorAttestationRecord]:
        with self._lock:
            self._ensure_hydrated()
            matches = [
                record for record in self._doctor_attestations.values()
                if _same_wallet(record.attestation.doctor_wallet, doctor_wallet)
            ]
        return sorted(matches, key=lambda record: record.created_at, reverse=True)

    def doctor_attestations_by_patient(self, patient_wallet: str) -> List[DoctorAttestationRecord]:
        with self._lock:
            self._ensure_hydrated()
            matches = [
                record for record in self._doctor_attestations.values()
                if _same_wallet(record.attestation.patient_wallet, patient_wallet)
            ]
        return sorted(matches, key=lambda record: record.created_at, reverse=True)

    # ------------------------------------------------------------------
    # Verified-patient registry (keyed by doctor/patient wallet pair)
    # ------------------------------------------------------------------

    def save_verified_patient(self, record: DoctorRegisterPatientRecord, created_at: Optional[int] = None) -> None:
        entry = VerifiedPatientEntry(record=record, created_at=now_ms() if created_at is None else created_at)
        with self._lock:
            self._ensure_hydrated()
            registry = dict(self._verified_patients)
            registry[verified_patient_key(record.doctor_wallet, record.patient_wallet)] = entry
            self._commit(verified_patients=registry)

    def get_verified_patient(self, doctor_wallet: str, patient_wallet: str) -> Optional[VerifiedPatientEntry]:
        with self._lock:
            self._ensure_hydrated()
            return self._verified_patients.get(verified_patient_key(doctor_wallet, patient_wallet))

    def verified_patients_by_doctor(self, doctor_wallet: str) -> List[VerifiedPatientEntry]:
        with self._lock:
            self._ensure_hydrated()
            matches = [
                entry for entry in self._verified_patients.values()
                if _same_wallet(entry.record.doctor_wallet, doctor_wallet)
            ]
        return sorted(matches, key=lambda entry: entry.created_at, reverse=True)

    def migrate_patient_wallet(
        self,
        doctor_wallet: str,
        old_patient_wallet: str,
        new_patient_wallet: str,
        resign_record: Optional[Callable[[DoctorRegisterPatientRecord], str]] = None,
        resign_attestation: Optional[Callable[[DoctorFiledAttestation], str]] = None,
    ) -> Tuple[Optional[VerifiedPatientEntry], int]:
        """
        Move a registry entry and the doctor's attestations to a new patient wallet.

        The registry key is deleted and re-inserted under the new wallet pair, and
        every attestation this doctor filed for the old wallet is rewritten. Both
        changes are persisted as one snapshot.

        Args:
            doctor_wallet: The doctor owning the registry entry
            old_patient_wallet: The wallet currently registered
            new_patient_wallet: The wallet to move to
            resign_record: Optional callback returning a fresh signature for the moved registry record
            resign_attestation: Optional callback returning a fresh signature for each rewritten attestation

        Returns:
            tuple: (migrated registry entry or None if no entry existed, number of attestations rewritten)
        """
        with self._lock:
            self._ensure_hydrated()
            old_key = verified_patient_key(doctor_wallet, old_patient_wallet)
            existing = self._verified_patients.get(old_key)
            if existing is None:
                return None, 0

            record = existing.record.model_copy(update={"patient_wallet": new_patient_wallet})
            if resign_record is not None:
                record = record.model_copy(update={"signature": resign_record(record)})
            migrated = existing.model_copy(update={"record": record})
            registry = dict(self._verified_patients)
            del registry[old_key]
            registry[verified_patient_key(doctor_wallet, new_patient_wallet)] = migrated

            attestations = dict(self._doctor_attestations)
            updated = 0
            for approval_code, stored in self._doctor_attestations.items():
                attestation = stored.attestation
                if not _same_wallet(attestation.doctor_wallet, doctor_wallet):
                    continue
                if not _same_wallet(attestation.patient_wallet, old_patient_wallet):
                    continue
                attestation = attestation.model_copy(update={"patient_wallet": new_patient_wallet})
                if resign_attestation is not None:
                    attestation = attestation.model_copy(update={"signature": resign_attestation(attestation)})
                attestations[approval_code] = stored.model_copy(update={"attestation": attestation})
                updated += 1

            self._commit(verified_patients=registry, doctor_attestations=attestations)
            return migrated, updated

    # ------------------------------------------------------------------
    # Approval requests (keyed by request id)
    # ------------------------------------------------------------------

    def save_approval_request(self, request: PatientDoctorApprovalRequestRecord, created_at: Optional[int] = None) -> None:
        entry = ApprovalRequestEntry(request=request, created_at=now_ms() if created_at is None else created_at)
        with self._lock:
            self._ensure_hydrated()
            requests = dict(self._approval_requests)
            requests[request.request_id] = entry
            self._commit(approval_requests=requests)

    def get_approval_request(self, request_id: str) -> Optional[ApprovalRequestEntry]:
        with self._lock:
            self._ensure_hydrated()
            return self._approval_requests.get(request_id)

    def approval_requests_by_doctor(self, doctor_wallet: str) -> List[ApprovalRequestEntry]:
        with self._lock:
            self._ensure_hydrated()
            matches = [
                entry for entry in self._approval_requests.values()
                if _same_wallet(entry.request.doctor_wallet, doctor_wallet)
            ]
        return sorted(matches, key=lambda entry: entry.created_at, reverse=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Drop every record and persist the empty snapshot"""
        with self._lock:
            self._commit(**{name: {} for name in _SNAPSHOT_KEYS})
            self._hydrated = True
        logger.info("Compliance store reset")

    def counts(self) -> Dict[str, int]:
        with self._lock:
            self._ensure_hydrated()
            return {
                "complianceRecords": len(self._compliance_records),
                "doctorAttestations": len(self._doctor_attestations),
                "doctorVerifiedPatients": len(self._verified_patients),
                "doctorApprovalRequests": len(self._approval_requests),
            }
