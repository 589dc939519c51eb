"""
Sealed pharmacy handoff envelopes.

A handoff is wrapped twice: the pharmacy payload carries its own HMAC over its
content, the whole signed payload is encrypted with the transport secret, and
the envelope signature covers {attestationId, sealedPayload} so a substituted
envelope is detected before decryption.
"""

import logging
from typing import Any, Dict

from pydantic import ValidationError

from compliance.constants import HANDOFF_KEY_ID, HANDOFF_TRANSPORT
from compliance.crypto import decrypt_json, encrypt_json, sign_payload, verify_signature
from compliance.exceptions import SealedPayloadError
from compliance.models import PharmacyHandoff, PharmacyHandoffEnvelope

logger = logging.getLogger(__name__)


def handoff_signing_payload(handoff: PharmacyHandoff) -> Dict[str, Any]:
    """The fields of a handoff covered by its content signature"""
    wire = handoff.to_wire()
    return {
        "attestationId": wire["attestationId"],
        "attestationStatus": wire["attestationStatus"],
        "issuedAt": wire["issuedAt"],
        "expiresAt": wire["expiresAt"],
        "prescription": wire["prescription"],
        "patient": wire["patient"],
        "doctor": wire["doctor"],
    }


def sign_handoff(handoff: PharmacyHandoff, attestation_secret: str) -> PharmacyHandoff:
    signature = sign_payload(handoff_signing_payload(handoff), attestation_secret)
    return handoff.model_copy(update={"signature": signature})


def seal_pharmacy_handoff(
    handoff: PharmacyHandoff,
    transport_secret: str,
    attestation_secret: str,
) -> PharmacyHandoffEnvelope:
    """
    Encrypt a signed handoff into a transport envelope.

    Args:
        handoff: The signed pharmacy payload
        transport_secret: Secret shared with the pharmacy, used for encryption
        attestation_secret: Platform secret signing the envelope

    Returns:
        PharmacyHandoffEnvelope: The envelope returned to the pharmacy
    """
    sealed_payload = encrypt_json(handoff.to_wire(), transport_secret)
    signature = sign_payload(
        {"attestationId": handoff.attestation_id, "sealedPayload": sealed_payload},
        attestation_secret,
    )
    return PharmacyHandoffEnvelope(
        transport=HANDOFF_TRANSPORT,
        key_id=HANDOFF_KEY_ID,
        attestation_id=handoff.attestation_id,
        sealed_payload=sealed_payload,
        signature=signature,
    )


def open_pharmacy_envelope(
    envelope: PharmacyHandoffEnvelope,
    transport_secret: str,
    attestation_secret: str,
) -> PharmacyHandoff:
    """
    Verify and decrypt an envelope produced by seal_pharmacy_handoff.

    Raises:
        SealedPayloadError: If the envelope signature, the encryption or the inner signature fails
    """
    signed = {"attestationId": envelope.attestation_id, "sealedPayload": envelope.sealed_payload}
    if not verify_signature(signed, envelope.signature, attestation_secret):
        logger.error(f"Envelope signature mismatch for {envelope.attestation_id}")
        raise SealedPayloadError("Envelope signature does not verify")

    payload = decrypt_json(envelope.sealed_payload, transport_secret)
    try:
        handoff = PharmacyHandoff.model_validate(payload)
    except ValidationError as e:
        raise SealedPayloadError("Sealed payload is not a pharmacy handoff") from e

    if handoff.attestation_id != envelope.attestation_id:
        raise SealedPayloadError("Sealed payload does not match the envelope attestation")

    if not verify_signature(handoff_signing_payload(handoff), handoff.signature, attestation_secret):
        logger.error(f"Handoff content signature mismatch for {envelope.attestation_id}")
        raise SealedPayloadError("Handoff signature does not verify")

    return handoff
