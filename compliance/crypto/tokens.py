"""
One-way tokens and identity hashes derived from PII.
"""

import hashlib
import hmac
import re

TOKEN_DIGEST_CHARS = 24


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def tokenize(value: str, secret: str, prefix: str) -> str:
    """
    Derive an opaque token from a sensitive value.

    The token is a truncated keyed digest, so it cannot be reversed even with
    the secret. The same (value, secret, prefix) always yields the same token.

    Args:
        value: The sensitive input
        secret: Server secret keying the digest
        prefix: Token type prefix, e.g. "ptok" or "dtok"

    Returns:
        str: "<prefix>_<24 hex chars>"
    """
    digest = hmac.new(secret.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{prefix}_{digest[:TOKEN_DIGEST_CHARS]}"


def normalize_legal_identity(legal_name: str, dob: str, patient_state: str, health_card_number: str) -> str:
    return "|".join([
        legal_name.strip().upper(),
        dob.strip(),
        patient_state.strip().upper(),
        re.sub(r"\s+", "", health_card_number.strip().upper()),
    ])


def legal_identity_hash(legal_name: str, dob: str, patient_state: str, health_card_number: str) -> str:
    """
    Unkeyed SHA-256 over the normalized legal identity.

    Unkeyed so that two independent registrations of the same person hash
    identically and can be matched without storing the identity itself.
    """
    return sha256_hex(normalize_legal_identity(legal_name, dob, patient_state, health_card_number))
