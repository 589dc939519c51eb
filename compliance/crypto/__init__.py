"""Symmetric sealing, payload signing, tokenization and wallet signature recovery."""

from compliance.crypto.aes import decrypt_json, encrypt_json
from compliance.crypto.signing import canonical_json, sign_payload, verify_signature
from compliance.crypto.tokens import legal_identity_hash, sha256_hex, tokenize
from compliance.crypto.wallet import recover_signer, to_checksum

__all__ = [
    "canonical_json",
    "decrypt_json",
    "encrypt_json",
    "legal_identity_hash",
    "recover_signer",
    "sha256_hex",
    "sign_payload",
    "to_checksum",
    "tokenize",
    "verify_signature",
]
