"""
Authenticated encryption of JSON payloads (AES-256-GCM).

Sealed payloads are three base64url segments joined by ".":
initialization vector, authentication tag, ciphertext.
"""

import base64
import binascii
import hashlib
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from compliance.exceptions import SealedPayloadError

IV_SIZE = 12  # 96 bits for GCM


def key_from_secret(secret: str) -> bytes:
    """Derive the 256-bit AES key from a secret of any length (single SHA-256, no work factor)"""
    return hashlib.sha256(secret.encode("utf-8")).digest()


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def encrypt_json(value: Any, secret: str) -> str:
    """
    Encrypt a JSON-serializable value.

    Args:
        value: The value to seal
        secret: Secret the AES key is derived from

    Returns:
        str: "<iv>.<tag>.<ciphertext>" in base64url
    """
    iv = os.urandom(IV_SIZE)
    plaintext = json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    encryptor = Cipher(
        algorithms.AES(key_from_secret(secret)),
        modes.GCM(iv),
        backend=default_backend()
    ).encryptor()
    ciphertext = encryptor.update(plaintext) + encryptor.finalize()

    return f"{b64url_encode(iv)}.{b64url_encode(encryptor.tag)}.{b64url_encode(ciphertext)}"


def decrypt_json(payload: str, secret: str) -> Any:
    """
    Decrypt a sealed payload produced by encrypt_json.

    Raises:
        SealedPayloadError: If the payload is malformed or the authentication tag does not verify
    """
    parts = payload.split(".") if isinstance(payload, str) else []
    if len(parts) != 3 or not all(parts):
        raise SealedPayloadError("Malformed encrypted payload")

    try:
        iv, tag, body = (b64url_decode(part) for part in parts)
    except (binascii.Error, ValueError) as e:
        raise SealedPayloadError("Malformed encrypted payload") from e

    try:
        decryptor = Cipher(
            algorithms.AES(key_from_secret(secret)),
            modes.GCM(iv, tag),
            backend=default_backend()
        ).decryptor()
        plaintext = decryptor.update(body) + decryptor.finalize()
    except InvalidTag as e:
        raise SealedPayloadError("Encrypted payload failed authentication") from e
    except ValueError as e:
        # Wrong IV or tag length
        raise SealedPayloadError("Malformed encrypted payload") from e

    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SealedPayloadError("Encrypted payload is not valid JSON") from e
