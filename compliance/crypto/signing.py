"""
HMAC-SHA256 integrity tags over JSON payloads.

Payloads are serialized canonically (sorted keys, no insignificant whitespace)
before signing, so the tag does not depend on dict insertion order.
"""

import hashlib
import hmac
import json
from typing import Any


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sign_payload(value: Any, secret: str) -> str:
    """Return the hex HMAC-SHA256 of the canonical JSON form of value"""
    return hmac.new(
        secret.encode("utf-8"),
        canonical_json(value).encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


def verify_signature(value: Any, signature: str, secret: str) -> bool:
    """
    Check a signature produced by sign_payload in constant time.

    Malformed, truncated or padded signatures return False.
    """
    if not isinstance(signature, str):
        return False
    try:
        provided = bytes.fromhex(signature)
    except ValueError:
        return False
    expected = bytes.fromhex(sign_payload(value, secret))
    if len(provided) != len(expected):
        return False
    return hmac.compare_digest(expected, provided)
