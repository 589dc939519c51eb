"""
Runtime configuration for the compliance attestation layer.

Secrets and windows are read from the environment (optionally via a .env file)
with development fallbacks. A fresh ComplianceConfig is built per application
instance and passed into the service and authenticators.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables
load_dotenv()

DEFAULT_ATTESTATION_TTL_HOURS = 24 * 30
DEFAULT_REQUEST_WINDOW_MS = 5 * 60 * 1000


class ComplianceConfig(BaseModel):
    """Secrets, keys and time windows used across the compliance layer"""
    attestation_secret: str
    encryption_secret: str
    transport_secret: str
    pharmacy_api_key: str
    admin_api_key: str
    attestation_ttl_hours: float = DEFAULT_ATTESTATION_TTL_HOURS
    request_window_ms: int = DEFAULT_REQUEST_WINDOW_MS
    store_path: Optional[str] = None
    resign_corrected_attestations: bool = False


def _read_secret(name: str, fallback: str) -> str:
    value = (os.getenv(name) or "").strip()
    return value or fallback


def _read_number(name: str, fallback: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return fallback
    try:
        return float(raw)
    except ValueError:
        return fallback


def _read_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def get_compliance_config() -> ComplianceConfig:
    """
    Build the compliance configuration from the environment.

    Returns:
        ComplianceConfig: The configuration with development fallbacks applied
    """
    pharmacy_api_key = _read_secret("COMPLIANCE_PHARMACY_API_KEY", "dev-pharmacy-key-change-me")
    return ComplianceConfig(
        attestation_secret=_read_secret("COMPLIANCE_ATTESTATION_SECRET", "dev-attestation-secret-change-me"),
        encryption_secret=_read_secret("COMPLIANCE_ENCRYPTION_SECRET", "dev-encryption-secret-change-me"),
        transport_secret=_read_secret("COMPLIANCE_TRANSPORT_SECRET", "dev-transport-secret-change-me"),
        pharmacy_api_key=pharmacy_api_key,
        admin_api_key=_read_secret("COMPLIANCE_ADMIN_API_KEY", pharmacy_api_key),
        attestation_ttl_hours=_read_number("COMPLIANCE_ATTESTATION_TTL_HOURS", DEFAULT_ATTESTATION_TTL_HOURS),
        request_window_ms=int(_read_number("COMPLIANCE_HANDOFF_REQUEST_WINDOW_MS", DEFAULT_REQUEST_WINDOW_MS)),
        store_path=(os.getenv("COMPLIANCE_STORE_PATH") or "").strip() or None,
        resign_corrected_attestations=_read_bool("COMPLIANCE_RESIGN_CORRECTED_ATTESTATIONS"),
    )
