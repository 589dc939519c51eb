"""
Audit trail for the compliance layer.

Events are kept newest-first in a bounded in-memory buffer and mirrored to the
application log. Writing an event never fails the calling request.
"""

import hashlib
import logging
import threading
from collections import deque
from typing import Deque, Dict, List, Optional, Union

from compliance.constants import AUDIT_BUFFER_SIZE, AUDIT_MAX_LIMIT
from compliance.models import AuditEvent
from compliance.timeutil import now_ms, to_iso

logger = logging.getLogger(__name__)

DetailValue = Union[str, int, float, bool, None]


def hash_ip(ip: Optional[str], secret: str) -> Optional[str]:
    """
    Hash a client IP so it can be correlated without being stored.

    Args:
        ip: The client address as reported by the proxy, or None
        secret: Server secret mixed into the digest

    Returns:
        str: First 24 hex chars of sha256("<secret>:<ip>"), or None when no IP is known
    """
    if not ip:
        return None
    return hashlib.sha256(f"{secret}:{ip}".encode("utf-8")).hexdigest()[:24]


class AuditLog:
    """Bounded newest-first buffer of audit events"""

    def __init__(self, max_events: int = AUDIT_BUFFER_SIZE):
        self._events: Deque[AuditEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def write(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.appendleft(event)
        logger.info(f"Audit event {event.type} (actor={event.actor}, attestation={event.attestation_id})")

    def record(
        self,
        event_type: str,
        actor: str,
        details: Optional[Dict[str, DetailValue]] = None,
        attestation_id: Optional[str] = None,
        request_ip_hash: Optional[str] = None,
        at_ms: Optional[int] = None,
    ) -> AuditEvent:
        """Build an event stamped with the current time and write it"""
        event = AuditEvent(
            at=to_iso(now_ms() if at_ms is None else at_ms),
            type=event_type,
            actor=actor,
            attestation_id=attestation_id,
            request_ip_hash=request_ip_hash,
            details=details or {},
        )
        self.write(event)
        return event

    def recent(self, limit: int = 100) -> List[AuditEvent]:
        limit = max(1, min(limit, AUDIT_MAX_LIMIT))
        with self._lock:
            return list(self._events)[:limit]

    def reset(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        return len(self._events)


_audit_log: Optional[AuditLog] = None


def get_audit_log() -> AuditLog:
    global _audit_log
    if _audit_log is None:
        _audit_log = AuditLog()
    return _audit_log
