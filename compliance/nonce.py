"""
Replay-defense nonce cache.

The cache maps a nonce to the time it was first seen and forgets it once the
time-to-live has elapsed. It is role-agnostic: callers must namespace nonces
(for example "doctor-wallet:<wallet>:<nonce>") so that the same opaque value
from two roles or two users never collides.
"""

import logging
import threading
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class NonceCache:
    """In-memory nonce -> first-seen-at (ms) map with lazy expiry"""

    def __init__(self):
        self._seen: Dict[str, int] = {}
        self._lock = threading.Lock()

    def consume(self, nonce: str, now_ms: int, ttl_ms: int) -> bool:
        """
        Consume a nonce.

        Args:
            nonce: The namespaced nonce
            now_ms: Current time in milliseconds
            ttl_ms: How long a consumed nonce stays blocked

        Returns:
            bool: True if the nonce was fresh and is now recorded, False on replay
        """
        with self._lock:
            expired = [key for key, seen_at in self._seen.items() if now_ms - seen_at > ttl_ms]
            for key in expired:
                del self._seen[key]

            if nonce in self._seen:
                return False

            self._seen[nonce] = now_ms
            return True

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, nonce: str) -> bool:
        return nonce in self._seen

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()
        logger.info("Nonce cache cleared")


_nonce_cache: Optional[NonceCache] = None


def get_nonce_cache() -> NonceCache:
    """Return the process-wide nonce cache, creating it on first use."""
    global _nonce_cache
    if _nonce_cache is None:
        _nonce_cache = NonceCache()
    return _nonce_cache
