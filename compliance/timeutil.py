"""
Millisecond wall-clock helpers.

Timestamps on the wire are milliseconds since the epoch or ISO-8601 strings in
UTC with millisecond precision and a trailing "Z".
"""

import math
import time
from datetime import datetime, timezone
from typing import Optional


def now_ms() -> int:
    return int(time.time() * 1000)


def to_iso(ms: int) -> str:
    """Format epoch milliseconds as e.g. 2026-10-17T07:19:00.123Z"""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso_ms(value: Optional[str]) -> Optional[int]:
    """
    Parse an ISO-8601 date or datetime into epoch milliseconds.

    Naive values are taken as UTC. Returns None when the value does not parse.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def parse_request_ts(value) -> Optional[float]:
    """Parse a request timestamp given as a decimal string or number"""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        parsed = float(value)
    else:
        try:
            parsed = float(str(value).strip())
        except ValueError:
            return None
    if not math.isfinite(parsed):
        return None
    return parsed


def is_fresh(request_ts, window_ms: int, now: Optional[int] = None) -> bool:
    parsed = parse_request_ts(request_ts)
    if parsed is None:
        return False
    current = now_ms() if now is None else now
    return abs(current - parsed) <= window_ms
