import base64
import binascii
import json
import re
import uuid
from datetime import datetime, timezone

_SEGMENT = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")

def make_client_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    The session calls this once in __init__.
    Keys: events_received, malformed_payloads, reconnect_count, pings_sent,
          last_rtt_ms, high_latency_count, last_event_at, connected_at.
    """
    return {
        "events_received": 0,
        "malformed_payloads": 0,
        "reconnect_count": 0,
        "pings_sent": 0,
        "last_rtt_ms": None,
        "high_latency_count": 0,
        "last_event_at": None,
        "connected_at": None,
    }

def make_client_id() -> str:
    """A random per-connection id, short enough to keep logs readable."""
    return f"client-{uuid.uuid4().hex[:12]}"

def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def mask_token(token: str | None) -> str:
    if not token:
        return "<none>"
    return f"{token[:8]}..."

def is_valid_token_format(token: str | None) -> bool:
    """
    Syntactic check only: three non-empty base64url segments separated by dots.
    Says nothing about signature or expiry.
    """
    if not token or not isinstance(token, str):
        return False
    parts = token.split(".")
    if len(parts) != 3:
        return False
    return all(_SEGMENT.match(part) for part in parts)

def _decode_segment(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded)

def token_claims(token: str | None) -> dict:
    if not is_valid_token_format(token):
        return {}
    try:
        claims = json.loads(_decode_segment(token.split(".")[1]))
    except (binascii.Error, ValueError):
        return {}
    return claims if isinstance(claims, dict) else {}

def token_expiry(token: str | None) -> datetime | None:
    exp = token_claims(token).get("exp")
    if not isinstance(exp, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(float(exp), timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
