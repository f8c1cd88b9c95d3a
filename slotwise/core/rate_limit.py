"""
Per-client request limits for the public endpoints.

Hits are counted per (endpoint, provider slug, client IP) in a sliding
window held in process memory. Limits come from RATE_LIMITS in config.
Keys whose hits have all aged out are swept so the table stays bounded by
recent traffic.
"""

from time import time
from typing import Optional

from slotwise.core.config import RATE_LIMITS

#"endpoint:slug:ip" -> hit times still inside the endpoint's window
_hits: dict[str, list[float]] = {}

#No configured window is longer than this
_LONGEST_WINDOW = max(window for _, window in RATE_LIMITS.values())

_last_sweep = 0.0


def _client_ip(request) -> str:
    return request.client.host if request.client else "unknown"


def _sweep(now: float) -> None:
    global _last_sweep
    if now - _last_sweep < _LONGEST_WINDOW:
        return
    _last_sweep = now

    stale = [key for key, hits in _hits.items() if now - hits[-1] >= _LONGEST_WINDOW]
    for key in stale:
        del _hits[key]


def allow(slug: str, request, endpoint: str, now: Optional[float] = None) -> bool:
    """Record a hit and report whether it is within the endpoint's limit."""
    limit, window = RATE_LIMITS[endpoint]
    now = time() if now is None else now
    _sweep(now)

    key = f"{endpoint}:{slug}:{_client_ip(request)}"
    recent = [t for t in _hits.get(key, ()) if now - t < window]

    if len(recent) >= limit:
        _hits[key] = recent
        return False

    recent.append(now)
    _hits[key] = recent
    return True


def reset() -> None:
    global _last_sweep
    _hits.clear()
    _last_sweep = 0.0
