"""Turns a denied outcome into the 429 wire response.

Every denial, whichever tier produced it, has the same shape:

    {"error": ..., "retryAfter": ..., "resetAt": ..., "limit": ..., "remaining": 0}

with ``Retry-After`` (seconds) and ``X-RateLimit-*`` headers.
"""

from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

from corpusguard.app.core.utils import millis_to_iso, now_millis
from corpusguard.app.services.rate_limit.models import (
    HOUR_MS,
    MINUTE_MS,
    LimitOutcome,
    LimitTier,
)

TOO_MANY_REQUESTS = 429


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def format_retry_after(reset_at_ms: int, now_ms: Optional[int] = None) -> str:
    """Format time remaining until the window admits again.

    Examples:
        >>> format_retry_after(30_000, now_ms=0)
        'less than a minute'
        >>> format_retry_after(60_000, now_ms=0)
        '1 minute'
        >>> format_retry_after(61_000, now_ms=0)
        '2 minutes'
        >>> format_retry_after(3_600_000, now_ms=0)
        '1 hour'
    """
    if now_ms is None:
        now_ms = now_millis()
    ms_remaining = reset_at_ms - now_ms

    if ms_remaining <= 0:
        return "now"
    if ms_remaining < MINUTE_MS:
        return "less than a minute"

    minutes = _ceil_div(ms_remaining, MINUTE_MS)
    if minutes == 1:
        return "1 minute"
    if minutes < 60:
        return f"{minutes} minutes"

    hours = _ceil_div(ms_remaining, HOUR_MS)
    if hours == 1:
        return "1 hour"
    return f"{hours} hours"


def retry_after_seconds(reset_at_ms: int, now_ms: Optional[int] = None) -> int:
    """Whole seconds until reset, rounded up and never negative."""
    if now_ms is None:
        now_ms = now_millis()
    return max(0, _ceil_div(reset_at_ms - now_ms, 1000))


def denial_message(description: str, tier: LimitTier = LimitTier.QUOTA) -> str:
    if tier is LimitTier.BURST:
        return f"Too many requests in quick succession for {description}"
    return f"Rate limit exceeded for {description}"


def build_denial_body(
    outcome: LimitOutcome,
    description: str,
    tier: LimitTier = LimitTier.QUOTA,
    now_ms: Optional[int] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "error": error or denial_message(description, tier),
        "retryAfter": format_retry_after(outcome.reset_at_ms, now_ms),
        "resetAt": millis_to_iso(outcome.reset_at_ms),
        "limit": outcome.limit,
        "remaining": 0,
    }


def build_denial_headers(outcome: LimitOutcome, now_ms: Optional[int] = None) -> Dict[str, str]:
    return {
        "Retry-After": str(retry_after_seconds(outcome.reset_at_ms, now_ms)),
        "X-RateLimit-Limit": str(outcome.limit),
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": str(outcome.reset_at_ms),
    }


def build_denial_response(
    outcome: LimitOutcome,
    description: str,
    tier: LimitTier = LimitTier.QUOTA,
    now_ms: Optional[int] = None,
    error: Optional[str] = None,
) -> JSONResponse:
    """Build the HTTP 429 response for a denied outcome.

    Args:
        outcome: The denying window's outcome
        description: Human-readable preset description
        tier: Which tier denied; only changes the ``error`` text
        now_ms: Reference time for retry-after; defaults to the clock
        error: Replaces the tier-derived error text

    Returns:
        JSONResponse with status 429 and rate limit headers
    """
    if now_ms is None:
        now_ms = now_millis()
    return JSONResponse(
        status_code=TOO_MANY_REQUESTS,
        content=build_denial_body(outcome, description, tier, now_ms, error),
        headers=build_denial_headers(outcome, now_ms),
    )
