"""Tests for the 429 denial responder."""

import json

import pytest

from corpusguard.app.core.utils import millis_to_iso
from corpusguard.app.services.rate_limit.models import LimitOutcome, LimitTier
from corpusguard.app.services.rate_limit.responder import (
    build_denial_body,
    build_denial_headers,
    build_denial_response,
    denial_message,
    format_retry_after,
    retry_after_seconds,
)

NOW_MS = 1_700_000_000_000


class TestFormatRetryAfter:

    @pytest.mark.parametrize(
        "delta_ms,expected",
        [
            (-5_000, "now"),
            (0, "now"),
            (1, "less than a minute"),
            (59_999, "less than a minute"),
            (60_000, "1 minute"),
            (60_001, "2 minutes"),
            (45 * 60_000, "45 minutes"),
            (59 * 60_000, "59 minutes"),
            (59 * 60_000 + 1, "1 hour"),
            (3_600_000, "1 hour"),
            (3_600_001, "2 hours"),
            (5 * 3_600_000, "5 hours"),
        ],
    )
    def test_thresholds(self, delta_ms, expected):
        assert format_retry_after(NOW_MS + delta_ms, now_ms=NOW_MS) == expected


class TestRetryAfterSeconds:

    def test_rounds_up(self):
        assert retry_after_seconds(NOW_MS + 1, now_ms=NOW_MS) == 1
        assert retry_after_seconds(NOW_MS + 1_000, now_ms=NOW_MS) == 1
        assert retry_after_seconds(NOW_MS + 1_001, now_ms=NOW_MS) == 2

    def test_never_negative(self):
        assert retry_after_seconds(NOW_MS - 10_000, now_ms=NOW_MS) == 0


class TestMillisToIso:

    def test_millisecond_precision_with_z_suffix(self):
        assert millis_to_iso(0) == "1970-01-01T00:00:00.000Z"
        assert millis_to_iso(1_700_000_000_123) == "2023-11-14T22:13:20.123Z"


class TestDenialBody:

    @pytest.fixture
    def outcome(self):
        return LimitOutcome(allowed=False, limit=10, remaining=0, reset_at_ms=NOW_MS + 30 * 60_000)

    def test_quota_body(self, outcome):
        body = build_denial_body(outcome, "AI queries (10/hour, 2/min)", LimitTier.QUOTA, NOW_MS)

        assert body == {
            "error": "Rate limit exceeded for AI queries (10/hour, 2/min)",
            "retryAfter": "30 minutes",
            "resetAt": millis_to_iso(NOW_MS + 30 * 60_000),
            "limit": 10,
            "remaining": 0,
        }

    def test_burst_message_differs(self):
        assert denial_message("AI queries", LimitTier.BURST) != denial_message("AI queries")
        assert "AI queries" in denial_message("AI queries", LimitTier.BURST)

    def test_error_override(self, outcome):
        body = build_denial_body(outcome, "AI queries", now_ms=NOW_MS, error="Unavailable")
        assert body["error"] == "Unavailable"

    def test_remaining_is_always_zero(self):
        outcome = LimitOutcome(allowed=False, limit=10, remaining=3, reset_at_ms=NOW_MS)
        assert build_denial_body(outcome, "x", now_ms=NOW_MS)["remaining"] == 0


class TestDenialResponse:

    def test_headers(self):
        outcome = LimitOutcome(allowed=False, limit=2, remaining=0, reset_at_ms=NOW_MS + 42_500)
        headers = build_denial_headers(outcome, NOW_MS)

        assert headers == {
            "Retry-After": "43",
            "X-RateLimit-Limit": "2",
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(NOW_MS + 42_500),
        }

    def test_response(self):
        outcome = LimitOutcome(allowed=False, limit=2, remaining=0, reset_at_ms=NOW_MS + 42_500)
        response = build_denial_response(outcome, "AI queries", LimitTier.BURST, NOW_MS)

        assert response.status_code == 429
        assert response.headers["retry-after"] == "43"
        assert response.headers["content-type"] == "application/json"

        body = json.loads(response.body)
        assert body["retryAfter"] == "less than a minute"
        assert body["limit"] == 2
        assert body["error"] == denial_message("AI queries", LimitTier.BURST)
