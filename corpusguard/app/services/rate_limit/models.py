"""Rate limiting data models.

This module contains the immutable limit configuration types and the
outcome types returned by the store, the tiered limiter and the
admission API.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from starlette.responses import Response

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS


class FailurePolicy(str, Enum):
    """What to do when the shared counter store is unreachable."""
    OPEN = "open"  # Admit the request anyway
    CLOSED = "closed"  # Deny the request


class LimitTier(str, Enum):
    """Which check of a preset produced an outcome."""
    QUOTA = "quota"
    BURST = "burst"


@dataclass(frozen=True)
class LimitConfig:
    """A single sliding window: at most ``limit`` requests per ``window_ms``.

    Attributes:
        limit: Maximum admitted requests inside the window
        window_ms: Window duration in milliseconds
        key_prefix: Namespace for the store key, e.g. ``ratelimit:expensive``
    """
    limit: int
    window_ms: int
    key_prefix: str

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be a positive integer")
        if self.window_ms < 1:
            raise ValueError("window_ms must be a positive duration")
        if not self.key_prefix:
            raise ValueError("key_prefix must not be empty")

    def key_for(self, identifier: str) -> str:
        """Store key holding this window's entries for one client."""
        return f"{self.key_prefix}:{identifier}"


@dataclass(frozen=True)
class LimitPreset:
    """A named quota window plus an optional burst window."""
    name: str
    quota: LimitConfig
    burst: Optional[LimitConfig]
    description: str
    failure_policy: FailurePolicy = FailurePolicy.CLOSED


@dataclass(frozen=True)
class LimitOutcome:
    """Result of one sliding window check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int


@dataclass(frozen=True)
class TieredOutcome:
    """Aggregated result of evaluating a preset.

    ``denied_by`` names the tier that rejected the request and is None
    when the request was admitted.
    """
    outcome: LimitOutcome
    denied_by: Optional[LimitTier] = None
    quota: Optional[LimitOutcome] = None
    burst: Optional[LimitOutcome] = None

    @property
    def allowed(self) -> bool:
        return self.outcome.allowed


@dataclass
class AdmissionResult:
    """What a protected handler gets back from the admission API.

    Callers that receive ``allowed=False`` return ``response`` verbatim
    and do no further work.
    """
    allowed: bool
    remaining: Optional[int] = None
    response: Optional["Response"] = None
    outcome: Optional[LimitOutcome] = None
    denied_by: Optional[LimitTier] = None
    degraded: bool = field(default=False)
