"""Distributed sliding window rate limiting.

This package enforces per-client quotas across stateless handler processes
using Redis sorted sets updated by an atomic Lua script.
"""

from .identifier import ANONYMOUS_IDENTIFIER, get_client_identifier
from .limiter import TieredRateLimiter
from .models import (
    AdmissionResult,
    FailurePolicy,
    LimitConfig,
    LimitOutcome,
    LimitPreset,
    LimitTier,
    TieredOutcome,
)
from .presets import PRESET_ALIASES, TIER_NAMES, build_presets, get_preset
from .redis_lua import SLIDING_WINDOW_SCRIPT
from .responder import build_denial_response, format_retry_after
from .service import RateLimitService, create_rate_limit_service
from .store import (
    InMemorySlidingWindowStore,
    RedisSlidingWindowStore,
    SlidingWindowStore,
    create_redis_client,
    create_store,
)

__all__ = [
    "ANONYMOUS_IDENTIFIER",
    "get_client_identifier",
    "TieredRateLimiter",
    "AdmissionResult",
    "FailurePolicy",
    "LimitConfig",
    "LimitOutcome",
    "LimitPreset",
    "LimitTier",
    "TieredOutcome",
    "PRESET_ALIASES",
    "TIER_NAMES",
    "build_presets",
    "get_preset",
    "SLIDING_WINDOW_SCRIPT",
    "build_denial_response",
    "format_retry_after",
    "RateLimitService",
    "create_rate_limit_service",
    "InMemorySlidingWindowStore",
    "RedisSlidingWindowStore",
    "SlidingWindowStore",
    "create_redis_client",
    "create_store",
]
