"""Rate limit preset registry.

Presets are static: built once at startup from settings and never
mutated or persisted. Numbers are tuning knobs, not business rules.
"""

from typing import Dict, Mapping, Optional

from corpusguard.app.core.config import Settings
from corpusguard.app.exceptions import UnknownPresetError
from corpusguard.app.services.rate_limit.models import (
    HOUR_MS,
    MINUTE_MS,
    FailurePolicy,
    LimitConfig,
    LimitPreset,
)

EXPENSIVE = "expensive-operation"
QUOTA_LIMITED = "quota-limited-operation"
RESOURCE_INTENSIVE = "resource-intensive-operation"
LIGHTWEIGHT = "lightweight-operation"

TIER_NAMES = (EXPENSIVE, QUOTA_LIMITED, RESOURCE_INTENSIVE, LIGHTWEIGHT)

# Route-level names used by the document service handlers
PRESET_ALIASES: Dict[str, str] = {
    "summary": EXPENSIVE,  # corpus queries, paid LLM calls
    "search": QUOTA_LIMITED,  # web search, free-tier quota
    "upload": RESOURCE_INTENSIVE,  # file upload processing
    "mutation": RESOURCE_INTENSIVE,  # corpus deletes and updates
    "readonly": LIGHTWEIGHT,  # corpus listing and stats
}


def _tier(
    name: str,
    prefix: str,
    hourly: int,
    burst: Optional[int],
    description: str,
    policy: FailurePolicy,
) -> LimitPreset:
    return LimitPreset(
        name=name,
        quota=LimitConfig(limit=hourly, window_ms=HOUR_MS, key_prefix=prefix),
        burst=(
            LimitConfig(limit=burst, window_ms=MINUTE_MS, key_prefix=f"{prefix}-burst")
            if burst is not None
            else None
        ),
        description=description,
        failure_policy=policy,
    )


def build_presets(config: Settings) -> Dict[str, LimitPreset]:
    """Build the four sensitivity tiers from settings."""
    root = config.rate_limit_key_prefix
    presets = [
        # Tier 1: Calls that cost money downstream (LLM queries)
        _tier(
            EXPENSIVE,
            f"{root}:expensive",
            config.rate_limit_expensive_hourly,
            config.rate_limit_expensive_burst,
            f"AI queries ({config.rate_limit_expensive_hourly}/hour, "
            f"{config.rate_limit_expensive_burst}/min)",
            FailurePolicy.CLOSED,
        ),
        # Tier 2: Calls against a third-party free-tier quota
        _tier(
            QUOTA_LIMITED,
            f"{root}:quota-limited",
            config.rate_limit_quota_limited_hourly,
            config.rate_limit_quota_limited_burst,
            f"Web searches ({config.rate_limit_quota_limited_hourly}/hour, "
            f"{config.rate_limit_quota_limited_burst}/min)",
            FailurePolicy.CLOSED,
        ),
        # Tier 3: Uploads and mutations
        _tier(
            RESOURCE_INTENSIVE,
            f"{root}:resource-intensive",
            config.rate_limit_resource_intensive_hourly,
            config.rate_limit_resource_intensive_burst,
            f"File uploads and data mutations "
            f"({config.rate_limit_resource_intensive_hourly}/hour, "
            f"{config.rate_limit_resource_intensive_burst}/min)",
            FailurePolicy.CLOSED,
        ),
        # Tier 4: Reads, no burst limit
        _tier(
            LIGHTWEIGHT,
            f"{root}:lightweight",
            config.rate_limit_lightweight_hourly,
            None,
            f"Read operations ({config.rate_limit_lightweight_hourly}/hour)",
            FailurePolicy.OPEN,
        ),
    ]
    return {preset.name: preset for preset in presets}


def get_preset(presets: Mapping[str, LimitPreset], name: str) -> LimitPreset:
    """Resolve a preset by tier name or route alias.

    Raises:
        UnknownPresetError: If neither a tier nor an alias matches
    """
    resolved = PRESET_ALIASES.get(name, name)
    try:
        return presets[resolved]
    except KeyError:
        raise UnknownPresetError(name) from None
