"""Tiered rate limiter composing a quota window and a burst window."""

from typing import Callable, Optional

from corpusguard.app.core.logging import get_log_context, get_logger
from corpusguard.app.core.utils import now_millis
from corpusguard.app.services.rate_limit.models import (
    LimitConfig,
    LimitOutcome,
    LimitPreset,
    LimitTier,
    TieredOutcome,
)
from corpusguard.app.services.rate_limit.store import SlidingWindowStore

logger = get_logger(__name__)


class TieredRateLimiter:
    """Evaluates a preset's quota and burst windows against the store.

    The quota window is checked first so that a caller who has used up
    the long window is told about the quota rather than the burst.

    A burst denial does not roll back the entry the quota check just
    recorded: the quota counter keeps counting the attempt. Undoing it
    would need a second store operation with its own failure handling.
    """

    def __init__(
        self,
        store: SlidingWindowStore,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Shared counter store backend
            clock: Returns the current time in epoch milliseconds
        """
        self.store = store
        self._clock = clock

    async def check(self, identifier: str, config: LimitConfig, now_ms: int) -> LimitOutcome:
        """Run one sliding window check for ``identifier``."""
        return await self.store.check_and_record(
            config.key_for(identifier), now_ms, config.window_ms, config.limit
        )

    async def evaluate(
        self,
        identifier: str,
        preset: LimitPreset,
        now_ms: Optional[int] = None,
    ) -> TieredOutcome:
        """Evaluate ``preset`` for one request.

        Args:
            identifier: Client identifier
            preset: Preset to enforce
            now_ms: Arrival time; defaults to the limiter clock

        Returns:
            TieredOutcome with the worst-case outcome across both tiers

        Raises:
            BackendUnavailableError: If the store cannot be reached
        """
        if now_ms is None:
            now_ms = self._clock()

        quota = await self.check(identifier, preset.quota, now_ms)
        if not quota.allowed:
            logger.debug(
                "Quota window exhausted",
                extra=get_log_context(client_id=identifier, preset=preset.name, tier="quota"),
            )
            return TieredOutcome(outcome=quota, denied_by=LimitTier.QUOTA, quota=quota)

        if preset.burst is None:
            return TieredOutcome(outcome=quota, quota=quota)

        burst = await self.check(identifier, preset.burst, now_ms)
        if not burst.allowed:
            logger.debug(
                "Burst window exhausted",
                extra=get_log_context(client_id=identifier, preset=preset.name, tier="burst"),
            )
            return TieredOutcome(
                outcome=burst, denied_by=LimitTier.BURST, quota=quota, burst=burst
            )

        # Both admitted: report whichever window is closer to its limit
        binding = burst if burst.remaining < quota.remaining else quota
        return TieredOutcome(outcome=binding, quota=quota, burst=burst)
