"""Admission API consumed by every protected handler.

Wraps the tiered limiter with the store failure policy, metrics and the
denial responder. A denial is a normal return value here, never an
exception.
"""

from typing import Callable, Dict, Optional, Union

from corpusguard.app.api.metrics import get_metrics_collector
from corpusguard.app.core.config import Settings
from corpusguard.app.core.logging import get_log_context, get_logger
from corpusguard.app.core.utils import now_millis
from corpusguard.app.exceptions import BackendUnavailableError
from corpusguard.app.services.rate_limit.limiter import TieredRateLimiter
from corpusguard.app.services.rate_limit.models import (
    MINUTE_MS,
    AdmissionResult,
    FailurePolicy,
    LimitOutcome,
    LimitPreset,
    LimitTier,
)
from corpusguard.app.services.rate_limit.presets import build_presets, get_preset
from corpusguard.app.services.rate_limit.responder import build_denial_response
from corpusguard.app.services.rate_limit.store import SlidingWindowStore, create_store

logger = get_logger(__name__)

# Retry hint given to callers denied because the store is unreachable
FAIL_CLOSED_RETRY_MS = MINUTE_MS


class RateLimitService:
    """Admission checks for protected handlers.

    The store is injected at construction; nothing here holds a global
    client, so each app (and each test) owns its own limiter state.
    """

    def __init__(
        self,
        store: SlidingWindowStore,
        presets: Dict[str, LimitPreset],
        clock: Callable[[], int] = now_millis,
        failure_policy: str = "preset",
    ) -> None:
        """Initialize the service.

        Args:
            store: Shared counter store backend
            presets: Preset registry, keyed by tier name
            clock: Returns the current time in epoch milliseconds
            failure_policy: "preset" to honour each preset's policy, or
                "open"/"closed" to force one policy for every preset
        """
        if failure_policy not in ("preset", "open", "closed"):
            raise ValueError(f"Unknown failure policy: {failure_policy!r}")
        self.store = store
        self.presets = presets
        self.limiter = TieredRateLimiter(store, clock)
        self._clock = clock
        self._failure_policy = failure_policy

    def get_preset(self, name: str) -> LimitPreset:
        return get_preset(self.presets, name)

    def effective_policy(self, preset: LimitPreset) -> FailurePolicy:
        """Policy applied when the store fails while checking ``preset``."""
        if self._failure_policy == "preset":
            return preset.failure_policy
        return FailurePolicy(self._failure_policy)

    async def check_rate_limit(
        self, identifier: str, preset: Union[LimitPreset, str]
    ) -> AdmissionResult:
        """Check both tiers of ``preset`` for ``identifier``.

        Args:
            identifier: Client identifier
            preset: Preset or preset name/alias

        Returns:
            AdmissionResult; when not allowed, ``response`` is the 429
            response the handler must return verbatim
        """
        if isinstance(preset, str):
            preset = self.get_preset(preset)

        now_ms = self._clock()
        metrics = get_metrics_collector()

        try:
            tiered = await self.limiter.evaluate(identifier, preset, now_ms)
        except BackendUnavailableError as e:
            await metrics.record_check(preset.name)
            return await self._handle_backend_failure(identifier, preset, now_ms, e)

        if tiered.allowed:
            await metrics.record_check(preset.name)
            return AdmissionResult(
                allowed=True,
                remaining=tiered.outcome.remaining,
                outcome=tiered.outcome,
            )

        await metrics.record_check(preset.name, tiered.denied_by.value)
        return AdmissionResult(
            allowed=False,
            response=build_denial_response(
                tiered.outcome, preset.description, tiered.denied_by, now_ms
            ),
            outcome=tiered.outcome,
            denied_by=tiered.denied_by,
        )

    async def _handle_backend_failure(
        self,
        identifier: str,
        preset: LimitPreset,
        now_ms: int,
        error: BackendUnavailableError,
    ) -> AdmissionResult:
        """Apply the configured failure policy to a store failure.

        Both policies log and count the failure, fail-open included.
        """
        policy = self.effective_policy(preset)
        await get_metrics_collector().record_backend_failure(preset.name, policy.value)
        context = get_log_context(
            client_id=identifier, preset=preset.name, policy=policy.value, operation=error.operation
        )

        if policy is FailurePolicy.CLOSED:
            logger.error(
                f"Rate limiting fail-closed: {error.message}. Request denied.",
                extra=context,
            )
            outcome = LimitOutcome(
                allowed=False,
                limit=preset.quota.limit,
                remaining=0,
                reset_at_ms=now_ms + FAIL_CLOSED_RETRY_MS,
            )
            return AdmissionResult(
                allowed=False,
                response=build_denial_response(
                    outcome,
                    preset.description,
                    LimitTier.QUOTA,
                    now_ms,
                    error=f"Rate limiting is temporarily unavailable for {preset.description}",
                ),
                outcome=outcome,
                degraded=True,
            )

        logger.warning(
            f"Rate limiting fail-open: {error.message}. "
            "Request allowed without rate limit check.",
            extra=context,
        )
        return AdmissionResult(allowed=True, remaining=None, degraded=True)

    async def close(self) -> None:
        """Release the store's connections."""
        await self.store.close()


def create_rate_limit_service(
    config: Settings,
    store: Optional[SlidingWindowStore] = None,
    clock: Callable[[], int] = now_millis,
) -> RateLimitService:
    """Build the service from settings.

    Without an injected store this creates the Redis client, so a missing
    KV_REDIS_URL raises ConfigurationError here, at startup.
    """
    if store is None:
        store = create_store(config)
    return RateLimitService(
        store=store,
        presets=build_presets(config),
        clock=clock,
        failure_policy=config.rate_limit_failure_policy,
    )
