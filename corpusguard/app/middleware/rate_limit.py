"""Rate limiting dependency for FastAPI routes.

Protected routes declare the preset they need:

    @router.post("/api/summary", dependencies=[Depends(RateLimit("summary"))])

The check runs before the route body, so a denied request has no side
effects. Admitted responses carry ``X-RateLimit-*`` headers.
"""

from fastapi import Request, Response
from starlette.responses import Response as StarletteResponse

from corpusguard.app.exceptions import RateLimitExceededError, UnknownPresetError
from corpusguard.app.services.rate_limit.identifier import get_client_identifier
from corpusguard.app.services.rate_limit.models import AdmissionResult
from corpusguard.app.services.rate_limit.presets import PRESET_ALIASES, TIER_NAMES
from corpusguard.app.services.rate_limit.service import RateLimitService


def get_rate_limit_service(request: Request) -> RateLimitService:
    """Return the service the application built at startup."""
    service = getattr(request.app.state, "rate_limit_service", None)
    if service is None:
        raise RuntimeError("Rate limiter is not initialized; check the application lifespan")
    return service


class RateLimit:
    """FastAPI dependency enforcing one preset on a route."""

    def __init__(self, preset: str):
        """Bind the dependency to a preset.

        Args:
            preset: Tier name or route alias

        Raises:
            UnknownPresetError: At import time, if the name is not registered
        """
        if preset not in TIER_NAMES and preset not in PRESET_ALIASES:
            raise UnknownPresetError(preset)
        self.preset = preset

    async def __call__(self, request: Request, response: Response) -> AdmissionResult:
        service = get_rate_limit_service(request)
        identifier = get_client_identifier(request.headers)
        result = await service.check_rate_limit(identifier, self.preset)

        if not result.allowed:
            raise RateLimitExceededError(result.response)

        if result.outcome is not None:
            response.headers["X-RateLimit-Limit"] = str(result.outcome.limit)
            response.headers["X-RateLimit-Remaining"] = str(result.outcome.remaining)
            response.headers["X-RateLimit-Reset"] = str(result.outcome.reset_at_ms)
        return result


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceededError
) -> StarletteResponse:
    """Return the denial response built by the admission API, unchanged."""
    return exc.response
