"""Health and limit discovery endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Request

from corpusguard.app.exceptions import BackendUnavailableError
from corpusguard.app.middleware.rate_limit import RateLimit, get_rate_limit_service

router = APIRouter()


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Health check including shared counter store connectivity."""
    health_status: dict[str, Any] = {"status": "ok", "components": {}}
    service = get_rate_limit_service(request)
    store_type = service.store.backend_name

    try:
        await service.store.ping()
        health_status["components"]["store"] = {"status": "ok", "type": store_type}
    except BackendUnavailableError as e:
        health_status["status"] = "degraded"
        health_status["components"]["store"] = {
            "status": "error",
            "type": store_type,
            "error": str(e)[:100],  # Truncate for security
        }

    return health_status


@router.get("/v1/limits", dependencies=[Depends(RateLimit("readonly"))])
async def list_limits(request: Request) -> dict[str, Any]:
    """Describe every preset so clients can pace themselves."""
    service = get_rate_limit_service(request)
    return {
        "object": "list",
        "data": [
            {
                "name": preset.name,
                "description": preset.description,
                "quota": {"limit": preset.quota.limit, "window_ms": preset.quota.window_ms},
                "burst": (
                    {"limit": preset.burst.limit, "window_ms": preset.burst.window_ms}
                    if preset.burst is not None
                    else None
                ),
                "failure_policy": service.effective_policy(preset).value,
            }
            for preset in service.presets.values()
        ],
    }
