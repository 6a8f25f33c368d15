"""Health check endpoints: liveness, and readiness against the control database."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from pos_backend.domain.exceptions import ShardConnectionError
from pos_backend.schemas.health import (
    HealthResponse,
    ReadinessErrorResponse,
    ReadinessResponse,
)

router = APIRouter()


@router.get("", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Return simple ok status for liveness."""
    return HealthResponse()


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"description": "Control database unreachable", "model": ReadinessErrorResponse}},
)
async def readiness_check(request: Request) -> ReadinessResponse | JSONResponse:
    """Return 200 when the control database answers; 503 otherwise."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        return JSONResponse(
            status_code=503,
            content=ReadinessErrorResponse(message="Not started").model_dump(),
        )
    try:
        await registry.get_control_connection()
    except ShardConnectionError as e:
        return JSONResponse(
            status_code=503,
            content=ReadinessErrorResponse(message=e.message).model_dump(),
        )
    cache = getattr(request.app.state, "cache", None)
    return ReadinessResponse(
        open_connections=registry.connection_count(),
        cache_available=bool(cache is not None and cache.is_available()),
    )
