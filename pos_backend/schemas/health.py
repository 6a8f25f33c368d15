"""Health check API schemas."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for GET /health (liveness)."""

    status: str = Field(default="ok", description="Service status")


class ReadinessResponse(BaseModel):
    """Response for GET /health/ready when the control database answers."""

    status: str = Field(default="ok", description="Readiness status")
    open_connections: int = Field(default=0, description="Cached database connections")
    cache_available: bool = Field(default=False, description="Redis product cache usable")


class ReadinessErrorResponse(BaseModel):
    """Response for GET /health/ready when the control database is unreachable (503)."""

    status: str = Field(default="not_ready", description="Readiness status")
    message: str = Field(..., description="Reason")
