"""API v1."""

from pos_backend.api.v1.router import api_router

__all__ = ["api_router"]
