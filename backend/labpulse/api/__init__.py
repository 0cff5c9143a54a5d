"""API routers for LabPulse."""

from fastapi import APIRouter
from labpulse.api import internal, metrics

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(metrics.router, prefix="/metrics", tags=["metrics"])
api_router.include_router(internal.router, prefix="/internal", tags=["internal"])

__all__ = ["api_router"]
