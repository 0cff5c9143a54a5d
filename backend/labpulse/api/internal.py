"""Internal endpoints for background task bootstrap and status."""

import logging

from fastapi import APIRouter, Depends

from labpulse.dependencies import get_metrics_scheduler
from labpulse.schemas.metrics import InitResponse
from labpulse.services.scheduler import MetricsScheduler

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/init", response_model=InitResponse)
async def init_background_tasks(
    scheduler: MetricsScheduler = Depends(get_metrics_scheduler),
):
    """Make sure metrics collection is running.

    Idempotent; called by health/bootstrap checks after startup.
    """
    running = await scheduler.ensure_started()
    return InitResponse(success=True, metrics_collection_running=running)


@router.get("/scheduler")
async def get_scheduler_status(
    scheduler: MetricsScheduler = Depends(get_metrics_scheduler),
):
    """Get metrics scheduler status."""
    return scheduler.get_status()
