"""Shared FastAPI dependencies for route handlers."""

from fastapi import HTTPException, Request

from labpulse.services.scheduler import MetricsScheduler


def get_metrics_scheduler(request: Request) -> MetricsScheduler:
    """Return the process-wide metrics scheduler created at startup.

    Raises:
        HTTPException: 503 if the application lifespan has not created it
    """
    scheduler = getattr(request.app.state, "metrics_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Metrics scheduler not initialized")
    return scheduler
