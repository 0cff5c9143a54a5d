"""Metric history API endpoints."""

import logging
from datetime import UTC, datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from labpulse.db import get_db
from labpulse.schemas.metrics import (
    ContainerMetricSchema,
    ModelServerMetricSchema,
    SystemMetricSchema,
)
from labpulse.services.metrics_history import MAX_HISTORY_LIMIT, MetricsHistory
from labpulse.utils.error_handling import safe_error_response

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_HISTORY_HOURS = 24 * 365


def _since(hours: int) -> datetime:
    return datetime.now(UTC) - timedelta(hours=hours)


@router.get("/system/history", response_model=List[SystemMetricSchema])
async def get_system_history(
    hours: int = Query(24, ge=1, le=MAX_HISTORY_HOURS, description="Look-back window in hours"),
    limit: int = Query(1000, ge=1, le=MAX_HISTORY_LIMIT),
    db: AsyncSession = Depends(get_db),
):
    """Get host resource history, newest first."""
    try:
        return await MetricsHistory.system_history(db, since=_since(hours), limit=limit)
    except SQLAlchemyError as e:
        safe_error_response(logger, e, "Failed to load system metrics history")


@router.get("/containers/history", response_model=List[ContainerMetricSchema])
async def get_container_history(
    hours: int = Query(24, ge=1, le=MAX_HISTORY_HOURS, description="Look-back window in hours"),
    limit: int = Query(1000, ge=1, le=MAX_HISTORY_LIMIT),
    container_id: Optional[str] = Query(None, max_length=64, description="Filter by short container id"),
    db: AsyncSession = Depends(get_db),
):
    """Get container stats history, optionally for a single container."""
    try:
        return await MetricsHistory.container_history(
            db, since=_since(hours), container_id=container_id, limit=limit
        )
    except SQLAlchemyError as e:
        safe_error_response(logger, e, "Failed to load container metrics history")


@router.get("/model-server/history", response_model=List[ModelServerMetricSchema])
async def get_model_server_history(
    hours: int = Query(24, ge=1, le=MAX_HISTORY_HOURS, description="Look-back window in hours"),
    limit: int = Query(1000, ge=1, le=MAX_HISTORY_LIMIT),
    db: AsyncSession = Depends(get_db),
):
    """Get model server availability history, newest first."""
    try:
        return await MetricsHistory.model_server_history(db, since=_since(hours), limit=limit)
    except SQLAlchemyError as e:
        safe_error_response(logger, e, "Failed to load model server metrics history")
