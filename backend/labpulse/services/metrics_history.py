"""Read-only queries over the metric history tables."""

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from labpulse.models import ContainerMetric, ModelServerMetric, SystemMetric

MAX_HISTORY_LIMIT = 5000


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_HISTORY_LIMIT))


class MetricsHistory:
    """Time-range queries, newest record first."""

    @staticmethod
    async def system_history(
        db: AsyncSession,
        since: datetime,
        until: Optional[datetime] = None,
        limit: int = 1000,
    ) -> Sequence[SystemMetric]:
        query = select(SystemMetric).where(SystemMetric.collected_at >= since)
        if until is not None:
            query = query.where(SystemMetric.collected_at <= until)

        result = await db.execute(
            query.order_by(SystemMetric.collected_at.desc(), SystemMetric.id.desc()).limit(
                _clamp_limit(limit)
            )
        )
        return result.scalars().all()

    @staticmethod
    async def container_history(
        db: AsyncSession,
        since: datetime,
        until: Optional[datetime] = None,
        container_id: Optional[str] = None,
        limit: int = 1000,
    ) -> Sequence[ContainerMetric]:
        """Container records in range, optionally for one container only."""
        query = select(ContainerMetric).where(ContainerMetric.collected_at >= since)
        if until is not None:
            query = query.where(ContainerMetric.collected_at <= until)
        if container_id:
            query = query.where(ContainerMetric.container_id == container_id)

        result = await db.execute(
            query.order_by(ContainerMetric.collected_at.desc(), ContainerMetric.id.desc()).limit(
                _clamp_limit(limit)
            )
        )
        return result.scalars().all()

    @staticmethod
    async def model_server_history(
        db: AsyncSession,
        since: datetime,
        until: Optional[datetime] = None,
        limit: int = 1000,
    ) -> Sequence[ModelServerMetric]:
        query = select(ModelServerMetric).where(ModelServerMetric.collected_at >= since)
        if until is not None:
            query = query.where(ModelServerMetric.collected_at <= until)

        result = await db.execute(
            query.order_by(ModelServerMetric.collected_at.desc(), ModelServerMetric.id.desc()).limit(
                _clamp_limit(limit)
            )
        )
        return result.scalars().all()
