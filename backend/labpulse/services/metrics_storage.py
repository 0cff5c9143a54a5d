"""Storage manager for append-only metric records and retention cleanup."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Callable, Dict, Optional, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from labpulse.db import AsyncSessionLocal, Base
from labpulse.exceptions import SnapshotValidationError
from labpulse.models import ContainerMetric, ModelServerMetric, SystemMetric
from labpulse.schemas.metrics import (
    ContainerSnapshot,
    MetricFamily,
    ModelServerSnapshot,
    SystemSnapshot,
)
from labpulse.services import metrics as prom

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


class MetricsStorage:
    """Sole writer of the metric tables.

    Every insert and every delete runs in its own session and transaction;
    nothing here spans families. Failures are logged and reported through
    the return value, never raised.
    """

    def __init__(
        self,
        retention: timedelta,
        session_factory: Optional[SessionFactory] = None,
    ):
        """Initialize the storage manager.

        Args:
            retention: Records older than now - retention are pruned
            session_factory: Callable returning an AsyncSession context
                manager (default: AsyncSessionLocal)
        """
        self.retention = retention
        self.session_factory = session_factory or AsyncSessionLocal

    @staticmethod
    def _revalidate(snapshot: BaseModel, family: MetricFamily) -> None:
        """Re-run field validation on a snapshot before it is persisted.

        Snapshots built with model_construct() or mutated after creation
        skip pydantic validation; this catches them.

        Raises:
            SnapshotValidationError: If any field is out of range
        """
        try:
            type(snapshot).model_validate(snapshot.model_dump())
        except ValidationError as e:
            raise SnapshotValidationError(family.value, str(e)) from e

    async def _insert(self, family: MetricFamily, snapshot: BaseModel, row: Callable[[], Base]) -> bool:
        try:
            self._revalidate(snapshot, family)
        except SnapshotValidationError as e:
            logger.warning(f"Rejected {family.value} snapshot: {e.errors}")
            prom.record_failures_total.labels(family=family.value).inc()
            return False

        try:
            async with self.session_factory() as db:
                try:
                    db.add(row())
                    await db.commit()
                except SQLAlchemyError:
                    await db.rollback()
                    raise
        except SQLAlchemyError as e:
            logger.error(f"Database error saving {family.value} metrics: {e}")
            prom.record_failures_total.labels(family=family.value).inc()
            return False

        prom.records_written_total.labels(family=family.value).inc()
        return True

    async def record_system(self, snapshot: SystemSnapshot) -> bool:
        """Persist one system snapshot.

        Returns:
            True if the record was inserted
        """
        return await self._insert(
            MetricFamily.SYSTEM,
            snapshot,
            lambda: SystemMetric(
                collected_at=snapshot.collected_at,
                cpu_usage=snapshot.cpu.usage,
                cpu_temperature=snapshot.cpu.temperature,
                memory_total=snapshot.memory.total,
                memory_used=snapshot.memory.used,
                memory_percent=snapshot.memory.percent,
                disk_total=snapshot.disk.total,
                disk_used=snapshot.disk.used,
                disk_percent=snapshot.disk.percent,
            ),
        )

    async def record_container(self, snapshot: ContainerSnapshot) -> bool:
        """Persist one container snapshot."""
        return await self._insert(
            MetricFamily.CONTAINER,
            snapshot,
            lambda: ContainerMetric(
                collected_at=snapshot.collected_at,
                container_id=snapshot.container_id,
                container_name=snapshot.container_name,
                status=snapshot.status,
                cpu_percent=snapshot.cpu_percent,
                memory_used=snapshot.memory_used,
                memory_limit=snapshot.memory_limit,
                network_rx=snapshot.network_rx,
                network_tx=snapshot.network_tx,
            ),
        )

    async def record_model_server(self, snapshot: ModelServerSnapshot) -> bool:
        """Persist one model server snapshot (including unavailable ones)."""
        return await self._insert(
            MetricFamily.MODEL_SERVER,
            snapshot,
            lambda: ModelServerMetric(
                collected_at=snapshot.collected_at,
                available=snapshot.available,
                model_count=snapshot.model_count,
                active_inferences=snapshot.active_inferences,
            ),
        )

    async def record(self, snapshot: BaseModel) -> bool:
        """Persist a snapshot of any family, dispatching on its kind."""
        if isinstance(snapshot, SystemSnapshot):
            return await self.record_system(snapshot)
        if isinstance(snapshot, ContainerSnapshot):
            return await self.record_container(snapshot)
        if isinstance(snapshot, ModelServerSnapshot):
            return await self.record_model_server(snapshot)

        logger.error(f"Unknown snapshot type {type(snapshot).__name__}, not persisted")
        return False

    async def _delete_older_than(
        self, family: MetricFamily, model: Type[Base], cutoff: datetime
    ) -> Optional[int]:
        try:
            async with self.session_factory() as db:
                try:
                    cursor_result = await db.execute(
                        delete(model).where(model.collected_at < cutoff)
                    )
                    await db.commit()
                except SQLAlchemyError:
                    await db.rollback()
                    raise
        except SQLAlchemyError as e:
            logger.error(f"Database error cleaning up {family.value} metrics: {e}")
            prom.cleanup_failures_total.labels(family=family.value).inc()
            return None

        deleted_count: int = cursor_result.rowcount or 0  # type: ignore[assignment]
        if deleted_count > 0:
            prom.records_pruned_total.labels(family=family.value).inc(deleted_count)
            logger.debug(f"Deleted {deleted_count} {family.value} records older than {cutoff.isoformat()}")

        return deleted_count

    async def cleanup_system(self, cutoff: datetime) -> Optional[int]:
        """Delete system records strictly older than cutoff.

        Returns:
            Deleted record count, or None if the delete failed
        """
        return await self._delete_older_than(MetricFamily.SYSTEM, SystemMetric, cutoff)

    async def cleanup_containers(self, cutoff: datetime) -> Optional[int]:
        """Delete container records strictly older than cutoff."""
        return await self._delete_older_than(MetricFamily.CONTAINER, ContainerMetric, cutoff)

    async def cleanup_model_server(self, cutoff: datetime) -> Optional[int]:
        """Delete model server records strictly older than cutoff."""
        return await self._delete_older_than(MetricFamily.MODEL_SERVER, ModelServerMetric, cutoff)

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        """Retention cutoff instant: now minus the retention window."""
        return (now or datetime.now(UTC)) - self.retention

    async def cleanup_all(
        self, now: Optional[datetime] = None
    ) -> Dict[MetricFamily, Optional[int]]:
        """Prune every family against one shared cutoff.

        Args:
            now: Reference instant (default: current UTC time)

        Returns:
            Deleted record count per family; None for a family whose
            cleanup failed
        """
        cutoff = self.cutoff(now)

        deleted = {
            MetricFamily.SYSTEM: await self.cleanup_system(cutoff),
            MetricFamily.CONTAINER: await self.cleanup_containers(cutoff),
            MetricFamily.MODEL_SERVER: await self.cleanup_model_server(cutoff),
        }

        failed = [family.value for family, count in deleted.items() if count is None]
        if failed:
            logger.warning(f"Metrics cleanup failed for: {', '.join(failed)}")

        total = sum(count for count in deleted.values() if count)
        if total > 0:
            logger.info(
                f"Cleaned up {total} old metric records older than {cutoff.isoformat()} "
                f"(system={deleted[MetricFamily.SYSTEM]}, "
                f"container={deleted[MetricFamily.CONTAINER]}, "
                f"model_server={deleted[MetricFamily.MODEL_SERVER]})"
            )

        return deleted
