"""Background scheduler for metrics collection and retention cleanup."""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from labpulse.config import MetricsConfig
from labpulse.exceptions import ConfigurationError
from labpulse.schemas.metrics import MetricFamily
from labpulse.services import metrics as prom
from labpulse.services.docker_stats import DockerStatsService
from labpulse.services.metrics_collector import CollectionReport, MetricsCollector
from labpulse.services.metrics_storage import MetricsStorage
from labpulse.services.ollama_client import OllamaClient
from labpulse.services.system_sampler import SystemSampler

logger = logging.getLogger(__name__)

COLLECTION_JOB_ID = "metrics_collection"
CLEANUP_JOB_ID = "metrics_cleanup"


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class MetricsScheduler:
    """Drive metrics collection and cleanup on two interval timers.

    Owns its APScheduler instance exclusively. ``start()`` and ``stop()`` are
    idempotent and are the only methods that change the running state.

    Overlapping ticks are not allowed: each job runs under its own lock and a
    tick that finds the previous one still in progress is skipped.
    """

    def __init__(
        self,
        collector: MetricsCollector,
        storage: MetricsStorage,
        collection_interval: timedelta = timedelta(minutes=1),
        cleanup_interval: timedelta = timedelta(hours=1),
    ) -> None:
        """Initialize the scheduler.

        Raises:
            ConfigurationError: If an interval is not a positive duration
        """
        if collection_interval <= timedelta(0):
            raise ConfigurationError(
                "collection_interval", str(collection_interval), "must be a positive duration"
            )
        if cleanup_interval <= timedelta(0):
            raise ConfigurationError(
                "cleanup_interval", str(cleanup_interval), "must be a positive duration"
            )

        self.collector = collector
        self.storage = storage
        self.collection_interval = collection_interval
        self.cleanup_interval = cleanup_interval

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._state = SchedulerState.STOPPED
        self._generation = 0
        self._collection_lock = asyncio.Lock()
        self._cleanup_lock = asyncio.Lock()

        self._last_collection: Optional[datetime] = None
        self._last_report: Optional[CollectionReport] = None
        self._last_cleanup: Optional[datetime] = None
        self._last_cleanup_counts: Optional[Dict[MetricFamily, Optional[int]]] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    async def start(self) -> None:
        """Start collecting.

        Runs one collection pass immediately, then arms the collection and
        cleanup timers. Calling start() while running does nothing.
        """
        if self._state is SchedulerState.RUNNING:
            logger.debug("Metrics collection already running")
            return

        self._state = SchedulerState.RUNNING
        self._generation += 1
        generation = self._generation
        prom.scheduler_running.set(1)

        logger.info(
            f"Starting metrics collection (interval: {self.collection_interval.total_seconds():.0f}s, "
            f"cleanup every {self.cleanup_interval.total_seconds():.0f}s, "
            f"retention: {self.storage.retention})"
        )

        # Collect immediately so history is fresh as soon as the process is up
        await self._run_collection()

        # stop() (or stop() followed by start()) happened during the first pass
        if self._state is not SchedulerState.RUNNING or generation != self._generation:
            logger.debug("Scheduler state changed during initial collection, not arming timers")
            return

        scheduler = AsyncIOScheduler(timezone=UTC)

        scheduler.add_job(
            self._run_collection,
            IntervalTrigger(seconds=self.collection_interval.total_seconds()),
            id=COLLECTION_JOB_ID,
            name="Metrics Collection",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
        )

        scheduler.add_job(
            self._run_cleanup,
            IntervalTrigger(seconds=self.cleanup_interval.total_seconds()),
            id=CLEANUP_JOB_ID,
            name="Metrics Retention Cleanup",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        scheduler.start()
        self.scheduler = scheduler

        job = scheduler.get_job(COLLECTION_JOB_ID)
        if job and job.next_run_time:
            logger.info(f"Next metrics collection scheduled for: {job.next_run_time}")

    async def stop(self) -> None:
        """Cancel both timers. Safe to call when already stopped."""
        if self.scheduler:
            try:
                self.scheduler.shutdown(wait=False)
                # Give event loop a chance to process shutdown
                await asyncio.sleep(0)
            except RuntimeError as e:
                logger.error(f"Scheduler shutdown error: {e}")
            self.scheduler = None

        was_running = self._state is SchedulerState.RUNNING
        self._state = SchedulerState.STOPPED
        prom.scheduler_running.set(0)

        if was_running:
            logger.info("Metrics collection stopped")

    async def ensure_started(self) -> bool:
        """Boot hook: make sure collection is running.

        Safe to call any number of times (e.g. from startup and from a
        bootstrap endpoint).

        Returns:
            Whether the scheduler is running
        """
        if not self.is_running():
            await self.start()
        return self.is_running()

    async def close(self) -> None:
        """Stop the scheduler and release source resources."""
        await self.stop()
        for source in self.collector.sources:
            close = getattr(source, "close", None)
            if close is not None:
                await close()

    async def _run_collection(self) -> Optional[CollectionReport]:
        """Collection job body; never raises, so later ticks always run."""
        if self._collection_lock.locked():
            logger.warning("Previous metrics collection still running, skipping this tick")
            prom.collection_skipped_total.inc()
            return None

        async with self._collection_lock:
            try:
                report = await self.collector.collect_all()
            except Exception as e:
                logger.error(f"Metrics collection pass failed: {e!r}", exc_info=True)
                return None

            self._last_collection = datetime.now(UTC)
            self._last_report = report

            if report.failed:
                logger.info(
                    f"Metrics collection finished with failed sources: "
                    f"{', '.join(f.value for f in report.failed)}"
                )
            return report

    async def _run_cleanup(self) -> Optional[Dict[MetricFamily, Optional[int]]]:
        """Cleanup job body; never raises."""
        if self._cleanup_lock.locked():
            logger.warning("Previous metrics cleanup still running, skipping this tick")
            return None

        async with self._cleanup_lock:
            start_time = datetime.now(UTC)
            try:
                deleted = await self.storage.cleanup_all()
            except Exception as e:
                logger.error(f"Metrics cleanup pass failed: {e!r}", exc_info=True)
                return None

            duration = (datetime.now(UTC) - start_time).total_seconds()
            logger.debug(
                f"Metrics cleanup completed in {duration:.2f}s: "
                f"{sum(count for count in deleted.values() if count)} records deleted"
            )

            self._last_cleanup = datetime.now(UTC)
            self._last_cleanup_counts = deleted
            return deleted

    async def trigger_collection(self) -> Optional[CollectionReport]:
        """Manually run a collection pass outside the schedule."""
        logger.info("Manually triggered metrics collection")
        return await self._run_collection()

    async def trigger_cleanup(self) -> Optional[Dict[MetricFamily, Optional[int]]]:
        """Manually run a retention cleanup outside the schedule."""
        logger.info("Manually triggered metrics cleanup")
        return await self._run_cleanup()

    def get_next_run_time(self, job_id: str = COLLECTION_JOB_ID) -> Optional[datetime]:
        """Get the next run time of a job, None if not scheduled."""
        if not self.scheduler:
            return None

        try:
            job = self.scheduler.get_job(job_id)
        except JobLookupError as e:
            logger.warning(f"Failed to get job {job_id}: {e}")
            return None

        return job.next_run_time if job else None

    def get_status(self) -> dict:
        """Get scheduler status information."""
        next_collection = self.get_next_run_time(COLLECTION_JOB_ID)
        next_cleanup = self.get_next_run_time(CLEANUP_JOB_ID)

        return {
            "running": self.is_running(),
            "collection_interval_seconds": self.collection_interval.total_seconds(),
            "cleanup_interval_seconds": self.cleanup_interval.total_seconds(),
            "retention_hours": self.storage.retention.total_seconds() / 3600,
            "next_collection": next_collection.isoformat() if next_collection else None,
            "next_cleanup": next_cleanup.isoformat() if next_cleanup else None,
            "last_collection": self._last_collection.isoformat() if self._last_collection else None,
            "last_cleanup": self._last_cleanup.isoformat() if self._last_cleanup else None,
            "last_report": self._last_report.as_dict() if self._last_report else None,
            "last_cleanup_deleted": (
                {family.value: count for family, count in self._last_cleanup_counts.items()}
                if self._last_cleanup_counts is not None
                else None
            ),
        }


def build_scheduler(config: MetricsConfig) -> MetricsScheduler:
    """Wire the real source adapters, storage and collector into a scheduler."""
    storage = MetricsStorage(retention=config.retention)

    sources = [
        SystemSampler(disk_path=config.disk_mount_path),
        DockerStatsService(timeout=config.docker_timeout.total_seconds()),
        OllamaClient(
            base_url=config.ollama_host,
            timeout=config.ollama_timeout.total_seconds(),
        ),
    ]

    collector = MetricsCollector(
        sources=sources,
        storage=storage,
        timeout=config.source_timeout.total_seconds(),
    )

    return MetricsScheduler(
        collector=collector,
        storage=storage,
        collection_interval=config.collection_interval,
        cleanup_interval=config.cleanup_interval,
    )
