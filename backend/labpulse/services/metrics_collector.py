"""Metrics collector: fans one collection pass out across all sources."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from labpulse.schemas.metrics import MetricFamily, ModelServerSnapshot
from labpulse.services import metrics as prom
from labpulse.services.metrics_storage import MetricsStorage
from labpulse.services.sources import SourceAdapter

logger = logging.getLogger(__name__)

# Slack on top of an adapter's own worst case (process kill, task wakeup)
COLLECT_GRACE_SECONDS = 1.0


@dataclass
class SourceOutcome:
    """Result of one source's part of a collection pass."""

    family: MetricFamily
    success: bool
    collected: int = 0
    recorded: int = 0
    error: Optional[str] = None


@dataclass
class CollectionReport:
    """Summary of a full collection pass."""

    outcomes: List[SourceOutcome] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> List[MetricFamily]:
        return [o.family for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[MetricFamily]:
        return [o.family for o in self.outcomes if not o.success]

    @property
    def records_written(self) -> int:
        return sum(o.recorded for o in self.outcomes)

    def outcome(self, family: MetricFamily) -> Optional[SourceOutcome]:
        for o in self.outcomes:
            if o.family == family:
                return o
        return None

    def as_dict(self) -> dict:
        return {
            "duration_seconds": round(self.duration_seconds, 3),
            "records_written": self.records_written,
            "sources": {
                o.family.value: {
                    "success": o.success,
                    "collected": o.collected,
                    "recorded": o.recorded,
                    "error": o.error,
                }
                for o in self.outcomes
            },
        }


class MetricsCollector:
    """Collect from every source and hand snapshots to storage.

    Sources run concurrently and are joined settle-all: one source raising,
    hanging past its timeout or returning nothing never affects the others.
    """

    def __init__(
        self,
        sources: Sequence[SourceAdapter],
        storage: MetricsStorage,
        timeout: float = 10.0,
    ):
        """Initialize the collector.

        Args:
            sources: Source adapters, one per metric family
            storage: Storage manager receiving successful snapshots
            timeout: Upper bound in seconds for one source's collect(). Adapters
                declaring ``max_collect_seconds`` get at least that much plus
                COLLECT_GRACE_SECONDS, so their own per-call timeouts decide
                what is skipped.
        """
        self.sources = list(sources)
        self.storage = storage
        self.timeout = timeout

    def timeout_for(self, source: SourceAdapter) -> float:
        """Outer bound for one source's collect() in seconds."""
        declared = getattr(source, "max_collect_seconds", None)
        if declared is None:
            return self.timeout
        return max(self.timeout, declared + COLLECT_GRACE_SECONDS)

    async def _collect_source(self, source: SourceAdapter) -> SourceOutcome:
        family = source.family
        snapshots = await asyncio.wait_for(source.collect(), timeout=self.timeout_for(source))

        recorded = 0
        for snapshot in snapshots:
            if await self.storage.record(snapshot):
                recorded += 1

        if recorded < len(snapshots):
            logger.warning(
                f"{family.value}: {len(snapshots) - recorded} of {len(snapshots)} "
                f"snapshots could not be stored"
            )

        return SourceOutcome(
            family=family,
            success=True,
            collected=len(snapshots),
            recorded=recorded,
        )

    async def collect_all(self) -> CollectionReport:
        """Run one collection pass over all sources.

        Never raises for source or storage failures; they are logged and
        reported in the returned CollectionReport.
        """
        start_time = time.monotonic()

        results = await asyncio.gather(
            *(self._collect_source(source) for source in self.sources),
            return_exceptions=True,
        )

        report = CollectionReport()
        for source, result in zip(self.sources, results):
            family = source.family
            if isinstance(result, asyncio.TimeoutError):
                logger.warning(
                    f"{family.value} metrics collection timed out after {self.timeout_for(source):.1f}s"
                )
                outcome = SourceOutcome(family=family, success=False, error="timeout")
                if family is MetricFamily.MODEL_SERVER:
                    # A hung model server is still a recorded unavailable sample
                    if await self.storage.record(ModelServerSnapshot.unavailable()):
                        outcome.recorded = 1
            elif isinstance(result, Exception):
                logger.warning(f"{family.value} metrics collection failed: {result!r}")
                outcome = SourceOutcome(family=family, success=False, error=str(result) or type(result).__name__)
            elif isinstance(result, BaseException):
                # Cancellation of the pass itself must propagate
                raise result
            else:
                outcome = result

            prom.collection_outcomes_total.labels(
                family=family.value,
                outcome="success" if outcome.success else "failure",
            ).inc()
            report.outcomes.append(outcome)

        report.duration_seconds = time.monotonic() - start_time
        prom.collection_runs_total.inc()
        prom.collection_duration.observe(report.duration_seconds)

        logger.debug(
            f"Metrics collection complete in {report.duration_seconds:.2f}s: "
            f"{report.records_written} records written, "
            f"{len(report.failed)} sources failed"
        )

        return report
