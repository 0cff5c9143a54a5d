"""Tests for the metrics storage manager (labpulse/services/metrics_storage.py).

Covers:
- Snapshot to record mapping for every family
- Range validation before persistence
- Retention cleanup with a shared cutoff
- Failure reporting without raising
"""

from datetime import UTC, datetime, timedelta

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import select

from labpulse.models import ContainerMetric, ModelServerMetric, SystemMetric
from labpulse.schemas.metrics import (
    CpuReading,
    MetricFamily,
    ModelServerSnapshot,
    SystemSnapshot,
    UsageReading,
)


class TestRecordSystem:
    """record_system() inserts one row per snapshot."""

    async def test_maps_snapshot_fields(self, storage, session_factory, make_system_snapshot):
        snapshot = make_system_snapshot(cpu_usage=42.42, temperature=None)

        assert await storage.record_system(snapshot) is True

        async with session_factory() as session:
            row = (await session.execute(select(SystemMetric))).scalar_one()

        assert row.cpu_usage == 42.42
        assert row.cpu_temperature is None
        assert row.memory_total == snapshot.memory.total
        assert row.memory_used == snapshot.memory.used
        assert row.memory_percent == snapshot.memory.percent
        assert row.disk_total == snapshot.disk.total
        assert row.disk_used == snapshot.disk.used
        assert row.disk_percent == snapshot.disk.percent

    async def test_rejects_out_of_range_cpu(self, storage, count_rows, make_system_snapshot):
        """Snapshots bypassing validation are still rejected before insert."""
        valid = make_system_snapshot()
        invalid = SystemSnapshot.model_construct(
            collected_at=valid.collected_at,
            cpu=CpuReading.model_construct(usage=105, temperature=None),
            memory=valid.memory,
            disk=valid.disk,
        )

        assert await storage.record_system(invalid) is False
        assert await count_rows(SystemMetric) == 0

    async def test_rejects_memory_used_above_total(self, storage, count_rows, make_system_snapshot):
        valid = make_system_snapshot()
        invalid = SystemSnapshot.model_construct(
            collected_at=valid.collected_at,
            cpu=valid.cpu,
            memory=UsageReading.model_construct(total=100, used=200, percent=50.0),
            disk=valid.disk,
        )

        assert await storage.record_system(invalid) is False
        assert await count_rows(SystemMetric) == 0

    async def test_accepts_percent_edges(self, storage, count_rows, make_system_snapshot):
        assert await storage.record_system(make_system_snapshot(cpu_usage=0)) is True
        assert await storage.record_system(make_system_snapshot(cpu_usage=100)) is True
        assert await count_rows(SystemMetric) == 2


class TestRecordOtherFamilies:
    async def test_record_container(self, storage, session_factory, make_container_snapshot):
        snapshot = make_container_snapshot(container_id="deadbeef0001", cpu_percent=250.0)

        assert await storage.record_container(snapshot) is True

        async with session_factory() as session:
            row = (await session.execute(select(ContainerMetric))).scalar_one()

        assert row.container_id == "deadbeef0001"
        assert row.container_name == "nginx"
        assert row.cpu_percent == 250.0
        assert row.network_rx == snapshot.network_rx
        assert row.network_tx == snapshot.network_tx

    async def test_record_unavailable_model_server(self, storage, session_factory):
        assert await storage.record_model_server(ModelServerSnapshot.unavailable()) is True

        async with session_factory() as session:
            row = (await session.execute(select(ModelServerMetric))).scalar_one()

        assert row.available is False
        assert row.model_count == 0
        assert row.active_inferences == 0

    async def test_record_dispatches_on_variant(
        self, storage, count_rows, make_system_snapshot, make_container_snapshot
    ):
        assert await storage.record(make_system_snapshot()) is True
        assert await storage.record(make_container_snapshot()) is True
        assert await storage.record(ModelServerSnapshot(available=True, model_count=2)) is True

        assert await count_rows(SystemMetric) == 1
        assert await count_rows(ContainerMetric) == 1
        assert await count_rows(ModelServerMetric) == 1

    async def test_record_unknown_type_returns_false(self, storage):
        assert await storage.record(CpuReading(usage=1)) is False


class TestStorageFailures:
    """Storage errors are reported, never raised."""

    async def test_insert_failure_returns_false(self, storage, db_engine, make_system_snapshot):
        # A fresh in-memory connection has no tables
        await db_engine.dispose()

        assert await storage.record_system(make_system_snapshot()) is False

    async def test_cleanup_failure_is_distinguishable_from_nothing_expired(self, storage, db_engine):
        await db_engine.dispose()
        failures = REGISTRY.get_sample_value(
            "labpulse_cleanup_failures_total", {"family": "system"}
        ) or 0

        deleted = await storage.cleanup_all()

        assert deleted == {
            MetricFamily.SYSTEM: None,
            MetricFamily.CONTAINER: None,
            MetricFamily.MODEL_SERVER: None,
        }
        assert REGISTRY.get_sample_value(
            "labpulse_cleanup_failures_total", {"family": "system"}
        ) == failures + 1


class TestRetentionCleanup:
    """cleanup_*() deletes whole records strictly older than the cutoff."""

    async def test_deletes_only_records_older_than_retention(
        self, storage, session_factory, make_system_snapshot
    ):
        now = datetime.now(UTC)
        await storage.record_system(make_system_snapshot(collected_at=now - timedelta(hours=200)))
        await storage.record_system(make_system_snapshot(collected_at=now - timedelta(hours=1)))

        deleted = await storage.cleanup_all(now=now)

        assert deleted[MetricFamily.SYSTEM] == 1
        async with session_factory() as session:
            rows = (await session.execute(select(SystemMetric))).scalars().all()

        assert len(rows) == 1
        remaining = rows[0].collected_at.replace(tzinfo=UTC)
        assert now - remaining < timedelta(hours=2)

    async def test_record_exactly_at_cutoff_is_kept(self, storage, count_rows, make_system_snapshot):
        now = datetime.now(UTC)
        await storage.record_system(make_system_snapshot(collected_at=now - timedelta(hours=168)))

        deleted = await storage.cleanup_system(storage.cutoff(now))

        assert deleted == 0
        assert await count_rows(SystemMetric) == 1

    async def test_all_families_share_one_cutoff(self, storage):
        from unittest.mock import AsyncMock, patch

        now = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
        with patch.object(storage, "cleanup_system", AsyncMock(return_value=1)) as sys_mock, \
             patch.object(storage, "cleanup_containers", AsyncMock(return_value=2)) as cont_mock, \
             patch.object(storage, "cleanup_model_server", AsyncMock(return_value=0)) as ms_mock:
            deleted = await storage.cleanup_all(now=now)

        expected_cutoff = now - timedelta(hours=168)
        sys_mock.assert_awaited_once_with(expected_cutoff)
        cont_mock.assert_awaited_once_with(expected_cutoff)
        ms_mock.assert_awaited_once_with(expected_cutoff)
        assert deleted == {
            MetricFamily.SYSTEM: 1,
            MetricFamily.CONTAINER: 2,
            MetricFamily.MODEL_SERVER: 0,
        }

    async def test_one_family_failure_does_not_block_others(
        self, storage, db_engine, count_rows, make_system_snapshot, make_container_snapshot
    ):
        now = datetime.now(UTC)
        old = now - timedelta(hours=300)
        await storage.record_system(make_system_snapshot(collected_at=old))
        await storage.record_model_server(ModelServerSnapshot.unavailable(collected_at=old))

        # Break the container table only
        async with db_engine.begin() as conn:
            await conn.run_sync(ContainerMetric.__table__.drop)

        deleted = await storage.cleanup_all(now=now)

        assert deleted[MetricFamily.CONTAINER] is None
        assert deleted[MetricFamily.SYSTEM] == 1
        assert deleted[MetricFamily.MODEL_SERVER] == 1
        assert await count_rows(SystemMetric) == 0

    async def test_ids_are_not_reused_after_cleanup(self, storage, session_factory, make_system_snapshot):
        now = datetime.now(UTC)
        await storage.record_system(make_system_snapshot(collected_at=now - timedelta(minutes=5)))
        await storage.record_system(make_system_snapshot(collected_at=now - timedelta(hours=500)))

        await storage.cleanup_all(now=now)
        await storage.record_system(make_system_snapshot(collected_at=now))

        async with session_factory() as session:
            ids = (await session.execute(select(SystemMetric.id).order_by(SystemMetric.id))).scalars().all()

        assert ids == [1, 3]


@pytest.mark.parametrize(
    "family,method",
    [
        (MetricFamily.SYSTEM, "cleanup_system"),
        (MetricFamily.CONTAINER, "cleanup_containers"),
        (MetricFamily.MODEL_SERVER, "cleanup_model_server"),
    ],
)
async def test_cleanup_on_empty_tables_returns_zero(storage, family, method):
    assert await getattr(storage, method)(storage.cutoff()) == 0
