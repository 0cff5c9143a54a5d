"""Pytest configuration and fixtures."""

import os
import asyncio
from datetime import UTC, datetime, timedelta
from typing import AsyncGenerator, List, Optional

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set DATABASE_URL for tests BEFORE importing labpulse.db
# This prevents the module from creating the ./data directory
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from labpulse.db import Base
from labpulse.models import *  # noqa: F401,F403 - register all models
from labpulse.schemas.metrics import (
    ContainerSnapshot,
    CpuReading,
    MetricFamily,
    SystemSnapshot,
    UsageReading,
)
from labpulse.services.metrics_storage import MetricsStorage


@pytest.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        pool_reset_on_return=None,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine (stands in for AsyncSessionLocal)."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session with automatic rollback."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def storage(session_factory):
    """MetricsStorage with a 168h retention window writing to the test database."""
    return MetricsStorage(retention=timedelta(hours=168), session_factory=session_factory)


@pytest.fixture
def count_rows(session_factory):
    """Count rows of a model in a fresh session.

    Usage:
        assert await count_rows(SystemMetric) == 1
    """
    async def _count(model, **filters) -> int:
        async with session_factory() as session:
            query = select(func.count()).select_from(model)
            for column, value in filters.items():
                query = query.where(getattr(model, column) == value)
            return await session.scalar(query) or 0

    return _count


@pytest.fixture
def make_system_snapshot():
    """Factory fixture for valid SystemSnapshot instances.

    Usage:
        snapshot = make_system_snapshot(cpu_usage=55.5, collected_at=...)
    """
    def _make(
        cpu_usage: float = 12.5,
        temperature: Optional[float] = 48.2,
        memory_total: int = 16 * 1024**3,
        memory_used: int = 6 * 1024**3,
        disk_total: int = 500 * 1000**3,
        disk_used: int = 120 * 1000**3,
        collected_at: Optional[datetime] = None,
    ) -> SystemSnapshot:
        return SystemSnapshot(
            collected_at=collected_at or datetime.now(UTC),
            cpu=CpuReading(usage=cpu_usage, temperature=temperature),
            memory=UsageReading(
                total=memory_total,
                used=memory_used,
                percent=round(memory_used / memory_total * 100, 2),
            ),
            disk=UsageReading(
                total=disk_total,
                used=disk_used,
                percent=round(disk_used / disk_total * 100, 2),
            ),
        )

    return _make


@pytest.fixture
def make_container_snapshot():
    """Factory fixture for valid ContainerSnapshot instances."""
    def _make(**kwargs) -> ContainerSnapshot:
        defaults = {
            "collected_at": datetime.now(UTC),
            "container_id": "a1b2c3d4e5f6",
            "container_name": "nginx",
            "status": "Up 3 hours",
            "cpu_percent": 3.25,
            "memory_used": 64 * 1024**2,
            "memory_limit": 512 * 1024**2,
            "network_rx": 1_048_576,
            "network_tx": 524_288,
        }
        return ContainerSnapshot(**{**defaults, **kwargs})

    return _make


class FakeSource:
    """In-memory source adapter for collector and scheduler tests."""

    def __init__(
        self,
        family: MetricFamily,
        snapshots: Optional[List] = None,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ):
        self.family = family
        self.snapshots = snapshots or []
        self.error = error
        self.delay = delay
        self.calls = 0

    async def is_available(self) -> bool:
        return self.error is None

    async def collect(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.snapshots)


@pytest.fixture
def fake_source():
    """Factory for FakeSource adapters."""
    return FakeSource


@pytest.fixture
async def app():
    """Create FastAPI app for testing."""
    from labpulse.main import app as application
    return application


@pytest.fixture
async def client(app, db):
    """Create async test client backed by the test database.

    The lifespan does not run under ASGITransport, so no real scheduler is
    started; tests install one on ``app.state`` when they need it.
    """
    from httpx import AsyncClient, ASGITransport
    from labpulse.db import get_db

    # Override get_db dependency to use test database
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test", follow_redirects=True) as ac:
        yield ac

    app.dependency_overrides.clear()
    if hasattr(app.state, "metrics_scheduler"):
        del app.state.metrics_scheduler
