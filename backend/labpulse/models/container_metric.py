"""Container metrics model for per-container resource usage over time."""

from sqlalchemy import BigInteger, Column, DateTime, Float, Index, Integer, String
from sqlalchemy.sql import func
from labpulse.db import Base


class ContainerMetric(Base):
    """Point-in-time stats for one running container."""

    __tablename__ = "container_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    collected_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    container_id = Column(String(64), nullable=False, index=True)  # short id
    container_name = Column(String(255), nullable=False)
    status = Column(String(255), nullable=False)

    cpu_percent = Column(Float, nullable=False)  # may exceed 100 on multi-core hosts
    memory_used = Column(BigInteger, nullable=False)  # bytes
    memory_limit = Column(BigInteger, nullable=False)  # bytes
    network_rx = Column(BigInteger, nullable=False)  # bytes, cumulative counter
    network_tx = Column(BigInteger, nullable=False)  # bytes, cumulative counter

    # Composite index for efficient queries (container + time range)
    __table_args__ = (
        Index("idx_container_metrics_container_collected", "container_id", "collected_at"),
        {"sqlite_autoincrement": True},
    )
