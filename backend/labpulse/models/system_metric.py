"""System metrics model for host resource usage over time."""

from sqlalchemy import BigInteger, Column, DateTime, Float, Integer
from sqlalchemy.sql import func
from labpulse.db import Base


class SystemMetric(Base):
    """Point-in-time host CPU, memory and disk usage."""

    __tablename__ = "system_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Wall-clock time the sample was taken
    collected_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    cpu_usage = Column(Float, nullable=False)  # percent 0-100
    cpu_temperature = Column(Float, nullable=True)  # celsius
    memory_total = Column(BigInteger, nullable=False)  # bytes
    memory_used = Column(BigInteger, nullable=False)  # bytes
    memory_percent = Column(Float, nullable=False)
    disk_total = Column(BigInteger, nullable=False)  # bytes
    disk_used = Column(BigInteger, nullable=False)  # bytes
    disk_percent = Column(Float, nullable=False)

    # Ids are never reused after retention deletes rows
    __table_args__ = {"sqlite_autoincrement": True}
