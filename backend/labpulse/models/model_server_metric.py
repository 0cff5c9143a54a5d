"""Model server metrics model for Ollama availability and load over time."""

from sqlalchemy import Boolean, Column, DateTime, Integer
from sqlalchemy.sql import func
from labpulse.db import Base


class ModelServerMetric(Base):
    """Point-in-time model server status.

    Unreachable servers are recorded too (available=False), so gaps in this
    table mean the collector itself was not running.
    """

    __tablename__ = "model_server_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    collected_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    available = Column(Boolean, nullable=False)
    model_count = Column(Integer, nullable=False, default=0)
    active_inferences = Column(Integer, nullable=False, default=0)

    __table_args__ = {"sqlite_autoincrement": True}
