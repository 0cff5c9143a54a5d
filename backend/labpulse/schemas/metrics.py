"""Pydantic schemas for metric snapshots and history records."""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    """Current wall-clock time in UTC."""
    return datetime.now(UTC)


class MetricFamily(str, Enum):
    """Independent metric families, one record table each."""

    SYSTEM = "system"
    CONTAINER = "container"
    MODEL_SERVER = "model_server"


class CpuReading(BaseModel):
    usage: float = Field(ge=0, le=100)
    temperature: Optional[float] = None  # celsius, None when no sensor


class UsageReading(BaseModel):
    """Capacity reading for memory or a filesystem."""

    total: int = Field(ge=0)
    used: int = Field(ge=0)
    percent: float = Field(ge=0, le=100)

    @model_validator(mode="after")
    def used_within_total(self) -> "UsageReading":
        if self.used > self.total:
            raise ValueError(f"used ({self.used}) exceeds total ({self.total})")
        return self


class SystemSnapshot(BaseModel):
    """Host resource usage at a single instant."""

    kind: Literal["system"] = "system"
    collected_at: datetime = Field(default_factory=utcnow)
    cpu: CpuReading
    memory: UsageReading
    disk: UsageReading


class ContainerSnapshot(BaseModel):
    """Stats for one running container at a single instant."""

    kind: Literal["container"] = "container"
    collected_at: datetime = Field(default_factory=utcnow)
    container_id: str = Field(min_length=1)
    container_name: str
    status: str
    cpu_percent: float = Field(ge=0)  # summed across cores, may exceed 100
    memory_used: int = Field(ge=0)
    memory_limit: int = Field(ge=0)
    network_rx: int = Field(ge=0)
    network_tx: int = Field(ge=0)


class ModelServerSnapshot(BaseModel):
    """Model server availability and load at a single instant."""

    kind: Literal["model_server"] = "model_server"
    collected_at: datetime = Field(default_factory=utcnow)
    available: bool
    model_count: int = Field(default=0, ge=0)
    active_inferences: int = Field(default=0, ge=0)

    @classmethod
    def unavailable(cls, collected_at: Optional[datetime] = None) -> "ModelServerSnapshot":
        """Snapshot recorded when the model server cannot be reached."""
        return cls(
            collected_at=collected_at or utcnow(),
            available=False,
            model_count=0,
            active_inferences=0,
        )


Snapshot = Annotated[
    Union[SystemSnapshot, ContainerSnapshot, ModelServerSnapshot],
    Field(discriminator="kind"),
]


class ContainerRef(BaseModel):
    """A running container as reported by the runtime's list operation."""

    id: str
    name: str
    status: str = "running"


# History read schemas


class SystemMetricSchema(BaseModel):
    id: int
    collected_at: datetime
    cpu_usage: float
    cpu_temperature: Optional[float] = None
    memory_total: int
    memory_used: int
    memory_percent: float
    disk_total: int
    disk_used: int
    disk_percent: float

    model_config = {"from_attributes": True}


class ContainerMetricSchema(BaseModel):
    id: int
    collected_at: datetime
    container_id: str
    container_name: str
    status: str
    cpu_percent: float
    memory_used: int
    memory_limit: int
    network_rx: int
    network_tx: int

    model_config = {"from_attributes": True}


class ModelServerMetricSchema(BaseModel):
    id: int
    collected_at: datetime
    available: bool
    model_count: int
    active_inferences: int

    model_config = {"from_attributes": True}


class InitResponse(BaseModel):
    """Response for the background task bootstrap hook."""

    success: bool
    metrics_collection_running: bool
