"""Pydantic schemas for API validation."""

from labpulse.schemas.metrics import (
    MetricFamily,
    CpuReading,
    UsageReading,
    SystemSnapshot,
    ContainerSnapshot,
    ModelServerSnapshot,
    Snapshot,
    ContainerRef,
    SystemMetricSchema,
    ContainerMetricSchema,
    ModelServerMetricSchema,
    InitResponse,
)
from labpulse.schemas.ollama import (
    OllamaModel,
    OllamaModelDetails,
    OllamaRunningModel,
    OllamaStatus,
)

__all__ = [
    "MetricFamily",
    "CpuReading",
    "UsageReading",
    "SystemSnapshot",
    "ContainerSnapshot",
    "ModelServerSnapshot",
    "Snapshot",
    "ContainerRef",
    "SystemMetricSchema",
    "ContainerMetricSchema",
    "ModelServerMetricSchema",
    "InitResponse",
    "OllamaModel",
    "OllamaModelDetails",
    "OllamaRunningModel",
    "OllamaStatus",
]
