"""Database models for LabPulse."""

from labpulse.models.system_metric import SystemMetric
from labpulse.models.container_metric import ContainerMetric
from labpulse.models.model_server_metric import ModelServerMetric

__all__ = [
    "SystemMetric",
    "ContainerMetric",
    "ModelServerMetric",
]
