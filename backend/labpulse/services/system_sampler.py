"""Host resource sampler backed by psutil."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import List, Optional

import psutil
from pydantic import ValidationError

from labpulse.exceptions import SourceUnavailableError
from labpulse.schemas.metrics import (
    CpuReading,
    MetricFamily,
    SystemSnapshot,
    UsageReading,
)

logger = logging.getLogger(__name__)

# Sensor chips checked in order; first one with a reading wins
CPU_SENSOR_NAMES = ("coretemp", "k10temp", "cpu_thermal", "zenpower", "acpitz")


class SystemSampler:
    """Sample CPU, temperature, memory and disk usage of the local host."""

    family = MetricFamily.SYSTEM

    def __init__(self, disk_path: str = "/", cpu_interval: float = 0.5):
        """Initialize the sampler.

        Args:
            disk_path: Mount point whose filesystem is reported as disk usage
            cpu_interval: Seconds psutil blocks to measure CPU utilisation
        """
        self.disk_path = disk_path
        self.cpu_interval = cpu_interval

    async def is_available(self) -> bool:
        """psutil is in-process; the source is available when the disk path exists."""
        try:
            await asyncio.to_thread(psutil.disk_usage, self.disk_path)
            return True
        except OSError:
            return False

    def _cpu_usage(self) -> float:
        return round(psutil.cpu_percent(interval=self.cpu_interval), 2)

    @staticmethod
    def _cpu_temperature() -> Optional[float]:
        """Return CPU package temperature in Celsius, None when unsupported."""
        sensors = getattr(psutil, "sensors_temperatures", None)
        if sensors is None:
            return None

        try:
            readings = sensors()
        except (OSError, RuntimeError) as e:
            logger.debug(f"Temperature sensors unreadable: {e}")
            return None

        if not readings:
            return None

        for name in CPU_SENSOR_NAMES:
            entries = readings.get(name)
            if entries:
                return round(entries[0].current, 1)

        # Fall back to whatever chip reports first
        for entries in readings.values():
            if entries:
                return round(entries[0].current, 1)

        return None

    @staticmethod
    def _memory() -> UsageReading:
        mem = psutil.virtual_memory()
        used = min(mem.total - mem.available, mem.total)
        percent = round(used / mem.total * 100, 2) if mem.total else 0.0
        return UsageReading(total=mem.total, used=used, percent=percent)

    def _disk(self) -> UsageReading:
        disk = psutil.disk_usage(self.disk_path)
        return UsageReading(total=disk.total, used=disk.used, percent=round(disk.percent, 2))

    def _sample_blocking(self) -> SystemSnapshot:
        cpu_usage = self._cpu_usage()
        temperature = self._cpu_temperature()
        memory = self._memory()
        disk = self._disk()

        return SystemSnapshot(
            collected_at=datetime.now(UTC),
            cpu=CpuReading(usage=cpu_usage, temperature=temperature),
            memory=memory,
            disk=disk,
        )

    async def sample(self) -> SystemSnapshot:
        """Take one system snapshot.

        Raises:
            SourceUnavailableError: If psutil can't read the host or returns
                out-of-range values
        """
        try:
            return await asyncio.to_thread(self._sample_blocking)
        except (OSError, psutil.Error) as e:
            raise SourceUnavailableError(self.family.value, f"psutil failure: {e}") from e
        except ValidationError as e:
            raise SourceUnavailableError(self.family.value, f"invalid reading: {e}") from e

    async def collect(self) -> List[SystemSnapshot]:
        return [await self.sample()]
