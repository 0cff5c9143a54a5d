"""Docker stats service for container metrics via the docker CLI."""

import asyncio
import json
import logging
import re
from datetime import UTC, datetime
from typing import List, Optional, Tuple

from pydantic import ValidationError

from labpulse.schemas.metrics import ContainerRef, ContainerSnapshot, MetricFamily

logger = logging.getLogger(__name__)

# Units mapping for docker's human readable sizes (case insensitive)
_UNITS = {
    "B": 1,
    "KB": 1000,
    "MB": 1000**2,
    "GB": 1000**3,
    "TB": 1000**4,
    "KIB": 1024,
    "MIB": 1024**2,
    "GIB": 1024**3,
    "TIB": 1024**4,
}

_SIZE_RE = re.compile(r"^([\d.]+)\s*([A-Za-z]+)?$")

# Columns a `docker stats` line must carry to produce a snapshot
_REQUIRED_STATS_KEYS = ("CPUPerc", "MemUsage", "NetIO")


class DockerStatsService:
    """Container runtime adapter backed by the docker CLI.

    Every CLI invocation is bounded by ``timeout`` seconds; a hung daemon
    makes the call fail instead of stalling the collection tick.
    """

    family = MetricFamily.CONTAINER

    def __init__(self, timeout: float = 10.0, docker_bin: str = "docker"):
        self.timeout = timeout
        self.docker_bin = docker_bin

    @property
    def max_collect_seconds(self) -> float:
        """Worst case for collect(): one `docker ps`, then concurrent `docker stats`."""
        return 2 * self.timeout

    async def _run(self, *args: str) -> Tuple[int, str, str]:
        """Run a docker CLI command and return (returncode, stdout, stderr).

        Raises:
            asyncio.TimeoutError: If the command exceeds the timeout
            OSError: If the docker binary cannot be executed
        """
        process = await asyncio.create_subprocess_exec(
            self.docker_bin,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        return (
            process.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def is_available(self) -> bool:
        """Check whether the docker daemon answers."""
        try:
            returncode, _, _ = await self._run("version", "--format", "{{.Server.Version}}")
            return returncode == 0
        except asyncio.TimeoutError:
            logger.debug("Timeout checking docker availability")
            return False
        except OSError as e:
            logger.debug(f"Docker CLI not executable: {e}")
            return False

    async def list_running(self) -> List[ContainerRef]:
        """List currently running containers.

        Returns:
            Running containers; empty list if docker is unavailable
        """
        try:
            returncode, stdout, stderr = await self._run(
                "ps", "--filter", "status=running", "--format", "{{json .}}"
            )
        except asyncio.TimeoutError:
            logger.warning("Timeout listing running containers")
            return []
        except OSError as e:
            logger.warning(f"Process execution error listing containers: {e}")
            return []

        if returncode != 0:
            logger.warning(f"Failed to list containers: {stderr.strip()}")
            return []

        refs = []
        for line in stdout.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping unparseable container entry: {e}")
                continue

            container_id = str(entry.get("ID", ""))[:12]
            if not container_id:
                continue

            name = str(entry.get("Names", "")).split(",")[0].lstrip("/") or "unknown"
            refs.append(
                ContainerRef(
                    id=container_id,
                    name=name,
                    status=entry.get("Status") or entry.get("State") or "running",
                )
            )

        return refs

    async def get_container_stats(self, ref: ContainerRef) -> Optional[ContainerSnapshot]:
        """Get a one-shot stats snapshot for a container.

        Args:
            ref: Container to sample

        Returns:
            Snapshot, or None if the container vanished or stats can't be read
        """
        try:
            returncode, stdout, stderr = await self._run(
                "stats", ref.id, "--no-stream", "--format", "{{json .}}"
            )
        except asyncio.TimeoutError:
            logger.warning(f"Timeout getting stats for {ref.name}")
            return None
        except OSError as e:
            logger.error(f"Process execution error getting stats for {ref.name}: {e}")
            return None

        if returncode != 0:
            logger.warning(f"Failed to get stats for {ref.name}: {stderr.strip()}")
            return None

        stats_json = stdout.strip()
        if not stats_json:
            return None

        try:
            stats = json.loads(stats_json.splitlines()[0])
            missing = [key for key in _REQUIRED_STATS_KEYS if not stats.get(key)]
            if missing:
                logger.warning(f"Incomplete stats for {ref.name}, missing {', '.join(missing)}")
                return None

            mem_used, mem_limit = self._split_pair(stats["MemUsage"])
            net_rx, net_tx = self._split_pair(stats["NetIO"])

            return ContainerSnapshot(
                collected_at=datetime.now(UTC),
                container_id=ref.id,
                container_name=stats.get("Name") or ref.name,
                status=ref.status,
                cpu_percent=self._parse_percent(stats["CPUPerc"]),
                memory_used=self._parse_bytes(mem_used),
                memory_limit=self._parse_bytes(mem_limit),
                network_rx=self._parse_bytes(net_rx),
                network_tx=self._parse_bytes(net_tx),
            )
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse stats JSON for {ref.name}: {e}")
            return None
        except (ValidationError, AttributeError) as e:
            logger.error(f"Invalid stats data for {ref.name}: {e}")
            return None

    async def collect(self) -> List[ContainerSnapshot]:
        """Collect one snapshot per running container.

        A container whose stats can't be read is skipped; the rest of the
        tick is still recorded. No running containers yields an empty list.
        """
        refs = await self.list_running()
        if not refs:
            return []

        results = await asyncio.gather(
            *(self.get_container_stats(ref) for ref in refs),
            return_exceptions=True,
        )

        snapshots = []
        for ref, result in zip(refs, results):
            if isinstance(result, BaseException):
                logger.warning(f"Stats collection raised for {ref.name}: {result!r}")
                continue
            if result is None:
                logger.debug(f"No stats for {ref.name}, skipping")
                continue
            snapshots.append(result)

        return snapshots

    @staticmethod
    def _parse_percent(percent_str: str) -> float:
        """Parse percentage string like '12.34%' to float."""
        try:
            return max(float(percent_str.strip().rstrip("%")), 0.0)
        except (ValueError, AttributeError):
            return 0.0

    @staticmethod
    def _parse_bytes(size_str: str) -> int:
        """Parse byte size string like '512MB', '1.5GiB' to bytes."""
        if not size_str or size_str == "N/A":
            return 0

        match = _SIZE_RE.match(size_str.strip())
        if not match:
            return 0

        try:
            number = float(match.group(1))
        except ValueError:
            return 0

        unit = (match.group(2) or "B").upper()
        return int(number * _UNITS.get(unit, 1))

    @staticmethod
    def _split_pair(value: str) -> Tuple[str, str]:
        """Split docker's 'a / b' columns (MemUsage, NetIO, BlockIO)."""
        parts = (value or "").split(" / ")
        first = parts[0].strip() if parts and parts[0].strip() else "0B"
        second = parts[1].strip() if len(parts) > 1 else "N/A"
        return first, second
