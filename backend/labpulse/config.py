"""Environment-based configuration for the metrics pipeline."""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from labpulse.exceptions import ConfigurationError

DEFAULT_COLLECTION_INTERVAL_MS = 60_000
DEFAULT_CLEANUP_INTERVAL_MS = 60 * 60 * 1000
DEFAULT_RETENTION_HOURS = 168  # 7 days
DEFAULT_SOURCE_TIMEOUT_MS = 30_000
DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_OLLAMA_TIMEOUT_MS = 5_000
DEFAULT_DOCKER_TIMEOUT_MS = 10_000
DEFAULT_DISK_MOUNT_PATH = "/"


def _positive_int(environ: Mapping[str, str], name: str, default: int) -> int:
    """Read a strictly positive integer setting."""
    raw: Optional[str] = environ.get(name)
    if raw is None or raw.strip() == "":
        return default

    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigurationError(name, raw, "must be an integer")

    if value <= 0:
        raise ConfigurationError(name, raw, "must be greater than zero")

    return value


@dataclass(frozen=True)
class MetricsConfig:
    """Settings consumed by the collector, storage manager and scheduler.

    Durations are held as timedelta so intervals and the retention window
    share one unit.
    """

    collection_interval: timedelta = timedelta(milliseconds=DEFAULT_COLLECTION_INTERVAL_MS)
    cleanup_interval: timedelta = timedelta(milliseconds=DEFAULT_CLEANUP_INTERVAL_MS)
    retention: timedelta = timedelta(hours=DEFAULT_RETENTION_HOURS)
    source_timeout: timedelta = timedelta(milliseconds=DEFAULT_SOURCE_TIMEOUT_MS)
    ollama_host: str = DEFAULT_OLLAMA_HOST
    ollama_timeout: timedelta = timedelta(milliseconds=DEFAULT_OLLAMA_TIMEOUT_MS)
    docker_timeout: timedelta = timedelta(milliseconds=DEFAULT_DOCKER_TIMEOUT_MS)
    disk_mount_path: str = DEFAULT_DISK_MOUNT_PATH

    def __post_init__(self) -> None:
        for name in (
            "collection_interval",
            "cleanup_interval",
            "retention",
            "source_timeout",
            "ollama_timeout",
            "docker_timeout",
        ):
            value = getattr(self, name)
            if value <= timedelta(0):
                raise ConfigurationError(name, str(value), "must be a positive duration")

        # Docker lists then samples; Ollama checks then queries. Both are two
        # sequential calls that must finish inside the per-source bound.
        for name in ("docker_timeout", "ollama_timeout"):
            if 2 * getattr(self, name) >= self.source_timeout:
                raise ConfigurationError(
                    "METRICS_SOURCE_TIMEOUT_MS",
                    str(self.source_timeout),
                    f"must exceed twice {name} ({2 * getattr(self, name)})",
                )

        if not self.ollama_host.startswith(("http://", "https://")):
            raise ConfigurationError(
                "OLLAMA_HOST", self.ollama_host, "must be an http(s) URL"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MetricsConfig":
        """Build configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Raises:
            ConfigurationError: If any value is malformed or non-positive
        """
        if environ is None:
            environ = os.environ

        return cls(
            collection_interval=timedelta(
                milliseconds=_positive_int(
                    environ, "METRICS_COLLECTION_INTERVAL_MS", DEFAULT_COLLECTION_INTERVAL_MS
                )
            ),
            cleanup_interval=timedelta(
                milliseconds=_positive_int(
                    environ, "METRICS_CLEANUP_INTERVAL_MS", DEFAULT_CLEANUP_INTERVAL_MS
                )
            ),
            retention=timedelta(
                hours=_positive_int(environ, "METRICS_RETENTION_HOURS", DEFAULT_RETENTION_HOURS)
            ),
            source_timeout=timedelta(
                milliseconds=_positive_int(
                    environ, "METRICS_SOURCE_TIMEOUT_MS", DEFAULT_SOURCE_TIMEOUT_MS
                )
            ),
            ollama_host=environ.get("OLLAMA_HOST", DEFAULT_OLLAMA_HOST).rstrip("/"),
            ollama_timeout=timedelta(
                milliseconds=_positive_int(environ, "OLLAMA_TIMEOUT_MS", DEFAULT_OLLAMA_TIMEOUT_MS)
            ),
            docker_timeout=timedelta(
                milliseconds=_positive_int(environ, "DOCKER_TIMEOUT_MS", DEFAULT_DOCKER_TIMEOUT_MS)
            ),
            disk_mount_path=environ.get("DISK_MOUNT_PATH", DEFAULT_DISK_MOUNT_PATH),
        )
