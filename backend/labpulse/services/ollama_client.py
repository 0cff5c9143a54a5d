"""Ollama API client for model server status."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import List, Optional

import httpx
from pydantic import ValidationError

from labpulse.schemas.metrics import MetricFamily, ModelServerSnapshot
from labpulse.schemas.ollama import (
    OllamaModel,
    OllamaModelDetails,
    OllamaRunningModel,
    OllamaStatus,
)

logger = logging.getLogger(__name__)


class OllamaClient:
    """Client for the local Ollama model server.

    Unreachability is never an exception here: list calls return empty
    lists, ``status()`` reports ``available=False`` and ``snapshot()``
    returns an unavailable snapshot.
    """

    family = MetricFamily.MODEL_SERVER

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (e.g., http://ollama:11434)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    @property
    def max_collect_seconds(self) -> float:
        """Worst case for collect(): the availability check, then one concurrent query round."""
        return 2 * self.timeout

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit - ensures client is closed."""
        await self.close()
        return False

    async def close(self):
        """Close the underlying HTTP client."""
        await self.client.aclose()

    async def _get_json(self, path: str) -> Optional[dict]:
        try:
            response = await self.client.get(path)
        except httpx.HTTPError as e:
            logger.debug(f"Ollama request {path} failed: {e}")
            return None

        if response.status_code != 200:
            logger.debug(f"Ollama request {path} returned {response.status_code}")
            return None

        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"Ollama returned invalid JSON for {path}: {e}")
            return None

        return data if isinstance(data, dict) else None

    async def is_available(self) -> bool:
        """Check if the Ollama server answers."""
        try:
            response = await self.client.get("/api/version")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def get_version(self) -> Optional[str]:
        data = await self._get_json("/api/version")
        if not data:
            return None
        return data.get("version") or None

    async def list_models(self) -> List[OllamaModel]:
        """List locally available models; empty if the server is unavailable."""
        data = await self._get_json("/api/tags")
        if not data:
            return []

        models = []
        for raw in data.get("models") or []:
            try:
                details = raw.get("details") or {}
                models.append(
                    OllamaModel(
                        name=raw["name"],
                        modified_at=raw.get("modified_at"),
                        size=raw.get("size") or 0,
                        digest=raw.get("digest") or "",
                        details=OllamaModelDetails(
                            format=details.get("format") or "unknown",
                            family=details.get("family") or "unknown",
                            parameter_size=details.get("parameter_size") or "unknown",
                            quantization_level=details.get("quantization_level") or "unknown",
                        ),
                    )
                )
            except (KeyError, AttributeError, ValidationError) as e:
                logger.warning(f"Skipping malformed Ollama model entry: {e}")

        return models

    async def get_running_models(self) -> List[OllamaRunningModel]:
        """Get currently loaded models; empty if the server is unavailable."""
        data = await self._get_json("/api/ps")
        if not data:
            return []

        running = []
        for raw in data.get("models") or []:
            try:
                running.append(
                    OllamaRunningModel(
                        name=raw["name"],
                        model=raw.get("model") or "",
                        size=raw.get("size") or 0,
                        digest=raw.get("digest") or "",
                        expires_at=raw.get("expires_at"),
                        size_vram=raw.get("size_vram") or 0,
                    )
                )
            except (KeyError, AttributeError, ValidationError) as e:
                logger.warning(f"Skipping malformed Ollama running entry: {e}")

        return running

    async def status(self) -> OllamaStatus:
        """Get combined server status.

        Returns:
            OllamaStatus with available=False when the server is unreachable
        """
        if not await self.is_available():
            return OllamaStatus(available=False, error="Ollama server is not running")

        version, models, running = await asyncio.gather(
            self.get_version(),
            self.list_models(),
            self.get_running_models(),
        )

        return OllamaStatus(
            available=True,
            version=version,
            models=models,
            running=running,
        )

    async def snapshot(self) -> ModelServerSnapshot:
        """Current availability, model count and active inference count."""
        status = await self.status()
        if not status.available:
            return ModelServerSnapshot.unavailable()

        return ModelServerSnapshot(
            collected_at=datetime.now(UTC),
            available=True,
            model_count=len(status.models),
            active_inferences=len(status.running),
        )

    async def collect(self) -> List[ModelServerSnapshot]:
        return [await self.snapshot()]
