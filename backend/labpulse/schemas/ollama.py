"""Pydantic schemas for the Ollama model server API."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class OllamaModelDetails(BaseModel):
    format: str = "unknown"
    family: str = "unknown"
    parameter_size: str = "unknown"
    quantization_level: str = "unknown"


class OllamaModel(BaseModel):
    """Locally available model from /api/tags."""

    name: str
    modified_at: Optional[datetime] = None
    size: int = 0
    digest: str = ""
    details: OllamaModelDetails = Field(default_factory=OllamaModelDetails)


class OllamaRunningModel(BaseModel):
    """Loaded model from /api/ps."""

    name: str
    model: str = ""
    size: int = 0
    digest: str = ""
    expires_at: Optional[datetime] = None
    size_vram: int = 0


class OllamaStatus(BaseModel):
    """Combined server status: availability, version, models and running inferences."""

    available: bool
    version: Optional[str] = None
    models: List[OllamaModel] = Field(default_factory=list)
    running: List[OllamaRunningModel] = Field(default_factory=list)
    error: Optional[str] = None
