"""LabPulse - Homelab metrics collection and retention service."""

import logging
import os
import tomllib
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from labpulse.config import MetricsConfig
from labpulse.db import init_db
from labpulse.services.scheduler import build_scheduler


# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# APScheduler logs every job execution at INFO
logging.getLogger("apscheduler.executors.default").setLevel(logging.WARNING)


def get_version() -> str:
    """Read version from pyproject.toml (single source of truth)."""
    pyproject_path = Path(__file__).resolve().parent.parent.parent / "pyproject.toml"
    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
        return data["project"]["version"]
    except (FileNotFoundError, KeyError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Could not read version from pyproject.toml: {e}")
        return "0.0.0-dev"


# Filter to exclude health check endpoints from access logs
class EndpointFilter(logging.Filter):
    """Filter to exclude specific endpoints from Granian access logs."""

    def __init__(self, excluded_paths: list[str]) -> None:
        super().__init__()
        self.excluded_paths = excluded_paths

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False if the log record is for an excluded endpoint."""
        message = record.getMessage()
        return not any(path in message for path in self.excluded_paths)


logging.getLogger("granian.access").addFilter(EndpointFilter(["/health", "/metrics"]))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("Starting LabPulse...")

    # Invalid configuration aborts startup before anything is scheduled
    config = MetricsConfig.from_env()

    await init_db()
    logger.info("Database initialized")

    scheduler = build_scheduler(config)
    app.state.metrics_scheduler = scheduler

    await scheduler.ensure_started()
    logger.info("Metrics scheduler started")

    yield

    await scheduler.close()
    logger.info("Shutting down LabPulse...")


# Create FastAPI app
app = FastAPI(
    title="LabPulse",
    description="Homelab system, container and model server metrics history",
    version=get_version(),
    lifespan=lifespan,
)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]

cors_origins_env = os.getenv("CORS_ORIGINS")
if cors_origins_env:
    cors_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
    logger.info(f"CORS origins from environment: {cors_origins}")
else:
    cors_origins = DEFAULT_CORS_ORIGINS

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_origins != ["*"],
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type", "Accept"],
)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Log unhandled errors with details, return a generic 500 body."""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True,
        extra={"path": request.url.path, "method": request.method},
    )

    if os.getenv("LABPULSE_DEBUG", "false").lower() == "true":
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "type": type(exc).__name__, "debug": True},
        )

    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred."},
    )


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    scheduler = getattr(request.app.state, "metrics_scheduler", None)
    return {
        "status": "healthy",
        "service": "labpulse",
        "metrics_collection_running": bool(scheduler and scheduler.is_running()),
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    from labpulse.services.metrics import get_content_type, get_metrics

    return Response(content=get_metrics(), media_type=get_content_type())


# API routes
from labpulse.api import api_router  # noqa: E402

app.include_router(api_router)


if __name__ == "__main__":
    import subprocess
    import sys

    cmd = [
        "granian",
        "--interface",
        "asgi",
        "--host",
        "0.0.0.0",
        "--port",
        os.getenv("PORT", "8790"),
        "--reload",  # Auto-reload for development
        "labpulse.main:app",
    ]

    sys.exit(subprocess.run(cmd).returncode)
