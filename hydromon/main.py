from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .core.config import Settings, settings
from .core.log import configure_logging

from .api.routes import router as api_router

from .drivers.remote_api import RemoteApiClient
from .services.sampler import SamplerService
from .services.telemetry import TelemetryService
from .storage.sqlite_repo import SQLiteRepository


logger = logging.getLogger(__name__)


def build_telemetry(s: Settings, client: RemoteApiClient) -> TelemetryService:
    repo = SQLiteRepository(s.sqlite_path) if s.storage_enabled and s.sqlite_path else None
    return TelemetryService(
        source=client,
        repo=repo,
        cache_timeout_s=s.cache_timeout_seconds,
        production=s.is_production,
        default_device=s.external_device,
        buffer_size=s.fallback_buffer_size,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("Starting %s (mode=%s)", settings.app_name, settings.run_mode)

    client = RemoteApiClient.from_settings(settings)
    telemetry = build_telemetry(settings, client)
    await telemetry.start()

    sampler = SamplerService(telemetry, interval_s=settings.poll_seconds)
    await sampler.start()

    app.state.telemetry = telemetry
    app.state.sampler = sampler

    try:
        yield
    finally:
        await sampler.stop()
        await client.aclose()
        logger.info("Shutdown complete")


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.include_router(api_router, prefix="/api")
