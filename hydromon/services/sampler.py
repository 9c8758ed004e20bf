from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..core.timeutil import now_utc
from ..domain.models import Provenance, SensorReading
from .telemetry import TelemetryService


logger = logging.getLogger(__name__)


@dataclass
class LiveState:
    last_reading: Optional[SensorReading] = None
    last_provenance: Optional[Provenance] = None
    last_poll_utc: Optional[datetime] = None
    polls: int = 0
    store_healthy: bool = False


class SamplerService:
    """Drives the read path on a fixed interval, independent of user requests."""

    def __init__(self, telemetry: TelemetryService, interval_s: float = 10.0) -> None:
        self._telemetry = telemetry
        self._interval = float(interval_s)

        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

        self.live = LiveState()

    async def start(self) -> None:
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="sampler_loop")

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            await self._task
            self._task = None

    async def poll_once(self) -> None:
        # 1) Storage marked down? try a round-trip first
        if self._telemetry.store_available and not self._telemetry.store_healthy:
            await self._telemetry.probe_storage()

        # 2) Same path as user reads (cache window applies)
        result = await self._telemetry.fetch_readings(1)

        self.live.last_reading = result.latest
        self.live.last_provenance = result.provenance
        self.live.last_poll_utc = now_utc()
        self.live.polls += 1
        self.live.store_healthy = self._telemetry.store_healthy

        if result.latest is not None:
            logger.info(
                "Poll OK: temp=%.1f ph=%.2f tds=%.1f (%s)",
                result.latest.temperature,
                result.latest.ph,
                result.latest.tds_level,
                result.provenance.value,
            )

    async def _run(self) -> None:
        logger.info("Sampler loop started (interval=%ss)", self._interval)

        while not self._stop.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                logger.exception("Sampler loop error: %s", e)

            # sleep with cancellation awareness
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Sampler loop stopped")
