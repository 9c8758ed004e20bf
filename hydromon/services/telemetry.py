"""Tiered acquisition of sensor readings.

Reads go through, in order: a short cache window, the remote device service,
durable storage, and finally an in-memory fallback buffer. Every public read
returns data; storage and remote failures only change where it comes from.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import fields, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from ..core.timeutil import as_utc, epoch_ms, format_uptime, now_utc
from ..domain.errors import HydromonError
from ..domain.interfaces import ReadingSource, Repository
from ..domain.models import (
    AlertSettings,
    Provenance,
    ReadingCreate,
    ReadingsResult,
    SensorReading,
    SystemStatus,
)
from ..sensors.normalizer import normalize
from ..storage.fallback import DEFAULT_MAXLEN, FallbackBuffer, is_synthetic

logger = logging.getLogger(__name__)

# Row persisted when storage is healthy but empty (non-production only)
SEED_READING = ReadingCreate(temperature=25.5, ph=6.8, tds_level=450.0)

_STATUS_FIELDS = frozenset(f.name for f in fields(SystemStatus))
_ALERT_FIELDS = frozenset(f.name for f in fields(AlertSettings))


class FetchOutcome(str, Enum):
    CACHE_HIT = "cache_hit"
    FRESH = "fresh"
    FAILED = "failed"


class TelemetryService:
    """
    Single owner of fetch recency, storage health and system status.
    Build one per process and hand it to every request handler.
    """

    def __init__(
        self,
        source: ReadingSource,
        repo: Optional[Repository] = None,
        *,
        cache_timeout_s: float = 10.0,
        production: bool = False,
        default_device: Optional[str] = None,
        buffer_size: int = DEFAULT_MAXLEN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._repo = repo
        self._cache_timeout = float(cache_timeout_s)
        self._production = production
        self._default_device = default_device
        self._clock = clock

        self._fetch_lock = asyncio.Lock()
        self._status_lock = asyncio.Lock()
        self._last_external_fetch: Optional[float] = None
        self._last_remote_reading: Optional[SensorReading] = None
        self._store_healthy = False  # armed by start() / probe_storage()

        self._started_at = now_utc()
        self._status = SystemStatus(connection_status="error", last_update=self._started_at)
        self._alerts = AlertSettings()

        self.buffer = FallbackBuffer(maxlen=buffer_size)
        self.buffer.populate(self._started_at)
        self.remote_fetches = 0

    # ---- storage health ----

    @property
    def store_available(self) -> bool:
        return self._repo is not None

    @property
    def store_healthy(self) -> bool:
        return self._repo is not None and self._store_healthy

    def _mark_unhealthy(self, op: str, exc: BaseException) -> None:
        if self._store_healthy:
            logger.warning("Storage %s failed, switching to in-memory fallback: %s", op, exc)
        else:
            logger.debug("Storage %s failed while already degraded: %s", op, exc)
        self._store_healthy = False

    async def start(self) -> None:
        """Create the schema and load persisted singletons. Never raises."""
        if self._repo is None:
            logger.info("Durable storage disabled, running on in-memory fallback")
            return
        try:
            await self._repo.init()
            stored_status = await self._repo.get_system_status()
            if stored_status is not None:
                self._status = stored_status
            stored_alerts = await self._repo.get_alert_settings()
            if stored_alerts is not None:
                self._alerts = stored_alerts
            else:
                await self._repo.save_alert_settings(self._alerts)
            count = await self._repo.count_readings()
            self._status = replace(self._status, data_points=count)
            if stored_status is None:
                await self._repo.save_system_status(self._status)
        except Exception as e:
            self._mark_unhealthy("init", e)
            logger.warning("Database not available, using in-memory fallback: %s", e)
            return

        self._store_healthy = True
        logger.info("Database connection successful (%d stored readings)", count)

    async def probe_storage(self) -> bool:
        """Round-trip to storage; the only way back to healthy after a failure."""
        if self._repo is None:
            return False
        try:
            await self._repo.ping()
        except Exception as e:
            self._mark_unhealthy("probe", e)
            return False
        if not self._store_healthy:
            logger.info("Storage reachable again, leaving fallback mode")
        self._store_healthy = True
        return True

    # ---- fetch step ----

    def _within_cache_window(self) -> bool:
        if self._last_external_fetch is None:
            return False
        return (self._clock() - self._last_external_fetch) < self._cache_timeout

    async def _cached_reading(self) -> Optional[SensorReading]:
        if self.store_healthy:
            try:
                rows = await self._repo.latest_readings(1)
            except Exception as e:
                self._mark_unhealthy("cache read", e)
            else:
                return rows[0] if rows else None
        return self._last_remote_reading

    async def _refresh(self) -> FetchOutcome:
        async with self._fetch_lock:
            if self._within_cache_window():
                cached = await self._cached_reading()
                if cached is not None:
                    logger.debug("Cache hit, skipping remote fetch (latest=%s)", cached.id)
                    return FetchOutcome.CACHE_HIT
            return await self._remote_fetch()

    async def _remote_fetch(self) -> FetchOutcome:
        self.remote_fetches += 1
        try:
            doc = await self._source.fetch_latest()
        except HydromonError as e:
            logger.warning("Error fetching from external service: %s", e)
            await self._set_status(connection_status="error")
            return FetchOutcome.FAILED

        reading = normalize(doc, default_device=self._default_device)
        if reading is None:
            logger.warning("No usable reading received from external service")
            await self._set_status(connection_status="error")
            return FetchOutcome.FAILED

        self._last_external_fetch = self._clock()
        self._last_remote_reading = await self._write_through(reading)
        return FetchOutcome.FRESH

    async def _write_through(self, reading: SensorReading) -> SensorReading:
        if self.store_healthy:
            try:
                stored = await self._repo.insert_reading(
                    ReadingCreate(
                        temperature=reading.temperature,
                        ph=reading.ph,
                        tds_level=reading.tds_level,
                        timestamp=reading.timestamp,
                    )
                )
                count = await self._repo.count_readings()
            except Exception as e:
                self._mark_unhealthy("insert", e)
            else:
                await self._set_status(connection_status="connected", data_points=count)
                logger.info("Fetched and stored reading %s", stored.id)
                return stored

        # stamped on receipt so the buffer stays newest first
        ephemeral = replace(reading, id=_memory_id("external"), timestamp=now_utc())
        self.buffer.add(ephemeral)
        await self._set_status(connection_status="connected")
        logger.info("Fetched reading %s kept in memory (storage unavailable)", ephemeral.id)
        return ephemeral

    # ---- reads ----

    async def fetch_readings(self, limit: int = 50) -> ReadingsResult:
        """Latest readings, newest first, tagged with where they came from."""
        if limit < 1:
            raise ValueError("limit must be a positive integer")
        outcome = FetchOutcome.FAILED
        try:
            outcome = await self._refresh()
            return await self._serve(limit, outcome)
        except Exception as e:
            logger.exception("Unexpected error reading sensor data, serving fallback: %s", e)
            self._store_healthy = False
            return self._serve_fallback(limit, outcome)

    async def get_sensor_readings(self, limit: int = 50) -> list[SensorReading]:
        return (await self.fetch_readings(limit)).readings

    async def _serve(self, limit: int, outcome: FetchOutcome) -> ReadingsResult:
        if self.store_healthy:
            try:
                rows = await self._repo.latest_readings(limit)
                if not rows and not self._production:
                    seeded = await self._repo.insert_reading(SEED_READING)
                    await self._set_status(data_points=await self._repo.count_readings())
                    logger.info("Storage empty, seeded sample reading %s (development only)", seeded.id)
                    return ReadingsResult([seeded], Provenance.SYNTHETIC)
            except Exception as e:
                self._mark_unhealthy("read", e)
            else:
                if rows:
                    return ReadingsResult(rows, _storage_provenance(outcome))
                logger.info("Storage empty, serving in-memory fallback (production mode)")
        return self._serve_fallback(limit, outcome)

    def _serve_fallback(self, limit: int, outcome: FetchOutcome) -> ReadingsResult:
        self.buffer.populate()
        rows = self.buffer.head(limit)
        if not rows or is_synthetic(rows[0]):
            provenance = Provenance.SYNTHETIC
        elif outcome is FetchOutcome.FRESH:
            provenance = Provenance.FRESH
        else:
            provenance = Provenance.STALE_CACHE
        return ReadingsResult(rows, provenance)

    async def get_sensor_readings_by_time_range(self, start: datetime, end: datetime) -> list[SensorReading]:
        """Readings with start <= timestamp <= end, oldest first."""
        start, end = as_utc(start), as_utc(end)
        if end < start:
            raise ValueError("end must not be before start")
        try:
            await self._refresh()
            if self.store_healthy:
                try:
                    return await self._repo.query_range(start, end)
                except Exception as e:
                    self._mark_unhealthy("range query", e)
        except Exception as e:
            logger.exception("Unexpected error in time range query, serving fallback: %s", e)
            self._store_healthy = False
        self.buffer.populate()
        return self.buffer.in_range(start, end)

    # ---- writes ----

    async def create_sensor_reading(self, data: ReadingCreate) -> SensorReading:
        """Manual insert; bypasses the remote service."""
        if self.store_healthy:
            try:
                reading = await self._repo.insert_reading(data)
                count = await self._repo.count_readings()
            except Exception as e:
                self._mark_unhealthy("insert", e)
            else:
                await self._set_status(data_points=count)
                return reading

        self.buffer.populate()
        reading = SensorReading(
            id=_memory_id("memory"),
            timestamp=as_utc(data.timestamp) if data.timestamp else now_utc(),
            temperature=float(data.temperature),
            ph=float(data.ph),
            tds_level=float(data.tds_level),
        )
        self.buffer.add(reading)
        return reading

    # ---- system status / alert settings ----

    async def get_system_status(self) -> SystemStatus:
        return replace(self._status, uptime=format_uptime(now_utc() - self._started_at))

    async def update_system_status(self, **changes) -> SystemStatus:
        """Merge ``changes`` into the status; None values keep the previous value."""
        unknown = set(changes) - _STATUS_FIELDS
        if unknown:
            raise ValueError(f"Unknown system status fields: {sorted(unknown)}")
        await self._set_status(**changes)
        return await self.get_system_status()

    async def _set_status(self, **changes) -> None:
        updates = {k: v for k, v in changes.items() if v is not None}
        updates["last_update"] = now_utc()
        self._status = replace(self._status, **updates)
        if not self.store_healthy:
            return
        async with self._status_lock:
            try:
                # persist whatever is newest when we get the lock
                await self._repo.save_system_status(self._status)
            except Exception as e:
                self._mark_unhealthy("status update", e)

    async def get_alert_settings(self) -> AlertSettings:
        return self._alerts

    async def update_alert_settings(self, **changes) -> AlertSettings:
        unknown = set(changes) - _ALERT_FIELDS
        if unknown:
            raise ValueError(f"Unknown alert settings fields: {sorted(unknown)}")
        self._alerts = replace(self._alerts, **{k: v for k, v in changes.items() if v is not None})
        if self.store_healthy:
            try:
                await self._repo.save_alert_settings(self._alerts)
            except Exception as e:
                self._mark_unhealthy("alert settings update", e)
        return self._alerts


def _memory_id(prefix: str) -> str:
    return f"{prefix}_{epoch_ms()}_{uuid.uuid4().hex[:8]}"


def _storage_provenance(outcome: FetchOutcome) -> Provenance:
    if outcome is FetchOutcome.FRESH:
        return Provenance.FRESH
    if outcome is FetchOutcome.CACHE_HIT:
        return Provenance.STALE_CACHE
    return Provenance.STALE_STORAGE
