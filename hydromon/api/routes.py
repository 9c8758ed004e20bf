from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from ..core.config import settings
from ..core.timeutil import now_utc
from ..services.sampler import SamplerService
from ..services.telemetry import TelemetryService
from .schemas import AlertSettingsIO, SensorReadingIn, SensorReadingOut, SystemStatusOut

logger = logging.getLogger(__name__)

router = APIRouter()

PROVENANCE_HEADER = "X-Data-Provenance"


# --- Dependency getters: objects are built once in main.lifespan ---
def get_telemetry(request: Request) -> TelemetryService:
    telemetry = getattr(request.app.state, "telemetry", None)
    if telemetry is None:
        raise RuntimeError("Telemetry service not configured")
    return telemetry


def get_sampler(request: Request) -> SamplerService:
    sampler = getattr(request.app.state, "sampler", None)
    if sampler is None:
        raise RuntimeError("Sampler not configured")
    return sampler


def _out(readings) -> list[dict]:
    return [SensorReadingOut.from_domain(r).model_dump(by_alias=True) for r in readings]


@router.get("/health")
async def health(svc: TelemetryService = Depends(get_telemetry)):
    status = await svc.get_system_status()
    result = await svc.fetch_readings(1)
    return {
        "status": "ok",
        "timestamp": now_utc().isoformat(),
        "environment": settings.run_mode,
        "storageAvailable": svc.store_available,
        "storageHealthy": svc.store_healthy,
        "externalApiConfigured": bool(settings.external_api_url and settings.external_api_key),
        "systemStatus": SystemStatusOut.from_domain(status).model_dump(),
        "hasReadings": bool(result.readings),
        "provenance": result.provenance.value,
        "latestReading": _out(result.readings)[0] if result.readings else None,
    }


@router.get("/live")
async def live(sampler: SamplerService = Depends(get_sampler)):
    st = sampler.live
    return {
        "polls": st.polls,
        "last_poll_utc": st.last_poll_utc.isoformat() if st.last_poll_utc else None,
        "last_provenance": st.last_provenance.value if st.last_provenance else None,
        "store_healthy": st.store_healthy,
        "last_reading": _out([st.last_reading])[0] if st.last_reading else None,
    }


@router.get("/sensor-readings")
async def sensor_readings(
    response: Response,
    limit: int = Query(default=50, ge=1, le=1000),
    svc: TelemetryService = Depends(get_telemetry),
):
    result = await svc.fetch_readings(limit)
    response.headers[PROVENANCE_HEADER] = result.provenance.value
    return _out(result.readings)


@router.get("/sensor-readings/range")
async def sensor_readings_range(
    start_time: datetime = Query(alias="startTime"),
    end_time: datetime = Query(alias="endTime"),
    svc: TelemetryService = Depends(get_telemetry),
):
    try:
        rows = await svc.get_sensor_readings_by_time_range(start_time, end_time)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _out(rows)


@router.get("/sensor-readings/latest")
async def sensor_readings_latest(response: Response, svc: TelemetryService = Depends(get_telemetry)):
    result = await svc.fetch_readings(1)
    response.headers[PROVENANCE_HEADER] = result.provenance.value
    return _out(result.readings)[0] if result.readings else None


@router.post("/sensor-readings", status_code=201)
async def create_sensor_reading(req: SensorReadingIn, svc: TelemetryService = Depends(get_telemetry)):
    reading = await svc.create_sensor_reading(req.to_domain())
    return _out([reading])[0]


@router.post("/sync")
async def sync(svc: TelemetryService = Depends(get_telemetry)):
    logger.info("Manual sync requested")
    result = await svc.fetch_readings(1)
    status = await svc.get_system_status()
    return {
        "success": True,
        "latestReading": _out(result.readings)[0] if result.readings else None,
        "provenance": result.provenance.value,
        "connectionStatus": status.connection_status,
    }


@router.get("/system-status")
async def system_status(svc: TelemetryService = Depends(get_telemetry)):
    return SystemStatusOut.from_domain(await svc.get_system_status())


@router.get("/alert-settings")
async def get_alert_settings(svc: TelemetryService = Depends(get_telemetry)):
    return AlertSettingsIO.from_domain(await svc.get_alert_settings())


@router.put("/alert-settings")
async def update_alert_settings(req: AlertSettingsIO, svc: TelemetryService = Depends(get_telemetry)):
    updated = await svc.update_alert_settings(**req.changes())
    return AlertSettingsIO.from_domain(updated)
