from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import FailingSource, FakeSource
from hydromon.api.routes import router
from hydromon.services.sampler import SamplerService
from hydromon.services.telemetry import TelemetryService


def _app(svc: TelemetryService) -> FastAPI:
    app = FastAPI()
    app.include_router(router, prefix="/api")
    app.state.telemetry = svc
    app.state.sampler = SamplerService(svc)
    return app


@pytest.fixture
def client(clock) -> TestClient:
    return TestClient(_app(TelemetryService(FakeSource(), None, clock=clock)))


def test_readings_carry_provenance_header(client) -> None:
    resp = client.get("/api/sensor-readings", params={"limit": 2})
    assert resp.status_code == 200
    assert resp.headers["X-Data-Provenance"] == "fresh"
    body = resp.json()
    assert len(body) == 2
    assert set(body[0]) == {"id", "timestamp", "temperature", "ph", "tdsLevel"}


def test_invalid_limit_is_a_client_error(client) -> None:
    assert client.get("/api/sensor-readings", params={"limit": 0}).status_code == 422


def test_manual_insert_then_latest(clock) -> None:
    client = TestClient(_app(TelemetryService(FailingSource(), None, clock=clock)))

    created = client.post("/api/sensor-readings", json={"temperature": 22.1, "ph": 6.4, "tdsLevel": 777})
    assert created.status_code == 201

    latest = client.get("/api/sensor-readings/latest").json()
    assert latest["id"] == created.json()["id"]
    assert latest["tdsLevel"] == 777


def test_malformed_insert_is_rejected(client) -> None:
    resp = client.post("/api/sensor-readings", json={"temperature": "hot", "ph": 6.4})
    assert resp.status_code == 422


def test_range_requires_both_bounds(client) -> None:
    assert client.get("/api/sensor-readings/range", params={"startTime": "2026-01-01T00:00:00Z"}).status_code == 422
    resp = client.get(
        "/api/sensor-readings/range",
        params={"startTime": "2026-01-02T00:00:00Z", "endTime": "2026-01-01T00:00:00Z"},
    )
    assert resp.status_code == 400


def test_status_alerts_and_sync(client) -> None:
    sync = client.post("/api/sync").json()
    assert sync["success"] is True
    assert sync["connectionStatus"] == "connected"

    status = client.get("/api/system-status").json()
    assert status["connectionStatus"] == "connected"

    updated = client.put("/api/alert-settings", json={"phAlerts": False}).json()
    assert updated == {"temperatureAlerts": True, "phAlerts": False, "tdsLevelAlerts": False}
    assert client.get("/api/alert-settings").json() == updated


def test_health_reports_storage_state(client) -> None:
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["storageAvailable"] is False
    assert body["latestReading"] is not None
