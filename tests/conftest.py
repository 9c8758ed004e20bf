"""Shared fakes for the telemetry tests."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import pytest

from hydromon.core.timeutil import as_utc, now_utc
from hydromon.domain.errors import RemoteTimeout
from hydromon.domain.models import AlertSettings, ReadingCreate, SensorReading, SystemStatus


HZ_DOC = {"device_code": "HZ1", "encoded_data": "029003ac00fa", "timestamp": "2026-01-01T12:00:00Z"}


class FakeSource:
    """Remote source returning queued documents (or raising queued errors)."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses) or [dict(HZ_DOC)]
        self.calls = 0

    async def fetch_latest(self) -> dict:
        self.calls += 1
        item = self.responses[min(self.calls, len(self.responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return dict(item)


class FailingSource(FakeSource):
    def __init__(self) -> None:
        super().__init__(RemoteTimeout("simulated timeout"))


class MemoryRepo:
    """Repository kept in a list; ``fail`` makes every call raise."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.rows: list[SensorReading] = []
        self.status: Optional[SystemStatus] = None
        self.alerts: Optional[AlertSettings] = None
        self.calls: list[str] = []

    def _hit(self, op: str) -> None:
        self.calls.append(op)
        if self.fail:
            raise ConnectionError(f"storage down ({op})")

    async def init(self) -> None:
        self._hit("init")

    async def ping(self) -> None:
        self._hit("ping")

    async def insert_reading(self, r: ReadingCreate) -> SensorReading:
        self._hit("insert_reading")
        reading = SensorReading(
            id=uuid.uuid4().hex,
            timestamp=as_utc(r.timestamp) if r.timestamp else now_utc(),
            temperature=r.temperature,
            ph=r.ph,
            tds_level=r.tds_level,
        )
        self.rows.append(reading)
        return reading

    async def count_readings(self) -> int:
        self._hit("count_readings")
        return len(self.rows)

    async def latest_readings(self, limit: int) -> list[SensorReading]:
        self._hit("latest_readings")
        return sorted(self.rows, key=lambda r: r.timestamp, reverse=True)[:limit]

    async def query_range(self, start: datetime, end: datetime) -> list[SensorReading]:
        self._hit("query_range")
        return sorted((r for r in self.rows if start <= r.timestamp <= end), key=lambda r: r.timestamp)

    async def get_system_status(self) -> Optional[SystemStatus]:
        self._hit("get_system_status")
        return self.status

    async def save_system_status(self, status: SystemStatus) -> None:
        self._hit("save_system_status")
        self.status = status

    async def get_alert_settings(self) -> Optional[AlertSettings]:
        self._hit("get_alert_settings")
        return self.alerts

    async def save_alert_settings(self, alerts: AlertSettings) -> None:
        self._hit("save_alert_settings")
        self.alerts = alerts


class FakeClock:
    def __init__(self, t: float = 1000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repo() -> MemoryRepo:
    return MemoryRepo()
