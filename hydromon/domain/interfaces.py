from __future__ import annotations
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable
from .models import AlertSettings, ReadingCreate, SensorReading, SystemStatus


@runtime_checkable
class Repository(Protocol):
    async def init(self) -> None:
        ...

    async def ping(self) -> None:
        ...

    async def insert_reading(self, reading: ReadingCreate) -> SensorReading:
        ...

    async def count_readings(self) -> int:
        ...

    async def latest_readings(self, limit: int) -> list[SensorReading]:
        ...

    async def query_range(self, start: datetime, end: datetime) -> list[SensorReading]:
        ...

    async def get_system_status(self) -> Optional[SystemStatus]:
        ...

    async def save_system_status(self, status: SystemStatus) -> None:
        ...

    async def get_alert_settings(self) -> Optional[AlertSettings]:
        ...

    async def save_alert_settings(self, alerts: AlertSettings) -> None:
        ...


@runtime_checkable
class ReadingSource(Protocol):
    """Anything that can produce the latest raw reading document."""

    async def fetch_latest(self) -> dict:
        ...
