from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal

# Named float fields decoded from a device payload (superset across families)
DecodedPayload = Dict[str, float]

ConnectionStatus = Literal["connected", "error"]


@dataclass(frozen=True)
class SensorReading:
    id: str
    timestamp: datetime
    temperature: float
    ph: float
    tds_level: float


@dataclass(frozen=True)
class ReadingCreate:
    temperature: float
    ph: float
    tds_level: float
    timestamp: datetime | None = None  # storage stamps "now" when missing


@dataclass(frozen=True)
class SystemStatus:
    connection_status: ConnectionStatus
    last_update: datetime
    data_points: int = 0
    cpu_usage: float = 23.0
    memory_usage: float = 30.0
    storage_usage: float = 26.0
    uptime: str = "0d 0h 0m"


@dataclass(frozen=True)
class AlertSettings:
    temperature_alerts: bool = True
    ph_alerts: bool = True
    tds_level_alerts: bool = False


class Provenance(str, Enum):
    FRESH = "fresh"
    STALE_CACHE = "stale_cache"
    STALE_STORAGE = "stale_storage"
    SYNTHETIC = "synthetic"


@dataclass(frozen=True)
class ReadingsResult:
    readings: List[SensorReading] = field(default_factory=list)
    provenance: Provenance = Provenance.SYNTHETIC

    @property
    def latest(self) -> SensorReading | None:
        return self.readings[0] if self.readings else None
