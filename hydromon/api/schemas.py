from __future__ import annotations
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..domain.models import AlertSettings, ReadingCreate, SensorReading, SystemStatus


class SensorReadingOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    timestamp: datetime
    temperature: float
    ph: float
    tds_level: float = Field(alias="tdsLevel")

    @classmethod
    def from_domain(cls, r: SensorReading) -> "SensorReadingOut":
        return cls(id=r.id, timestamp=r.timestamp, temperature=r.temperature, ph=r.ph, tds_level=r.tds_level)


class SensorReadingIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    temperature: float
    ph: float
    tds_level: float = Field(alias="tdsLevel")
    timestamp: Optional[datetime] = None

    def to_domain(self) -> ReadingCreate:
        return ReadingCreate(
            temperature=self.temperature,
            ph=self.ph,
            tds_level=self.tds_level,
            timestamp=self.timestamp,
        )


class SystemStatusOut(BaseModel):
    connectionStatus: str
    lastUpdate: datetime
    dataPoints: int
    cpuUsage: float
    memoryUsage: float
    storageUsage: float
    uptime: str

    @classmethod
    def from_domain(cls, s: SystemStatus) -> "SystemStatusOut":
        return cls(
            connectionStatus=s.connection_status,
            lastUpdate=s.last_update,
            dataPoints=s.data_points,
            cpuUsage=s.cpu_usage,
            memoryUsage=s.memory_usage,
            storageUsage=s.storage_usage,
            uptime=s.uptime,
        )


class AlertSettingsIO(BaseModel):
    temperatureAlerts: Optional[bool] = None
    phAlerts: Optional[bool] = None
    tdsLevelAlerts: Optional[bool] = None

    @classmethod
    def from_domain(cls, a: AlertSettings) -> "AlertSettingsIO":
        return cls(
            temperatureAlerts=a.temperature_alerts,
            phAlerts=a.ph_alerts,
            tdsLevelAlerts=a.tds_level_alerts,
        )

    def changes(self) -> dict:
        return {
            "temperature_alerts": self.temperatureAlerts,
            "ph_alerts": self.phAlerts,
            "tds_level_alerts": self.tdsLevelAlerts,
        }
