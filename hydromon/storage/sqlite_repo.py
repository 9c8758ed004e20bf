from __future__ import annotations
import aiosqlite
import uuid
from datetime import datetime
from typing import List, Optional
from ..core.timeutil import as_utc, now_utc
from ..domain.models import AlertSettings, ReadingCreate, SensorReading, SystemStatus

SINGLETON_ID = 1


def _ts(dt: datetime) -> str:
    # fixed width so text ordering matches time ordering
    return as_utc(dt).isoformat(timespec="microseconds")


def _row_to_reading(row) -> SensorReading:
    rid, ts, temp, ph, tds = row
    return SensorReading(
        id=rid,
        timestamp=datetime.fromisoformat(ts),
        temperature=float(temp),
        ph=float(ph),
        tds_level=float(tds),
    )


class SQLiteRepository:
    def __init__(self, path: str) -> None:
        self._path = path

    async def init(self) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS sensor_readings (
                    id TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    temperature REAL NOT NULL,
                    ph REAL NOT NULL,
                    tds_level REAL NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS system_status (
                    id INTEGER PRIMARY KEY,
                    connection_status TEXT NOT NULL,
                    last_update TEXT NOT NULL,
                    data_points INTEGER NOT NULL,
                    cpu_usage REAL NOT NULL,
                    memory_usage REAL NOT NULL,
                    storage_usage REAL NOT NULL,
                    uptime TEXT NOT NULL
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS alert_settings (
                    id INTEGER PRIMARY KEY,
                    temperature_alerts INTEGER NOT NULL,
                    ph_alerts INTEGER NOT NULL,
                    tds_level_alerts INTEGER NOT NULL
                )
                """
            )
            await db.execute("CREATE INDEX IF NOT EXISTS idx_sensor_readings_ts ON sensor_readings(timestamp)")
            await db.commit()

    async def ping(self) -> None:
        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute("SELECT 1")
            await cur.fetchone()

    async def insert_reading(self, r: ReadingCreate) -> SensorReading:
        created = now_utc()
        reading = SensorReading(
            id=uuid.uuid4().hex,
            timestamp=as_utc(r.timestamp) if r.timestamp else created,
            temperature=float(r.temperature),
            ph=float(r.ph),
            tds_level=float(r.tds_level),
        )
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                "INSERT INTO sensor_readings(id,timestamp,temperature,ph,tds_level,created_at) VALUES (?,?,?,?,?,?)",
                (
                    reading.id,
                    _ts(reading.timestamp),
                    reading.temperature,
                    reading.ph,
                    reading.tds_level,
                    _ts(created),
                ),
            )
            await db.commit()
        return reading

    async def count_readings(self) -> int:
        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute("SELECT COUNT(*) FROM sensor_readings")
            row = await cur.fetchone()
        return int(row[0]) if row else 0

    async def latest_readings(self, limit: int) -> List[SensorReading]:
        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute(
                """
                SELECT id,timestamp,temperature,ph,tds_level
                FROM sensor_readings
                ORDER BY timestamp DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = await cur.fetchall()
        return [_row_to_reading(row) for row in rows]

    async def query_range(self, start: datetime, end: datetime) -> List[SensorReading]:
        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute(
                """
                SELECT id,timestamp,temperature,ph,tds_level
                FROM sensor_readings
                WHERE timestamp >= ? AND timestamp <= ?
                ORDER BY timestamp ASC
                """,
                (_ts(start), _ts(end)),
            )
            rows = await cur.fetchall()
        return [_row_to_reading(row) for row in rows]

    async def get_system_status(self) -> Optional[SystemStatus]:
        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute(
                """
                SELECT connection_status,last_update,data_points,cpu_usage,memory_usage,storage_usage,uptime
                FROM system_status WHERE id = ?
                """,
                (SINGLETON_ID,),
            )
            row = await cur.fetchone()
        if row is None:
            return None
        conn, last, points, cpu, mem, storage, uptime = row
        return SystemStatus(
            connection_status=conn,
            last_update=datetime.fromisoformat(last),
            data_points=int(points),
            cpu_usage=float(cpu),
            memory_usage=float(mem),
            storage_usage=float(storage),
            uptime=uptime,
        )

    async def save_system_status(self, s: SystemStatus) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                "INSERT INTO system_status(id,connection_status,last_update,data_points,cpu_usage,memory_usage,storage_usage,uptime) "
                "VALUES (?,?,?,?,?,?,?,?) "
                "ON CONFLICT(id) DO UPDATE SET connection_status=excluded.connection_status, "
                "last_update=excluded.last_update, data_points=excluded.data_points, cpu_usage=excluded.cpu_usage, "
                "memory_usage=excluded.memory_usage, storage_usage=excluded.storage_usage, uptime=excluded.uptime",
                (
                    SINGLETON_ID,
                    s.connection_status,
                    _ts(s.last_update),
                    int(s.data_points),
                    float(s.cpu_usage),
                    float(s.memory_usage),
                    float(s.storage_usage),
                    s.uptime,
                ),
            )
            await db.commit()

    async def get_alert_settings(self) -> Optional[AlertSettings]:
        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute(
                "SELECT temperature_alerts,ph_alerts,tds_level_alerts FROM alert_settings WHERE id = ?",
                (SINGLETON_ID,),
            )
            row = await cur.fetchone()
        if row is None:
            return None
        temp, ph, tds = row
        return AlertSettings(temperature_alerts=bool(temp), ph_alerts=bool(ph), tds_level_alerts=bool(tds))

    async def save_alert_settings(self, a: AlertSettings) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                "INSERT INTO alert_settings(id,temperature_alerts,ph_alerts,tds_level_alerts) VALUES (?,?,?,?) "
                "ON CONFLICT(id) DO UPDATE SET temperature_alerts=excluded.temperature_alerts, "
                "ph_alerts=excluded.ph_alerts, tds_level_alerts=excluded.tds_level_alerts",
                (
                    SINGLETON_ID,
                    1 if a.temperature_alerts else 0,
                    1 if a.ph_alerts else 0,
                    1 if a.tds_level_alerts else 0,
                ),
            )
            await db.commit()
