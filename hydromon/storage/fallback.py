from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta
from itertools import islice
from typing import Iterable, List, Optional

from ..core.timeutil import as_utc, epoch_ms, now_utc
from ..domain.models import SensorReading

logger = logging.getLogger(__name__)

SAMPLE_ID_PREFIX = "sample_"

# Readings kept in memory while storage is down; oldest dropped first
DEFAULT_MAXLEN = 500

# (temperature, ph, tds_level), newest first
SAMPLE_VALUES: tuple[tuple[float, float, float], ...] = (
    (24.2, 6.1, 950.0),
    (24.8, 6.0, 920.0),
    (25.1, 5.9, 980.0),
    (25.3, 6.2, 960.0),
    (24.9, 6.0, 940.0),
)


def sample_readings(now: Optional[datetime] = None) -> List[SensorReading]:
    """Five plausible readings one minute apart, the newest at now - 1 min."""
    now = now or now_utc()
    base_ms = epoch_ms(now)
    return [
        SensorReading(
            id=f"{SAMPLE_ID_PREFIX}{base_ms - i}",
            timestamp=now - timedelta(minutes=i + 1),
            temperature=temp,
            ph=ph,
            tds_level=tds,
        )
        for i, (temp, ph, tds) in enumerate(SAMPLE_VALUES)
    ]


def is_synthetic(reading: SensorReading) -> bool:
    return reading.id.startswith(SAMPLE_ID_PREFIX)


class FallbackBuffer:
    """In-process, non-persistent readings, newest first, capped at ``maxlen``."""

    def __init__(self, readings: Iterable[SensorReading] = (), maxlen: int = DEFAULT_MAXLEN) -> None:
        if maxlen < 1:
            raise ValueError("maxlen must be a positive integer")
        self._maxlen = maxlen
        ordered = sorted(readings, key=_newest_first)
        self._readings: deque[SensorReading] = deque(ordered[:maxlen], maxlen=maxlen)

    def __len__(self) -> int:
        return len(self._readings)

    @property
    def maxlen(self) -> int:
        return self._maxlen

    def populate(self, now: Optional[datetime] = None) -> bool:
        """Fill with sample data only when empty. Returns True if it filled."""
        if self._readings:
            return False
        self._readings.extend(sample_readings(now)[: self._maxlen])
        logger.info("Fallback buffer initialised with %d sample readings", len(self._readings))
        return True

    def add(self, reading: SensorReading) -> bool:
        """Insert keeping newest-first order; when full the oldest entry is dropped.

        Returns False if the reading is older than everything kept in a full buffer.
        """
        ts = as_utc(reading.timestamp)
        pos = next(
            (i for i, r in enumerate(self._readings) if as_utc(r.timestamp) <= ts),
            len(self._readings),
        )
        if len(self._readings) == self._maxlen:
            if pos == self._maxlen:
                return False
            self._readings.pop()
        self._readings.insert(pos, reading)
        return True

    def head(self, limit: int) -> List[SensorReading]:
        return list(islice(self._readings, max(0, limit)))

    def latest(self) -> Optional[SensorReading]:
        return self._readings[0] if self._readings else None

    def in_range(self, start: datetime, end: datetime) -> List[SensorReading]:
        start, end = as_utc(start), as_utc(end)
        rows = [r for r in self._readings if start <= as_utc(r.timestamp) <= end]
        return sorted(rows, key=lambda r: r.timestamp)


def _newest_first(reading: SensorReading) -> float:
    return -as_utc(reading.timestamp).timestamp()
