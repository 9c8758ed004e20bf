"""Turn a raw reading document from the device service into a SensorReading.

The service has answered with several envelope shapes over time. Each field
is resolved by an ordered list of rules; the first rule that yields a usable
value wins.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

from ..core.timeutil import as_utc, epoch_ms, now_utc
from ..domain.models import SensorReading
from .hex_decoder import decode

logger = logging.getLogger(__name__)

Rule = Callable[[Mapping[str, Any]], Any]


def path(*keys: str) -> Rule:
    """Rule that digs ``keys`` out of nested mappings, or returns None."""

    def rule(doc: Mapping[str, Any]) -> Any:
        cur: Any = doc
        for key in keys:
            if not isinstance(cur, Mapping):
                return None
            cur = cur.get(key)
        return cur

    return rule


def first(doc: Mapping[str, Any], rules: Sequence[Rule], parse: Callable[[Any], Any] = lambda v: v) -> Any:
    for rule in rules:
        value = rule(doc)
        if value is None or value == "":
            continue
        parsed = parse(value)
        if parsed is not None:
            return parsed
    return None


DEVICE_CODE_RULES: tuple[Rule, ...] = (path("device_code"), path("device"), path("code"))
PAYLOAD_RULES: tuple[Rule, ...] = (
    path("reading", "encoded_data"),
    path("encoded_data"),
    path("hex"),
    path("payload"),
)
TIMESTAMP_RULES: tuple[Rule, ...] = (
    path("reading", "timestamp"),
    path("timestamp"),
    path("created_at"),
    path("time"),
)
ID_RULES: tuple[Rule, ...] = (path("id"), path("_id"), path("reading_id"), path("reading", "id"))
TDS_RULES: tuple[Rule, ...] = (path("tdsLevel"), path("ec"))

PRE_DECODED_KEYS = ("ph", "tdsLevel", "ec")


def safe_float(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts <= 0:
            return None
        # Treat values above 1e11 as milliseconds.
        if ts > 1e11:
            ts /= 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def _is_pre_decoded(doc: Mapping[str, Any]) -> bool:
    temp = doc.get("temperature")
    if isinstance(temp, bool) or not isinstance(temp, (int, float)):
        return False
    return any(key in doc for key in PRE_DECODED_KEYS)


def _as_float(value: Any) -> float:
    parsed = safe_float(value)
    return parsed if parsed is not None else 0.0


def normalize(
    doc: Mapping[str, Any],
    default_device: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[SensorReading]:
    """
    Return a canonical SensorReading, or None when the document carries no
    usable reading. None is "no data", not a retryable error.
    """
    if not isinstance(doc, Mapping):
        return None

    now = now or now_utc()
    device_code = first(doc, DEVICE_CODE_RULES, str) or default_device or "UNKNOWN"
    encoded = first(doc, PAYLOAD_RULES, str)

    if encoded is None:
        if not _is_pre_decoded(doc):
            logger.warning("Reading document has neither payload nor decoded values (keys=%s)", sorted(doc))
            return None
        temperature = _as_float(doc.get("temperature"))
        ph = _as_float(doc.get("ph"))
        tds_level = _as_float(first(doc, TDS_RULES))
    else:
        decoded = decode(encoded, device_code)
        if decoded is None:
            logger.warning("Could not decode payload %r for device %s", encoded, device_code)
            return None
        temperature = decoded.get("temperature", 0.0)
        ph = decoded.get("ph", 0.0)
        tds_level = decoded.get("tds_level", decoded.get("ec", 0.0))

    return SensorReading(
        id=first(doc, ID_RULES, str) or f"ext_{epoch_ms(now)}",
        timestamp=first(doc, TIMESTAMP_RULES, parse_timestamp) or now,
        temperature=temperature,
        ph=ph,
        tds_level=tds_level,
    )
