from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..domain.models import DecodedPayload

logger = logging.getLogger(__name__)

SLOT_WIDTH = 4  # hex chars per field (16-bit, big-endian)
MIN_HEX_LENGTH = 6
HEX_DIGITS = frozenset("0123456789abcdef")


@dataclass(frozen=True)
class FieldSlot:
    name: str
    divisor: float = 1.0


@dataclass(frozen=True)
class DeviceLayout:
    prefixes: tuple[str, ...]
    family: str
    slots: tuple[FieldSlot, ...]

    def matches(self, device_code: str) -> bool:
        return device_code.startswith(self.prefixes)


LAYOUTS: tuple[DeviceLayout, ...] = (
    DeviceLayout(
        prefixes=("CZ",),
        family="chili",
        slots=(
            FieldSlot("ph", 100),
            FieldSlot("moisture", 10),
            FieldSlot("ec", 100),
            FieldSlot("temperature", 10),
        ),
    ),
    DeviceLayout(
        prefixes=("MZ", "SZ"),
        family="melon/lettuce",
        slots=(
            FieldSlot("ph", 100),
            FieldSlot("ec", 100),
            FieldSlot("temperature", 10),
        ),
    ),
    DeviceLayout(
        prefixes=("GZ",),
        family="greenhouse",
        slots=(
            FieldSlot("temperature", 10),
            FieldSlot("humidity", 10),
            FieldSlot("light", 1),
        ),
    ),
    DeviceLayout(
        prefixes=("HZ",),
        family="hydroponic",
        slots=(
            FieldSlot("ph", 100),
            FieldSlot("tds_level", 10),
            FieldSlot("temperature", 10),
        ),
    ),
)


def layout_for(device_code: str) -> Optional[DeviceLayout]:
    for layout in LAYOUTS:
        if layout.matches(device_code):
            return layout
    return None


def _read_slot(hex_str: str, index: int) -> Optional[int]:
    chunk = hex_str[index * SLOT_WIDTH:(index + 1) * SLOT_WIDTH]
    # int() alone would also accept "0x", "+" and "_" forms
    if len(chunk) != SLOT_WIDTH or not HEX_DIGITS.issuperset(chunk):
        return None
    return int(chunk, 16)


def decode(hex_string: str, device_code: str) -> Optional[DecodedPayload]:
    """
    Decode a device hex payload into named sensor fields.
    Returns None on any failure; never a partially decoded payload.
    """
    hex_str = (hex_string or "").strip().lower()
    if len(hex_str) < MIN_HEX_LENGTH:
        return None

    layout = layout_for(device_code or "")
    if layout is None:
        logger.debug("No payload layout for device code %r", device_code)
        return None

    out: DecodedPayload = {}
    for i, slot in enumerate(layout.slots):
        raw = _read_slot(hex_str, i)
        if raw is None:
            logger.debug(
                "Bad %s slot %d (%s) in payload %r for %s",
                layout.family, i, slot.name, hex_str, device_code,
            )
            return None
        out[slot.name] = raw / slot.divisor
    return out
