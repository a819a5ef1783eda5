"""Turn a Nightscout reading into a spoken sentence."""

import math
import os
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional, Tuple

from nightscout import GlucoseReading

UNITS_MGDL = "mgdl"
UNITS_MMOL = "mmol"

MGDL_PER_MMOL = Decimal(18)
STALE_AFTER_MINUTES = 15

DIRECTION_PHRASES = {
    "DoubleUp": "rising fast",
    "SingleUp": "rising",
    "FortyFiveUp": "rising slightly",
    "Flat": "steady",
    "FortyFiveDown": "falling slightly",
    "SingleDown": "falling",
    "DoubleDown": "falling fast",
    "NOT COMPUTABLE": "",
    "RATE_OUT_OF_RANGE": "",
}


@dataclass(frozen=True)
class SpeechConfig:
    unit_system: str = UNITS_MGDL
    stale_after_minutes: int = STALE_AFTER_MINUTES

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SpeechConfig":
        env = os.environ if environ is None else environ
        units = (env.get("UNITS") or UNITS_MGDL).strip().lower()
        return cls(unit_system=UNITS_MMOL if units == UNITS_MMOL else UNITS_MGDL)


def convert_value(mgdl: float, unit_system: str) -> Tuple[str, str]:
    """Return ``(spoken value, unit label)``, rounding half up."""
    value = Decimal(str(mgdl))
    if unit_system == UNITS_MMOL:
        mmol = (value / MGDL_PER_MMOL).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        return f"{mmol:.1f}", "millimoles per litre"
    return str(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)), "milligrams per decilitre"


def spoken_direction(direction: Optional[str]) -> str:
    if not direction:
        return ""
    if direction in DIRECTION_PHRASES:
        return DIRECTION_PHRASES[direction]
    return direction.lower()


def minutes_ago(reading: GlucoseReading, now_ms: float) -> Optional[int]:
    ts = reading.timestamp_ms
    if ts is None:
        return None
    return math.floor((now_ms - ts) / 60000 + 0.5)


def build_speech(
    reading: GlucoseReading,
    unit_system: str,
    now_ms: float,
    stale_after_minutes: int = STALE_AFTER_MINUTES,
) -> str:
    value, unit = convert_value(reading.value, unit_system)
    direction = spoken_direction(reading.direction)
    age = minutes_ago(reading, now_ms)

    speech = f"Your glucose is {value} {unit}"
    if direction:
        speech += f" and {direction}"
    speech += "."

    if age is not None and age > stale_after_minutes:
        speech += f" But heads up, this reading is {age} minutes old."

    return speech
