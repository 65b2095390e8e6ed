"""Data models for the serial counter library."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ConnectionState(Enum):
    """Counter controller connection states."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class UnitSymbol(Enum):
    """Unit reported with a measurement line."""

    UNITLESS = "1"  # no unit given, e.g. ratio
    UNKNOWN = "unknown"
    HZ = "Hz"
    MHZ = "MHz"
    MEGA_COUNT = "M"  # totalize count in units of 1e6
    SECOND = "s"
    MICROSECOND = "us"
    DEGREE = "DEG"
    VOLT = "V"


class MeasureMode(Enum):
    """Instrument function a line was produced by."""

    UNKNOWN = "unknown"
    FREQUENCY = "frequency"
    TOTALIZE = "totalize"
    RATIO = "ratio"
    DUTY_CYCLE = "duty_cycle"
    PHASE = "phase"
    VOLTAGE = "voltage"
    TIME = "time"


class MeasurementMode(Enum):
    """Coarse, user-facing measurement mode."""

    UNKNOWN = "unknown"
    FREQUENCY = "frequency"
    TOTALIZE = "totalize"

    @classmethod
    def from_measure_mode(cls, mode: MeasureMode) -> "MeasurementMode":
        """Map an instrument function onto the coarse mode."""
        if mode == MeasureMode.FREQUENCY:
            return cls.FREQUENCY
        if mode == MeasureMode.TOTALIZE:
            return cls.TOTALIZE
        return cls.UNKNOWN


class GateTime(Enum):
    """Nominal gate times of the counter."""

    UNKNOWN = "unknown"
    GATE_0_1S = "0.1s"
    GATE_1S = "1s"
    GATE_10S = "10s"
    OTHER = "other"


class CounterEvent(Enum):
    """Notifications raised by the controller."""

    UPDATED = "updated"
    TIMEOUT = "timeout"
    READY = "ready"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MeasurementRecord:
    """One sample read from the counter.

    Attributes:
        raw_text: Response line with surrounding whitespace stripped.
        value: Numeric value in base units (Hz, s, counts), NaN if the line
            could not be decoded.
        unit: Unit resolved from the line.
        mode: Instrument function resolved from the line.
        timestamp: UTC time the record was created.
        converted: True once a totalize count was turned into a frequency.
    """

    raw_text: str = ""
    value: float = math.nan
    unit: UnitSymbol = UnitSymbol.UNKNOWN
    mode: MeasureMode = MeasureMode.UNKNOWN
    timestamp: datetime = field(default_factory=_utc_now)
    converted: bool = False

    @property
    def is_valid(self) -> bool:
        """True if the record carries a numeric value."""
        return not math.isnan(self.value)

    def to_dict(self) -> dict:
        """Convert record to a JSON-friendly dictionary (NaN becomes None)."""
        return {
            "raw_text": self.raw_text,
            "value": self.value if self.is_valid else None,
            "unit": self.unit.value,
            "mode": self.mode.value,
            "timestamp": self.timestamp.isoformat(),
            "converted": self.converted,
        }


@dataclass(frozen=True)
class InstrumentIdentity:
    """Static identity of a counter attached to a given port."""

    manufacturer: str
    model: str
    serial_number: str
    firmware_version: str = ""

    def describe(self, port: str) -> str:
        """Build the human-readable instrument id string."""
        return (
            f"{self.manufacturer} {self.model} SN:{self.serial_number} "
            f"{self.firmware_version} @ {port}"
        )
