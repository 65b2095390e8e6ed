"""
hp_counter_lib - Python library for HP/Agilent 53131A/53181A counters on RS-232.

Reads the counter's talk-only output, one ASCII line per gate period.
"""

from hp_counter_lib.controller import CounterController
from hp_counter_lib.errors import (
    CounterError,
    InvalidResponse,
    ReadTimeout,
    SerialIOError,
)
from hp_counter_lib.models import (
    ConnectionState,
    CounterEvent,
    GateTime,
    InstrumentIdentity,
    MeasureMode,
    MeasurementMode,
    MeasurementRecord,
    UnitSymbol,
)
from hp_counter_lib.parsing import derive_frequency, parse_response_line

__version__ = "0.1.0"

__all__ = [
    "CounterController",
    "MeasurementRecord",
    "InstrumentIdentity",
    "ConnectionState",
    "CounterEvent",
    "GateTime",
    "MeasureMode",
    "MeasurementMode",
    "UnitSymbol",
    "parse_response_line",
    "derive_frequency",
    "CounterError",
    "SerialIOError",
    "ReadTimeout",
    "InvalidResponse",
]
