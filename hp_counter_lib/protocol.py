"""Wire protocol constants for HP 53131A/53181A counters on the RS-232 port.

The counter talks only in one direction: in "talk only" mode it prints one
ASCII line per gate period. A line holds a number, optionally followed by a
unit token, e.g. ``"+1.000000000E+03 Hz"`` or ``"1,234 M"``.
"""

import re
from typing import Dict, Final, Tuple

from hp_counter_lib.models import (
    GateTime,
    InstrumentIdentity,
    MeasureMode,
    UnitSymbol,
)

# ============================================================================
# Serial Port Settings
# ============================================================================

DEFAULT_BAUD: Final[int] = 9600

# 10 s gate plus instrument overhead must fit in one read
DEFAULT_READ_TIMEOUT_S: Final[float] = 20.0

# Device sends CRLF for all output line endings
OUTPUT_TERMINATOR: Final[bytes] = b"\r\n"

# ============================================================================
# Response Line Format
# ============================================================================

TOKEN_SEPARATORS: Final[str] = " \t"

# Thousands grouping delimiter in numeric tokens
GROUPING_DELIMITER: Final[str] = ","

# Any line containing this character is a voltage reading
VOLTAGE_MARKER: Final[str] = "V"

MAX_TOKENS: Final[int] = 2

# Invariant-culture number: optional sign, decimal point, optional exponent
RE_NUMBER: Final[re.Pattern[str]] = re.compile(
    r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$"
)

# Unit token -> (mode, unit, decimal multiplier). Case-sensitive.
UNIT_TABLE: Final[Dict[str, Tuple[MeasureMode, UnitSymbol, float]]] = {
    "Hz": (MeasureMode.FREQUENCY, UnitSymbol.HZ, 1.0),
    "MHz": (MeasureMode.FREQUENCY, UnitSymbol.MHZ, 1.0e6),
    "M": (MeasureMode.TOTALIZE, UnitSymbol.MEGA_COUNT, 1.0e6),
    "DEG": (MeasureMode.PHASE, UnitSymbol.DEGREE, 1.0),
    "s": (MeasureMode.TIME, UnitSymbol.SECOND, 1.0),
    "us": (MeasureMode.TIME, UnitSymbol.MICROSECOND, 1.0e-6),
}

# Reverse lookup used when writing lines back out
UNIT_TOKENS: Final[Dict[UnitSymbol, str]] = {
    unit: token for token, (_, unit, _) in UNIT_TABLE.items()
}


def unit_multiplier(unit: UnitSymbol) -> float:
    """Decimal multiple that converts a value in ``unit`` to base units."""
    token = UNIT_TOKENS.get(unit)
    if token is None:
        return 1.0
    return UNIT_TABLE[token][2]


# ============================================================================
# Gate Time
# ============================================================================

GATE_TIME_SECONDS: Final[Dict[GateTime, float]] = {
    GateTime.UNKNOWN: 0.0,
    GateTime.GATE_0_1S: 0.1,
    GateTime.GATE_1S: 1.0,
    GateTime.GATE_10S: 10.0,
    GateTime.OTHER: 0.0,
}

MIN_GATE_TIME_S: Final[float] = 0.1

DEFAULT_ESTIMATE_SAMPLES: Final[int] = 3
MIN_ESTIMATE_SAMPLES: Final[int] = 2

# ============================================================================
# Instrument Identity
# ============================================================================

UNKNOWN_INSTRUMENT: Final[InstrumentIdentity] = InstrumentIdentity(
    manufacturer="HEWLETT PACKARD / AGILENT",
    model="<unknown>",
    serial_number="<unknown>",
)

# Counters permanently wired to bench ports
KNOWN_INSTRUMENTS: Final[Dict[str, InstrumentIdentity]] = {
    "COM1": InstrumentIdentity("HEWLETT PACKARD", "53131 A", "3736A21306"),
    "COM3": InstrumentIdentity("HEWLETT PACKARD", "53181 A", "3548A02330"),
    "COM6": InstrumentIdentity("HEWLETT PACKARD", "53131 A", "3736A23165"),
}
