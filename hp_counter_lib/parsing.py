"""Pure functions for parsing counter response lines."""

import logging
import math
import re
from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from hp_counter_lib import protocol
from hp_counter_lib.errors import InvalidResponse
from hp_counter_lib.models import MeasureMode, MeasurementRecord, UnitSymbol

logger = logging.getLogger(__name__)

_RE_TOKEN_SPLIT = re.compile(f"[{protocol.TOKEN_SEPARATORS}]+")


def tokenize(line: str) -> List[str]:
    """Split a response line on runs of spaces/tabs, dropping empty tokens."""
    return [t for t in _RE_TOKEN_SPLIT.split(line.replace("\r", "")) if t]


def parse_number(token: str) -> float:
    """Parse a numeric token using invariant-culture rules.

    Thousands grouping delimiters are removed first. Anything that is not a
    plain decimal number with optional exponent (including ``nan``/``inf``
    spellings) gives NaN.

    Args:
        token: First token of a response line

    Returns:
        Parsed value or NaN
    """
    text = token.replace(protocol.GROUPING_DELIMITER, "")
    if not protocol.RE_NUMBER.match(text):
        return math.nan
    return float(text)


def parse_response_line(
    line: str, timestamp: Optional[datetime] = None
) -> MeasurementRecord:
    """Parse one response line into a measurement record.

    Never raises. Lines that cannot be decoded yield a record with NaN
    value and unknown unit/mode.

    Examples:
        "1.000000E+03 Hz" -> 1000.0, Hz, FREQUENCY
        "1,234 M"         -> 1.234e9, MEGA_COUNT, TOTALIZE
        "5V"              -> NaN, VOLT, VOLTAGE
        "123456"          -> 123456.0, UNKNOWN, UNKNOWN (bare totalize count)

    Args:
        line: Raw line from device
        timestamp: Record creation time. Defaults to UTC now.

    Returns:
        New MeasurementRecord
    """
    raw_text = line.strip()
    stamp = {"timestamp": timestamp} if timestamp is not None else {}

    tokens = tokenize(raw_text)
    if not tokens or len(tokens) > protocol.MAX_TOKENS:
        logger.debug(f"Unexpected token count {len(tokens)} in line: {raw_text!r}")
        return MeasurementRecord(raw_text=raw_text, **stamp)

    # Voltage readings are not decoded
    if protocol.VOLTAGE_MARKER in raw_text:
        return MeasurementRecord(
            raw_text=raw_text,
            unit=UnitSymbol.VOLT,
            mode=MeasureMode.VOLTAGE,
            **stamp,
        )

    value = parse_number(tokens[0])
    mode = MeasureMode.UNKNOWN
    unit = UnitSymbol.UNKNOWN

    if len(tokens) == 2:
        # Unlisted unit tokens keep UNKNOWN/UNKNOWN with multiplier 1
        mode, unit, multiplier = protocol.UNIT_TABLE.get(
            tokens[1], (MeasureMode.UNKNOWN, UnitSymbol.UNKNOWN, 1.0)
        )
        value *= multiplier

    return MeasurementRecord(
        raw_text=raw_text, value=value, unit=unit, mode=mode, **stamp
    )


def derive_frequency(record: MeasurementRecord, gate_time_s: float) -> float:
    """Interpret a totalize count as a frequency.

    Records of mode UNKNOWN or TOTALIZE are divided by the gate time. Any
    other mode is already typed and its value is returned unchanged.

    Args:
        record: Record to interpret
        gate_time_s: Gate time in seconds. 0 means the gate time is not
                     known yet.

    Returns:
        Frequency in Hz, NaN if the gate time is not known
    """
    if record.mode not in (MeasureMode.UNKNOWN, MeasureMode.TOTALIZE):
        return record.value
    if math.isnan(gate_time_s) or gate_time_s <= 0:
        return math.nan
    return record.value / gate_time_s


def convert_totalize_to_frequency(
    record: MeasurementRecord, gate_time_s: float
) -> MeasurementRecord:
    """Return a copy of ``record`` with its totalize count turned into Hz.

    A record is converted at most once; converted records and records of
    another mode come back unchanged.
    """
    if record.converted or record.mode not in (
        MeasureMode.UNKNOWN,
        MeasureMode.TOTALIZE,
    ):
        return record

    return replace(
        record,
        value=derive_frequency(record, gate_time_s),
        unit=UnitSymbol.HZ,
        mode=MeasureMode.TOTALIZE,
        converted=True,
    )


def format_response_line(record: MeasurementRecord) -> str:
    """Write a numeric record back out in the instrument's line format.

    Args:
        record: Record with a finite value

    Returns:
        Line without terminator, e.g. "1.234 M"

    Raises:
        ValueError: If the record has no finite value (voltage, malformed)
    """
    if not math.isfinite(record.value):
        raise ValueError(f"Cannot format non-numeric record: {record.raw_text!r}")

    token = protocol.UNIT_TOKENS.get(record.unit)
    if token is None:
        return repr(record.value)
    return f"{record.value / protocol.unit_multiplier(record.unit)!r} {token}"


def require_value(record: MeasurementRecord) -> float:
    """Return the record's value or raise if the line was not decoded.

    Raises:
        InvalidResponse: If the record value is NaN
    """
    if not record.is_valid:
        raise InvalidResponse(f"Line carries no numeric value: {record.raw_text!r}")
    return record.value
